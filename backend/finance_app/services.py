"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
auth checks and the pure helpers in `utils`. Services are intentionally
thin: they perform validation, execute domain logic and persist
aggregates via repositories.

Errors are raised as plain exceptions (`ValueError`, `NotFoundError`,
`ForbiddenError`, `ConflictError`); `main` maps them to HTTP responses.
Money is kept as `Decimal` internally and converted to float only in
the dictionaries returned to the API.
"""

import logging
import secrets
from collections import defaultdict
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .auth import EDITOR_ROLES, parse_role, require_membership, require_role, role_description, role_label
from .config import settings
from .errors import ConflictError, ForbiddenError, ImportValidationError, NotFoundError
from .repositories import TransactionFilter
from .utils import csv_import, duplicates, mailer, periods

logger = logging.getLogger("finance_app.services")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ZERO = Decimal("0")
CENT = Decimal("0.01")
MAX_NAME = 100
MIN_PASSWORD = 8
MAX_AMOUNT = Decimal("1000000")
MAX_DESCRIPTION = 500
MAX_MEMO = 1000
OWNER = models.HouseholdRole.OWNER

DEFAULT_CATEGORIES = [
    ("Food & Dining", "Groceries, restaurants and takeout"),
    ("Transportation", "Fuel, transit, parking and car costs"),
    ("Bills & Utilities", "Electricity, water, internet and phone"),
    ("Healthcare", "Doctors, pharmacy and insurance"),
    ("Entertainment", "Movies, games, events and subscriptions"),
    ("Shopping", "Clothing, electronics and general purchases"),
    ("Personal Care", "Haircuts, cosmetics and wellness"),
    ("Travel", "Flights, hotels and vacations"),
    ("Home & Garden", "Furniture, repairs and garden supplies"),
    ("Family & Kids", "Childcare, school supplies and activities"),
    ("Education", "Tuition, courses and books"),
    ("Gifts & Donations", "Presents and charitable giving"),
    ("Pets", "Food, vet and pet supplies"),
    ("Taxes", "Income and property taxes"),
    ("Other", "Everything else"),
]

DEFAULT_TYPES = [
    ("Income", False),
    ("Bonus", False),
    ("Refund", False),
    ("Side Income", False),
    ("Expense", True),
    ("Bill Payment", True),
    ("Purchase", True),
    ("Donation", True),
]


def money(value) -> Optional[float]:
    """Decimal -> float for JSON responses (None stays None)."""
    return None if value is None else float(value)


def pct(part: Decimal, whole: Decimal) -> float:
    """Percentage of `whole`, rounded to two places; 0 when `whole` is zero."""
    if not whole:
        return 0.0
    return round(float(part / whole * 100), 2)


def clean_name(value, label: str) -> str:
    name = (value or "").strip() if isinstance(value, str) else ""
    if not name:
        raise ValueError(f"{label} name is required")
    if len(name) > MAX_NAME:
        raise ValueError(f"{label} name must be {MAX_NAME} characters or less")
    return name


def parse_budget(value) -> Optional[Decimal]:
    """Parse an annual budget; None or "" clears it, negatives are rejected."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError("Annual budget must be a number")
    if not amount.is_finite() or amount < 0:
        raise ValueError("Annual budget must be a non-negative number")
    return amount.quantize(CENT)


def user_out(user: models.User) -> dict:
    return {
        'id': user.id,
        'email': user.email,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'name': display_name(user),
        'created_at': user.created_at.isoformat(),
    }


def display_name(user: models.User) -> str:
    full = " ".join(p for p in (user.first_name, user.last_name) if p)
    return full or user.email


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, email: str, password: str, first_name: Optional[str] = None,
                 last_name: Optional[str] = None) -> models.User:
        """Create a new user with a hashed password.

        Returns the persisted `User` instance.
        """
        email = (email or "").strip().lower()
        if "@" not in email or "." not in email.rsplit("@", 1)[-1]:
            raise ValueError("A valid email address is required")
        if len(password or "") < MIN_PASSWORD:
            raise ValueError(f"Password must be at least {MIN_PASSWORD} characters")
        if self.user_repo.get_by_email(email):
            raise ConflictError("Email already registered", "DUPLICATE_EMAIL")
        user = models.User(
            email=email,
            first_name=(first_name or "").strip() or None,
            last_name=(last_name or "").strip() or None,
            password_hash=PWD_CTX.hash(password),
        )
        return self.user_repo.create(user)

    def authenticate(self, email: str, password: str):
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_email(email or "")
        if not user or not user.password_hash:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return self.issue_token(user)

    def issue_token(self, user: models.User) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "email": user.email, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class UserService:
    """Profile and email-subscription settings of the current user."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.members = repositories.MembershipRepository(session)

    def update_profile(self, user: models.User, first_name: Optional[str], last_name: Optional[str]) -> models.User:
        for value in (first_name, last_name):
            if value is not None and len(value.strip()) > MAX_NAME:
                raise ValueError(f"Names must be {MAX_NAME} characters or less")
        if first_name is not None:
            user.first_name = first_name.strip() or None
        if last_name is not None:
            user.last_name = last_name.strip() or None
        return self.user_repo.save(user)

    def email_subscriptions(self, user: models.User) -> List[dict]:
        out = []
        for household, membership in repositories.HouseholdRepository(self.session).list_for_user(user.id):
            out.append({
                'household_id': household.id,
                'household_name': household.name,
                'role': membership.role.value,
                'weekly_summary': membership.weekly_summary,
            })
        return out

    def set_subscription(self, user: models.User, household_id: int, weekly_summary: bool) -> dict:
        if not isinstance(weekly_summary, bool):
            raise ValueError("weekly_summary must be a boolean")
        membership = require_membership(household_id, user, self.session)
        membership.weekly_summary = weekly_summary
        self.members.save(membership)
        return {'household_id': household_id, 'weekly_summary': membership.weekly_summary}


class WebhookService:
    """Keeps local users in sync with the external auth provider."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def handle(self, event: dict) -> dict:
        event_type = event.get('type')
        data = event.get('data') or {}
        if event_type in ('user.created', 'user.updated'):
            return self._upsert(data)
        if event_type == 'user.deleted':
            return self._delete(data)
        logger.info("Ignoring webhook event type=%s", event_type)
        return {'status': 'ok', 'action': 'ignored'}

    @staticmethod
    def primary_email(data: dict) -> Optional[str]:
        primary_id = data.get('primary_email_address_id')
        for entry in data.get('email_addresses') or []:
            if entry.get('id') == primary_id and entry.get('email_address'):
                return entry['email_address'].strip().lower()
        return None

    def _upsert(self, data: dict) -> dict:
        external_id = data.get('id')
        if not external_id:
            raise ValueError("Webhook payload is missing the user id")
        email = self.primary_email(data)
        if not email:
            raise ValueError("No primary email address found")
        user = self.user_repo.get_by_external_id(external_id)
        action = 'updated'
        if user is None:
            # link a locally registered account with the same email
            user = self.user_repo.get_by_email(email)
            if user is None:
                user = models.User(email=email)
                action = 'created'
            user.external_id = external_id
        elif user.email != email:
            other = self.user_repo.get_by_email(email)
            if other is not None and other.id != user.id:
                raise ConflictError("Email already belongs to another user", "DUPLICATE_EMAIL")
        user.email = email
        user.first_name = data.get('first_name') or None
        user.last_name = data.get('last_name') or None
        user = self.user_repo.save(user)
        logger.info("Webhook user %s: external_id=%s user_id=%s", action, external_id, user.id)
        return {'status': 'ok', 'action': action, 'user_id': user.id}

    def _delete(self, data: dict) -> dict:
        external_id = data.get('id')
        user = self.user_repo.get_by_external_id(external_id) if external_id else None
        if user is None:
            return {'status': 'ok', 'action': 'ignored'}
        self.user_repo.delete(user)
        logger.info("Webhook user deleted: external_id=%s", external_id)
        return {'status': 'ok', 'action': 'deleted'}


class HouseholdService:
    """Household CRUD plus the active-month lookup used by dashboards."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.HouseholdRepository(session)

    def to_dict(self, household: models.Household, membership: Optional[models.UserHousehold] = None) -> dict:
        out = {
            'id': household.id,
            'name': household.name,
            'annual_budget': money(household.annual_budget),
            'created_at': household.created_at.isoformat(),
            'updated_at': household.updated_at.isoformat(),
            'counts': self.repo.counts(household.id),
        }
        if membership is not None:
            out['role'] = membership.role.value
            out['role_label'] = role_label(membership.role)
            out['role_description'] = role_description(membership.role)
        return out

    def list_for_user(self, user: models.User) -> List[dict]:
        return [self.to_dict(h, m) for h, m in self.repo.list_for_user(user.id)]

    def create(self, user: models.User, name: str, annual_budget=None, seed_defaults: bool = False) -> dict:
        household = models.Household(name=clean_name(name, "Household"), annual_budget=parse_budget(annual_budget))
        household = self.repo.create(household, owner_id=user.id)
        if seed_defaults:
            seed_default_definitions(self.session, household.id)
        logger.info("Household created: id=%s owner=%s", household.id, user.id)
        return self.to_dict(household, repositories.MembershipRepository(self.session).get(user.id, household.id))

    def get(self, household_id: int, user: models.User) -> dict:
        membership = require_membership(household_id, user, self.session)
        return self.to_dict(self.repo.get(household_id), membership)

    def update(self, household_id: int, user: models.User, fields: Dict) -> dict:
        """Apply the provided fields; an explicit null `annual_budget` clears it."""
        membership = require_role(household_id, user, self.session, allowed=(OWNER,))
        household = self.repo.get(household_id)
        if 'name' in fields:
            household.name = clean_name(fields['name'], "Household")
        if 'annual_budget' in fields:
            household.annual_budget = parse_budget(fields['annual_budget'])
        return self.to_dict(self.repo.save(household), membership)

    def delete(self, household_id: int, user: models.User) -> None:
        require_role(household_id, user, self.session, allowed=(OWNER,))
        household = self.repo.get(household_id)
        n = repositories.TransactionRepository(self.session).count(TransactionFilter(household_id=household_id))
        if n:
            raise ConflictError(
                f"Cannot delete household with {n} transaction(s). Delete the transactions first.",
                "HAS_TRANSACTIONS",
            )
        self.repo.delete(household)
        logger.info("Household deleted: id=%s by=%s", household_id, user.id)

    def active_month(self, household_id: int, user: models.User, today: Optional[date] = None) -> dict:
        """Most recent month with at least 5 distinct transaction days, else the current month."""
        require_membership(household_id, user, self.session)
        today = today or date.today()
        days = defaultdict(set)
        for d in repositories.TransactionRepository(self.session).distinct_dates(household_id):
            days[(d.year, d.month)].add(d.day)
        for (year, month) in sorted(days, reverse=True):
            n = len(days[(year, month)])
            if n >= 5:
                return {
                    'year': year,
                    'month': month,
                    'month_name': periods.month_name(month),
                    'is_current_month': (year, month) == (today.year, today.month),
                    'unique_days': n,
                    'message': f"Showing {periods.month_name(month)} {year} ({n} days with transactions)",
                }
        return {
            'year': today.year,
            'month': today.month,
            'month_name': periods.month_name(today.month),
            'is_current_month': True,
            'unique_days': len(days.get((today.year, today.month), ())),
            'message': "No month has enough transaction data; showing the current month",
        }


class MembershipService:
    """Listing members, changing roles and removing members."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.MembershipRepository(session)

    def list(self, household_id: int, user: models.User) -> List[dict]:
        require_membership(household_id, user, self.session)
        out = []
        for membership, member in self.repo.list_for_household(household_id):
            out.append({
                'user': user_out(member),
                'user_id': member.id,
                'role': membership.role.value,
                'role_label': role_label(membership.role),
                'joined_at': membership.joined_at.isoformat(),
                'weekly_summary': membership.weekly_summary,
                'invited_by': membership.invited_by,
                'is_current_user': member.id == user.id,
            })
        return out

    def update_role(self, household_id: int, target_user_id: int, role, user: models.User) -> dict:
        require_role(household_id, user, self.session, allowed=(OWNER,))
        new_role = parse_role(role)
        if target_user_id == user.id:
            raise ValueError("You cannot change your own role")
        target = self.repo.get(target_user_id, household_id)
        if target is None:
            raise NotFoundError("Member not found")
        target.role = new_role
        self.repo.save(target)
        logger.info("Member role changed: household=%s user=%s role=%s", household_id, target_user_id, new_role.value)
        return {'user_id': target_user_id, 'role': new_role.value}

    def remove(self, household_id: int, target_user_id: int, user: models.User) -> None:
        """Remove a member; owners may remove anyone, everyone may leave."""
        if target_user_id == user.id:
            require_membership(household_id, user, self.session)
        else:
            require_role(household_id, user, self.session, allowed=(OWNER,))
        target = self.repo.get(target_user_id, household_id)
        if target is None:
            raise NotFoundError("Member not found")
        if target.role == OWNER and self.repo.count_owners(household_id) <= 1:
            raise ValueError("Cannot remove the last owner of the household")
        self.repo.delete(target)
        logger.info("Member removed: household=%s user=%s by=%s", household_id, target_user_id, user.id)


class InvitationService:
    """Link-based household invitations."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.InvitationRepository(session)
        self.members = repositories.MembershipRepository(session)

    @staticmethod
    def link(invitation: models.Invitation) -> str:
        return f"{settings.APP_URL}/invitations/{invitation.token}"

    def to_dict(self, invitation: models.Invitation) -> dict:
        inviter = self.session.get(models.User, invitation.inviter_user_id)
        return {
            'id': invitation.id,
            'household_id': invitation.household_id,
            'token': invitation.token,
            'invitation_link': self.link(invitation),
            'role': invitation.role.value,
            'status': invitation.status.value,
            'invitee_email': invitation.invitee_email,
            'invitee_user_id': invitation.invitee_user_id,
            'inviter': user_out(inviter) if inviter else None,
            'created_at': invitation.created_at.isoformat(),
            'expires_at': invitation.expires_at.isoformat(),
        }

    def create(self, household_id: int, user: models.User, role="MEMBER", expires_in_days: int = 7,
               invitee_email: Optional[str] = None) -> dict:
        membership = require_role(household_id, user, self.session, allowed=EDITOR_ROLES)
        role = parse_role(role)
        if role == OWNER and membership.role != OWNER:
            raise ForbiddenError("Only owners can invite new owners")
        if not isinstance(expires_in_days, int) or not 1 <= expires_in_days <= 30:
            raise ValueError("expires_in_days must be between 1 and 30")
        email = (invitee_email or "").strip().lower() or None
        if email:
            if "@" not in email:
                raise ValueError("A valid invitee email address is required")
            existing = repositories.UserRepository(self.session).get_by_email(email)
            if existing and self.members.get(existing.id, household_id):
                raise ValueError("User is already a member of this household")

        invitation = self.repo.create(models.Invitation(
            household_id=household_id,
            inviter_user_id=user.id,
            invitee_email=email,
            token=secrets.token_urlsafe(32),
            role=role,
            expires_at=models.utcnow() + timedelta(days=expires_in_days),
        ))
        out = self.to_dict(invitation)
        out['email_sent'] = False
        if email:
            household = self.session.get(models.Household, household_id)
            out['email_sent'] = mailer.send_invitation_email(
                email, display_name(user), household.name, role, self.link(invitation), invitation.expires_at,
            )
        logger.info("Invitation created: household=%s role=%s by=%s", household_id, role.value, user.id)
        return out

    def list(self, household_id: int, user: models.User) -> List[dict]:
        require_membership(household_id, user, self.session)
        return [self.to_dict(inv) for inv in self.repo.list_for_household(household_id)]

    def _pending(self, token: str) -> models.Invitation:
        invitation = self.repo.get_by_token(token)
        if invitation is None:
            raise NotFoundError("Invitation not found")
        if invitation.status == models.InvitationStatus.PENDING and invitation.expires_at < models.utcnow():
            invitation.status = models.InvitationStatus.EXPIRED
            self.repo.save(invitation)
        if invitation.status == models.InvitationStatus.EXPIRED:
            raise ValueError("Invitation has expired")
        if invitation.status != models.InvitationStatus.PENDING:
            raise ValueError(f"Invitation has already been {invitation.status.value.lower()}")
        return invitation

    def get_by_token(self, token: str) -> dict:
        invitation = self._pending(token)
        household = self.session.get(models.Household, invitation.household_id)
        inviter = self.session.get(models.User, invitation.inviter_user_id)
        return {
            'id': invitation.id,
            'household': {
                'id': household.id,
                'name': household.name,
                'member_count': len(self.members.list_for_household(household.id)),
            },
            'inviter': {'name': display_name(inviter), 'email': inviter.email} if inviter else None,
            'role': invitation.role.value,
            'role_description': role_description(invitation.role),
            'created_at': invitation.created_at.isoformat(),
            'expires_at': invitation.expires_at.isoformat(),
        }

    def accept(self, token: str, user: models.User) -> dict:
        invitation = self._pending(token)
        if self.members.get(user.id, invitation.household_id):
            raise ValueError("You are already a member of this household")
        membership = self.repo.accept(invitation, models.UserHousehold(
            user_id=user.id,
            household_id=invitation.household_id,
            role=invitation.role,
            invited_by=invitation.inviter_user_id,
        ))
        logger.info("Invitation accepted: id=%s user=%s", invitation.id, user.id)
        return {'household_id': membership.household_id, 'role': membership.role.value}

    def decline(self, token: str, user: models.User) -> dict:
        invitation = self._pending(token)
        invitation.status = models.InvitationStatus.DECLINED
        invitation.invitee_user_id = user.id
        self.repo.save(invitation)
        return {'id': invitation.id, 'status': invitation.status.value}

    def delete(self, invitation_id: int, user: models.User) -> None:
        """The inviter or an owner of the household may revoke an invitation."""
        invitation = self.repo.get(invitation_id)
        if invitation is None:
            raise NotFoundError("Invitation not found")
        if invitation.inviter_user_id != user.id:
            require_role(invitation.household_id, user, self.session, allowed=(OWNER,),
                         not_found="Invitation not found")
        self.repo.delete(invitation)


class DefinitionService:
    """CRUD shared by the household definition tables.

    Subclasses name the model and the optional fields they accept beyond
    `name`.
    """
    model = None
    label = ""
    extra_fields: tuple = ()

    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.DefinitionRepository(session, self.model)

    def to_dict(self, item) -> dict:
        out = {'id': item.id, 'household_id': item.household_id, 'name': item.name,
               'created_at': item.created_at.isoformat()}
        for field in self.extra_fields:
            value = getattr(item, field)
            out[field] = money(value) if isinstance(value, Decimal) else value
        return out

    def _clean_extra(self, data: Dict) -> Dict:
        out = {}
        for field in self.extra_fields:
            if field not in data:
                continue
            value = data[field]
            if field == 'annual_budget':
                out[field] = parse_budget(value)
            elif field == 'is_outflow':
                if value is None:
                    continue
                out[field] = bool(value)
            else:
                value = (value or "").strip() or None
                if value is not None and len(value) > MAX_DESCRIPTION:
                    raise ValueError(f"{field.capitalize()} is too long")
                out[field] = value
        return out

    def _get_for_write(self, item_id: int, user: models.User):
        item = self.repo.get(item_id)
        not_found = f"{self.label} not found"
        if item is None:
            raise NotFoundError(not_found)
        require_role(item.household_id, user, self.session, not_found=not_found)
        return item

    def list(self, household_id: int, user: models.User) -> List[dict]:
        require_membership(household_id, user, self.session)
        return [self.to_dict(item) for item in self.repo.list(household_id)]

    def create(self, household_id: int, user: models.User, data: Dict) -> dict:
        require_role(household_id, user, self.session)
        name = clean_name(data.get('name'), self.label)
        if self.repo.get_by_name(household_id, name):
            raise ConflictError(f'{self.label} "{name}" already exists in this household', "DUPLICATE_NAME")
        item = self.model(household_id=household_id, name=name, **self._clean_extra(data))
        return self.to_dict(self.repo.save(item))

    def update(self, item_id: int, user: models.User, data: Dict) -> dict:
        item = self._get_for_write(item_id, user)
        if 'name' in data and data['name'] is not None:
            name = clean_name(data['name'], self.label)
            other = self.repo.get_by_name(item.household_id, name)
            if other is not None and other.id != item.id:
                raise ConflictError(f'{self.label} "{name}" already exists in this household', "DUPLICATE_NAME")
            item.name = name
        for field, value in self._clean_extra(data).items():
            setattr(item, field, value)
        return self.to_dict(self.repo.save(item))

    def delete(self, item_id: int, user: models.User) -> None:
        item = self._get_for_write(item_id, user)
        if self.repo.is_referenced(item.id):
            raise ConflictError(
                f"Cannot delete {self.label.lower()} because it is used by existing transactions",
                "FOREIGN_KEY_CONSTRAINT",
            )
        self.repo.delete(item)

    def bulk_create(self, household_id: int, user: models.User, items: List[Dict]) -> dict:
        """Create many rows at once; names that already exist are skipped."""
        require_role(household_id, user, self.session)
        existing = {item.name for item in self.repo.list(household_id)}
        new_items, skipped = [], []
        for data in items:
            name = clean_name(data.get('name'), self.label)
            if name in existing:
                skipped.append(name)
                continue
            existing.add(name)
            new_items.append(self.model(household_id=household_id, name=name, **self._clean_extra(data)))
        created = self.repo.create_many(new_items) if new_items else []
        return {
            'created': len(created),
            'skipped': len(skipped),
            'skipped_names': skipped,
            'items': [self.to_dict(item) for item in created],
        }


class AccountService(DefinitionService):
    model = models.Account
    label = "Account"


class HouseholdUserService(DefinitionService):
    model = models.HouseholdUser
    label = "User"
    extra_fields = ('annual_budget',)


class CategoryService(DefinitionService):
    model = models.Category
    label = "Category"
    extra_fields = ('description', 'icon', 'color', 'annual_budget')


class TypeService(DefinitionService):
    model = models.TransactionType
    label = "Type"
    extra_fields = ('is_outflow',)


def seed_default_definitions(session: Session, household_id: int) -> dict:
    """Add the default categories and transaction types that do not exist yet."""
    categories = repositories.DefinitionRepository(session, models.Category)
    types = repositories.DefinitionRepository(session, models.TransactionType)
    have_c = {c.name for c in categories.list(household_id)}
    have_t = {t.name for t in types.list(household_id)}
    new_c = [models.Category(household_id=household_id, name=n, description=d)
             for n, d in DEFAULT_CATEGORIES if n not in have_c]
    new_t = [models.TransactionType(household_id=household_id, name=n, is_outflow=o)
             for n, o in DEFAULT_TYPES if n not in have_t]
    if new_c:
        categories.create_many(new_c)
    if new_t:
        types.create_many(new_t)
    return {'categories': len(new_c), 'types': len(new_t)}


def transaction_out(txn: models.Transaction) -> dict:
    return {
        'id': txn.id,
        'household_id': txn.household_id,
        'account_id': txn.account_id,
        'account': txn.account.name if txn.account else None,
        'household_user_id': txn.household_user_id,
        'household_user': txn.household_user.name if txn.household_user else None,
        'category_id': txn.category_id,
        'category': txn.category.name if txn.category else None,
        'type_id': txn.type_id,
        'type': txn.type.name if txn.type else None,
        'is_outflow': txn.type.is_outflow if txn.type else None,
        'transaction_date': txn.transaction_date.isoformat(),
        'post_date': txn.post_date.isoformat(),
        'description': txn.description,
        'amount': money(txn.amount),
        'memo': txn.memo,
        'created_at': txn.created_at.isoformat(),
        'updated_at': txn.updated_at.isoformat(),
    }


class TransactionService:
    """Transaction CRUD, listing, date ranges and duplicate detection."""
    _references = (
        ('account_id', models.Account, "Account"),
        ('household_user_id', models.HouseholdUser, "User"),
        ('category_id', models.Category, "Category"),
        ('type_id', models.TransactionType, "Type"),
    )

    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.TransactionRepository(session)

    def _check_references(self, household_id: int, values: Dict) -> None:
        for field, model, label in self._references:
            ref_id = values.get(field)
            if ref_id is None:
                if field != 'household_user_id':
                    raise ValueError(f"{label} is required")
                continue
            row = self.session.get(model, ref_id)
            if row is None or row.household_id != household_id:
                raise ValueError(f"{label} does not belong to this household")

    @staticmethod
    def _check_fields(values: Dict) -> None:
        description = (values.get('description') or "").strip()
        if not description:
            raise ValueError("Description is required")
        if len(description) > MAX_DESCRIPTION:
            raise ValueError(f"Description must be {MAX_DESCRIPTION} characters or less")
        amount = values.get('amount')
        if amount is None or not Decimal(amount).is_finite():
            raise ValueError("Amount must be a number")
        if abs(Decimal(amount)) > MAX_AMOUNT:
            raise ValueError("Amount must be between -1,000,000 and 1,000,000")
        if values.get('memo') and len(values['memo']) > MAX_MEMO:
            raise ValueError(f"Memo must be {MAX_MEMO} characters or less")

    def _get_visible(self, txn_id: int, user: models.User, write: bool = False) -> models.Transaction:
        txn = self.repo.get(txn_id)
        if txn is None:
            raise NotFoundError("Transaction not found")
        if write:
            require_role(txn.household_id, user, self.session, not_found="Transaction not found")
        else:
            require_membership(txn.household_id, user, self.session, not_found="Transaction not found")
        return txn

    def list(self, user: models.User, flt: TransactionFilter, page: int = 1, limit: int = 10) -> dict:
        require_membership(flt.household_id, user, self.session)
        if page < 1:
            raise ValueError("page must be 1 or greater")
        if not 1 <= limit <= 500:
            raise ValueError("limit must be between 1 and 500")
        rows, total = self.repo.page(flt, page, limit)
        return {
            'transactions': [transaction_out(t) for t in rows],
            'pagination': {'page': page, 'limit': limit, 'total': total, 'pages': (total + limit - 1) // limit},
        }

    def get(self, txn_id: int, user: models.User) -> dict:
        return transaction_out(self._get_visible(txn_id, user))

    def create(self, user: models.User, values: Dict) -> dict:
        household_id = values['household_id']
        require_role(household_id, user, self.session)
        self._check_references(household_id, values)
        self._check_fields(values)
        txn = models.Transaction(
            household_id=household_id,
            account_id=values['account_id'],
            household_user_id=values.get('household_user_id'),
            category_id=values['category_id'],
            type_id=values['type_id'],
            transaction_date=values['transaction_date'],
            post_date=values.get('post_date') or values['transaction_date'],
            description=values['description'].strip(),
            amount=Decimal(values['amount']).quantize(CENT),
            memo=(values.get('memo') or "").strip() or None,
        )
        return transaction_out(self.repo.create(txn))

    def update(self, txn_id: int, user: models.User, fields: Dict) -> dict:
        """Apply the provided fields; `household_user_id` may be set to null."""
        txn = self._get_visible(txn_id, user, write=True)
        merged = {
            'account_id': txn.account_id,
            'household_user_id': txn.household_user_id,
            'category_id': txn.category_id,
            'type_id': txn.type_id,
            'description': txn.description,
            'amount': txn.amount,
            'memo': txn.memo,
        }
        for key, value in fields.items():
            if value is None and key not in ('household_user_id', 'memo', 'post_date'):
                continue
            merged[key] = value
        self._check_references(txn.household_id, merged)
        self._check_fields(merged)
        txn.account_id = merged['account_id']
        txn.household_user_id = merged['household_user_id']
        txn.category_id = merged['category_id']
        txn.type_id = merged['type_id']
        txn.description = merged['description'].strip()
        txn.amount = Decimal(merged['amount']).quantize(CENT)
        txn.memo = (merged.get('memo') or "").strip() or None
        if merged.get('transaction_date'):
            txn.transaction_date = merged['transaction_date']
        if 'post_date' in fields:
            txn.post_date = fields['post_date'] or txn.transaction_date
        return transaction_out(self.repo.save(txn))

    def delete(self, txn_id: int, user: models.User) -> None:
        self.repo.delete(self._get_visible(txn_id, user, write=True))

    def date_ranges(self, household_id: int, user: models.User, today: Optional[date] = None) -> dict:
        """Years that have transactions (newest first) plus the current year and month."""
        require_membership(household_id, user, self.session)
        today = today or date.today()
        lo, hi = self.repo.date_bounds(household_id)
        years = list(range(hi.year, lo.year - 1, -1)) if lo and hi else []
        return {
            'years': years,
            'current_year': today.year,
            'current_month': today.month,
            'earliest_date': lo.isoformat() if lo else None,
            'latest_date': hi.isoformat() if hi else None,
        }

    def duplicates(self, household_id: int, user: models.User, start_date: Optional[date] = None,
                   end_date: Optional[date] = None, time_window: int = duplicates.DEFAULT_TIME_WINDOW) -> dict:
        require_membership(household_id, user, self.session)
        flt = TransactionFilter(household_id=household_id, start_date=start_date, end_date=end_date)
        rows = self.repo.list(flt)
        candidates = [
            duplicates.DuplicateCandidate(
                id=t.id,
                transaction_date=t.transaction_date,
                description=t.description,
                amount=t.amount,
                account=t.account.name if t.account else "",
                category=t.category.name if t.category else "",
                type=t.type.name if t.type else "",
                user=t.household_user.name if t.household_user else "",
                memo=t.memo,
            )
            for t in rows
        ]
        pairs = duplicates.find_duplicates(candidates, time_window=time_window)
        return {
            'duplicates': [p.to_dict() for p in pairs],
            'stats': duplicates.duplicate_stats(pairs),
            'total_transactions': len(rows),
            'date_range': {
                'start_date': start_date.isoformat() if start_date else None,
                'end_date': end_date.isoformat() if end_date else None,
            },
            'time_window': time_window,
        }


class ImportService:
    """All-or-nothing bulk import of name-referenced transaction rows."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.TransactionRepository(session)

    def import_csv(self, household_id: int, user: models.User, content: bytes, today: Optional[date] = None) -> dict:
        require_role(household_id, user, self.session)
        return self.import_rows(household_id, user, csv_import.parse_csv(content), today=today)

    def import_rows(self, household_id: int, user: models.User, rows: List[Dict], today: Optional[date] = None) -> dict:
        """Validate every row, resolve names, then insert all rows or none.

        Raises `ImportValidationError` listing every problem found.
        """
        require_role(household_id, user, self.session)
        if not rows:
            raise ValueError("No transactions to import")
        if len(rows) > settings.MAX_BULK_TRANSACTIONS:
            raise ValueError(f"Too many transactions. Maximum is {settings.MAX_BULK_TRANSACTIONS} per import")
        today = today or date.today()

        cleaned, errors = [], []
        for idx, raw in enumerate(rows):
            if not isinstance(raw, dict):
                errors.append({'row': idx + 2, 'field': '', 'value': str(raw), 'message': "Row must be an object"})
                continue
            row, row_errors = csv_import.validate_row(csv_import.normalize_row(raw), idx + 2, today)
            errors.extend(row_errors)
            if row is not None:
                cleaned.append((idx + 2, row))

        lookups = {}
        for field, model in (('account', models.Account), ('user', models.HouseholdUser),
                             ('category', models.Category), ('type', models.TransactionType)):
            lookups[field] = repositories.DefinitionRepository(self.session, model).map_by_name(
                household_id, {row[field] for _, row in cleaned},
            )

        txns = []
        for row_number, row in cleaned:
            missing = False
            for field in ('account', 'user', 'category', 'type'):
                name = row[field]
                if field == 'user' and not name:
                    continue
                if name not in lookups[field]:
                    missing = True
                    errors.append({
                        'row': row_number,
                        'field': field,
                        'value': name,
                        'message': f'{field.capitalize()} "{name}" not found in this household',
                    })
            if missing:
                continue
            user_row = lookups['user'].get(row['user']) if row['user'] else None
            txns.append(models.Transaction(
                household_id=household_id,
                account_id=lookups['account'][row['account']].id,
                household_user_id=user_row.id if user_row else None,
                category_id=lookups['category'][row['category']].id,
                type_id=lookups['type'][row['type']].id,
                transaction_date=row['transaction_date'],
                post_date=row['post_date'],
                description=row['description'],
                amount=row['amount'],
                memo=row['memo'],
            ))

        if errors:
            errors.sort(key=lambda e: e['row'])
            failed_rows = len({e['row'] for e in errors})
            raise ImportValidationError(errors, f"Validation failed for {failed_rows} of {len(rows)} rows")
        created = self.repo.create_many(txns)
        logger.info("Imported %s transactions into household=%s by user=%s", created, household_id, user.id)
        return {'created': created, 'message': f"Successfully imported {created} transactions"}


class AnalyticsService:
    """Chart-ready aggregates: breakdowns, money flow and monthly totals."""
    _group_columns = {
        'category': (models.Transaction.category_id, models.Category),
        'user': (models.Transaction.household_user_id, models.HouseholdUser),
        'account': (models.Transaction.account_id, models.Account),
    }

    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.TransactionRepository(session)

    def _names(self, model, household_id: int) -> Dict[int, str]:
        return {r.id: r.name for r in repositories.DefinitionRepository(self.session, model).list(household_id)}

    def breakdown(self, user: models.User, flt: TransactionFilter, group_by: str = 'category') -> List[dict]:
        """Signed totals per group, largest absolute value first."""
        require_membership(flt.household_id, user, self.session)
        if group_by not in self._group_columns:
            raise ValueError("group_by must be one of category, user, account")
        column, model = self._group_columns[group_by]
        names = self._names(model, flt.household_id)
        out = [
            {'id': gid, 'name': names.get(gid, 'Unknown'), 'value': money(total), 'count': n}
            for gid, total, n in self.repo.group_totals(flt, column)
        ]
        out.sort(key=lambda r: abs(r['value']), reverse=True)
        return out

    def money_flow(self, user: models.User, flt: TransactionFilter) -> dict:
        """Sankey graph: income accounts -> household users -> expense categories."""
        require_membership(flt.household_id, user, self.session)
        accounts = self._names(models.Account, flt.household_id)
        users = self._names(models.HouseholdUser, flt.household_id)
        categories = self._names(models.Category, flt.household_id)

        income = defaultdict(Decimal)
        expense = defaultdict(Decimal)
        for _, amount, is_outflow, account_id, hu_id, category_id in self.repo.flow_rows(flt):
            if is_outflow:
                expense[(hu_id, category_id)] += abs(amount)
            else:
                income[(account_id, hu_id)] += abs(amount)

        def user_name(hu_id):
            return users.get(hu_id, 'Unassigned') if hu_id is not None else 'Unassigned'

        def node_group(kind, ids, lookup):
            return sorted(({'id': f"{kind}-{i if i is not None else 'none'}", 'name': lookup(i), 'type': kind}
                           for i in ids), key=lambda n: n['name'])

        nodes = (
            node_group('account', {a for a, _ in income}, lambda i: accounts.get(i, 'Unknown'))
            + node_group('user', {u for u, _ in income} | {u for u, _ in expense}, user_name)
            + node_group('category', {c for _, c in expense}, lambda i: categories.get(i, 'Unknown'))
        )

        def ref(kind, i):
            return f"{kind}-{i if i is not None else 'none'}"

        links = [{'source': ref('account', a), 'target': ref('user', u), 'value': money(v)}
                 for (a, u), v in income.items() if v]
        links += [{'source': ref('user', u), 'target': ref('category', c), 'value': money(v)}
                  for (u, c), v in expense.items() if v]
        return {
            'nodes': nodes,
            'links': links,
            'total_income': money(sum(income.values(), ZERO)),
            'total_expenses': money(sum(expense.values(), ZERO)),
        }

    def monthly_totals(self, user: models.User, flt: TransactionFilter) -> List[dict]:
        """Income, expenses and net per calendar month, oldest first."""
        require_membership(flt.household_id, user, self.session)
        months = defaultdict(lambda: [ZERO, ZERO])
        for d, amount, is_outflow, *_ in self.repo.flow_rows(flt):
            months[(d.year, d.month)][1 if is_outflow else 0] += abs(amount)
        out = []
        for (year, month) in sorted(months):
            inc, exp = months[(year, month)]
            out.append({
                'year': year,
                'month': month,
                'month_name': periods.month_name(month),
                'income': money(inc),
                'expenses': money(exp),
                'net': money(inc - exp),
            })
        return out


def _budget_alerts(household_perf: Optional[dict], categories: List[dict]) -> List[dict]:
    """Severity: critical above 100%, warning from 80%, info from 50% (household only)."""
    alerts = []
    if household_perf and not household_perf.get('no_budget'):
        used = household_perf['percentage_used']
        severity = 'critical' if used > 100 else 'warning' if used >= 80 else 'info' if used >= 50 else None
        if severity:
            alerts.append({
                'type': 'household',
                'severity': severity,
                'name': None,
                'message': f"Household spending is at {used:.0f}% of budget",
                'percentage_used': used,
            })
    for cat in categories:
        used = cat['percentage_used']
        severity = 'critical' if used > 100 else 'warning' if used >= 80 else None
        if severity:
            alerts.append({
                'type': 'category',
                'severity': severity,
                'category_id': cat['id'],
                'name': cat['name'],
                'message': f"{cat['name']} spending is at {used:.0f}% of budget",
                'percentage_used': used,
            })
    order = {'critical': 0, 'warning': 1, 'info': 2}
    alerts.sort(key=lambda a: (order[a['severity']], -a['percentage_used']))
    return alerts


def replace_outflow(flt: TransactionFilter, is_outflow: Optional[bool]) -> TransactionFilter:
    return replace(flt, is_outflow=is_outflow)


def flow_total(rows, is_outflow: bool) -> Decimal:
    """Absolute value of the signed sum of `flow_rows` on one side; refunds net off."""
    return abs(sum((r[1] for r in rows if r[2] == is_outflow), ZERO))


def outflow_by_category(rows) -> Dict[int, Decimal]:
    signed = defaultdict(Decimal)
    for r in rows:
        if r[2]:
            signed[r[5]] += r[1]
    return {cid: abs(total) for cid, total in signed.items()}


class BudgetService:
    """Budget audit, allowance tracking and alerts.

    Annual budgets are prorated by the period divisor (month 12,
    quarter 4, year and all 1). Spending is the absolute value of the
    signed sum of outflow transactions in the range, at every level, so
    a refund booked on an outflow type reduces spending.
    """
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.TransactionRepository(session)

    @staticmethod
    def _range(period_type: str, start: Optional[date], end: Optional[date], today: Optional[date]):
        divisor = periods.period_divisor(period_type)
        if start is None and end is None:
            start, end = periods.period_bounds(period_type, today or date.today())
        return divisor, start, end

    def _outflow(self, flt: TransactionFilter) -> Decimal:
        return flow_total(self.repo.flow_rows(replace_outflow(flt, True)), True)

    def household_performance(self, household: models.Household, flt: TransactionFilter, divisor: int) -> dict:
        spent = self._outflow(flt)
        if household.annual_budget is None:
            return {'no_budget': True, 'actual_spending': money(spent)}
        budget = (household.annual_budget / divisor).quantize(CENT)
        return {
            'no_budget': False,
            'annual_budget': money(household.annual_budget),
            'period_budget': money(budget),
            'actual_spending': money(spent),
            'percentage_used': pct(spent, budget),
            'is_overspent': spent > budget,
            'overspend_amount': money(max(spent - budget, ZERO)),
            'remaining': money(budget - spent),
        }

    def category_performance(self, flt: TransactionFilter, divisor: int, category_id: Optional[int] = None) -> List[dict]:
        cats = repositories.DefinitionRepository(self.session, models.Category).list(flt.household_id)
        cats = [c for c in cats if c.annual_budget is not None and (category_id is None or c.id == category_id)]
        spent = {gid: abs(total) for gid, total, _ in
                 self.repo.group_totals(replace_outflow(flt, True), models.Transaction.category_id)}
        out = []
        for c in cats:
            budget = (c.annual_budget / divisor).quantize(CENT)
            actual = spent.get(c.id, ZERO)
            out.append({
                'id': c.id,
                'name': c.name,
                'annual_budget': money(c.annual_budget),
                'budget': money(budget),
                'actual_spending': money(actual),
                'is_overspent': actual > budget,
                'overspend_amount': money(max(actual - budget, ZERO)),
                'remaining': money(budget - actual),
                'percentage_used': pct(actual, budget),
            })
        out.sort(key=lambda r: (not r['is_overspent'], -r['percentage_used']))
        return out

    def audit(self, household_id: int, user: models.User, period_type: str = 'month',
              start: Optional[date] = None, end: Optional[date] = None,
              category_id: Optional[int] = None, today: Optional[date] = None) -> dict:
        require_membership(household_id, user, self.session)
        divisor, start, end = self._range(period_type, start, end, today)
        flt = TransactionFilter(household_id=household_id, start_date=start, end_date=end)
        cats = self.category_performance(flt, divisor, category_id)
        total_budget = sum((Decimal(str(c['budget'])) for c in cats), ZERO)
        total_spent = sum((Decimal(str(c['actual_spending'])) for c in cats), ZERO)
        return {
            'categories': cats,
            'summary': {
                'total_budget': money(total_budget),
                'total_spending': money(total_spent),
                'total_remaining': money(total_budget - total_spent),
                'percentage_used': pct(total_spent, total_budget),
                'overspent_count': sum(1 for c in cats if c['is_overspent']),
                'category_count': len(cats),
            },
            'period': {'type': period_type, 'start_date': start.isoformat() if start else None,
                       'end_date': end.isoformat() if end else None},
        }

    def performance(self, household_id: int, user: models.User, period_type: str = 'month',
                    start: Optional[date] = None, end: Optional[date] = None, today: Optional[date] = None) -> dict:
        require_membership(household_id, user, self.session)
        divisor, start, end = self._range(period_type, start, end, today)
        flt = TransactionFilter(household_id=household_id, start_date=start, end_date=end)
        household = self.session.get(models.Household, household_id)
        hh = self.household_performance(household, flt, divisor)
        cats = self.category_performance(flt, divisor)
        return {'household': hh, 'categories': cats, 'alerts': _budget_alerts(hh, cats)}

    def user_budget(self, household_id: int, user: models.User, household_user_id: int, period_type: str = 'month',
                    start: Optional[date] = None, end: Optional[date] = None, include_inflow: bool = False,
                    today: Optional[date] = None) -> dict:
        """Allowance tracking for one household user (spender)."""
        require_membership(household_id, user, self.session)
        spender = self.session.get(models.HouseholdUser, household_user_id)
        if spender is None or spender.household_id != household_id:
            raise ValueError("User does not belong to this household")
        divisor, start, end = self._range(period_type, start, end, today)
        flt = TransactionFilter(household_id=household_id, start_date=start, end_date=end,
                                household_user_id=household_user_id)
        rows = self.repo.flow_rows(flt)
        outflow = flow_total(rows, True)
        inflow = flow_total(rows, False)

        base = (spender.annual_budget / divisor).quantize(CENT) if spender.annual_budget is not None else None
        budget = None if base is None else base + (inflow if include_inflow else ZERO)

        names = {c.id: c.name for c in repositories.DefinitionRepository(self.session, models.Category).list(household_id)}
        breakdown = sorted(
            ({'id': cid, 'name': names.get(cid, 'Unknown'), 'amount': money(v), 'percentage': pct(v, outflow)}
             for cid, v in outflow_by_category(rows).items()),
            key=lambda r: r['amount'], reverse=True,
        )
        top = self.repo.list(replace_outflow(flt, True))
        top.sort(key=lambda t: abs(t.amount), reverse=True)
        return {
            'user': {'id': spender.id, 'name': spender.name, 'annual_budget': money(spender.annual_budget)},
            'no_budget': budget is None,
            'base_budget': money(base),
            'inflow': money(inflow),
            'include_inflow': include_inflow,
            'budget': money(budget),
            'actual_spending': money(outflow),
            'remaining': money(budget - outflow) if budget is not None else None,
            'percentage_used': pct(outflow, budget) if budget is not None else 0.0,
            'is_overspent': budget is not None and outflow > budget,
            'category_breakdown': breakdown,
            'top_transactions': [transaction_out(t) for t in top[:10]],
            'period': {'type': period_type, 'start_date': start.isoformat() if start else None,
                       'end_date': end.isoformat() if end else None},
        }


class SummaryService:
    """Builds and sends the weekly household summary email."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.TransactionRepository(session)
        self.budgets = BudgetService(session)

    def household_summary(self, household: models.Household, today: Optional[date] = None) -> Optional[dict]:
        """Summary for the reporting period, or None when it has no transactions."""
        today = today or date.today()
        start, end, kind = periods.reporting_period(today)
        flt = TransactionFilter(household_id=household.id, start_date=start, end_date=end)
        if not self.repo.count(flt):
            return None
        prev_start, prev_end = periods.month_bounds(*periods.previous_month(start.year, start.month))
        prev_flt = TransactionFilter(household_id=household.id, start_date=prev_start, end_date=prev_end)

        rows = self.repo.flow_rows(flt)
        spending = flow_total(rows, True)
        income = flow_total(rows, False)
        previous = flow_total(self.repo.flow_rows(prev_flt), True)
        if previous:
            change = round(float((spending - previous) / previous * 100), 2)
        else:
            change = 100.0 if spending else 0.0

        budget_perf = None
        if household.annual_budget is not None:
            monthly = (household.annual_budget / 12).quantize(CENT)
            used = pct(spending, monthly)
            budget_perf = {
                'total_budget': money(monthly),
                'budget_used': money(spending),
                'remaining': money(monthly - spending),
                'percentage_used': used,
                'status': 'over-budget' if used > 100 else 'warning' if used >= 80 else 'on-track',
            }

        names = {c.id: c.name for c in repositories.DefinitionRepository(self.session, models.Category).list(household.id)}
        top = sorted(outflow_by_category(rows).items(), key=lambda kv: kv[1], reverse=True)[:5]

        hh_perf = self.budgets.household_performance(household, flt, 12)
        cats = self.budgets.category_performance(flt, 12)
        return {
            'household_id': household.id,
            'household_name': household.name,
            'period': {
                'type': kind,
                'start_date': start.isoformat(),
                'end_date': end.isoformat(),
                'month_name': periods.month_name(start.month),
                'year': start.year,
            },
            'spending': {
                'current_total': money(spending),
                'previous_total': money(previous),
                'percentage_change': change,
                'trend': 'up' if spending > previous else 'down' if spending < previous else 'flat',
            },
            'budget_performance': budget_perf,
            'top_categories': [
                {'id': cid, 'name': names.get(cid, 'Unknown'), 'amount': money(v), 'percentage': pct(v, spending)}
                for cid, v in top
            ],
            'cash_flow': {
                'income': money(income),
                'expenses': money(spending),
                'net_flow': money(income - spending),
                'is_positive': income >= spending,
            },
            'budget_alerts': _budget_alerts(hh_perf, cats),
        }

    def _collect(self, user: models.User, today: Optional[date]):
        """Build each subscribed household's summary; a failing household is logged and skipped."""
        summaries, failures = [], []
        households = repositories.MembershipRepository(self.session).subscribed_households(user.id)
        for household_id in [h.id for h in households]:
            try:
                summary = self.household_summary(self.session.get(models.Household, household_id), today)
            except Exception as exc:
                logger.exception("Weekly summary failed for household=%s user=%s", household_id, user.id)
                self.session.rollback()
                failures.append({'household_id': household_id, 'error': str(exc)})
                continue
            if summary is not None:
                summaries.append(summary)
        return summaries, failures

    def summaries_for_user(self, user: models.User, today: Optional[date] = None) -> List[dict]:
        return self._collect(user, today)[0]

    def send_for_user(self, user: models.User, today: Optional[date] = None, include_summaries: bool = False) -> dict:
        summaries, failures = self._collect(user, today)
        result = {'user_id': user.id, 'email': user.email, 'households': len(summaries)}
        if failures:
            result['failed_households'] = failures
        if summaries:
            sent = mailer.send_weekly_summary_email(user.email, display_name(user), summaries)
            result['status'] = 'sent' if sent else 'not_sent'
        elif failures:
            result['status'] = 'failed'
            result['error'] = failures[0]['error']
        else:
            result['status'] = 'skipped'
        if include_summaries:
            result['summaries'] = summaries
        return result

    def run_weekly(self, today: Optional[date] = None) -> dict:
        """Send summaries to every subscribed user; one failure does not stop the batch."""
        details = []
        for user in repositories.UserRepository(self.session).with_weekly_summary():
            try:
                details.append(self.send_for_user(user, today))
            except Exception as exc:
                logger.exception("Weekly summary failed for user=%s", user.id)
                self.session.rollback()
                details.append({'user_id': user.id, 'email': user.email, 'status': 'failed', 'error': str(exc)})
        totals = {status: sum(1 for d in details if d['status'] == status)
                  for status in ('sent', 'not_sent', 'skipped', 'failed')}
        logger.info("Weekly summary run finished: %s", totals)
        return {'total_users': len(details), **totals, 'details': details}
