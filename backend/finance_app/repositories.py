"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
households, memberships, invitations, household definitions and
transactions). Repositories return SQLModel objects and perform
commits/refreshes where appropriate.
"""

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple, Type

from sqlalchemy import func
from sqlmodel import Session, SQLModel, col, select

from . import models

ZERO = Decimal("0")
CENT = Decimal("0.01")


def _dec(value) -> Decimal:
    """Normalize a SQL SUM result (Decimal, float or None) to cents."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT)


def _delete_where(session: Session, model, *criteria) -> None:
    for row in session.exec(select(model).where(*criteria)).all():
        session.delete(row)
    session.flush()


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def save(self, user: models.User) -> models.User:
        return self.create(user)

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by (lower-cased) email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email.strip().lower())
        return self.session.exec(stmt).first()

    def get_by_external_id(self, external_id: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.external_id == external_id)
        return self.session.exec(stmt).first()

    def delete(self, user: models.User) -> None:
        """Remove a user with their memberships and the invitations they sent."""
        _delete_where(self.session, models.UserHousehold, models.UserHousehold.user_id == user.id)
        _delete_where(self.session, models.Invitation, models.Invitation.inviter_user_id == user.id)
        for inv in self.session.exec(select(models.Invitation).where(models.Invitation.invitee_user_id == user.id)).all():
            inv.invitee_user_id = None
            self.session.add(inv)
        for m in self.session.exec(select(models.UserHousehold).where(models.UserHousehold.invited_by == user.id)).all():
            m.invited_by = None
            self.session.add(m)
        self.session.flush()
        self.session.delete(user)
        self.session.commit()

    def with_weekly_summary(self) -> List[models.User]:
        """Users with at least one membership that has weekly summaries on."""
        stmt = (
            select(models.User)
            .join(models.UserHousehold, models.UserHousehold.user_id == models.User.id)
            .where(models.UserHousehold.weekly_summary == True)  # noqa: E712
            .distinct()
            .order_by(models.User.id)
        )
        return self.session.exec(stmt).all()


class HouseholdRepository:
    """Households and their aggregate counts."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, household: models.Household, owner_id: int) -> models.Household:
        """Create a household and make `owner_id` its first OWNER."""
        self.session.add(household)
        self.session.flush()
        self.session.add(models.UserHousehold(
            user_id=owner_id, household_id=household.id, role=models.HouseholdRole.OWNER,
        ))
        self.session.commit()
        self.session.refresh(household)
        return household

    def get(self, household_id: int) -> Optional[models.Household]:
        return self.session.get(models.Household, household_id)

    def save(self, household: models.Household) -> models.Household:
        household.updated_at = models.utcnow()
        self.session.add(household)
        self.session.commit()
        self.session.refresh(household)
        return household

    def list_for_user(self, user_id: int) -> List[Tuple[models.Household, models.UserHousehold]]:
        """Return `(household, membership)` pairs for `user_id`, ordered by name."""
        stmt = (
            select(models.Household, models.UserHousehold)
            .join(models.UserHousehold, models.UserHousehold.household_id == models.Household.id)
            .where(models.UserHousehold.user_id == user_id)
            .order_by(models.Household.name)
        )
        return self.session.exec(stmt).all()

    def counts(self, household_id: int) -> Dict[str, int]:
        """Count the rows each table holds for the household."""
        tables = {
            "accounts": models.Account,
            "users": models.HouseholdUser,
            "categories": models.Category,
            "types": models.TransactionType,
            "transactions": models.Transaction,
            "members": models.UserHousehold,
        }
        out = {}
        for key, model in tables.items():
            stmt = select(func.count()).select_from(model).where(model.household_id == household_id)
            out[key] = self.session.exec(stmt).one()
        return out

    def delete(self, household: models.Household) -> None:
        """Delete a household with its definitions, invitations and memberships.

        Callers must make sure no transactions remain; the foreign keys
        on `transaction` would otherwise reject the delete.
        """
        for model in (models.Invitation, models.Account, models.HouseholdUser,
                      models.Category, models.TransactionType, models.UserHousehold):
            _delete_where(self.session, model, model.household_id == household.id)
        self.session.delete(household)
        self.session.commit()


class MembershipRepository:
    """Queries over `UserHousehold` rows."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int, household_id: int) -> Optional[models.UserHousehold]:
        stmt = select(models.UserHousehold).where(
            models.UserHousehold.user_id == user_id,
            models.UserHousehold.household_id == household_id,
        )
        return self.session.exec(stmt).first()

    def list_for_household(self, household_id: int) -> List[Tuple[models.UserHousehold, models.User]]:
        stmt = (
            select(models.UserHousehold, models.User)
            .join(models.User, models.User.id == models.UserHousehold.user_id)
            .where(models.UserHousehold.household_id == household_id)
            .order_by(models.UserHousehold.joined_at, models.UserHousehold.id)
        )
        return self.session.exec(stmt).all()

    def subscribed_households(self, user_id: int) -> List[models.Household]:
        stmt = (
            select(models.Household)
            .join(models.UserHousehold, models.UserHousehold.household_id == models.Household.id)
            .where(models.UserHousehold.user_id == user_id, models.UserHousehold.weekly_summary == True)  # noqa: E712
            .order_by(models.Household.name)
        )
        return self.session.exec(stmt).all()

    def count_owners(self, household_id: int) -> int:
        stmt = select(func.count()).select_from(models.UserHousehold).where(
            models.UserHousehold.household_id == household_id,
            models.UserHousehold.role == models.HouseholdRole.OWNER,
        )
        return self.session.exec(stmt).one()

    def save(self, membership: models.UserHousehold) -> models.UserHousehold:
        self.session.add(membership)
        self.session.commit()
        self.session.refresh(membership)
        return membership

    def delete(self, membership: models.UserHousehold) -> None:
        self.session.delete(membership)
        self.session.commit()


class InvitationRepository:
    """Persistence for household invitations."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, invitation: models.Invitation) -> models.Invitation:
        self.session.add(invitation)
        self.session.commit()
        self.session.refresh(invitation)
        return invitation

    def save(self, invitation: models.Invitation) -> models.Invitation:
        return self.create(invitation)

    def get(self, invitation_id: int) -> Optional[models.Invitation]:
        return self.session.get(models.Invitation, invitation_id)

    def get_by_token(self, token: str) -> Optional[models.Invitation]:
        stmt = select(models.Invitation).where(models.Invitation.token == token)
        return self.session.exec(stmt).first()

    def list_for_household(self, household_id: int) -> List[models.Invitation]:
        stmt = (
            select(models.Invitation)
            .where(models.Invitation.household_id == household_id)
            .order_by(col(models.Invitation.created_at).desc(), col(models.Invitation.id).desc())
        )
        return self.session.exec(stmt).all()

    def accept(self, invitation: models.Invitation, membership: models.UserHousehold) -> models.UserHousehold:
        """Create the membership and mark the invitation accepted in one commit."""
        invitation.status = models.InvitationStatus.ACCEPTED
        invitation.invitee_user_id = membership.user_id
        self.session.add(membership)
        self.session.add(invitation)
        self.session.commit()
        self.session.refresh(membership)
        return membership

    def delete(self, invitation: models.Invitation) -> None:
        self.session.delete(invitation)
        self.session.commit()


class DefinitionRepository:
    """Generic CRUD for household-scoped definition tables.

    Used for `Account`, `HouseholdUser`, `Category` and `TransactionType`,
    which share the `(household_id, name)` shape.
    """

    # the column on `Transaction` that references each definition table
    _reference_columns = {
        models.Account: models.Transaction.account_id,
        models.HouseholdUser: models.Transaction.household_user_id,
        models.Category: models.Transaction.category_id,
        models.TransactionType: models.Transaction.type_id,
    }

    def __init__(self, session: Session, model: Type[SQLModel]):
        self.session = session
        self.model = model

    def list(self, household_id: int) -> List[SQLModel]:
        stmt = select(self.model).where(self.model.household_id == household_id).order_by(self.model.name)
        return self.session.exec(stmt).all()

    def get(self, item_id: int) -> Optional[SQLModel]:
        return self.session.get(self.model, item_id)

    def get_by_name(self, household_id: int, name: str) -> Optional[SQLModel]:
        stmt = select(self.model).where(self.model.household_id == household_id, self.model.name == name)
        return self.session.exec(stmt).first()

    def map_by_name(self, household_id: int, names: Iterable[str]) -> Dict[str, SQLModel]:
        """Return `{name: row}` for the requested names that exist in the household."""
        wanted = {n for n in names if n}
        if not wanted:
            return {}
        stmt = select(self.model).where(self.model.household_id == household_id, col(self.model.name).in_(wanted))
        return {row.name: row for row in self.session.exec(stmt).all()}

    def save(self, item: SQLModel) -> SQLModel:
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def create_many(self, items: List[SQLModel]) -> List[SQLModel]:
        self.session.add_all(items)
        self.session.commit()
        for it in items:
            self.session.refresh(it)
        return items

    def is_referenced(self, item_id: int) -> bool:
        """Return True if any transaction still points at `item_id`."""
        column = self._reference_columns[self.model]
        stmt = select(models.Transaction.id).where(column == item_id).limit(1)
        return self.session.exec(stmt).first() is not None

    def delete(self, item: SQLModel) -> None:
        self.session.delete(item)
        self.session.commit()


@dataclass
class TransactionFilter:
    """Criteria shared by transaction listing, analytics and budgets."""
    household_id: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    account_id: Optional[int] = None
    household_user_id: Optional[int] = None
    category_id: Optional[int] = None
    type_id: Optional[int] = None
    is_outflow: Optional[bool] = None
    search: Optional[str] = None

    def apply(self, stmt):
        T = models.Transaction
        stmt = stmt.where(T.household_id == self.household_id)
        if self.start_date:
            stmt = stmt.where(T.transaction_date >= self.start_date)
        if self.end_date:
            stmt = stmt.where(T.transaction_date <= self.end_date)
        if self.account_id is not None:
            stmt = stmt.where(T.account_id == self.account_id)
        if self.household_user_id is not None:
            stmt = stmt.where(T.household_user_id == self.household_user_id)
        if self.category_id is not None:
            stmt = stmt.where(T.category_id == self.category_id)
        if self.type_id is not None:
            stmt = stmt.where(T.type_id == self.type_id)
        if self.search:
            stmt = stmt.where(col(T.description).ilike(f"%{self.search.strip()}%"))
        if self.is_outflow is not None:
            stmt = stmt.join(models.TransactionType, models.TransactionType.id == T.type_id).where(
                models.TransactionType.is_outflow == self.is_outflow
            )
        return stmt


class TransactionRepository:
    """Transaction persistence plus the aggregate queries used by reports."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, txn: models.Transaction) -> models.Transaction:
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def save(self, txn: models.Transaction) -> models.Transaction:
        txn.updated_at = models.utcnow()
        return self.create(txn)

    def create_many(self, txns: List[models.Transaction]) -> int:
        self.session.add_all(txns)
        self.session.commit()
        return len(txns)

    def get(self, txn_id: int) -> Optional[models.Transaction]:
        return self.session.get(models.Transaction, txn_id)

    def delete(self, txn: models.Transaction) -> None:
        self.session.delete(txn)
        self.session.commit()

    def page(self, flt: TransactionFilter, page: int, limit: int) -> Tuple[List[models.Transaction], int]:
        """Return one page of transactions (newest first) and the total count."""
        T = models.Transaction
        total = self.session.exec(flt.apply(select(func.count(T.id)))).one()
        stmt = (
            flt.apply(select(T))
            .order_by(col(T.transaction_date).desc(), col(T.id).desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return self.session.exec(stmt).all(), total

    def list(self, flt: TransactionFilter, order_by=None, limit: Optional[int] = None) -> List[models.Transaction]:
        T = models.Transaction
        stmt = flt.apply(select(T)).order_by(*(order_by or [col(T.transaction_date).desc(), col(T.id).desc()]))
        if limit:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count(self, flt: TransactionFilter) -> int:
        return self.session.exec(flt.apply(select(func.count(models.Transaction.id)))).one()

    def total(self, flt: TransactionFilter) -> Decimal:
        """Signed sum of `amount` over the filtered rows."""
        value = self.session.exec(flt.apply(select(func.sum(models.Transaction.amount)))).one()
        return _dec(value)

    def group_totals(self, flt: TransactionFilter, column) -> List[Tuple[Optional[int], Decimal, int]]:
        """Return `(group_id, signed_sum, count)` rows grouped by a transaction column."""
        T = models.Transaction
        stmt = flt.apply(select(column, func.sum(T.amount), func.count(T.id))).group_by(column)
        return [(gid, _dec(total), n) for gid, total, n in self.session.exec(stmt).all()]

    def distinct_dates(self, household_id: int) -> List[date]:
        T = models.Transaction
        stmt = select(T.transaction_date).where(T.household_id == household_id).distinct()
        return list(self.session.exec(stmt).all())

    def date_bounds(self, household_id: int) -> Tuple[Optional[date], Optional[date]]:
        T = models.Transaction
        stmt = select(func.min(T.transaction_date), func.max(T.transaction_date)).where(T.household_id == household_id)
        lo, hi = self.session.exec(stmt).one()
        return lo, hi

    def flow_rows(self, flt: TransactionFilter) -> List[Tuple[date, Decimal, bool, int, Optional[int], int]]:
        """Return `(transaction_date, amount, is_outflow, account_id, household_user_id, category_id)` rows."""
        T = models.Transaction
        TT = models.TransactionType
        stmt = select(T.transaction_date, T.amount, TT.is_outflow, T.account_id, T.household_user_id, T.category_id)
        stmt = replace(flt, is_outflow=None).apply(stmt.join(TT, TT.id == T.type_id))
        if flt.is_outflow is not None:
            stmt = stmt.where(TT.is_outflow == flt.is_outflow)
        stmt = stmt.order_by(T.transaction_date, T.id)
        return [(d, _dec(a), bool(o), acc, hu, cat) for d, a, o, acc, hu, cat in self.session.exec(stmt).all()]
