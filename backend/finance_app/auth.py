"""Authentication helpers, FastAPI security dependency and role checks.

This module provides utilities to decode JWT tokens and a FastAPI
dependency `get_current_user` that validates the bearer token and
returns the corresponding `User` model instance from the database.

Household access is checked here too: `require_membership` hides
households the caller does not belong to (404) and `require_role`
rejects members whose role is too weak (403).
"""

from typing import Iterable, Optional

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session
from .errors import ForbiddenError, NotFoundError

bearer_scheme = HTTPBearer(auto_error=False)

HOUSEHOLD_NOT_FOUND = "Household not found or access denied"

EDITOR_ROLES = (models.HouseholdRole.OWNER, models.HouseholdRole.MEMBER)

_ROLE_LABELS = {
    models.HouseholdRole.OWNER: "Owner",
    models.HouseholdRole.MEMBER: "Member",
    models.HouseholdRole.VIEWER: "Viewer",
}

_ROLE_DESCRIPTIONS = {
    models.HouseholdRole.OWNER: "Full access to household data and settings",
    models.HouseholdRole.MEMBER: "Can view and edit data, but cannot manage settings",
    models.HouseholdRole.VIEWER: "Can only view data",
}


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The function extracts the bearer token from the request, decodes it
    and performs a database lookup to return the `User` object. It raises
    an HTTPException(401) for any authentication issue.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail='not authenticated')
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    user = repositories.UserRepository(session).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    return user


def parse_role(value) -> models.HouseholdRole:
    """Return the `HouseholdRole` for `value` or raise ValueError."""
    try:
        return models.HouseholdRole(str(value).upper())
    except ValueError:
        raise ValueError("Invalid role. Must be OWNER, MEMBER, or VIEWER")


def can_edit(role: models.HouseholdRole) -> bool:
    return role in EDITOR_ROLES


def can_manage_settings(role: models.HouseholdRole) -> bool:
    return role == models.HouseholdRole.OWNER


def can_invite(role: models.HouseholdRole) -> bool:
    return role in EDITOR_ROLES


def can_remove_members(role: models.HouseholdRole) -> bool:
    return role == models.HouseholdRole.OWNER


def role_label(role: models.HouseholdRole) -> str:
    return _ROLE_LABELS.get(role, str(role))


def role_description(role: models.HouseholdRole) -> str:
    return _ROLE_DESCRIPTIONS.get(role, "")


def require_membership(household_id: int, user: models.User, session: Session,
                       not_found: str = HOUSEHOLD_NOT_FOUND) -> models.UserHousehold:
    """Return the caller's membership or raise NotFoundError.

    Missing households and households the user does not belong to look
    the same to the caller.
    """
    membership = repositories.MembershipRepository(session).get(user.id, household_id)
    if membership is None:
        raise NotFoundError(not_found)
    return membership


def require_role(household_id: int, user: models.User, session: Session,
                 allowed: Iterable[models.HouseholdRole] = EDITOR_ROLES,
                 not_found: str = HOUSEHOLD_NOT_FOUND) -> models.UserHousehold:
    """Like `require_membership`, additionally raising ForbiddenError for other roles."""
    membership = require_membership(household_id, user, session, not_found=not_found)
    allowed = tuple(allowed)
    if membership.role not in allowed:
        names = " or ".join(r.value for r in allowed)
        raise ForbiddenError(f"Insufficient permissions. Required role: {names}")
    return membership
