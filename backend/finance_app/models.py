"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Every household-scoped table carries a `household_id` foreign key; names
of definitions (accounts, categories, types, household users) are unique
within a household. Money columns are stored as fixed-point decimals.

Timestamps are timezone-aware UTC in Python. `UTCDateTime` writes them
as plain UTC (SQLite has no zone support) and attaches UTC again on read,
so stored and freshly created values always compare.
"""

import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field, Relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime column holding UTC; naive input is taken to be UTC already."""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class HouseholdRole(str, enum.Enum):
    OWNER = "OWNER"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"


class InvitationStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"


class Household(SQLModel, table=True):
    """A financial unit (family, roommates) sharing accounts and transactions."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    annual_budget: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class User(SQLModel, table=True):
    """An application login.

    Fields:
    - `email`: unique, stored lower-cased
    - `password_hash`: hashed password; empty for users synced from the
      external auth provider
    - `external_id`: the auth provider's user id, when synced by webhook
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    password_hash: Optional[str] = None
    external_id: Optional[str] = Field(default=None, index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class UserHousehold(SQLModel, table=True):
    """Membership of a `User` in a `Household` with a role."""
    __table_args__ = (UniqueConstraint("user_id", "household_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    household_id: int = Field(foreign_key="household.id", index=True)
    role: HouseholdRole = Field(default=HouseholdRole.MEMBER)
    weekly_summary: bool = True
    invited_by: Optional[int] = Field(default=None, foreign_key="user.id")
    joined_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Account(SQLModel, table=True):
    """A bank account or card that transactions are posted to."""
    __table_args__ = (UniqueConstraint("household_id", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    household_id: int = Field(foreign_key="household.id", index=True)
    name: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class HouseholdUser(SQLModel, table=True):
    """A named spender inside a household with an optional annual allowance."""
    __table_args__ = (UniqueConstraint("household_id", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    household_id: int = Field(foreign_key="household.id", index=True)
    name: str
    annual_budget: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Category(SQLModel, table=True):
    """A spending category with an optional annual budget."""
    __table_args__ = (UniqueConstraint("household_id", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    household_id: int = Field(foreign_key="household.id", index=True)
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    annual_budget: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class TransactionType(SQLModel, table=True):
    """Kind of transaction; `is_outflow` types count as spending."""
    __table_args__ = (UniqueConstraint("household_id", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    household_id: int = Field(foreign_key="household.id", index=True)
    name: str
    is_outflow: bool = True
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Transaction(SQLModel, table=True):
    """A single posted transaction."""
    id: Optional[int] = Field(default=None, primary_key=True)
    household_id: int = Field(foreign_key="household.id", index=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    household_user_id: Optional[int] = Field(default=None, foreign_key="householduser.id", index=True)
    category_id: int = Field(foreign_key="category.id", index=True)
    type_id: int = Field(foreign_key="transactiontype.id", index=True)
    transaction_date: date = Field(index=True)
    post_date: date
    description: str
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    memo: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    account: Optional[Account] = Relationship()
    household_user: Optional[HouseholdUser] = Relationship()
    category: Optional[Category] = Relationship()
    type: Optional[TransactionType] = Relationship()


class Invitation(SQLModel, table=True):
    """A link-based invitation to join a household with a given role."""
    id: Optional[int] = Field(default=None, primary_key=True)
    household_id: int = Field(foreign_key="household.id", index=True)
    inviter_user_id: int = Field(foreign_key="user.id")
    invitee_user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    invitee_email: Optional[str] = None
    token: str = Field(index=True, unique=True)
    role: HouseholdRole = Field(default=HouseholdRole.MEMBER)
    status: InvitationStatus = Field(default=InvitationStatus.PENDING)
    expires_at: datetime = Field(sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
