"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Business rules (name lengths, budget
ranges, household scoping) are enforced by the services so the same
checks apply to CSV imports and scripts.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, StrictBool

# budgets accept numbers or numeric strings; "" or null clears the budget
BudgetValue = Optional[Union[Decimal, str]]


class RegisterIn(BaseModel):
    """Payload for user registration."""
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginIn(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str
    token_type: str = "bearer"


class UserUpdateIn(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class EmailSubscriptionIn(BaseModel):
    household_id: int
    weekly_summary: StrictBool


class HouseholdIn(BaseModel):
    """Create a household; `seed_defaults` adds the default categories and types."""
    name: str
    annual_budget: BudgetValue = None
    seed_defaults: bool = False


class HouseholdUpdateIn(BaseModel):
    name: Optional[str] = None
    annual_budget: BudgetValue = None


class RoleUpdateIn(BaseModel):
    role: str


class InvitationIn(BaseModel):
    role: str = "MEMBER"
    expires_in_days: int = 7
    invitee_email: Optional[str] = None


class AccountIn(BaseModel):
    household_id: int
    name: str


class AccountUpdateIn(BaseModel):
    name: Optional[str] = None


class HouseholdUserIn(BaseModel):
    household_id: int
    name: str
    annual_budget: BudgetValue = None


class HouseholdUserUpdateIn(BaseModel):
    name: Optional[str] = None
    annual_budget: BudgetValue = None


class CategoryItem(BaseModel):
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    annual_budget: BudgetValue = None


class CategoryIn(CategoryItem):
    household_id: int


class CategoryUpdateIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    annual_budget: BudgetValue = None


class TypeItem(BaseModel):
    name: str
    is_outflow: bool = True


class TypeIn(TypeItem):
    household_id: int


class TypeUpdateIn(BaseModel):
    name: Optional[str] = None
    is_outflow: Optional[bool] = None


class BulkCategoriesIn(BaseModel):
    household_id: int
    categories: List[CategoryItem]


class BulkTypesIn(BaseModel):
    household_id: int
    types: List[TypeItem]


class TransactionIn(BaseModel):
    """Create a transaction; references are ids within `household_id`."""
    household_id: int
    account_id: int
    household_user_id: Optional[int] = None
    category_id: int
    type_id: int
    transaction_date: date
    post_date: Optional[date] = None
    description: str
    amount: Decimal
    memo: Optional[str] = None


class TransactionUpdateIn(BaseModel):
    account_id: Optional[int] = None
    household_user_id: Optional[int] = None
    category_id: Optional[int] = None
    type_id: Optional[int] = None
    transaction_date: Optional[date] = None
    post_date: Optional[date] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    memo: Optional[str] = None


class BulkTransactionsIn(BaseModel):
    """Rows reference accounts, users, categories and types by name."""
    household_id: int
    transactions: List[Dict[str, Any]]
