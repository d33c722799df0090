from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import NotificationType


class RegisterIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        clean = value.strip().lower()
        if "@" not in clean or clean.startswith("@") or clean.endswith("@"):
            raise ValueError("Invalid email address")
        return clean


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str


class AuthOut(BaseModel):
    token: str
    user: UserOut


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    created_at: datetime


class ExpenseIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: int
    amount_cents: int = Field(..., gt=0)
    description: Optional[str] = Field(default=None, max_length=200)
    expense_date: Optional[date] = None


class ExpenseOut(BaseModel):
    id: int
    month: str
    category_id: int
    category_name: str
    amount_cents: int
    description: Optional[str]
    expense_date: date
    created_at: datetime


class CategoryLimitIn(BaseModel):
    category_id: int
    limit_cents: int = Field(..., ge=0)


class BudgetIn(BaseModel):
    total_limit_cents: int = Field(..., ge=0)
    warning_threshold_pct: int = Field(default=80, ge=1, le=100)
    category_limits: list[CategoryLimitIn] = Field(default_factory=list)


class CategoryLimitOut(BaseModel):
    id: int
    category_id: int
    category_name: str
    limit_cents: int


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    month: str
    total_limit_cents: int
    warning_threshold_pct: int
    created_at: datetime


class BudgetDetailOut(BaseModel):
    budget: BudgetOut
    category_limits: list[CategoryLimitOut]


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    month: str
    type: NotificationType
    message: str
    created_at: datetime
    read_at: Optional[datetime] = None


class ExpenseCreatedOut(BaseModel):
    expense_id: int
    month: str
    notifications: list[NotificationOut]


class CategorySpendOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category_id: int
    category_name: str
    spend_cents: int


class SummaryOut(BaseModel):
    month: str
    budget: Optional[BudgetOut]
    total_spend_cents: int
    remaining_cents: Optional[int]
    by_category: list[CategorySpendOut]
