from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import bcrypt
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from alerts import (
    AggregationReader,
    Alert,
    DedupStore,
    NotFoundError,
    evaluate_thresholds,
)
from config import get_settings
from models import (
    Budget,
    Category,
    CategoryLimit,
    Expense,
    Notification,
    User,
    utcnow,
)
from periods import month_of, today_in
from schemas import BudgetIn, CategoryIn, ExpenseIn, LoginIn, RegisterIn


logger = logging.getLogger(__name__)


class ConflictError(ValueError):
    pass


def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(_password_bytes(password), hashed_password.encode("utf-8"))


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: RegisterIn) -> User:
        existing = self.session.scalar(select(User).where(User.email == data.email))
        if existing:
            raise ConflictError("Email already registered")
        user = User(email=data.email, password_hash=hash_password(data.password))
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Email already registered") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> Optional[User]:
        user = self.session.scalar(
            select(User).where(User.email == data.email.strip().lower())
        )
        if not user or not verify_password(data.password, user.password_hash):
            return None
        return user

class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name, Category.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        clean_name = data.name.strip()
        if not clean_name:
            raise ValueError("Category name cannot be empty")
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == clean_name.lower(),
            )
        )
        if existing:
            raise ConflictError("Category with this name already exists")
        category = Category(user_id=self.user_id, name=clean_name)
        self.session.add(category)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Category with this name already exists") from exc
        self.session.refresh(category)
        return category


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get_for_month(self, month: str) -> Optional[Budget]:
        return self.session.scalar(
            select(Budget).where(Budget.user_id == self.user_id, Budget.month == month)
        )

    def limits_for(self, budget: Budget) -> list[CategoryLimit]:
        stmt = (
            select(CategoryLimit)
            .join(Category, CategoryLimit.category_id == Category.id)
            .options(joinedload(CategoryLimit.category))
            .where(CategoryLimit.budget_id == budget.id)
            .order_by(Category.name, Category.id)
        )
        return list(self.session.scalars(stmt).all())

    def detail(self, month: str) -> tuple[Budget, list[CategoryLimit]]:
        budget = self.get_for_month(month)
        if budget is None:
            raise NotFoundError("Budget not found")
        return budget, self.limits_for(budget)

    def save(self, month: str, data: BudgetIn) -> Budget:
        """Create or update the month's budget and upsert its category limits.

        Limits not mentioned in ``data`` are left as they are. Saving does not
        evaluate alerts; those are raised by the next expense written.
        """
        categories = CategoryService(self.session, self.user_id)
        limit_by_category: dict[int, int] = {}
        for item in data.category_limits:
            try:
                categories.get(item.category_id)
            except NotFoundError as exc:
                raise ValueError(f"Category {item.category_id} not found") from exc
            limit_by_category[item.category_id] = item.limit_cents

        budget = self.get_for_month(month)
        if budget is None:
            budget = Budget(
                user_id=self.user_id,
                month=month,
                total_limit_cents=data.total_limit_cents,
                warning_threshold_pct=data.warning_threshold_pct,
            )
            self.session.add(budget)
            self.session.flush()
        else:
            budget.total_limit_cents = data.total_limit_cents
            budget.warning_threshold_pct = data.warning_threshold_pct

        if limit_by_category:
            existing = {
                row.category_id: row
                for row in self.session.scalars(
                    select(CategoryLimit).where(CategoryLimit.budget_id == budget.id)
                )
            }
            for category_id, limit_cents in limit_by_category.items():
                row = existing.get(category_id)
                if row is None:
                    self.session.add(
                        CategoryLimit(
                            budget_id=budget.id,
                            category_id=category_id,
                            limit_cents=limit_cents,
                        )
                    )
                else:
                    row.limit_cents = limit_cents

        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_saved: user_id={self.user_id} month={month} "
            f"total_limit_cents={budget.total_limit_cents} "
            f"category_limits={len(limit_by_category)}"
        )
        return budget

    def summary(self, month: str) -> dict[str, object]:
        budget = self.get_for_month(month)
        aggregate = AggregationReader(self.session, self.user_id).aggregate(month)
        by_category = sorted(
            aggregate.per_category,
            key=lambda row: (-row.spend_cents, row.category_name),
        )
        return {
            "month": month,
            "budget": budget,
            "total_spend_cents": aggregate.total_spend_cents,
            "remaining_cents": (
                budget.total_limit_cents - aggregate.total_spend_cents
                if budget
                else None
            ),
            "by_category": by_category,
        }


class AlertService:
    """Runs aggregation, threshold evaluation and dedup for one user and month.

    Works inside the caller's transaction and leaves committing to it.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.reader = AggregationReader(session, user_id)
        self.budgets = BudgetService(session, user_id)
        self.store = DedupStore(session, user_id, clock=clock)

    def candidates(self, month: str) -> list[Alert]:
        budget = self.budgets.get_for_month(month)
        if budget is None:
            return []
        aggregate = self.reader.aggregate(month)
        return evaluate_thresholds(budget, self.budgets.limits_for(budget), aggregate)

    def evaluate(self, month: str) -> list[Notification]:
        return self.store.persist_new(month, self.candidates(month))


@dataclass
class ExpenseResult:
    expense: Expense
    notifications: list[Notification]


class ExpenseService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.clock = clock

    def _lock_user(self) -> None:
        # Serialises concurrent ledger writes for one user on databases with
        # row locks; SQLite already has a single writer.
        self.session.execute(
            select(User.id).where(User.id == self.user_id).with_for_update()
        )

    def create(self, data: ExpenseIn) -> ExpenseResult:
        category = CategoryService(self.session, self.user_id).get(data.category_id)

        expense_date = data.expense_date or today_in(get_settings().timezone)
        month = month_of(expense_date)

        try:
            self._lock_user()
            expense = Expense(
                user_id=self.user_id,
                month=month,
                category_id=category.id,
                amount_cents=data.amount_cents,
                description=(data.description or "").strip() or None,
                expense_date=expense_date,
                created_at=self.clock(),
            )
            self.session.add(expense)
            self.session.flush()

            alerts = AlertService(self.session, self.user_id, clock=self.clock)
            notifications = alerts.evaluate(month)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"expense_created: user_id={self.user_id} expense_id={expense.id} "
            f"month={month} amount_cents={expense.amount_cents} "
            f"notifications={len(notifications)}"
        )
        return ExpenseResult(expense=expense, notifications=notifications)

    def list_for_month(self, month: str) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id, Expense.month == month)
            .order_by(
                Expense.expense_date.desc(),
                Expense.created_at.desc(),
                Expense.id.desc(),
            )
        )
        return list(self.session.scalars(stmt).all())
