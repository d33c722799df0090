from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from alerts import NotFoundError
from database import Base
from models import User
from schemas import BudgetIn, CategoryIn, CategoryLimitIn, ExpenseIn
from services import BudgetService, CategoryService, ConflictError, ExpenseService


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def add_user(session: Session, email: str = "a@example.com") -> User:
    user = User(email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user


def test_save_creates_then_updates_in_place() -> None:
    session = make_session()
    user = add_user(session)
    food = CategoryService(session, user.id).create(CategoryIn(name="Food"))
    rent = CategoryService(session, user.id).create(CategoryIn(name="Rent"))
    budgets = BudgetService(session, user.id)

    created = budgets.save(
        "2025-01",
        BudgetIn(
            total_limit_cents=10_000,
            category_limits=[CategoryLimitIn(category_id=food.id, limit_cents=3_000)],
        ),
    )
    assert created.warning_threshold_pct == 80

    updated = budgets.save(
        "2025-01",
        BudgetIn(
            total_limit_cents=12_000,
            warning_threshold_pct=90,
            category_limits=[
                CategoryLimitIn(category_id=food.id, limit_cents=4_000),
                CategoryLimitIn(category_id=rent.id, limit_cents=6_000),
            ],
        ),
    )

    assert updated.id == created.id
    budget, limits = budgets.detail("2025-01")
    assert budget.total_limit_cents == 12_000
    assert budget.warning_threshold_pct == 90
    assert [(row.category.name, row.limit_cents) for row in limits] == [
        ("Food", 4_000),
        ("Rent", 6_000),
    ]


def test_save_rejects_unknown_category() -> None:
    session = make_session()
    alice = add_user(session, "alice@example.com")
    bob = add_user(session, "bob@example.com")
    bobs = CategoryService(session, bob.id).create(CategoryIn(name="Food"))

    with pytest.raises(ValueError):
        BudgetService(session, alice.id).save(
            "2025-01",
            BudgetIn(
                total_limit_cents=1_000,
                category_limits=[CategoryLimitIn(category_id=bobs.id, limit_cents=1)],
            ),
        )
    assert BudgetService(session, alice.id).get_for_month("2025-01") is None


def test_detail_without_budget_is_not_found() -> None:
    session = make_session()
    user = add_user(session)

    with pytest.raises(NotFoundError):
        BudgetService(session, user.id).detail("2025-01")


def test_summary_reports_remaining_and_zero_spend() -> None:
    session = make_session()
    user = add_user(session)
    food = CategoryService(session, user.id).create(CategoryIn(name="Food"))
    CategoryService(session, user.id).create(CategoryIn(name="Books"))
    BudgetService(session, user.id).save("2025-01", BudgetIn(total_limit_cents=10_000))
    ExpenseService(session, user.id).create(
        ExpenseIn(category_id=food.id, amount_cents=2_500, expense_date=date(2025, 1, 9))
    )

    summary = BudgetService(session, user.id).summary("2025-01")

    assert summary["total_spend_cents"] == 2_500
    assert summary["remaining_cents"] == 7_500
    assert [(r.category_name, r.spend_cents) for r in summary["by_category"]] == [
        ("Food", 2_500),
        ("Books", 0),
    ]


def test_summary_without_budget_has_no_remaining() -> None:
    session = make_session()
    user = add_user(session)

    summary = BudgetService(session, user.id).summary("2025-01")

    assert summary["budget"] is None
    assert summary["remaining_cents"] is None


def test_duplicate_category_names_conflict_case_insensitive() -> None:
    session = make_session()
    user = add_user(session)
    CategoryService(session, user.id).create(CategoryIn(name="Groceries"))

    with pytest.raises(ConflictError):
        CategoryService(session, user.id).create(CategoryIn(name=" groceries "))


def test_category_insert_conflict_after_check_is_reported_as_conflict(monkeypatch) -> None:
    session = make_session()
    user = add_user(session)
    CategoryService(session, user.id).create(CategoryIn(name="Groceries"))
    # a concurrent request already passed the existence check
    monkeypatch.setattr(session, "scalar", lambda stmt: None)

    with pytest.raises(ConflictError):
        CategoryService(session, user.id).create(CategoryIn(name="Groceries"))

    monkeypatch.undo()
    assert [c.name for c in CategoryService(session, user.id).list_all()] == ["Groceries"]
