from alerts import (
    AlertLevel,
    AlertScope,
    CategorySpend,
    SpendAggregate,
    classify,
    evaluate_thresholds,
    format_money,
)
from models import Budget, CategoryLimit, NotificationType


def make_budget(total_limit_cents: int, pct: int = 80) -> Budget:
    return Budget(
        user_id=1,
        month="2025-01",
        total_limit_cents=total_limit_cents,
        warning_threshold_pct=pct,
    )


def make_aggregate(*rows: tuple[int, str, int]) -> SpendAggregate:
    per_category = [CategorySpend(cid, name, spend) for cid, name, spend in rows]
    return SpendAggregate(
        total_spend_cents=sum(r.spend_cents for r in per_category),
        per_category=per_category,
    )


def test_overall_threshold_edges() -> None:
    budget = make_budget(10_000, 80)

    assert evaluate_thresholds(budget, [], make_aggregate((1, "Food", 7_999))) == []

    warning = evaluate_thresholds(budget, [], make_aggregate((1, "Food", 8_000)))
    assert [a.type for a in warning] == [NotificationType.budget_warning]

    exceeded = evaluate_thresholds(budget, [], make_aggregate((1, "Food", 10_000)))
    assert [a.type for a in exceeded] == [NotificationType.budget_exceeded]


def test_exceeded_is_never_paired_with_warning() -> None:
    budget = make_budget(10_000, 80)
    limits = [CategoryLimit(category_id=1, limit_cents=5_000)]

    alerts = evaluate_thresholds(budget, limits, make_aggregate((1, "Food", 12_000)))

    assert [a.type for a in alerts] == [
        NotificationType.budget_exceeded,
        NotificationType.category_exceeded,
    ]


def test_no_budget_means_no_alerts() -> None:
    assert evaluate_thresholds(None, [], make_aggregate((1, "Food", 1_000_000))) == []


def test_zero_limits_are_not_evaluated() -> None:
    budget = make_budget(0, 80)
    limits = [CategoryLimit(category_id=1, limit_cents=0)]

    assert evaluate_thresholds(budget, limits, make_aggregate((1, "Food", 500))) == []


def test_category_scopes_are_independent() -> None:
    budget = make_budget(100_000, 80)
    limits = [
        CategoryLimit(category_id=1, limit_cents=5_000),
        CategoryLimit(category_id=2, limit_cents=10_000),
    ]
    aggregate = make_aggregate((1, "Dining", 6_000), (2, "Rent", 1_000))

    alerts = evaluate_thresholds(budget, limits, aggregate)

    assert len(alerts) == 1
    assert alerts[0].scope == AlertScope.category
    assert alerts[0].category_id == 1
    assert alerts[0].level == AlertLevel.exceeded


def test_overall_first_then_categories_by_name() -> None:
    budget = make_budget(10_000, 50)
    limits = [
        CategoryLimit(category_id=3, limit_cents=1_000),
        CategoryLimit(category_id=1, limit_cents=1_000),
        CategoryLimit(category_id=2, limit_cents=10_000),
    ]
    aggregate = make_aggregate(
        (1, "Zoo", 600), (2, "Groceries", 5_000), (3, "Books", 1_000)
    )

    alerts = evaluate_thresholds(budget, limits, aggregate)

    assert [(a.scope, a.category_id, a.level) for a in alerts] == [
        (AlertScope.overall, None, AlertLevel.warning),
        (AlertScope.category, 3, AlertLevel.exceeded),
        (AlertScope.category, 2, AlertLevel.warning),
        (AlertScope.category, 1, AlertLevel.warning),
    ]


def test_category_order_ignores_case() -> None:
    budget = make_budget(0)
    limits = [
        CategoryLimit(category_id=1, limit_cents=100),
        CategoryLimit(category_id=2, limit_cents=100),
        CategoryLimit(category_id=3, limit_cents=100),
    ]
    aggregate = make_aggregate((1, "Banana", 100), (2, "apple", 100), (3, "cherry", 100))

    alerts = evaluate_thresholds(budget, limits, aggregate)

    assert [a.category_id for a in alerts] == [2, 1, 3]


def test_warning_threshold_uses_floor() -> None:
    # 999 * 80 / 100 = 799.2 -> warning at 799
    assert classify(798, 999, 80) is None
    assert classify(799, 999, 80) == AlertLevel.warning
    assert classify(999, 999, 80) == AlertLevel.exceeded


def test_full_threshold_only_ever_exceeds() -> None:
    assert classify(9_999, 10_000, 100) is None
    assert classify(10_000, 10_000, 100) == AlertLevel.exceeded


def test_messages_are_stable() -> None:
    budget = make_budget(10_000, 80)
    limits = [CategoryLimit(category_id=7, limit_cents=5_000)]

    alerts = evaluate_thresholds(budget, limits, make_aggregate((7, "Groceries", 8_500)))

    assert [a.message for a in alerts] == [
        "Approaching monthly budget (80%): $85.00 / $100.00",
        "Category exceeded (Groceries): $85.00 / $50.00",
    ]


def test_format_money() -> None:
    assert format_money(0) == "$0.00"
    assert format_money(5) == "$0.05"
    assert format_money(123456) == "$1234.56"
    assert format_money(-250) == "-$2.50"
