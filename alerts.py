from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    Budget,
    Category,
    CategoryLimit,
    Expense,
    Notification,
    NotificationType,
    utcnow,
)


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class AlertScope(str, Enum):
    overall = "overall"
    category = "category"


class AlertLevel(str, Enum):
    warning = "warning"
    exceeded = "exceeded"


@dataclass(frozen=True)
class CategorySpend:
    category_id: int
    category_name: str
    spend_cents: int


@dataclass(frozen=True)
class SpendAggregate:
    total_spend_cents: int
    per_category: list[CategorySpend]

    def by_category_id(self) -> dict[int, CategorySpend]:
        return {row.category_id: row for row in self.per_category}


@dataclass(frozen=True)
class Alert:
    scope: AlertScope
    level: AlertLevel
    message: str
    category_id: Optional[int] = None

    @property
    def type(self) -> NotificationType:
        prefix = "budget" if self.scope == AlertScope.overall else "category"
        return NotificationType(f"{prefix}_{self.level.value}")


def format_money(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}${whole}.{frac:02d}"


class AggregationReader:
    """Month-to-date spend for one user, read inside the caller's transaction.

    Every category owned by the user is reported, including those with no
    expenses in the month (spend 0). The total is derived from the same
    statement so both views come from one snapshot.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def aggregate(self, month: str) -> SpendAggregate:
        spend = func.coalesce(func.sum(Expense.amount_cents), 0).label("spend_cents")
        stmt = (
            select(Category.id, Category.name, spend)
            .select_from(Category)
            .outerjoin(
                Expense,
                and_(
                    Expense.category_id == Category.id,
                    Expense.user_id == self.user_id,
                    Expense.month == month,
                ),
            )
            .where(Category.user_id == self.user_id)
            .group_by(Category.id, Category.name)
            .order_by(func.lower(Category.name), Category.id)
        )
        per_category = [
            CategorySpend(
                category_id=row.id,
                category_name=row.name,
                spend_cents=int(row.spend_cents or 0),
            )
            for row in self.session.execute(stmt)
        ]
        total = sum(row.spend_cents for row in per_category)
        return SpendAggregate(total_spend_cents=total, per_category=per_category)


def classify(spend_cents: int, limit_cents: int, warning_pct: int) -> Optional[AlertLevel]:
    if limit_cents <= 0:
        return None
    if spend_cents >= limit_cents:
        return AlertLevel.exceeded
    warning_at = limit_cents * warning_pct // 100
    if spend_cents >= warning_at:
        return AlertLevel.warning
    return None


def _overall_message(level: AlertLevel, spend: int, limit: int, pct: int) -> str:
    amounts = f"{format_money(spend)} / {format_money(limit)}"
    if level == AlertLevel.exceeded:
        return f"Monthly budget exceeded: {amounts}"
    return f"Approaching monthly budget ({pct}%): {amounts}"


def _category_message(level: AlertLevel, name: str, spend: int, limit: int) -> str:
    amounts = f"{format_money(spend)} / {format_money(limit)}"
    if level == AlertLevel.exceeded:
        return f"Category exceeded ({name}): {amounts}"
    return f"Approaching category limit ({name}): {amounts}"


def evaluate_thresholds(
    budget: Optional[Budget],
    category_limits: Sequence[CategoryLimit],
    aggregate: SpendAggregate,
) -> list[Alert]:
    """Classify spend against the budget.

    Returns the overall alert (if any) followed by category alerts ordered by
    category name, ignoring case. Each scope yields at most one alert and
    exceeded always takes precedence over warning. Limits of zero are treated
    as unset.
    """
    if budget is None:
        return []

    pct = budget.warning_threshold_pct
    alerts: list[Alert] = []

    overall = classify(aggregate.total_spend_cents, budget.total_limit_cents, pct)
    if overall is not None:
        alerts.append(
            Alert(
                scope=AlertScope.overall,
                level=overall,
                message=_overall_message(
                    overall,
                    aggregate.total_spend_cents,
                    budget.total_limit_cents,
                    pct,
                ),
            )
        )

    spend_by_category = aggregate.by_category_id()
    category_alerts: list[tuple[str, int, Alert]] = []
    for limit in category_limits:
        row = spend_by_category.get(limit.category_id)
        if row is None:
            continue
        level = classify(row.spend_cents, limit.limit_cents, pct)
        if level is None:
            continue
        category_alerts.append(
            (
                row.category_name,
                row.category_id,
                Alert(
                    scope=AlertScope.category,
                    level=level,
                    message=_category_message(
                        level, row.category_name, row.spend_cents, limit.limit_cents
                    ),
                    category_id=row.category_id,
                ),
            )
        )
    category_alerts.sort(key=lambda item: (item[0].lower(), item[1]))
    alerts.extend(alert for _, _, alert in category_alerts)
    return alerts


class DedupStore:
    """Persists notifications, suppressing repeats inside a trailing window.

    A candidate is dropped when a notification with the same
    (user, month, type, message) was created at or after ``now - window``.
    There is no hysteresis: once the window has passed the same condition
    produces a fresh notification.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        window: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.user_id = user_id
        if window is None:
            window = timedelta(hours=get_settings().dedup_window_hours)
        self.window = window
        self.clock = clock

    def _recently_raised(self, month: str, alert: Alert, since: datetime) -> bool:
        stmt = (
            select(Notification.id)
            .where(
                Notification.user_id == self.user_id,
                Notification.month == month,
                Notification.type == alert.type,
                Notification.message == alert.message,
                Notification.created_at >= since,
            )
            .limit(1)
        )
        return self.session.scalar(stmt) is not None

    def persist_new(
        self,
        month: str,
        candidates: Sequence[Alert],
        *,
        now: Optional[datetime] = None,
    ) -> list[Notification]:
        """Insert the candidates that survive suppression; flushes, never commits."""
        if not candidates:
            return []
        now = now or self.clock()
        since = now - self.window
        created: list[Notification] = []
        for alert in candidates:
            if self._recently_raised(month, alert, since):
                logger.debug(
                    f"alert_suppressed: user_id={self.user_id} month={month} "
                    f"type={alert.type.value}"
                )
                continue
            notification = Notification(
                user_id=self.user_id,
                month=month,
                type=alert.type,
                message=alert.message,
                created_at=now,
                read_at=None,
            )
            self.session.add(notification)
            self.session.flush()
            created.append(notification)

        if created:
            logger.info(
                f"alerts_created: user_id={self.user_id} month={month} "
                f"count={len(created)} suppressed={len(candidates) - len(created)}"
            )
        return created

    def mark_read(self, notification_id: int) -> Notification:
        notification = self.session.scalar(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == self.user_id,
            )
        )
        if notification is None:
            raise NotFoundError("Notification not found")
        if notification.read_at is None:
            notification.read_at = self.clock()
            self.session.commit()
        return notification

    def list_recent(
        self, month: Optional[str] = None, limit: Optional[int] = None
    ) -> list[Notification]:
        cap = get_settings().notification_list_limit
        limit = cap if limit is None else min(max(limit, 1), cap)
        stmt = select(Notification).where(Notification.user_id == self.user_id)
        if month:
            stmt = stmt.where(Notification.month == month)
        stmt = stmt.order_by(
            Notification.created_at.desc(), Notification.id.desc()
        ).limit(limit)
        return list(self.session.scalars(stmt).all())
