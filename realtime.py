from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Iterable, Optional, Protocol, Sequence

from models import Notification
from schemas import NotificationOut


logger = logging.getLogger(__name__)

EXPENSE_CREATED = "expense:created"
NOTIFICATION_CREATED = "notification:created"
BUDGET_UPDATED = "budget:updated"

CLOSE_INTERNAL_ERROR = 1011


class SessionHandle(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class LiveSession:
    """One attached client channel. Hashed by identity."""

    def __init__(self, user_id: int, handle: SessionHandle) -> None:
        self.user_id = user_id
        self.handle = handle

    def __repr__(self) -> str:
        return f"LiveSession(user_id={self.user_id}, id={id(self):#x})"


def event(name: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"event": name, "data": data}


def notification_payload(notification: Notification) -> dict[str, Any]:
    return NotificationOut.model_validate(notification).model_dump(mode="json")


def expense_created_event(expense_id: int, month: str) -> dict[str, Any]:
    return event(EXPENSE_CREATED, {"id": expense_id, "month": month})


def budget_updated_event(month: str) -> dict[str, Any]:
    return event(BUDGET_UPDATED, {"month": month})


class ConnectionRegistry:
    """Process-local map of user id to attached live sessions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_user: dict[int, set[LiveSession]] = {}

    def attach(self, user_id: int, handle: SessionHandle) -> LiveSession:
        session = LiveSession(user_id, handle)
        with self._lock:
            self._by_user.setdefault(user_id, set()).add(session)
        logger.info(f"session_attached: user_id={user_id}")
        return session

    def detach(self, session: LiveSession) -> None:
        with self._lock:
            sessions = self._by_user.get(session.user_id)
            if not sessions or session not in sessions:
                return
            sessions.discard(session)
            if not sessions:
                del self._by_user[session.user_id]
        logger.info(f"session_detached: user_id={session.user_id}")

    def sessions_for(self, user_id: int) -> set[LiveSession]:
        with self._lock:
            return set(self._by_user.get(user_id, ()))

    def count(self, user_id: Optional[int] = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._by_user.get(user_id, ()))
            return sum(len(sessions) for sessions in self._by_user.values())


class DeliveryFanout:
    """Best-effort push of ledger events and notifications to live sessions.

    Delivery is at-most-once. Sessions are pushed concurrently. A session
    that fails or times out is logged, detached and closed with 1011 so its
    client knows to reconnect; nothing is raised to the caller.
    """

    def __init__(self, registry: ConnectionRegistry, send_timeout: float = 5.0) -> None:
        self.registry = registry
        self.send_timeout = send_timeout

    async def deliver(
        self,
        user_id: int,
        notifications: Sequence[dict[str, Any]],
        ledger_event: dict[str, Any],
    ) -> int:
        events = [ledger_event]
        events.extend(event(NOTIFICATION_CREATED, payload) for payload in notifications)
        return await self.broadcast(user_id, events)

    async def broadcast(self, user_id: int, events: Iterable[dict[str, Any]]) -> int:
        """Push ``events`` in order to each session of ``user_id``.

        Returns the number of sessions that received every event.
        """
        events = list(events)
        sessions = self.registry.sessions_for(user_id)
        if not sessions or not events:
            return 0
        results = await asyncio.gather(
            *(self._push(session, events) for session in sessions)
        )
        delivered = sum(1 for ok in results if ok)
        logger.debug(
            f"fanout_done: user_id={user_id} sessions={len(sessions)} "
            f"delivered={delivered} events={len(events)}"
        )
        return delivered

    async def _push(self, session: LiveSession, events: list[dict[str, Any]]) -> bool:
        try:
            for payload in events:
                await asyncio.wait_for(
                    session.handle.send_json(payload), timeout=self.send_timeout
                )
        except Exception as exc:
            logger.warning(
                f"fanout_failed: user_id={session.user_id} session={session!r} "
                f"error={exc!r}"
            )
            self.registry.detach(session)
            await self._close(session)
            return False
        return True

    async def _close(self, session: LiveSession) -> None:
        # errors from an already broken transport are ignored
        try:
            await asyncio.wait_for(
                session.handle.close(code=CLOSE_INTERNAL_ERROR),
                timeout=self.send_timeout,
            )
        except Exception as exc:
            logger.debug(f"session_close_failed: session={session!r} error={exc!r}")
