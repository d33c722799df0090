import asyncio
import threading

from realtime import (
    EXPENSE_CREATED,
    NOTIFICATION_CREATED,
    ConnectionRegistry,
    DeliveryFanout,
    LiveSession,
    expense_created_event,
)


class RecordingHandle:
    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed_with: list[int] = []

    async def send_json(self, data) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with.append(code)


class BrokenHandle(RecordingHandle):
    async def send_json(self, data) -> None:
        raise RuntimeError("connection reset")

    async def close(self, code: int = 1000) -> None:
        raise RuntimeError("already closed")


class StuckHandle(RecordingHandle):
    async def send_json(self, data) -> None:
        await asyncio.sleep(60)


def test_attach_detach_and_sessions_for() -> None:
    registry = ConnectionRegistry()
    first = registry.attach(1, RecordingHandle())
    second = registry.attach(1, RecordingHandle())
    other = registry.attach(2, RecordingHandle())

    assert registry.sessions_for(1) == {first, second}
    assert registry.sessions_for(2) == {other}
    assert registry.sessions_for(3) == set()

    registry.detach(first)
    registry.detach(first)

    assert registry.sessions_for(1) == {second}
    assert registry.count() == 2


def test_sessions_for_returns_a_snapshot() -> None:
    registry = ConnectionRegistry()
    session = registry.attach(1, RecordingHandle())

    snapshot = registry.sessions_for(1)
    registry.detach(session)

    assert snapshot == {session}
    assert registry.count(1) == 0


def test_deliver_pushes_ledger_event_then_notifications_to_every_session() -> None:
    registry = ConnectionRegistry()
    handles = [RecordingHandle(), RecordingHandle()]
    for handle in handles:
        registry.attach(7, handle)
    outsider = RecordingHandle()
    registry.attach(8, outsider)
    fanout = DeliveryFanout(registry)
    notification = {"id": 1, "type": "budget_warning", "message": "m"}

    delivered = asyncio.run(
        fanout.deliver(7, [notification], expense_created_event(3, "2025-01"))
    )

    assert delivered == 2
    for handle in handles:
        assert [e["event"] for e in handle.sent] == [EXPENSE_CREATED, NOTIFICATION_CREATED]
        assert handle.sent[0]["data"] == {"id": 3, "month": "2025-01"}
        assert handle.sent[1]["data"] == notification
    assert outsider.sent == []


def test_failed_session_does_not_block_others_and_is_detached() -> None:
    registry = ConnectionRegistry()
    healthy = RecordingHandle()
    registry.attach(1, healthy)
    broken = registry.attach(1, BrokenHandle())
    fanout = DeliveryFanout(registry)

    delivered = asyncio.run(fanout.deliver(1, [], expense_created_event(5, "2025-01")))

    assert delivered == 1
    assert len(healthy.sent) == 1
    assert broken not in registry.sessions_for(1)


def test_stuck_session_times_out_and_is_closed() -> None:
    registry = ConnectionRegistry()
    healthy = RecordingHandle()
    stuck = StuckHandle()
    registry.attach(1, healthy)
    registry.attach(1, stuck)
    fanout = DeliveryFanout(registry, send_timeout=0.05)

    delivered = asyncio.run(fanout.broadcast(1, [{"event": "x", "data": {}}]))

    assert delivered == 1
    assert registry.count(1) == 1
    assert stuck.closed_with == [1011]
    assert healthy.closed_with == []

    asyncio.run(fanout.broadcast(1, [{"event": "y", "data": {}}]))

    assert [e["event"] for e in healthy.sent] == ["x", "y"]
    assert stuck.closed_with == [1011]


def test_failing_close_is_ignored() -> None:
    registry = ConnectionRegistry()
    registry.attach(1, BrokenHandle())
    fanout = DeliveryFanout(registry)

    assert asyncio.run(fanout.broadcast(1, [{"event": "x", "data": {}}])) == 0
    assert registry.count() == 0


def test_concurrent_attach_and_detach_from_many_threads() -> None:
    registry = ConnectionRegistry()
    barrier = threading.Barrier(8)
    kept: list[LiveSession] = []
    kept_lock = threading.Lock()
    errors: list[BaseException] = []

    def churn() -> None:
        try:
            barrier.wait()
            for _ in range(200):
                session = registry.attach(1, RecordingHandle())
                registry.sessions_for(1)
                registry.count()
                registry.detach(session)
            session = registry.attach(1, RecordingHandle())
            with kept_lock:
                kept.append(session)
        except BaseException as exc:
            errors.append(exc)

    threads = [threading.Thread(target=churn) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert registry.count(1) == 8
    assert registry.sessions_for(1) == set(kept)


def test_broadcast_while_sessions_detach_from_another_thread() -> None:
    registry = ConnectionRegistry()
    sessions = [registry.attach(1, RecordingHandle()) for _ in range(50)]
    fanout = DeliveryFanout(registry)
    errors: list[BaseException] = []

    def detach_all() -> None:
        try:
            for session in sessions:
                registry.detach(session)
        except BaseException as exc:
            errors.append(exc)

    async def broadcast_repeatedly() -> None:
        for _ in range(20):
            await fanout.broadcast(1, [{"event": "x", "data": {}}])
            await asyncio.sleep(0)

    worker = threading.Thread(target=detach_all)
    worker.start()
    asyncio.run(broadcast_repeatedly())
    worker.join()

    assert errors == []
    assert registry.count() == 0
    assert registry.sessions_for(1) == set()


def test_no_live_sessions_is_a_no_op() -> None:
    fanout = DeliveryFanout(ConnectionRegistry())

    assert asyncio.run(fanout.deliver(1, [], expense_created_event(1, "2025-01"))) == 0
