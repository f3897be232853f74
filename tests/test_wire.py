"""Tests for jarvis.session.wire (Wire, WireEvent, EventType)."""

from __future__ import annotations

import asyncio

from jarvis.session.wire import EventType, Wire, WireEvent


def one_event(queue: asyncio.Queue) -> WireEvent:
    event = queue.get_nowait()
    assert event is not None
    assert queue.empty()
    return event


# ---------------------------------------------------------------------------
# EventType
# ---------------------------------------------------------------------------


class TestEventType:
    def test_all_variants_exist(self) -> None:
        expected = {
            "SESSION_STARTING",
            "SESSION_RUNNING",
            "SESSION_EXITED",
            "SPAWN_ERROR",
            "TITLE",
            "ERROR",
            "STATUS",
        }
        assert {e.name for e in EventType} == expected

    def test_values_are_lowercase(self) -> None:
        for e in EventType:
            assert e.value == e.name.lower()


# ---------------------------------------------------------------------------
# Send and subscribe
# ---------------------------------------------------------------------------


class TestWire:
    def test_default_data(self) -> None:
        assert WireEvent(type=EventType.STATUS).data == {}

    def test_broadcast_to_every_subscriber(self) -> None:
        wire = Wire()
        queues = [wire.subscribe(), wire.subscribe()]
        wire.send(WireEvent(type=EventType.STATUS, data={"message": "ok"}))
        for q in queues:
            assert one_event(q).data == {"message": "ok"}

    def test_events_keep_order(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_starting("make build", "/src")
        wire.send_running(42, 24, 80)
        wire.send_exited(0, None, "exited with code 0")
        types = [q.get_nowait().type for _ in range(3)]
        assert types == [
            EventType.SESSION_STARTING,
            EventType.SESSION_RUNNING,
            EventType.SESSION_EXITED,
        ]

    def test_unsubscribe(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.unsubscribe(q)
        wire.send_status("ignored")
        assert q.empty()

    def test_unsubscribe_unknown_queue(self) -> None:
        wire = Wire()
        wire.unsubscribe(asyncio.Queue())

    def test_send_without_subscribers(self) -> None:
        Wire().send_error("nobody listening")

    async def test_async_consumer(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_title("vim")
        wire.close()
        received = []
        while (event := await q.get()) is not None:
            received.append(event)
        assert [e.data["title"] for e in received] == ["vim"]


# ---------------------------------------------------------------------------
# Closing
# ---------------------------------------------------------------------------


class TestWireClose:
    def test_close_sends_sentinel_to_all(self) -> None:
        wire = Wire()
        queues = [wire.subscribe() for _ in range(3)]
        wire.close()
        assert wire.closed
        assert all(q.get_nowait() is None for q in queues)

    def test_sends_after_close_are_dropped(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.close()
        q.get_nowait()
        wire.send_starting("x", "/")
        wire.send_running(1, 1, 1)
        wire.send_exited(1, None)
        wire.send_spawn_error("x")
        wire.send_title("x")
        wire.send_status("x")
        wire.send_error("x")
        assert q.empty()


# ---------------------------------------------------------------------------
# Convenience senders
# ---------------------------------------------------------------------------


class TestWireConvenience:
    def test_send_starting(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_starting("npm run dev", "/app")
        event = one_event(q)
        assert event.type == EventType.SESSION_STARTING
        assert event.data == {"command": "npm run dev", "cwd": "/app"}

    def test_send_running(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_running(1234, 30, 100)
        event = one_event(q)
        assert event.type == EventType.SESSION_RUNNING
        assert event.data == {"pid": 1234, "rows": 30, "cols": 100}

    def test_send_exited_with_signal(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_exited(None, 9, "terminated by SIGKILL (9)")
        event = one_event(q)
        assert event.type == EventType.SESSION_EXITED
        assert event.data["exit_code"] is None
        assert event.data["signal"] == 9
        assert event.data["description"] == "terminated by SIGKILL (9)"

    def test_send_spawn_error(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_spawn_error("command not found: foo")
        event = one_event(q)
        assert event.type == EventType.SPAWN_ERROR
        assert event.data["reason"] == "command not found: foo"

    def test_send_title(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_title("htop")
        assert one_event(q).data == {"title": "htop"}

    def test_send_status_and_error(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_status("resized")
        wire.send_error("read failed")
        status, error = q.get_nowait(), q.get_nowait()
        assert status.type == EventType.STATUS and status.data["message"] == "resized"
        assert error.type == EventType.ERROR and error.data["error"] == "read failed"
