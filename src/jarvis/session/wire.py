"""Wire protocol: decouples the session controller from the UI.

Events flow from the controller to the UI. The UI subscribes to the
wire and reacts to lifecycle changes; the headless ``jarvis run`` path
simply never subscribes.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    SESSION_STARTING = "session_starting"
    SESSION_RUNNING = "session_running"
    SESSION_EXITED = "session_exited"
    SPAWN_ERROR = "spawn_error"
    TITLE = "title"
    ERROR = "error"
    STATUS = "status"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: controller -> UI subscribers.

    Single-producer, multi-consumer broadcast. ``send`` never blocks, so
    it is safe to call from synchronous code running on the event loop.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_starting(self, command: str, cwd: str) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_STARTING,
                data={"command": command, "cwd": cwd},
            )
        )

    def send_running(self, pid: int, rows: int, cols: int) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_RUNNING,
                data={"pid": pid, "rows": rows, "cols": cols},
            )
        )

    def send_exited(
        self,
        exit_code: int | None,
        signal: int | None,
        description: str = "",
    ) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_EXITED,
                data={
                    "exit_code": exit_code,
                    "signal": signal,
                    "description": description,
                },
            )
        )

    def send_spawn_error(self, reason: str) -> None:
        self.send(WireEvent(type=EventType.SPAWN_ERROR, data={"reason": reason}))

    def send_title(self, title: str) -> None:
        self.send(WireEvent(type=EventType.TITLE, data={"title": title}))

    def send_status(self, message: str) -> None:
        self.send(WireEvent(type=EventType.STATUS, data={"message": message}))

    def send_error(self, error: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error}))

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
