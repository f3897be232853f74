"""Background reader that pumps pty output into a bounded queue."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field

from jarvis.pty.session import PtySession

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNKS = 256
POLL_INTERVAL = 0.1


@dataclass
class ReaderBatch:
    """Everything the reader produced since the last drain."""

    chunks: list[bytes] = field(default_factory=list)
    eof: bool = False
    error: OSError | None = None

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


@dataclass(frozen=True)
class _End:
    error: OSError | None = None


class PtyReader:
    """Reads a session's output on a daemon thread.

    Chunks are queued in order, followed by a single end marker (EOF or
    the read error). The queue is bounded, so a consumer that stops
    draining eventually stalls the reader, which in turn stalls the child
    on a full pty buffer.
    """

    def __init__(self, session: PtySession, max_chunks: int = DEFAULT_MAX_CHUNKS) -> None:
        self._session = session
        self._queue: queue.Queue[bytes | _End] = queue.Queue(maxsize=max_chunks)
        self._stop = threading.Event()
        self._finished = False
        self._thread = threading.Thread(
            target=self._run, name=f"pty-reader-{session.pid}", daemon=True
        )

    def start(self) -> PtyReader:
        self._thread.start()
        return self

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def _put(self, item: bytes | _End) -> bool:
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def _run(self) -> None:
        end = _End()
        try:
            while not self._stop.is_set():
                chunk = self._session.read_chunk(timeout=POLL_INTERVAL)
                if chunk is None:
                    continue
                if not chunk:
                    break
                if not self._put(chunk):
                    return
        except OSError as e:
            if self._stop.is_set():
                return
            logger.debug("PTY reader pid=%d ended: %s", self._session.pid, e)
            end = _End(error=e)
        self._put(end)

    def drain(self) -> ReaderBatch:
        """Collect queued output without blocking."""
        batch = ReaderBatch()
        if self._finished:
            batch.eof = True
            return batch
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if isinstance(item, _End):
                self._finished = True
                batch.eof = item.error is None
                batch.error = item.error
                break
            batch.chunks.append(item)
        return batch

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)
