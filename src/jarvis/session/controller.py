"""Session controller: runs one command at a time inside an embedded terminal.

The controller owns the pty session, its reader thread, the escape parser
and the screen. It is driven entirely from one thread: the UI calls
``tick()`` on a timer, and only ``tick()`` mutates the screen.

    IDLE --start()--> STARTING --spawned--> RUNNING --exit/kill--> EXITED
      ^                   |                                           |
      |                   +--SpawnError------------------------------>+
      +-------------------------acknowledge()-------------------------+
"""

from __future__ import annotations

import enum
import logging
import time

from jarvis.config import JarvisConfig
from jarvis.discovery import ResolvedCommand
from jarvis.pty.reader import PtyReader
from jarvis.pty.session import ExecutionResult, PtySession, SpawnError
from jarvis.session.wire import Wire
from jarvis.terminal.keys import InputEvent, InputForwarder
from jarvis.terminal.parser import EscapeParser
from jarvis.terminal.screen import Screen, ScreenSnapshot

logger = logging.getLogger(__name__)

DEFAULT_ROWS = 24
DEFAULT_COLS = 80


class SessionState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"


class SessionController:
    """Lifecycle of the single active terminal session."""

    def __init__(
        self,
        config: JarvisConfig | None = None,
        wire: Wire | None = None,
        rows: int = DEFAULT_ROWS,
        cols: int = DEFAULT_COLS,
    ) -> None:
        self.config = config or JarvisConfig()
        self.wire = wire or Wire()
        self.rows = rows
        self.cols = cols
        self.state = SessionState.IDLE
        self.command: ResolvedCommand | None = None
        self.result: ExecutionResult | None = None
        self.spawn_error: SpawnError | None = None
        self.session: PtySession | None = None
        self.screen: Screen | None = None
        self._reader: PtyReader | None = None
        self._parser = EscapeParser()
        self._forwarder = InputForwarder(self.config.terminal.backspace)
        self._eof = False
        self._reaped_at: float | None = None
        self._title = ""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        command: ResolvedCommand,
        rows: int | None = None,
        cols: int | None = None,
    ) -> bool:
        """Run ``command`` in a fresh pty. Returns False on spawn failure.

        A running session is killed and an exited one acknowledged first.
        """
        if self.state in (SessionState.RUNNING, SessionState.STARTING):
            self.kill()
        if self.state is SessionState.EXITED:
            self.acknowledge()

        self.rows = rows or self.rows
        self.cols = cols or self.cols
        self.command = command
        self.state = SessionState.STARTING
        self.wire.send_starting(command.shell_command, str(command.working_directory))

        terminal = self.config.terminal
        env = {**self.config.env, **command.env_overrides}
        try:
            session = PtySession.open(
                command.shell_command,
                command.working_directory,
                self.rows,
                self.cols,
                env_overrides=env,
                shell=terminal.shell,
                term=terminal.term,
            )
        except SpawnError as e:
            logger.warning("Failed to start %r: %s", command.shell_command, e.reason)
            self.spawn_error = e
            self.state = SessionState.EXITED
            self.wire.send_spawn_error(e.reason)
            return False

        self.session = session
        self.screen = Screen(self.rows, self.cols, scrollback=terminal.scrollback_lines)
        self._parser.reset()
        self._eof = False
        self._reaped_at = None
        self._title = ""
        self._reader = PtyReader(session).start()
        self.state = SessionState.RUNNING
        self.wire.send_running(session.pid, self.rows, self.cols)
        return True

    def tick(self) -> bool:
        """Apply pending output and check for exit. Returns True if the screen changed."""
        if self.state is not SessionState.RUNNING:
            return False
        assert self.session is not None and self.screen is not None and self._reader is not None

        batch = self._reader.drain()
        generation = self.screen.generation
        for chunk in batch.chunks:
            self.screen.apply_all(self._parser.feed(chunk))
        changed = self.screen.generation != generation

        if self.screen.title != self._title:
            self._title = self.screen.title
            self.wire.send_title(self._title)

        replies = self.screen.take_replies()
        if replies:
            try:
                self.session.write(replies)
            except OSError as e:
                self._abort(e)
                return True

        if batch.error is not None:
            self._abort(batch.error)
            return True
        if batch.eof:
            self._eof = True

        result = self.session.try_wait()
        if result is not None:
            now = time.monotonic()
            if self._reaped_at is None:
                self._reaped_at = now
            # A grandchild may keep the pty open after the child exits.
            if self._eof or now - self._reaped_at >= self.config.terminal.exit_grace:
                self._finish(result)
                return True
        return changed

    def _release(self) -> None:
        if self._reader is not None:
            self._reader.stop()
            self._reader = None
        if self.session is not None:
            self.session.close()
            self.session = None

    def _finish(self, result: ExecutionResult) -> None:
        self._release()
        self.result = result
        self.state = SessionState.EXITED
        logger.info("Session %s", result.describe())
        self.wire.send_exited(result.exit_code, result.terminated_by_signal, result.describe())

    def _abort(self, error: OSError) -> None:
        logger.warning("Session I/O failed: %s", error)
        self.wire.send_error(str(error))
        self._release()
        self._finish(ExecutionResult())

    def kill(self) -> None:
        """Terminate the child (if any) and release the session."""
        if self.session is None:
            if self.state is SessionState.STARTING:
                self.state = SessionState.EXITED
            return
        if self._reader is not None:
            self._reader.stop()
            self._reader = None
        result = self.session.terminate()
        self._finish(result)

    def acknowledge(self) -> None:
        """Dismiss an exited session, returning to IDLE."""
        if self.state is not SessionState.EXITED:
            return
        self._release()
        self.screen = None
        self.result = None
        self.spawn_error = None
        self.command = None
        self.state = SessionState.IDLE

    def wait(self, timeout: float | None = None, poll_interval: float = 0.02) -> ExecutionResult | None:
        """Tick until the session exits. Returns None on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self.state is SessionState.RUNNING:
            self.tick()
            if self.state is not SessionState.RUNNING:
                break
            if deadline is not None and time.monotonic() >= deadline:
                return None
            time.sleep(poll_interval)
        return self.result

    # ------------------------------------------------------------------
    # UI boundary
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def title(self) -> str:
        return self._title

    def resize(self, rows: int, cols: int) -> bool:
        """Resize the pty, then the screen. Returns False if nothing changed."""
        rows, cols = max(1, rows), max(1, cols)
        if (rows, cols) == (self.rows, self.cols):
            return False
        if self.state is SessionState.RUNNING:
            assert self.session is not None and self.screen is not None
            if not self.session.resize(rows, cols):
                return False
            self.screen.resize(rows, cols)
            self.wire.send_status(f"Resized to {rows}x{cols}")
        self.rows, self.cols = rows, cols
        return True

    def forward_input(self, event: InputEvent) -> bool:
        """Send a key or paste to the child. No-op unless running."""
        if self.state is not SessionState.RUNNING:
            return False
        assert self.session is not None and self.screen is not None
        try:
            return self._forwarder.forward(event, self.session, self.screen.modes)
        except OSError as e:
            self._abort(e)
            return False

    def snapshot(self) -> ScreenSnapshot | None:
        if self.screen is None:
            return None
        return self.screen.snapshot()

    def select(self, anchor: tuple[int, int], head: tuple[int, int]) -> None:
        if self.screen is not None:
            self.screen.select(anchor, head)

    def clear_selection(self) -> None:
        if self.screen is not None:
            self.screen.clear_selection()
