"""PTY session: one child command attached to a pseudo-terminal."""

from __future__ import annotations

import enum
import errno
import fcntl
import logging
import os
import pty
import re
import select
import shlex
import shutil
import signal
import struct
import subprocess
import termios
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

DEFAULT_TERM = "xterm-256color"
DEFAULT_READ_SIZE = 65536

_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_SEPARATORS = frozenset({"&&", "||", ";", "|", "&", ";;", "(", ")", "|&"})

# Words the shell handles itself; a command starting with one is not checked.
_SHELL_WORDS = frozenset(
    {
        "!", "{", "}", "[[", "]]", ".", ":", "[",
        "alias", "bg", "builtin", "case", "cd", "command", "declare", "do",
        "done", "echo", "elif", "else", "esac", "eval", "exec", "exit",
        "export", "false", "fg", "fi", "for", "function", "getopts", "hash",
        "if", "jobs", "kill", "let", "local", "printf", "pwd", "read",
        "readonly", "return", "select", "set", "shift", "source", "test",
        "then", "time", "trap", "true", "type", "typeset", "ulimit", "umask",
        "unset", "until", "wait", "while",
    }
)


class SpawnError(Exception):
    """The command could not be started; no output was produced."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PtyStatus(enum.Enum):
    """Lifecycle states for a PTY session."""

    RUNNING = "running"
    EXITED = "exited"  # child reaped, fd still open
    CLOSED = "closed"  # fd released


@dataclass(frozen=True)
class ExecutionResult:
    """How a child finished. Both fields are None after an abrupt I/O failure."""

    exit_code: int | None = None
    terminated_by_signal: int | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> ExecutionResult:
        if returncode < 0:
            return cls(exit_code=None, terminated_by_signal=-returncode)
        return cls(exit_code=returncode)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def describe(self) -> str:
        if self.exit_code is not None:
            return f"exited with code {self.exit_code}"
        if self.terminated_by_signal is not None:
            try:
                name = signal.Signals(self.terminated_by_signal).name
            except ValueError:
                name = "signal"
            return f"terminated by {name} ({self.terminated_by_signal})"
        return "terminated abruptly"


def _is_redirection(token: str) -> bool:
    return bool(token) and set(token) <= set("<>&|") and ("<" in token or ">" in token)


def first_program(shell_command: str) -> str | None:
    """Program name of the first simple command, or None if the shell runs it.

    ``VAR=value`` prefixes and redirections (``<in``, ``2>/dev/null``) are
    skipped. Builtins, keywords and words that need expansion return None
    since only the shell can resolve them.
    """
    lexer = shlex.shlex(shell_command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    try:
        tokens = list(lexer)
    except ValueError:
        # Unbalanced quotes; let the shell report it.
        return None
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if _is_redirection(token):
            index += 2
            continue
        if token.isdigit() and index + 1 < len(tokens) and _is_redirection(tokens[index + 1]):
            index += 3
            continue
        if token in _SEPARATORS:
            return None
        if _ASSIGNMENT.match(token):
            index += 1
            continue
        if token in _SHELL_WORDS or any(c in token for c in "$`*?~"):
            return None
        return token
    return None


def resolve_shell(shell: str | None = None) -> str:
    """Absolute path of the shell used to run commands."""
    if shell:
        if os.sep in shell:
            if os.path.isfile(shell) and os.access(shell, os.X_OK):
                return shell
            raise SpawnError(f"shell not executable: {shell}")
        found = shutil.which(shell)
        if found is None:
            raise SpawnError(f"shell not found on PATH: {shell}")
        return found
    return shutil.which("bash") or "/bin/sh"


def _check_program(program: str, cwd: Path, env: Mapping[str, str]) -> None:
    if os.sep in program:
        path = Path(program)
        if not path.is_absolute():
            path = cwd / path
        if not path.is_file():
            raise SpawnError(f"no such file: {program}")
        if not os.access(path, os.X_OK):
            raise SpawnError(f"permission denied: {program}")
        return
    if shutil.which(program, path=env.get("PATH", os.defpath)) is None:
        raise SpawnError(f"command not found: {program}")


def _set_winsize(fd: int, rows: int, cols: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is the pty slave. Reader and
    # Textual threads may exist at fork time, so this must stay a single
    # ioctl that takes no locks and does not log.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PtySession:
    """A child process whose stdio is the slave side of a fresh pty.

    The child gets its own session and process group with the pty as its
    controlling terminal, so job-control signals and SIGWINCH reach it and
    ``terminate()`` can take down the whole tree.

    Uses subprocess.Popen rather than os.fork so the child is spawned the
    same way regardless of which threads are running.
    """

    def __init__(
        self,
        proc: subprocess.Popen,
        master_fd: int,
        rows: int,
        cols: int,
        command: str = "",
    ) -> None:
        self._proc = proc
        self._master_fd = master_fd
        self._pgid = proc.pid
        self.rows = rows
        self.cols = cols
        self.command = command
        self._status = PtyStatus.RUNNING
        self._result: ExecutionResult | None = None

    @classmethod
    def open(
        cls,
        shell_command: str,
        working_directory: str | os.PathLike[str],
        rows: int,
        cols: int,
        env_overrides: Mapping[str, str] | None = None,
        shell: str | None = None,
        term: str = DEFAULT_TERM,
    ) -> PtySession:
        """Spawn ``shell -c shell_command`` on a new pty sized ``rows`` x ``cols``.

        Raises:
            SpawnError: if the command cannot be started. Nothing has been
                written to any pty when this is raised.
        """
        cwd = Path(working_directory)
        if not cwd.is_dir():
            raise SpawnError(f"working directory does not exist: {cwd}")
        shell_path = resolve_shell(shell)

        env = dict(os.environ)
        env.update(
            TERM=term,
            COLORTERM="truecolor",
            COLUMNS=str(cols),
            LINES=str(rows),
        )
        env.update(env_overrides or {})

        program = first_program(shell_command)
        if program is not None:
            _check_program(program, cwd, env)

        master_fd, slave_fd = pty.openpty()
        try:
            _set_winsize(master_fd, rows, cols)
            proc = subprocess.Popen(
                [shell_path, "-c", shell_command],
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=env,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(f"failed to start {shell_path}: {e}") from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        logger.info(
            "PTY session started: pid=%d size=%dx%d cwd=%s cmd=%s",
            proc.pid,
            rows,
            cols,
            cwd,
            shell_command,
        )
        return cls(proc, master_fd, rows, cols, command=shell_command)

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    @property
    def fd(self) -> int:
        return self._master_fd

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def status(self) -> PtyStatus:
        return self._status

    @property
    def result(self) -> ExecutionResult | None:
        return self._result

    def write(self, data: bytes) -> None:
        """Write all of ``data`` to the child's input."""
        if self._status is PtyStatus.CLOSED:
            raise OSError(errno.EBADF, "PTY session is closed")
        view = memoryview(data)
        while view:
            written = os.write(self._master_fd, view)
            view = view[written:]

    def read_chunk(self, size: int = DEFAULT_READ_SIZE, timeout: float | None = None) -> bytes | None:
        """Read up to ``size`` bytes of child output.

        Returns None if nothing arrived within ``timeout`` seconds and
        ``b""`` at end of output.
        """
        if self._status is PtyStatus.CLOSED:
            return b""
        if timeout is not None:
            ready, _, _ = select.select([self._master_fd], [], [], timeout)
            if not ready:
                return None
        try:
            return os.read(self._master_fd, size)
        except OSError as e:
            # Linux reports a closed slave as EIO rather than EOF.
            if e.errno == errno.EIO:
                return b""
            raise

    def resize(self, rows: int, cols: int) -> bool:
        """Set the pty window size; the kernel signals the child with SIGWINCH."""
        if self._status is PtyStatus.CLOSED:
            return False
        try:
            _set_winsize(self._master_fd, rows, cols)
        except OSError as e:
            logger.warning("PTY resize to %dx%d failed: %s", rows, cols, e)
            return False
        self.rows, self.cols = rows, cols
        return True

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------

    def try_wait(self) -> ExecutionResult | None:
        """Non-blocking check for child exit."""
        if self._result is not None:
            return self._result
        returncode = self._proc.poll()
        if returncode is None:
            return None
        return self._record(returncode)

    def wait(self, timeout: float | None = None) -> ExecutionResult | None:
        if self._result is not None:
            return self._result
        try:
            returncode = self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        return self._record(returncode)

    def _record(self, returncode: int) -> ExecutionResult:
        self._result = ExecutionResult.from_returncode(returncode)
        if self._status is PtyStatus.RUNNING:
            self._status = PtyStatus.EXITED
        logger.info("PTY session pid=%d %s", self._proc.pid, self._result.describe())
        return self._result

    def _signal_group(self, signum: int) -> None:
        try:
            os.killpg(self._pgid, signum)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except PermissionError as e:
            logger.warning("Cannot signal process group %d: %s", self._pgid, e)

    def terminate(self, grace: float = 0.5) -> ExecutionResult:
        """Hang up the child's process group, then kill it if it lingers.

        The child is always reaped before this returns.
        """
        if self.try_wait() is None:
            self._signal_group(signal.SIGHUP)
            if self.wait(timeout=grace) is None:
                self._signal_group(signal.SIGKILL)
                self.wait()
                logger.info("Killed PTY session (pgid=%d)", self._pgid)
        assert self._result is not None
        return self._result

    def close(self) -> None:
        """Terminate the child if needed and release the pty. Idempotent."""
        if self._status is PtyStatus.CLOSED:
            return
        try:
            self.terminate()
        finally:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._status = PtyStatus.CLOSED

    @property
    def alive(self) -> bool:
        return self._status is PtyStatus.RUNNING and self.try_wait() is None

    def __enter__(self) -> PtySession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __del__(self) -> None:
        """Ensure cleanup on garbage collection."""
        if getattr(self, "_status", PtyStatus.CLOSED) is not PtyStatus.CLOSED:
            self.close()
