"""Tests for PTY sessions and the background reader."""

from __future__ import annotations

import signal
import time

import pytest

from jarvis.pty.reader import PtyReader
from jarvis.pty.session import (
    ExecutionResult,
    PtySession,
    PtyStatus,
    SpawnError,
    first_program,
    resolve_shell,
)


def open_session(command: str, tmp_path, rows: int = 24, cols: int = 80, **kwargs) -> PtySession:
    return PtySession.open(command, tmp_path, rows, cols, shell="/bin/sh", **kwargs)


def read_all(session: PtySession, timeout: float = 5.0) -> bytes:
    deadline = time.monotonic() + timeout
    out = b""
    while time.monotonic() < deadline:
        chunk = session.read_chunk(timeout=0.1)
        if chunk is None:
            continue
        if not chunk:
            break
        out += chunk
    return out


# ---------------------------------------------------------------------------
# ExecutionResult
# ---------------------------------------------------------------------------


class TestExecutionResult:
    def test_from_returncode(self) -> None:
        assert ExecutionResult.from_returncode(3) == ExecutionResult(exit_code=3)
        assert ExecutionResult.from_returncode(-9) == ExecutionResult(terminated_by_signal=9)

    def test_describe(self) -> None:
        assert ExecutionResult(exit_code=0).describe() == "exited with code 0"
        assert ExecutionResult(terminated_by_signal=signal.SIGKILL).describe() == (
            f"terminated by SIGKILL ({int(signal.SIGKILL)})"
        )
        assert ExecutionResult().describe() == "terminated abruptly"

    def test_succeeded(self) -> None:
        assert ExecutionResult(exit_code=0).succeeded
        assert not ExecutionResult(exit_code=1).succeeded
        assert not ExecutionResult(terminated_by_signal=15).succeeded


# ---------------------------------------------------------------------------
# Command inspection
# ---------------------------------------------------------------------------


class TestFirstProgram:
    def test_simple(self) -> None:
        assert first_program("make --file Makefile build") == "make"

    def test_skips_assignments(self) -> None:
        assert first_program("FOO=1 BAR='a b' npm run dev") == "npm"

    def test_shell_words_are_not_checked(self) -> None:
        assert first_program("cd /tmp && ls") is None
        assert first_program(". ./script.sh && deploy") is None
        assert first_program("echo hi") is None

    def test_expansions_are_not_checked(self) -> None:
        assert first_program("$EDITOR file") is None
        assert first_program("~/bin/tool") is None

    def test_skips_redirections(self) -> None:
        assert first_program("<in.txt cat") == "cat"
        assert first_program(">log make build") == "make"
        assert first_program("2>/dev/null npm test") == "npm"
        assert first_program("2>&1 >>out.log FOO=1 just build") == "just"
        assert first_program("<in.txt") is None

    def test_unbalanced_quotes(self) -> None:
        assert first_program("echo 'oops") is None

    def test_empty(self) -> None:
        assert first_program("") is None


class TestResolveShell:
    def test_default(self) -> None:
        assert resolve_shell()

    def test_missing_shell(self) -> None:
        with pytest.raises(SpawnError):
            resolve_shell("definitely-not-a-shell-xyz")

    def test_non_executable_path(self, tmp_path) -> None:
        fake = tmp_path / "sh"
        fake.write_text("")
        with pytest.raises(SpawnError):
            resolve_shell(str(fake))


# ---------------------------------------------------------------------------
# Spawning
# ---------------------------------------------------------------------------


class TestSpawn:
    def test_output_and_exit_code(self, tmp_path) -> None:
        with open_session("printf hello; exit 3", tmp_path) as session:
            assert b"hello" in read_all(session)
            result = session.wait(timeout=5)
            assert result == ExecutionResult(exit_code=3)
            assert session.status is PtyStatus.EXITED
        assert session.status is PtyStatus.CLOSED

    def test_runs_in_working_directory(self, tmp_path) -> None:
        (tmp_path / "marker.txt").write_text("")
        with open_session("ls", tmp_path) as session:
            assert b"marker.txt" in read_all(session)

    def test_environment(self, tmp_path) -> None:
        with open_session(
            'printf "%s|%s" "$TERM" "$GREETING"', tmp_path, env_overrides={"GREETING": "hey"}
        ) as session:
            assert b"xterm-256color|hey" in read_all(session)

    def test_stdin_is_a_tty_with_window_size(self, tmp_path) -> None:
        with open_session("stty size", tmp_path, rows=30, cols=100) as session:
            assert b"30 100" in read_all(session)

    def test_pty_is_controlling_terminal(self, tmp_path) -> None:
        # /dev/tty only opens for a process with a controlling terminal.
        with open_session("exec 3</dev/tty && printf ctty-ok", tmp_path) as session:
            assert b"ctty-ok" in read_all(session)

    def test_write_reaches_child(self, tmp_path) -> None:
        with open_session("read line; printf 'got:%s' \"$line\"", tmp_path) as session:
            session.write(b"abc\r")
            assert b"got:abc" in read_all(session)

    def test_missing_program_raises_before_spawn(self, tmp_path) -> None:
        with pytest.raises(SpawnError, match="command not found"):
            open_session("no-such-program-xyz --flag", tmp_path)

    def test_leading_redirection_is_not_a_program(self, tmp_path) -> None:
        (tmp_path / "in.txt").write_text("from file")
        with open_session("<in.txt cat", tmp_path) as session:
            assert b"from file" in read_all(session)

    def test_missing_relative_script(self, tmp_path) -> None:
        with pytest.raises(SpawnError, match="no such file"):
            open_session("./missing.sh", tmp_path)

    def test_missing_working_directory(self, tmp_path) -> None:
        with pytest.raises(SpawnError, match="working directory"):
            open_session("true", tmp_path / "nope")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_try_wait_while_running(self, tmp_path) -> None:
        with open_session("sleep 5", tmp_path) as session:
            assert session.try_wait() is None
            assert session.alive

    def test_terminate_reports_signal(self, tmp_path) -> None:
        session = open_session("sleep 30", tmp_path)
        result = session.terminate(grace=1.0)
        assert result.terminated_by_signal in (signal.SIGHUP, signal.SIGKILL)
        assert result.exit_code is None
        session.close()

    def test_terminate_escalates_to_kill(self, tmp_path) -> None:
        session = open_session("trap '' HUP; sleep 30", tmp_path)
        time.sleep(0.2)
        result = session.terminate(grace=0.2)
        assert result.terminated_by_signal == signal.SIGKILL
        session.close()

    def test_close_is_idempotent(self, tmp_path) -> None:
        session = open_session("true", tmp_path)
        session.close()
        session.close()
        assert session.status is PtyStatus.CLOSED
        assert session.read_chunk() == b""
        with pytest.raises(OSError):
            session.write(b"x")

    def test_resize(self, tmp_path) -> None:
        with open_session("sleep 5", tmp_path) as session:
            assert session.resize(40, 120)
            assert (session.rows, session.cols) == (40, 120)

    def test_resize_after_close(self, tmp_path) -> None:
        session = open_session("true", tmp_path)
        session.close()
        assert session.resize(10, 10) is False


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------


class TestReader:
    def test_collects_output_then_eof(self, tmp_path) -> None:
        session = open_session("printf one; printf two", tmp_path)
        reader = PtyReader(session).start()
        data = b""
        eof = False
        deadline = time.monotonic() + 5
        while not eof and time.monotonic() < deadline:
            batch = reader.drain()
            data += batch.data
            eof = batch.eof
            time.sleep(0.01)
        assert eof
        assert data == b"onetwo"
        # Once finished, later drains keep reporting EOF.
        assert reader.drain().eof
        reader.stop()
        session.close()

    def test_stop_while_child_runs(self, tmp_path) -> None:
        session = open_session("sleep 30", tmp_path)
        reader = PtyReader(session).start()
        assert reader.running
        reader.stop()
        assert not reader.running
        session.close()
