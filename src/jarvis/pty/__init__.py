"""PTY process management: one child command on a pseudo-terminal.

The session spawns the child in its own process group with the pty as
controlling terminal; the reader pumps its output off-thread.
"""

from jarvis.pty.reader import PtyReader, ReaderBatch
from jarvis.pty.session import ExecutionResult, PtySession, PtyStatus, SpawnError

__all__ = [
    "ExecutionResult",
    "PtyReader",
    "PtySession",
    "PtyStatus",
    "ReaderBatch",
    "SpawnError",
]
