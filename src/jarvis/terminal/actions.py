"""Screen actions, the decoded output of the escape-sequence parser.

Each action is a small immutable value. The parser produces them, the
screen model applies them; neither side knows about the other.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from jarvis.terminal.cell import CellFlags, Color


class EraseMode(enum.IntEnum):
    """Extent of an erase (the numeric argument of ``CSI J`` / ``CSI K``)."""

    TO_END = 0
    TO_START = 1
    ALL = 2
    SCROLLBACK = 3  # ED only


class ReportKind(enum.Enum):
    """Device queries that require a reply on the pty input side."""

    STATUS = "status"  # CSI 5 n
    CURSOR_POSITION = "cursor_position"  # CSI 6 n
    DEVICE_ATTRIBUTES = "device_attributes"  # CSI c


@dataclass(frozen=True)
class Print:
    """Draw a run of printable characters at the cursor."""

    text: str


@dataclass(frozen=True)
class Control:
    """Execute a C0 control character (BEL, BS, HT, LF, VT, FF, CR)."""

    char: str


@dataclass(frozen=True)
class MoveCursor:
    """Relative cursor move; positive rows go down, positive cols go right."""

    rows: int = 0
    cols: int = 0


@dataclass(frozen=True)
class SetCursor:
    """Absolute cursor position, 0-indexed. ``None`` leaves that axis alone."""

    row: int | None = None
    col: int | None = None


@dataclass(frozen=True)
class EraseInDisplay:
    mode: EraseMode = EraseMode.TO_END


@dataclass(frozen=True)
class EraseInLine:
    mode: EraseMode = EraseMode.TO_END


@dataclass(frozen=True)
class InsertChars:
    count: int = 1


@dataclass(frozen=True)
class DeleteChars:
    count: int = 1


@dataclass(frozen=True)
class EraseChars:
    count: int = 1


@dataclass(frozen=True)
class InsertLines:
    count: int = 1


@dataclass(frozen=True)
class DeleteLines:
    count: int = 1


@dataclass(frozen=True)
class Scroll:
    """Scroll the scroll region: positive scrolls content up, negative down."""

    lines: int


@dataclass(frozen=True)
class Index:
    """Move down one row, scrolling at the bottom margin (``ESC D``)."""


@dataclass(frozen=True)
class ReverseIndex:
    """Move up one row, scrolling at the top margin (``ESC M``)."""


@dataclass(frozen=True)
class SetScrollRegion:
    """Top/bottom margins, 0-indexed inclusive top, exclusive bottom."""

    top: int = 0
    bottom: int | None = None


@dataclass(frozen=True)
class ResetAttributes:
    """SGR 0."""


@dataclass(frozen=True)
class SetFlags:
    """Turn cell attribute flags on or off."""

    flags: CellFlags
    enabled: bool = True


@dataclass(frozen=True)
class SetForeground:
    color: Color


@dataclass(frozen=True)
class SetBackground:
    color: Color


@dataclass(frozen=True)
class SetMode:
    """``CSI h`` / ``CSI l``; ``private`` for the ``CSI ? … h`` DEC modes."""

    mode: int
    enabled: bool
    private: bool = False


@dataclass(frozen=True)
class SaveCursor:
    pass


@dataclass(frozen=True)
class RestoreCursor:
    pass


@dataclass(frozen=True)
class SetTitle:
    title: str


@dataclass(frozen=True)
class Report:
    kind: ReportKind


@dataclass(frozen=True)
class FullReset:
    """``ESC c``."""


Action = (
    Print
    | Control
    | MoveCursor
    | SetCursor
    | EraseInDisplay
    | EraseInLine
    | InsertChars
    | DeleteChars
    | EraseChars
    | InsertLines
    | DeleteLines
    | Scroll
    | Index
    | ReverseIndex
    | SetScrollRegion
    | ResetAttributes
    | SetFlags
    | SetForeground
    | SetBackground
    | SetMode
    | SaveCursor
    | RestoreCursor
    | SetTitle
    | Report
    | FullReset
)
