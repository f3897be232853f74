"""Screen model: the grid, cursor, pen, modes and scrollback of one terminal.

The screen is mutated only through :meth:`Screen.apply` (parser actions)
and :meth:`Screen.resize`. Renderers never touch it directly; they read an
immutable :class:`ScreenSnapshot`.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable

from rich.cells import cell_len

from jarvis.terminal import actions as act
from jarvis.terminal.actions import EraseMode, ReportKind
from jarvis.terminal.cell import BLANK, Cell, CellFlags, Color

logger = logging.getLogger(__name__)

DEFAULT_SCROLLBACK = 2000
TAB_WIDTH = 8

ALT_SCREEN_MODES = frozenset({47, 1047, 1049})

Line = tuple[Cell, ...]


@dataclass
class Cursor:
    row: int = 0
    col: int = 0
    visible: bool = True


@dataclass
class Pen:
    """Attributes applied to newly printed cells."""

    fg: Color = None
    bg: Color = None
    flags: CellFlags = CellFlags.NONE

    def blank(self) -> Cell:
        # Erased cells keep only the background (xterm's bce behaviour).
        if self.bg is None:
            return BLANK
        return Cell(" ", None, self.bg)


@dataclass
class TerminalModes:
    auto_wrap: bool = True
    application_cursor: bool = False
    bracketed_paste: bool = False


@dataclass(frozen=True)
class Selection:
    """A selection between two ``(row, col)`` points in viewport coordinates.

    ``anchor`` is where the drag started, ``head`` where it is now; either
    may come first.
    """

    anchor: tuple[int, int]
    head: tuple[int, int]

    def ordered(self) -> tuple[tuple[int, int], tuple[int, int]]:
        return (self.anchor, self.head) if self.anchor <= self.head else (self.head, self.anchor)

    def contains(self, row: int, col: int) -> bool:
        (start_row, start_col), (end_row, end_col) = self.ordered()
        if row < start_row or row > end_row:
            return False
        if row == start_row and col < start_col:
            return False
        if row == end_row and col > end_col:
            return False
        return True


@dataclass(frozen=True)
class ScreenSnapshot:
    """A consistent, read-only copy of the screen for one frame."""

    rows: int
    cols: int
    lines: tuple[Line, ...]
    scrollback: tuple[Line, ...] = ()
    cursor: Cursor = field(default_factory=Cursor)
    selection: Selection | None = None
    alternate_screen: bool = False
    title: str = ""

    @property
    def history_size(self) -> int:
        return len(self.scrollback)

    def row_text(self, row: int) -> str:
        return _line_text(self.lines[row])

    def text(self) -> str:
        """Visible grid as text, trailing blanks and empty rows dropped."""
        return "\n".join(_line_text(line) for line in self.lines).rstrip("\n")

    def view(self, scroll_offset: int = 0) -> tuple[Line, ...]:
        """The ``rows`` lines visible when scrolled back ``scroll_offset`` lines."""
        offset = max(0, min(scroll_offset, len(self.scrollback)))
        if offset == 0:
            return self.lines
        history = self.scrollback[len(self.scrollback) - offset:]
        return (history + self.lines)[: self.rows]

    def history_line(self, scroll_offset: int, row: int) -> Line:
        return self.view(scroll_offset)[row]

    def is_selected(self, row: int, col: int) -> bool:
        return self.selection is not None and self.selection.contains(row, col)

    def selected_text(self, scroll_offset: int = 0) -> str:
        if self.selection is None:
            return ""
        (start_row, start_col), (end_row, end_col) = self.selection.ordered()
        view = self.view(scroll_offset)
        out: list[str] = []
        for row in range(start_row, min(end_row, len(view) - 1) + 1):
            line = view[row]
            first = start_col if row == start_row else 0
            last = end_col if row == end_row else len(line) - 1
            out.append(_line_text(line[first : last + 1]))
        return "\n".join(out).rstrip()


def _line_text(cells: Iterable[Cell]) -> str:
    return "".join(cell.char for cell in cells).rstrip()


class Screen:
    """Mutable terminal state driven by parser actions."""

    def __init__(self, rows: int, cols: int, scrollback: int = DEFAULT_SCROLLBACK) -> None:
        if rows < 1 or cols < 1:
            raise ValueError(f"Screen size must be positive, got {rows}x{cols}")
        self._rows = rows
        self._cols = cols
        self.scrollback: deque[Line] = deque(maxlen=scrollback)
        self.title = ""
        self.selection: Selection | None = None
        self.generation = 0
        self.pending_replies: list[bytes] = []
        self._handlers: dict[type, Callable[[Any], None]] = {
            act.Print: self._print,
            act.Control: self._control,
            act.MoveCursor: self._move_cursor,
            act.SetCursor: self._set_cursor,
            act.EraseInDisplay: self._erase_in_display,
            act.EraseInLine: self._erase_in_line,
            act.InsertChars: self._insert_chars,
            act.DeleteChars: self._delete_chars,
            act.EraseChars: self._erase_chars,
            act.InsertLines: self._insert_lines,
            act.DeleteLines: self._delete_lines,
            act.Scroll: self._scroll,
            act.Index: lambda _: self._index(),
            act.ReverseIndex: lambda _: self._reverse_index(),
            act.SetScrollRegion: self._set_scroll_region,
            act.ResetAttributes: self._reset_attributes,
            act.SetFlags: self._set_flags,
            act.SetForeground: self._set_foreground,
            act.SetBackground: self._set_background,
            act.SetMode: self._set_mode,
            act.SaveCursor: lambda _: self._save_cursor(),
            act.RestoreCursor: lambda _: self._restore_cursor(),
            act.SetTitle: self._set_title,
            act.Report: self._report,
            act.FullReset: lambda _: self._full_reset(),
        }
        self._reset_state()

    def _reset_state(self) -> None:
        self._lines: list[list[Cell]] = [self._new_line() for _ in range(self._rows)]
        self.cursor = Cursor()
        self.pen = Pen()
        self.modes = TerminalModes()
        self.alternate_screen = False
        self._pending_wrap = False
        self._top = 0
        self._bottom = self._rows
        self._saved: tuple[int, int, bool, Pen] | None = None
        self._primary: tuple[list[list[Cell]], Cursor, bool] | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def scrollback_capacity(self) -> int:
        return self.scrollback.maxlen or 0

    def apply(self, action: act.Action) -> None:
        handler = self._handlers.get(type(action))
        if handler is not None:
            handler(action)
            self.generation += 1

    def apply_all(self, actions: Iterable[act.Action]) -> None:
        for action in actions:
            self.apply(action)

    def take_replies(self) -> bytes:
        """Return (and forget) the answers owed to device queries."""
        data = b"".join(self.pending_replies)
        self.pending_replies.clear()
        return data

    def select(self, anchor: tuple[int, int], head: tuple[int, int]) -> None:
        self.selection = Selection(self._clamp_point(anchor), self._clamp_point(head))
        self.generation += 1

    def clear_selection(self) -> None:
        if self.selection is not None:
            self.selection = None
            self.generation += 1

    def snapshot(self) -> ScreenSnapshot:
        return ScreenSnapshot(
            rows=self._rows,
            cols=self._cols,
            lines=tuple(tuple(line) for line in self._lines),
            scrollback=tuple(self.scrollback),
            cursor=replace(self.cursor),
            selection=self.selection,
            alternate_screen=self.alternate_screen,
            title=self.title,
        )

    def resize(self, rows: int, cols: int) -> None:
        """Change the grid size, keeping the cursor's row on screen."""
        rows = max(1, rows)
        cols = max(1, cols)
        if (rows, cols) == (self._rows, self._cols):
            return
        old_rows = self._rows
        self._rows = rows
        self._cols = cols

        self._lines, self.cursor.row = self._fit_grid(
            self._lines, self.cursor.row, old_rows, archive=not self.alternate_screen
        )
        if self._primary is not None:
            lines, cursor, wrap = self._primary
            lines, cursor.row = self._fit_grid(lines, cursor.row, old_rows, archive=True)
            cursor.col = min(cursor.col, cols - 1)
            self._primary = (lines, cursor, wrap)

        self.cursor.row = min(self.cursor.row, rows - 1)
        self.cursor.col = min(self.cursor.col, cols - 1)
        self._pending_wrap = False
        self._top = 0
        self._bottom = rows
        self.selection = None
        self.generation += 1
        logger.debug("Screen resized from %d rows to %dx%d", old_rows, rows, cols)

    # ------------------------------------------------------------------
    # Line helpers
    # ------------------------------------------------------------------

    def _new_line(self, cell: Cell = BLANK) -> list[Cell]:
        return [cell] * self._cols

    def _clamp_point(self, point: tuple[int, int]) -> tuple[int, int]:
        row, col = point
        return max(0, min(row, self._rows - 1)), max(0, min(col, self._cols - 1))

    def _fit_grid(
        self, lines: list[list[Cell]], cursor_row: int, old_rows: int, archive: bool
    ) -> tuple[list[list[Cell]], int]:
        rows, cols = self._rows, self._cols
        if rows < old_rows:
            overflow = cursor_row - (rows - 1)
            if overflow > 0:
                for line in lines[:overflow]:
                    if archive:
                        self.scrollback.append(tuple(line))
                del lines[:overflow]
                cursor_row -= overflow
            del lines[rows:]
        while len(lines) < rows:
            lines.append([BLANK] * cols)
        for line in lines:
            if len(line) > cols:
                del line[cols:]
                if line[-1].flags & CellFlags.WIDE:
                    line[-1] = BLANK
            elif len(line) < cols:
                line.extend([BLANK] * (cols - len(line)))
        return lines, max(0, cursor_row)

    def _fix_wide_edges(self, line: list[Cell], start: int, end: int) -> None:
        """Blank the orphaned half of any wide glyph cut by an edit of [start, end)."""
        if 0 < start < self._cols and line[start].is_continuation:
            line[start - 1] = BLANK
            line[start] = BLANK
        if 0 < end < self._cols and line[end].is_continuation:
            line[end] = BLANK
        if line and line[-1].flags & CellFlags.WIDE:
            line[-1] = BLANK

    def _erase_range(self, row: int, start: int, end: int) -> None:
        start = max(0, start)
        end = min(self._cols, end)
        if start >= end:
            return
        line = self._lines[row]
        self._fix_wide_edges(line, start, end)
        blank = self.pen.blank()
        line[start:end] = [blank] * (end - start)

    # ------------------------------------------------------------------
    # Scrolling
    # ------------------------------------------------------------------

    def _scroll_up(self, count: int) -> None:
        count = min(count, self._bottom - self._top)
        archive = self._top == 0 and not self.alternate_screen
        for _ in range(count):
            line = self._lines.pop(self._top)
            if archive:
                self.scrollback.append(tuple(line))
            self._lines.insert(self._bottom - 1, self._new_line(self.pen.blank()))

    def _scroll_down(self, count: int) -> None:
        count = min(count, self._bottom - self._top)
        for _ in range(count):
            del self._lines[self._bottom - 1]
            self._lines.insert(self._top, self._new_line(self.pen.blank()))

    def _index(self) -> None:
        if self.cursor.row == self._bottom - 1:
            self._scroll_up(1)
        elif self.cursor.row < self._rows - 1:
            self.cursor.row += 1
        self._pending_wrap = False

    def _reverse_index(self) -> None:
        if self.cursor.row == self._top:
            self._scroll_down(1)
        elif self.cursor.row > 0:
            self.cursor.row -= 1
        self._pending_wrap = False

    # ------------------------------------------------------------------
    # Printing
    # ------------------------------------------------------------------

    def _print(self, action: act.Print) -> None:
        for ch in action.text:
            self._put_char(ch)

    def _put_char(self, ch: str) -> None:
        width = cell_len(ch)
        if width == 0:
            self._combine(ch)
            return
        if width > self._cols:
            width = 1

        if self._pending_wrap:
            self._pending_wrap = False
            if self.modes.auto_wrap:
                self.cursor.col = 0
                self._index()

        if width == 2 and self.cursor.col == self._cols - 1:
            if self.modes.auto_wrap:
                self._lines[self.cursor.row][self.cursor.col] = self.pen.blank()
                self.cursor.col = 0
                self._index()
            else:
                self.cursor.col = self._cols - 2

        row, col = self.cursor.row, self.cursor.col
        line = self._lines[row]
        self._fix_wide_edges(line, col, col + width)
        pen = self.pen
        if width == 2:
            flags = pen.flags | CellFlags.WIDE
            line[col] = Cell(ch, pen.fg, pen.bg, flags)
            line[col + 1] = Cell("", pen.fg, pen.bg, pen.flags)
        else:
            line[col] = Cell(ch, pen.fg, pen.bg, pen.flags)

        if col + width >= self._cols:
            self.cursor.col = self._cols - 1
            self._pending_wrap = self.modes.auto_wrap
        else:
            self.cursor.col = col + width

    def _combine(self, mark: str) -> None:
        """Attach a zero-width character to the previously printed cell."""
        line = self._lines[self.cursor.row]
        col = self.cursor.col if self._pending_wrap else self.cursor.col - 1
        if col > 0 and line[col].is_continuation:
            col -= 1
        if col < 0 or line[col].is_continuation:
            return
        line[col] = replace(line[col], char=line[col].char + mark)

    def _control(self, action: act.Control) -> None:
        ch = action.char
        if ch == "\r":
            self.cursor.col = 0
            self._pending_wrap = False
        elif ch in "\n\v\f":
            self._index()
        elif ch == "\b":
            if self._pending_wrap:
                self._pending_wrap = False
            else:
                self.cursor.col = max(0, self.cursor.col - 1)
        elif ch == "\t":
            next_stop = (self.cursor.col // TAB_WIDTH + 1) * TAB_WIDTH
            self.cursor.col = min(next_stop, self._cols - 1)
            self._pending_wrap = False
        # BEL needs no screen change.

    # ------------------------------------------------------------------
    # Cursor movement
    # ------------------------------------------------------------------

    def _move_cursor(self, action: act.MoveCursor) -> None:
        row = self.cursor.row
        if action.rows < 0:
            floor = self._top if row >= self._top else 0
            self.cursor.row = max(floor, row + action.rows)
        elif action.rows > 0:
            ceiling = self._bottom - 1 if row < self._bottom else self._rows - 1
            self.cursor.row = min(ceiling, row + action.rows)
        self.cursor.col = max(0, min(self._cols - 1, self.cursor.col + action.cols))
        self._pending_wrap = False

    def _set_cursor(self, action: act.SetCursor) -> None:
        if action.row is not None:
            self.cursor.row = max(0, min(self._rows - 1, action.row))
        if action.col is not None:
            self.cursor.col = max(0, min(self._cols - 1, action.col))
        self._pending_wrap = False

    def _save_cursor(self) -> None:
        self._saved = (self.cursor.row, self.cursor.col, self._pending_wrap, replace(self.pen))

    def _restore_cursor(self) -> None:
        if self._saved is None:
            self.cursor.row = self.cursor.col = 0
            self._pending_wrap = False
            return
        row, col, wrap, pen = self._saved
        self.cursor.row = min(row, self._rows - 1)
        self.cursor.col = min(col, self._cols - 1)
        self._pending_wrap = wrap
        self.pen = replace(pen)

    # ------------------------------------------------------------------
    # Erasing and editing
    # ------------------------------------------------------------------

    def _erase_in_display(self, action: act.EraseInDisplay) -> None:
        row, col = self.cursor.row, self.cursor.col
        if action.mode == EraseMode.TO_END:
            self._erase_range(row, col, self._cols)
            for r in range(row + 1, self._rows):
                self._erase_range(r, 0, self._cols)
        elif action.mode == EraseMode.TO_START:
            for r in range(row):
                self._erase_range(r, 0, self._cols)
            self._erase_range(row, 0, col + 1)
        elif action.mode == EraseMode.ALL:
            for r in range(self._rows):
                self._erase_range(r, 0, self._cols)
        elif action.mode == EraseMode.SCROLLBACK:
            self.scrollback.clear()

    def _erase_in_line(self, action: act.EraseInLine) -> None:
        row, col = self.cursor.row, self.cursor.col
        if action.mode == EraseMode.TO_END:
            self._erase_range(row, col, self._cols)
        elif action.mode == EraseMode.TO_START:
            self._erase_range(row, 0, col + 1)
        elif action.mode == EraseMode.ALL:
            self._erase_range(row, 0, self._cols)

    def _insert_chars(self, action: act.InsertChars) -> None:
        col = self.cursor.col
        line = self._lines[self.cursor.row]
        count = min(action.count, self._cols - col)
        self._fix_wide_edges(line, col, col)
        line[col:col] = [self.pen.blank()] * count
        del line[self._cols:]
        self._fix_wide_edges(line, col, self._cols)
        self._pending_wrap = False

    def _delete_chars(self, action: act.DeleteChars) -> None:
        col = self.cursor.col
        line = self._lines[self.cursor.row]
        count = min(action.count, self._cols - col)
        self._fix_wide_edges(line, col, col + count)
        del line[col : col + count]
        line.extend([self.pen.blank()] * count)
        self._pending_wrap = False

    def _erase_chars(self, action: act.EraseChars) -> None:
        col = self.cursor.col
        self._erase_range(self.cursor.row, col, col + action.count)
        self._pending_wrap = False

    def _insert_lines(self, action: act.InsertLines) -> None:
        row = self.cursor.row
        if not self._top <= row < self._bottom:
            return
        for _ in range(min(action.count, self._bottom - row)):
            del self._lines[self._bottom - 1]
            self._lines.insert(row, self._new_line(self.pen.blank()))
        self.cursor.col = 0
        self._pending_wrap = False

    def _delete_lines(self, action: act.DeleteLines) -> None:
        row = self.cursor.row
        if not self._top <= row < self._bottom:
            return
        for _ in range(min(action.count, self._bottom - row)):
            del self._lines[row]
            self._lines.insert(self._bottom - 1, self._new_line(self.pen.blank()))
        self.cursor.col = 0
        self._pending_wrap = False

    def _scroll(self, action: act.Scroll) -> None:
        if action.lines > 0:
            self._scroll_up(action.lines)
        elif action.lines < 0:
            self._scroll_down(-action.lines)

    def _set_scroll_region(self, action: act.SetScrollRegion) -> None:
        top = max(0, action.top)
        bottom = self._rows if action.bottom is None else min(action.bottom, self._rows)
        if bottom - top < 2:
            return
        self._top = top
        self._bottom = bottom
        self.cursor.row = self.cursor.col = 0
        self._pending_wrap = False

    # ------------------------------------------------------------------
    # Attributes and modes
    # ------------------------------------------------------------------

    def _reset_attributes(self, action: act.ResetAttributes) -> None:
        self.pen = Pen()

    def _set_flags(self, action: act.SetFlags) -> None:
        if action.enabled:
            self.pen.flags |= action.flags
        else:
            self.pen.flags &= ~action.flags

    def _set_foreground(self, action: act.SetForeground) -> None:
        self.pen.fg = action.color

    def _set_background(self, action: act.SetBackground) -> None:
        self.pen.bg = action.color

    def _set_mode(self, action: act.SetMode) -> None:
        if not action.private:
            return
        mode, on = action.mode, action.enabled
        if mode == 1:
            self.modes.application_cursor = on
        elif mode == 7:
            self.modes.auto_wrap = on
            if not on:
                self._pending_wrap = False
        elif mode == 25:
            self.cursor.visible = on
        elif mode == 2004:
            self.modes.bracketed_paste = on
        elif mode in ALT_SCREEN_MODES:
            if on:
                self._enter_alternate(save_cursor=mode == 1049)
            else:
                self._leave_alternate(restore_cursor=mode == 1049)

    def _enter_alternate(self, save_cursor: bool) -> None:
        if self.alternate_screen:
            return
        if save_cursor:
            self._save_cursor()
        self._primary = (self._lines, replace(self.cursor), self._pending_wrap)
        self._lines = [self._new_line() for _ in range(self._rows)]
        self.alternate_screen = True
        self.selection = None

    def _leave_alternate(self, restore_cursor: bool) -> None:
        if not self.alternate_screen or self._primary is None:
            return
        lines, cursor, wrap = self._primary
        self._primary = None
        self._lines = lines
        self.cursor = cursor
        self._pending_wrap = wrap
        self.alternate_screen = False
        self.selection = None
        if restore_cursor and self._saved is not None:
            self._restore_cursor()

    def _set_title(self, action: act.SetTitle) -> None:
        self.title = action.title

    def _report(self, action: act.Report) -> None:
        if action.kind is ReportKind.STATUS:
            self.pending_replies.append(b"\x1b[0n")
        elif action.kind is ReportKind.CURSOR_POSITION:
            self.pending_replies.append(f"\x1b[{self.cursor.row + 1};{self.cursor.col + 1}R".encode())
        elif action.kind is ReportKind.DEVICE_ATTRIBUTES:
            self.pending_replies.append(b"\x1b[?1;2c")

    def _full_reset(self) -> None:
        self._reset_state()
        self.title = ""
        self.selection = None
