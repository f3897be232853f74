"""Textual widget that draws a terminal screen snapshot."""

from __future__ import annotations

import logging
from functools import lru_cache

from rich.color import Color as RichColor
from rich.style import Style
from rich.text import Text
from textual import events
from textual.binding import Binding
from textual.message import Message
from textual.reactive import reactive
from textual.widget import Widget

from jarvis.terminal.cell import Cell, CellFlags, Color
from jarvis.terminal.keys import InputEvent, KeyEvent, PasteEvent
from jarvis.terminal.screen import ScreenSnapshot

logger = logging.getLogger(__name__)

PLACEHOLDER = "Select a command and press Enter to run it."


def to_rich_color(color: Color) -> RichColor | None:
    if color is None:
        return None
    if isinstance(color, tuple):
        return RichColor.from_rgb(*color)
    return RichColor.from_ansi(color)


@lru_cache(maxsize=1024)
def cell_style(fg: Color, bg: Color, flags: CellFlags, highlight: bool = False) -> Style:
    """Rich style for a cell; ``highlight`` (cursor or selection) inverts it."""
    reverse = bool(flags & CellFlags.REVERSE) != highlight
    return Style(
        color=to_rich_color(fg),
        bgcolor=to_rich_color(bg),
        bold=bool(flags & CellFlags.BOLD) or None,
        dim=bool(flags & CellFlags.DIM) or None,
        italic=bool(flags & CellFlags.ITALIC) or None,
        underline=bool(flags & CellFlags.UNDERLINE) or None,
        blink=bool(flags & CellFlags.BLINK) or None,
        reverse=reverse or None,
        conceal=bool(flags & CellFlags.HIDDEN) or None,
        strike=bool(flags & CellFlags.STRIKE) or None,
    )


def _render_line(
    line: tuple[Cell, ...],
    row: int,
    snapshot: ScreenSnapshot,
    cursor_col: int | None,
) -> Text:
    text = Text(no_wrap=True, overflow="crop", end="")
    run: list[str] = []
    run_style: Style | None = None
    for col, cell in enumerate(line):
        if cell.is_continuation:
            continue
        highlight = col == cursor_col or snapshot.is_selected(row, col)
        style = cell_style(cell.fg, cell.bg, cell.flags, highlight)
        if style is not run_style and run:
            text.append("".join(run), run_style)
            run = []
        run_style = style
        run.append(cell.char)
    if run:
        text.append("".join(run), run_style)
    return text


def render_snapshot(
    snapshot: ScreenSnapshot,
    scroll_offset: int = 0,
    show_cursor: bool = True,
) -> Text:
    """Render the screen (or a view scrolled back into history) as Rich text."""
    lines = snapshot.view(scroll_offset)
    cursor = snapshot.cursor
    draw_cursor = show_cursor and cursor.visible and scroll_offset == 0
    rendered = []
    for row, line in enumerate(lines):
        cursor_col = cursor.col if draw_cursor and row == cursor.row else None
        rendered.append(_render_line(line, row, snapshot, cursor_col))
    return Text("\n", no_wrap=True, overflow="crop").join(rendered)


class TerminalView(Widget, can_focus=True):
    """Embedded terminal pane.

    While ``interactive`` every key and paste is posted as an ``Input``
    message for the running child, except the detach key. Otherwise the
    view scrolls through history and copies the mouse selection.
    """

    DEFAULT_CSS = """
    TerminalView {
        height: 1fr;
        width: 1fr;
        background: $surface;
    }
    """

    BINDINGS = [
        Binding("up,k", "history(1)", "Up", show=False),
        Binding("down,j", "history(-1)", "Down", show=False),
        Binding("pageup", "history_page(1)", "Page up", show=False),
        Binding("pagedown", "history_page(-1)", "Page down", show=False),
        Binding("g", "history_top", "Top", show=False),
        Binding("G", "history_bottom", "Bottom", show=False),
        Binding("y", "copy", "Copy selection"),
    ]

    scroll_offset: reactive[int] = reactive(0)

    class Input(Message):
        """A key or paste for the child."""

        def __init__(self, event: InputEvent) -> None:
            super().__init__()
            self.event = event

    class Detach(Message):
        """The detach key was pressed while interactive."""

    class Resized(Message):
        def __init__(self, rows: int, cols: int) -> None:
            super().__init__()
            self.rows = rows
            self.cols = cols

    class SelectionChanged(Message):
        """Mouse selection in view coordinates; ``anchor`` None clears it."""

        def __init__(self, anchor: tuple[int, int] | None, head: tuple[int, int] | None) -> None:
            super().__init__()
            self.anchor = anchor
            self.head = head

    def __init__(
        self,
        detach_key: str = "ctrl+right_square_bracket",
        *,
        id: str | None = None,
        classes: str | None = None,
    ) -> None:
        super().__init__(id=id, classes=classes)
        self.detach_key = detach_key
        self.interactive = False
        self._snapshot: ScreenSnapshot | None = None
        self._message: Text | None = None
        self._drag_anchor: tuple[int, int] | None = None

    # --- Content ---

    @property
    def snapshot(self) -> ScreenSnapshot | None:
        return self._snapshot

    def update_snapshot(self, snapshot: ScreenSnapshot | None) -> None:
        self._snapshot = snapshot
        self._message = None
        if snapshot is None:
            self.scroll_offset = 0
        else:
            self.scroll_offset = min(self.scroll_offset, snapshot.history_size)
        self.refresh()

    def show_message(self, message: Text | str) -> None:
        self._snapshot = None
        self._message = Text(message) if isinstance(message, str) else message
        self.refresh()

    def render(self) -> Text:
        if self._message is not None:
            return self._message
        if self._snapshot is None:
            return Text(PLACEHOLDER, style="dim")
        return render_snapshot(
            self._snapshot,
            scroll_offset=self.scroll_offset,
            show_cursor=self.interactive,
        )

    def watch_scroll_offset(self, _old: int, _new: int) -> None:
        self.refresh()

    # --- Input ---

    def on_key(self, event: events.Key) -> None:
        if not self.interactive:
            return
        event.stop()
        event.prevent_default()
        if event.key == self.detach_key:
            self.post_message(self.Detach())
            return
        self.post_message(self.Input(KeyEvent(event.key, event.character)))

    def on_paste(self, event: events.Paste) -> None:
        if not self.interactive:
            return
        event.stop()
        self.post_message(self.Input(PasteEvent(event.text)))

    def on_resize(self, event: events.Resize) -> None:
        rows, cols = self.size.height, self.size.width
        if rows > 0 and cols > 0:
            self.post_message(self.Resized(rows, cols))

    # --- Mouse selection ---

    def _point(self, event: events.MouseEvent) -> tuple[int, int] | None:
        offset = event.get_content_offset(self)
        if offset is None:
            return None
        return offset.y, offset.x

    def on_mouse_down(self, event: events.MouseDown) -> None:
        if event.button != 1 or self._snapshot is None:
            return
        self._drag_anchor = self._point(event)
        if self._drag_anchor is not None:
            self.capture_mouse()
            self.post_message(self.SelectionChanged(None, None))

    def on_mouse_move(self, event: events.MouseMove) -> None:
        if self._drag_anchor is None:
            return
        point = self._point(event)
        if point is not None:
            self.post_message(self.SelectionChanged(self._drag_anchor, point))

    def on_mouse_up(self, event: events.MouseUp) -> None:
        if self._drag_anchor is None:
            return
        self._drag_anchor = None
        self.release_mouse()

    # --- Actions (only reachable when not interactive) ---

    def action_history(self, lines: int) -> None:
        if self._snapshot is None:
            return
        limit = self._snapshot.history_size
        self.scroll_offset = max(0, min(limit, self.scroll_offset + lines))

    def action_history_page(self, pages: int) -> None:
        self.action_history(pages * max(1, self.size.height - 1))

    def action_history_top(self) -> None:
        if self._snapshot is not None:
            self.scroll_offset = self._snapshot.history_size

    def action_history_bottom(self) -> None:
        self.scroll_offset = 0

    def action_copy(self) -> None:
        if self._snapshot is None:
            return
        text = self._snapshot.selected_text(self.scroll_offset)
        if not text:
            self.notify("Nothing selected", severity="warning")
            return
        self.app.copy_to_clipboard(text)
        self.notify(f"Copied {len(text)} characters")
