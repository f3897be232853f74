"""Tests for the screen model."""

from __future__ import annotations

import random

import pytest

from jarvis.terminal.actions import SetTitle
from jarvis.terminal.cell import CellFlags
from jarvis.terminal.parser import MAX_STRING_LENGTH, EscapeParser, ParserState
from jarvis.terminal.screen import Screen, Selection


def make_screen(rows: int = 5, cols: int = 10, scrollback: int = 100) -> Screen:
    return Screen(rows, cols, scrollback=scrollback)


def feed(screen: Screen, data: str | bytes) -> Screen:
    if isinstance(data, str):
        data = data.encode()
    screen.apply_all(EscapeParser().feed(data))
    return screen


def rows_text(screen: Screen) -> list[str]:
    snap = screen.snapshot()
    return [snap.row_text(row) for row in range(snap.rows)]


def history_text(screen: Screen) -> list[str]:
    return ["".join(cell.char for cell in line).rstrip() for line in screen.scrollback]


# ---------------------------------------------------------------------------
# Printing and wrapping
# ---------------------------------------------------------------------------


class TestPrinting:
    def test_print_and_newline(self) -> None:
        screen = feed(make_screen(), "hi\r\nthere")
        assert rows_text(screen)[:2] == ["hi", "there"]
        assert (screen.cursor.row, screen.cursor.col) == (1, 5)

    def test_rejects_empty_size(self) -> None:
        with pytest.raises(ValueError):
            Screen(0, 10)

    def test_pending_wrap_at_last_column(self) -> None:
        screen = feed(make_screen(cols=5), "abcde")
        assert (screen.cursor.row, screen.cursor.col) == (0, 4)
        feed(screen, "f")
        assert rows_text(screen)[:2] == ["abcde", "f"]

    def test_carriage_return_cancels_pending_wrap(self) -> None:
        screen = feed(make_screen(cols=5), "abcde\rX")
        assert rows_text(screen)[:2] == ["Xbcde", ""]

    def test_no_wrap_overwrites_last_column(self) -> None:
        screen = feed(make_screen(cols=5), "\x1b[?7labcdefg")
        assert rows_text(screen)[0] == "abcdg"
        assert screen.cursor.row == 0

    def test_tab_stops(self) -> None:
        screen = feed(make_screen(cols=20), "a\tb")
        assert screen.snapshot().lines[0][8].char == "b"

    def test_tab_clamps_to_last_column(self) -> None:
        screen = feed(make_screen(cols=10), "\x1b[1;9H\t")
        assert screen.cursor.col == 9

    def test_backspace(self) -> None:
        screen = feed(make_screen(), "abc\b\bX")
        assert rows_text(screen)[0] == "aXc"

    def test_attributes_are_applied(self) -> None:
        screen = feed(make_screen(), "\x1b[1;31mA\x1b[0mB")
        a, b = screen.snapshot().lines[0][:2]
        assert a.flags & CellFlags.BOLD and a.fg == 1
        assert b.flags == CellFlags.NONE and b.fg is None

    def test_wide_glyph_occupies_two_cells(self) -> None:
        screen = feed(make_screen(), "中x")
        first, second, third = screen.snapshot().lines[0][:3]
        assert first.char == "中" and first.flags & CellFlags.WIDE
        assert second.is_continuation
        assert third.char == "x"
        assert screen.cursor.col == 3

    def test_wide_glyph_wraps_at_last_column(self) -> None:
        screen = feed(make_screen(cols=5), "abcd中")
        assert rows_text(screen)[:2] == ["abcd", "中"]

    def test_overwriting_half_of_wide_glyph_blanks_the_other(self) -> None:
        screen = feed(make_screen(), "中\x1b[1;2Hx")
        line = screen.snapshot().lines[0]
        assert line[0].char == " "
        assert line[1].char == "x"

    def test_combining_mark_joins_previous_cell(self) -> None:
        screen = feed(make_screen(), "e\u0301x")
        line = screen.snapshot().lines[0]
        assert line[0].char == "e\u0301"
        assert line[1].char == "x"


# ---------------------------------------------------------------------------
# Scrolling and scrollback
# ---------------------------------------------------------------------------


class TestScrolling:
    def test_linefeed_at_bottom_scrolls_into_history(self) -> None:
        screen = feed(make_screen(rows=3), "1\r\n2\r\n3\r\n4")
        assert rows_text(screen) == ["2", "3", "4"]
        assert history_text(screen) == ["1"]

    def test_scrollback_is_bounded(self) -> None:
        screen = make_screen(rows=2, scrollback=3)
        feed(screen, "\r\n".join(str(i) for i in range(10)))
        assert history_text(screen) == ["5", "6", "7"]
        assert screen.scrollback_capacity == 3

    def test_scroll_region_keeps_outside_rows(self) -> None:
        screen = feed(make_screen(rows=4), "top\x1b[2;3r\x1b[2;1Ha\r\nb\r\nc")
        assert rows_text(screen) == ["top", "b", "c", ""]
        # Lines leaving a region that does not start at the top are lost.
        assert history_text(screen) == []

    def test_reverse_index_at_top_scrolls_down(self) -> None:
        screen = feed(make_screen(rows=3), "a\r\nb\x1b[H\x1bM")
        assert rows_text(screen) == ["", "a", "b"]

    def test_insert_and_delete_lines(self) -> None:
        screen = feed(make_screen(rows=4), "1\r\n2\r\n3\r\n4\x1b[2;1H\x1b[L")
        assert rows_text(screen) == ["1", "", "2", "3"]
        feed(screen, "\x1b[2M")
        assert rows_text(screen) == ["1", "3", "", ""]

    def test_erase_scrollback(self) -> None:
        screen = feed(make_screen(rows=2), "1\r\n2\r\n3")
        assert screen.scrollback
        feed(screen, "\x1b[3J")
        assert not screen.scrollback

    def test_scroll_up_uses_pen_background(self) -> None:
        screen = feed(make_screen(rows=2), "\x1b[44m\x1b[S")
        assert screen.snapshot().lines[1][0].bg == 4


# ---------------------------------------------------------------------------
# Editing
# ---------------------------------------------------------------------------


class TestEditing:
    def test_erase_in_line(self) -> None:
        screen = feed(make_screen(), "abcdef\x1b[1;3H\x1b[K")
        assert rows_text(screen)[0] == "ab"
        feed(screen, "\x1b[1;2H\x1b[1K")
        assert rows_text(screen)[0] == ""

    def test_erase_display_below(self) -> None:
        screen = feed(make_screen(rows=3), "aaa\r\nbbb\r\nccc\x1b[2;2H\x1b[J")
        assert rows_text(screen) == ["aaa", "b", ""]

    def test_erase_display_all_keeps_cursor(self) -> None:
        screen = feed(make_screen(), "abc\x1b[2J")
        assert rows_text(screen)[0] == ""
        assert screen.cursor.col == 3

    def test_insert_and_delete_chars(self) -> None:
        screen = feed(make_screen(), "abcdef\x1b[1;2H\x1b[2@")
        assert rows_text(screen)[0] == "a  bcdef"
        feed(screen, "\x1b[3P")
        assert rows_text(screen)[0] == "acdef"

    def test_insert_chars_truncates_at_edge(self) -> None:
        screen = feed(make_screen(cols=5), "abcde\x1b[1;1H\x1b[2@")
        assert rows_text(screen)[0] == "  abc"

    def test_erase_chars(self) -> None:
        screen = feed(make_screen(), "abcdef\x1b[1;2H\x1b[2X")
        assert rows_text(screen)[0] == "a  def"


# ---------------------------------------------------------------------------
# Cursor
# ---------------------------------------------------------------------------


class TestCursor:
    def test_movement_is_clamped(self) -> None:
        screen = feed(make_screen(rows=5, cols=10), "\x1b[99B\x1b[99C")
        assert (screen.cursor.row, screen.cursor.col) == (4, 9)
        feed(screen, "\x1b[99A\x1b[99D")
        assert (screen.cursor.row, screen.cursor.col) == (0, 0)

    def test_position_is_clamped(self) -> None:
        screen = feed(make_screen(rows=5, cols=10), "\x1b[50;50H")
        assert (screen.cursor.row, screen.cursor.col) == (4, 9)

    def test_save_and_restore_includes_pen(self) -> None:
        screen = feed(make_screen(), "\x1b[2;3H\x1b[31m\x1b7\x1b[H\x1b[0m\x1b8X")
        cell = screen.snapshot().lines[1][2]
        assert cell.char == "X" and cell.fg == 1

    def test_hide_cursor(self) -> None:
        screen = feed(make_screen(), "\x1b[?25l")
        assert screen.snapshot().cursor.visible is False

    def test_cursor_invariant_after_any_sequence(self) -> None:
        screen = feed(make_screen(rows=3, cols=4), "\x1b[2;4r\x1b[9L\x1b[9M\x1b[9T\x1b[9S\x1b[999;999H中中中")
        assert 0 <= screen.cursor.row < 3
        assert 0 <= screen.cursor.col < 4
        assert all(len(line) == 4 for line in screen.snapshot().lines)


# ---------------------------------------------------------------------------
# Modes, alternate screen, replies
# ---------------------------------------------------------------------------


class TestModes:
    def test_modes(self) -> None:
        screen = feed(make_screen(), "\x1b[?1h\x1b[?2004h")
        assert screen.modes.application_cursor
        assert screen.modes.bracketed_paste
        feed(screen, "\x1b[?1l\x1b[?2004l")
        assert not screen.modes.application_cursor
        assert not screen.modes.bracketed_paste

    def test_ansi_modes_are_ignored(self) -> None:
        screen = feed(make_screen(), "\x1b[7l")
        assert screen.modes.auto_wrap

    def test_alternate_screen_restores_primary(self) -> None:
        screen = feed(make_screen(rows=3), "shell\x1b[?1049h\x1b[Hfull screen app")
        assert screen.alternate_screen
        assert rows_text(screen)[0] == "full scree"
        feed(screen, "\x1b[?1049l")
        assert not screen.alternate_screen
        assert rows_text(screen)[0] == "shell"
        assert (screen.cursor.row, screen.cursor.col) == (0, 5)

    def test_alternate_screen_does_not_feed_history(self) -> None:
        screen = feed(make_screen(rows=2), "\x1b[?1049h" + "x\r\n" * 10)
        assert not screen.scrollback

    def test_device_status_replies(self) -> None:
        screen = feed(make_screen(), "\x1b[5n\x1b[3;4H\x1b[6n\x1b[c")
        assert screen.take_replies() == b"\x1b[0n\x1b[3;4R\x1b[?1;2c"
        assert screen.take_replies() == b""

    def test_title(self) -> None:
        screen = feed(make_screen(), "\x1b]0;build\x07")
        assert screen.title == "build"
        assert screen.snapshot().title == "build"

    def test_full_reset(self) -> None:
        screen = feed(make_screen(), "\x1b]0;t\x07\x1b[31mabc\x1b[?2004h\x1bc")
        assert rows_text(screen)[0] == ""
        assert screen.title == ""
        assert not screen.modes.bracketed_paste
        assert screen.pen.fg is None

    def test_generation_advances(self) -> None:
        screen = make_screen()
        before = screen.generation
        screen.apply(SetTitle("x"))
        assert screen.generation > before


# ---------------------------------------------------------------------------
# Resize
# ---------------------------------------------------------------------------


class TestResize:
    def test_grow_pads_with_blanks(self) -> None:
        screen = feed(make_screen(rows=2, cols=3), "abc")
        screen.resize(4, 6)
        snap = screen.snapshot()
        assert (snap.rows, snap.cols) == (4, 6)
        assert all(len(line) == 6 for line in snap.lines)
        assert snap.row_text(0) == "abc"

    def test_shrink_keeps_cursor_row_and_archives(self) -> None:
        screen = feed(make_screen(rows=4), "1\r\n2\r\n3\r\n4")
        screen.resize(2, 10)
        assert rows_text(screen) == ["3", "4"]
        assert history_text(screen) == ["1", "2"]
        assert screen.cursor.row == 1

    def test_shrink_columns_truncates(self) -> None:
        screen = feed(make_screen(cols=10), "abcdefghij")
        screen.resize(5, 4)
        assert rows_text(screen)[0] == "abcd"
        assert screen.cursor.col == 3

    def test_resize_clears_selection(self) -> None:
        screen = make_screen()
        screen.select((0, 0), (1, 1))
        screen.resize(6, 10)
        assert screen.selection is None

    def test_resize_on_alternate_screen_keeps_primary(self) -> None:
        screen = feed(make_screen(rows=3), "shell\x1b[?1049h")
        screen.resize(5, 12)
        feed(screen, "\x1b[?1049l")
        assert rows_text(screen)[0] == "shell"
        assert len(screen.snapshot().lines) == 5


# ---------------------------------------------------------------------------
# Snapshots and selection
# ---------------------------------------------------------------------------


class TestSnapshot:
    def test_snapshot_is_independent(self) -> None:
        screen = feed(make_screen(), "abc")
        snap = screen.snapshot()
        feed(screen, "\rxyz")
        assert snap.row_text(0) == "abc"

    def test_view_scrolled_into_history(self) -> None:
        screen = feed(make_screen(rows=2), "1\r\n2\r\n3\r\n4")
        snap = screen.snapshot()
        assert snap.history_size == 2
        assert ["".join(c.char for c in line).strip() for line in snap.view(1)] == ["2", "3"]
        assert snap.view(99) == snap.view(2)
        assert snap.history_line(2, 0)[0].char == "1"

    def test_text(self) -> None:
        screen = feed(make_screen(rows=4), "a\r\nb")
        assert screen.snapshot().text() == "a\nb"

    def test_selection_contains(self) -> None:
        selection = Selection((2, 3), (1, 5))
        assert selection.ordered() == ((1, 5), (2, 3))
        assert selection.contains(1, 9)
        assert selection.contains(2, 0)
        assert not selection.contains(1, 4)
        assert not selection.contains(2, 4)

    def test_selected_text(self) -> None:
        screen = feed(make_screen(), "hello\r\nworld")
        screen.select((0, 1), (1, 2))
        snap = screen.snapshot()
        assert snap.selected_text() == "ello\nwor"
        assert snap.is_selected(0, 1)
        assert not snap.is_selected(0, 0)

    def test_selection_points_are_clamped(self) -> None:
        screen = make_screen(rows=5, cols=10)
        screen.select((-3, 50), (99, -1))
        assert screen.selection == Selection((0, 9), (4, 0))

    def test_clear_selection(self) -> None:
        screen = make_screen()
        screen.select((0, 0), (0, 3))
        screen.clear_selection()
        assert screen.snapshot().selection is None


# ---------------------------------------------------------------------------
# Arbitrary input
# ---------------------------------------------------------------------------

FRAGMENTS = [
    b"\x1b", b"\x1b[", b"\x1b[?", b"\x1b]0;", b"\x1bP", b"\x1b_", b"\x1b\\", b"\x07",
    b"\x18", b"\x1a", b";", b":", b"38;2;", b"48;5;", b"m", b"\x9b", b"\xe4\xb8", b"\xad",
    b"\xff\xfe", b"\xc3", b"\r\n", b"\n", b"\x08", b"\t", "中".encode(), "é".encode(),
    b"\x1b[?1049h", b"\x1b[?1049l", b"\x1b[?47h", b"\x1b[2;3r", b"\x1b[r", b"\x1b[9L",
    b"\x1b[9M", b"\x1b[9@", b"\x1b[9P", b"\x1b[999;999H", b"\x1b[9S", b"\x1b[9T", b"\x1bM",
    b"\x1bD", b"\x1bE", b"\x1b7", b"\x1b8", b"\x1bc", b"\x1b[6n", b"\x1b[2J", b"\x1b[3J",
    b"\x1b[?7l", b"\x1b[?7h", b"\x1b[65535;65535H", b"\x1b(B",
]


def random_chunk(rng: random.Random) -> bytes:
    parts = []
    for _ in range(rng.randint(1, 8)):
        if rng.random() < 0.6:
            parts.append(rng.choice(FRAGMENTS))
        else:
            parts.append(bytes(rng.randrange(256) for _ in range(rng.randint(1, 12))))
    return b"".join(parts)


def assert_consistent(screen: Screen) -> None:
    snap = screen.snapshot()
    assert 0 <= screen.cursor.row < screen.rows
    assert 0 <= screen.cursor.col < screen.cols
    assert len(snap.lines) == screen.rows
    assert all(len(line) == screen.cols for line in snap.lines)
    assert len(screen.scrollback) <= screen.scrollback_capacity


class TestArbitraryInput:
    @pytest.mark.parametrize("seed", range(25))
    def test_invariants_hold_for_random_bytes(self, seed: int) -> None:
        rng = random.Random(seed)
        screen = make_screen(rows=4, cols=6, scrollback=5)
        parser = EscapeParser()
        for _ in range(150):
            screen.apply_all(parser.feed(random_chunk(rng)))
            assert_consistent(screen)
            if rng.random() < 0.1:
                screen.resize(rng.randint(1, 8), rng.randint(1, 12))
                assert_consistent(screen)

        parser.feed(b"\x1b]0;" + b"a" * (MAX_STRING_LENGTH + 1))
        assert parser.state is ParserState.GROUND
