"""Escape-sequence parser: an explicit VT/xterm state machine.

The parser turns a raw pty byte stream into a list of screen actions.
It is incremental: a sequence (or a UTF-8 scalar) split across two reads
is completed by the second ``feed()``.

UTF-8 decoding happens first, through an incremental codec decoder, and
is independent of the state machine: the machine only ever sees whole
code points. Invalid bytes decode to U+FFFD and print as such.

Unknown or malformed sequences are swallowed. Every state either returns
to ``GROUND`` on its terminator or gives up after a fixed number of code
points, so arbitrary input can never wedge the parser.
"""

from __future__ import annotations

import codecs
import enum
import logging
import re

from jarvis.terminal.actions import (
    Action,
    Control,
    DeleteChars,
    DeleteLines,
    EraseChars,
    EraseInDisplay,
    EraseInLine,
    EraseMode,
    FullReset,
    Index,
    InsertChars,
    InsertLines,
    MoveCursor,
    Print,
    Report,
    ReportKind,
    ResetAttributes,
    RestoreCursor,
    ReverseIndex,
    SaveCursor,
    Scroll,
    SetBackground,
    SetCursor,
    SetFlags,
    SetForeground,
    SetMode,
    SetScrollRegion,
    SetTitle,
)
from jarvis.terminal.cell import CellFlags, Color

logger = logging.getLogger(__name__)

MAX_CSI_LENGTH = 256
MAX_STRING_LENGTH = 8192
MAX_PARAMS = 32
MAX_PARAM_VALUE = 65535

_ESC = "\x1b"
_BEL = "\x07"
_CAN = "\x18"
_SUB = "\x1a"
_EXECUTE = frozenset("\x07\x08\x09\x0a\x0b\x0c\x0d")
_PRIVATE_MARKERS = frozenset("<=>?")
_STRING_INTRODUCERS = frozenset("PX^_")  # DCS, SOS, PM, APC

# Anything that is neither C0, DEL nor C1.
_PRINTABLE_RUN = re.compile(r"[^\x00-\x1f\x7f-\x9f]+")

_SGR_SET = {
    1: CellFlags.BOLD,
    2: CellFlags.DIM,
    3: CellFlags.ITALIC,
    4: CellFlags.UNDERLINE,
    5: CellFlags.BLINK,
    6: CellFlags.BLINK,
    7: CellFlags.REVERSE,
    8: CellFlags.HIDDEN,
    9: CellFlags.STRIKE,
    21: CellFlags.UNDERLINE,  # double underline, drawn as single
}

_SGR_CLEAR = {
    22: CellFlags.BOLD | CellFlags.DIM,
    23: CellFlags.ITALIC,
    24: CellFlags.UNDERLINE,
    25: CellFlags.BLINK,
    27: CellFlags.REVERSE,
    28: CellFlags.HIDDEN,
    29: CellFlags.STRIKE,
}

Params = list[list[int | None]]


class ParserState(enum.Enum):
    GROUND = "ground"
    ESCAPE = "escape"
    CSI_ENTRY = "csi_entry"
    CSI_PARAM = "csi_param"
    OSC_STRING = "osc_string"
    DCS_IGNORE = "dcs_ignore"


def _split_params(raw: str) -> Params:
    """Split ``"38;2;1;2;3"`` / ``"38:2::1:2:3"`` into parameter groups."""
    if not raw:
        return []
    groups: Params = []
    for group in raw.split(";")[:MAX_PARAMS]:
        groups.append(
            [min(int(p), MAX_PARAM_VALUE) if p else None for p in group.split(":")]
        )
    return groups


def _arg(params: Params, index: int, default: int = 0) -> int:
    if index < len(params) and params[index][0] is not None:
        return params[index][0]  # type: ignore[return-value]
    return default


def _count(params: Params, index: int) -> int:
    """Counts and 1-indexed positions: missing or zero means 1."""
    return _arg(params, index, 1) or 1


def _clamp_byte(value: int | None) -> int:
    return max(0, min(255, value or 0))


def _extended_color(args: list[int | None]) -> tuple[bool, Color, int]:
    """Decode the tail of an SGR 38/48 parameter.

    Returns ``(valid, color, used)`` where ``used`` is how many values
    belong to the color.
    """
    if not args:
        return False, None, 0
    kind = args[0]
    if kind == 5 and len(args) >= 2:
        return True, _clamp_byte(args[1]), 2
    if kind == 2 and len(args) >= 4:
        r, g, b = (_clamp_byte(v) for v in args[1:4])
        return True, (r, g, b), 4
    return False, None, len(args)


class EscapeParser:
    """Incremental byte-stream → action decoder."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._state = ParserState.GROUND
        self._handlers = {
            ParserState.GROUND: self._ground,
            ParserState.ESCAPE: self._escape,
            ParserState.CSI_ENTRY: self._csi_entry,
            ParserState.CSI_PARAM: self._csi_param,
            ParserState.OSC_STRING: self._osc_string,
            ParserState.DCS_IGNORE: self._dcs_ignore,
        }
        self._actions: list[Action] = []
        self._clear()

    @property
    def state(self) -> ParserState:
        return self._state

    def feed(self, data: bytes) -> list[Action]:
        """Decode ``data`` and return the actions it completes."""
        text = self._decoder.decode(data)
        actions: list[Action] = []
        self._actions = actions
        pos = 0
        end = len(text)
        while pos < end:
            if self._state is ParserState.GROUND:
                match = _PRINTABLE_RUN.match(text, pos)
                if match:
                    actions.append(Print(match.group()))
                    pos = match.end()
                    continue
            self._handlers[self._state](text[pos])
            pos += 1
        return actions

    def reset(self) -> None:
        self._decoder.reset()
        self._state = ParserState.GROUND
        self._clear()

    # ------------------------------------------------------------------
    # Sequence bookkeeping
    # ------------------------------------------------------------------

    def _clear(self) -> None:
        self._params = ""
        self._private = ""
        self._intermediates = ""
        self._malformed = False
        self._length = 0
        self._string: list[str] = []

    def _transition(self, state: ParserState) -> None:
        if state in (ParserState.ESCAPE, ParserState.GROUND):
            self._clear()
        self._state = state

    def _emit(self, *actions: Action) -> None:
        self._actions.extend(actions)

    def _common(self, ch: str) -> bool:
        """Handle bytes that mean the same thing in every non-ground state.

        Returns True when the character was consumed.
        """
        if ch == _ESC:
            self._transition(ParserState.ESCAPE)
            return True
        if ch in (_CAN, _SUB):
            self._transition(ParserState.GROUND)
            return True
        return False

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    def _ground(self, ch: str) -> None:
        if ch == _ESC:
            self._transition(ParserState.ESCAPE)
        elif ch in _EXECUTE:
            self._emit(Control(ch))
        # Remaining C0, DEL and C1 controls are ignored.

    def _escape(self, ch: str) -> None:
        if self._common(ch):
            return
        if ch in _EXECUTE:
            self._emit(Control(ch))
            return
        code = ord(ch)
        if code < 0x20:
            return
        if 0x20 <= code <= 0x2F:
            self._intermediates += ch
            if len(self._intermediates) > 2:
                self._transition(ParserState.GROUND)
            return
        if self._intermediates:
            # Charset designation and friends: consumed, no effect.
            self._transition(ParserState.GROUND)
            return
        if ch == "[":
            self._transition(ParserState.CSI_ENTRY)
        elif ch == "]":
            self._transition(ParserState.OSC_STRING)
        elif ch in _STRING_INTRODUCERS:
            self._transition(ParserState.DCS_IGNORE)
        else:
            self._esc_dispatch(ch)
            self._transition(ParserState.GROUND)

    def _csi_entry(self, ch: str) -> None:
        if ch in _PRIVATE_MARKERS:
            self._private = ch
            self._length += 1
            self._state = ParserState.CSI_PARAM
            return
        self._state = ParserState.CSI_PARAM
        self._csi_param(ch)

    def _csi_param(self, ch: str) -> None:
        if self._common(ch):
            return
        if ch in _EXECUTE:
            self._emit(Control(ch))
            return
        code = ord(ch)
        if code < 0x20 or code == 0x7F:
            return
        self._length += 1
        if code > 0x7F or self._length > MAX_CSI_LENGTH:
            self._transition(ParserState.GROUND)
            return
        if ch.isdigit() or ch in ";:":
            if self._intermediates:
                self._malformed = True
            else:
                self._params += ch
        elif ch in _PRIVATE_MARKERS:
            self._malformed = True
        elif 0x20 <= code <= 0x2F:
            self._intermediates += ch
        else:
            if not self._malformed:
                self._csi_dispatch(ch)
            self._transition(ParserState.GROUND)

    def _osc_string(self, ch: str) -> None:
        if ch == _BEL:
            self._osc_dispatch()
            self._transition(ParserState.GROUND)
            return
        if ch == _ESC:
            # ESC \ (string terminator): dispatch now, the "\" is swallowed
            # by the escape state.
            self._osc_dispatch()
            self._transition(ParserState.ESCAPE)
            return
        if self._common(ch):
            return
        if ord(ch) < 0x20:
            return
        self._string.append(ch)
        if len(self._string) > MAX_STRING_LENGTH:
            logger.debug("Dropping oversized OSC string")
            self._transition(ParserState.GROUND)

    def _dcs_ignore(self, ch: str) -> None:
        if ch == _BEL:
            self._transition(ParserState.GROUND)
            return
        if self._common(ch):
            return
        self._length += 1
        if self._length > MAX_STRING_LENGTH:
            self._transition(ParserState.GROUND)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _esc_dispatch(self, ch: str) -> None:
        if ch == "7":
            self._emit(SaveCursor())
        elif ch == "8":
            self._emit(RestoreCursor())
        elif ch == "D":
            self._emit(Index())
        elif ch == "M":
            self._emit(ReverseIndex())
        elif ch == "E":
            self._emit(Control("\r"), Index())
        elif ch == "c":
            self._emit(FullReset())

    def _osc_dispatch(self) -> None:
        payload = "".join(self._string)
        code, _, text = payload.partition(";")
        if code in ("0", "2"):
            self._emit(SetTitle(text))

    def _csi_dispatch(self, final: str) -> None:
        if self._intermediates:
            return
        params = _split_params(self._params)

        if self._private:
            if self._private == "?" and final in "hl":
                for group in params:
                    if group[0] is not None:
                        self._emit(SetMode(group[0], final == "h", private=True))
            return

        if final == "A":
            self._emit(MoveCursor(rows=-_count(params, 0)))
        elif final in "Be":
            self._emit(MoveCursor(rows=_count(params, 0)))
        elif final in "Ca":
            self._emit(MoveCursor(cols=_count(params, 0)))
        elif final == "D":
            self._emit(MoveCursor(cols=-_count(params, 0)))
        elif final == "E":
            self._emit(MoveCursor(rows=_count(params, 0)), SetCursor(col=0))
        elif final == "F":
            self._emit(MoveCursor(rows=-_count(params, 0)), SetCursor(col=0))
        elif final in "G`":
            self._emit(SetCursor(col=_count(params, 0) - 1))
        elif final == "d":
            self._emit(SetCursor(row=_count(params, 0) - 1))
        elif final in "Hf":
            self._emit(SetCursor(row=_count(params, 0) - 1, col=_count(params, 1) - 1))
        elif final == "J":
            mode = _arg(params, 0)
            if mode <= EraseMode.SCROLLBACK:
                self._emit(EraseInDisplay(EraseMode(mode)))
        elif final == "K":
            mode = _arg(params, 0)
            if mode <= EraseMode.ALL:
                self._emit(EraseInLine(EraseMode(mode)))
        elif final == "L":
            self._emit(InsertLines(_count(params, 0)))
        elif final == "M":
            self._emit(DeleteLines(_count(params, 0)))
        elif final == "@":
            self._emit(InsertChars(_count(params, 0)))
        elif final == "P":
            self._emit(DeleteChars(_count(params, 0)))
        elif final == "X":
            self._emit(EraseChars(_count(params, 0)))
        elif final == "S":
            self._emit(Scroll(_count(params, 0)))
        elif final == "T":
            # With more than one parameter this is xterm mouse highlighting.
            if len(params) <= 1:
                self._emit(Scroll(-_count(params, 0)))
        elif final == "m":
            self._sgr(params)
        elif final == "r":
            bottom = _arg(params, 1) or None
            self._emit(SetScrollRegion(top=_count(params, 0) - 1, bottom=bottom))
        elif final == "s":
            if not params:
                self._emit(SaveCursor())
        elif final == "u":
            self._emit(RestoreCursor())
        elif final in "hl":
            for group in params:
                if group[0] is not None:
                    self._emit(SetMode(group[0], final == "h"))
        elif final == "n":
            kind = _arg(params, 0)
            if kind == 5:
                self._emit(Report(ReportKind.STATUS))
            elif kind == 6:
                self._emit(Report(ReportKind.CURSOR_POSITION))
        elif final == "c":
            if _arg(params, 0) == 0:
                self._emit(Report(ReportKind.DEVICE_ATTRIBUTES))

    def _sgr(self, params: Params) -> None:
        if not params:
            self._emit(ResetAttributes())
            return
        index = 0
        while index < len(params):
            group = params[index]
            code = group[0] or 0
            index += 1
            if code in (38, 48, 58):
                if len(group) > 1:
                    args = group[1:]
                    # 38:2:<colorspace>:r:g:b carries an extra id slot.
                    if args[0] == 2 and len(args) >= 5:
                        args = [2, *args[2:5]]
                    valid, color, _ = _extended_color(args)
                else:
                    tail = [g[0] for g in params[index:]]
                    valid, color, used = _extended_color(tail)
                    index += used
                if not valid:
                    continue
                if code == 38:
                    self._emit(SetForeground(color))
                elif code == 48:
                    self._emit(SetBackground(color))
            elif code == 0:
                self._emit(ResetAttributes())
            elif code in _SGR_SET:
                self._emit(SetFlags(_SGR_SET[code]))
            elif code in _SGR_CLEAR:
                self._emit(SetFlags(_SGR_CLEAR[code], enabled=False))
            elif 30 <= code <= 37:
                self._emit(SetForeground(code - 30))
            elif code == 39:
                self._emit(SetForeground(None))
            elif 40 <= code <= 47:
                self._emit(SetBackground(code - 40))
            elif code == 49:
                self._emit(SetBackground(None))
            elif 90 <= code <= 97:
                self._emit(SetForeground(code - 90 + 8))
            elif 100 <= code <= 107:
                self._emit(SetBackground(code - 100 + 8))
