"""Keyboard and paste encoding for the child's pty.

Key names follow Textual's conventions (``"up"``, ``"ctrl+c"``,
``"shift+tab"``, ``"ctrl+right_square_bracket"`` ...). Encodings follow
xterm.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jarvis.pty.session import PtySession
    from jarvis.terminal.screen import TerminalModes

logger = logging.getLogger(__name__)

ESC = "\x1b"
CSI = ESC + "["
SS3 = ESC + "O"

PASTE_START = CSI + "200~"
PASTE_END = CSI + "201~"

# Keys that take the "CSI 1;<mod> X" form when modified.
_CURSOR_KEYS = {
    "up": "A",
    "down": "B",
    "right": "C",
    "left": "D",
    "home": "H",
    "end": "F",
}
_APP_CURSOR_KEYS = {"up", "down", "right", "left", "home", "end"}

_SS3_FUNCTION_KEYS = {"f1": "P", "f2": "Q", "f3": "R", "f4": "S"}

# Keys that take the "CSI <n>;<mod> ~" form.
_TILDE_KEYS = {
    "insert": 2,
    "delete": 3,
    "pageup": 5,
    "pagedown": 6,
    "f5": 15,
    "f6": 17,
    "f7": 18,
    "f8": 19,
    "f9": 20,
    "f10": 21,
    "f11": 23,
    "f12": 24,
}

# ctrl + punctuation, by Textual's key name.
_CTRL_SYMBOLS = {
    "space": 0x00,
    "at": 0x00,
    "left_square_bracket": 0x1B,
    "backslash": 0x1C,
    "right_square_bracket": 0x1D,
    "circumflex_accent": 0x1E,
    "underscore": 0x1F,
}

_PLAIN_KEYS = {
    "enter": "\r",
    "tab": "\t",
    "escape": ESC,
    "space": " ",
}

_MODIFIER_BITS = {"shift": 1, "alt": 2, "meta": 2, "ctrl": 4}


class BackspaceMode(str, enum.Enum):
    """Byte sent for the Backspace key."""

    DEL = "del"  # 0x7f, xterm default
    BS = "bs"  # 0x08


@dataclass(frozen=True)
class KeyEvent:
    key: str
    character: str | None = None


@dataclass(frozen=True)
class PasteEvent:
    text: str


InputEvent = KeyEvent | PasteEvent


def split_key(key: str) -> tuple[frozenset[str], str]:
    """Split ``"ctrl+shift+up"`` into ``({"ctrl", "shift"}, "up")``."""
    if len(key) > 1 and "+" in key:
        *mods, base = key.split("+")
        if base and all(mod in _MODIFIER_BITS for mod in mods):
            return frozenset(mods), base
    return frozenset(), key


def _modifier_param(mods: frozenset[str]) -> int:
    return 1 + sum({_MODIFIER_BITS[mod] for mod in mods})


class InputForwarder:
    """Turns UI input events into the bytes a program on a tty expects."""

    def __init__(self, backspace: BackspaceMode = BackspaceMode.DEL) -> None:
        self.backspace = BackspaceMode(backspace)

    def encode_key(self, event: KeyEvent, application_cursor: bool = False) -> bytes:
        mods, base = split_key(event.key)
        modifier = _modifier_param(mods)

        if base in _CURSOR_KEYS:
            final = _CURSOR_KEYS[base]
            if modifier > 1:
                return f"{CSI}1;{modifier}{final}".encode()
            if application_cursor and base in _APP_CURSOR_KEYS:
                return f"{SS3}{final}".encode()
            return f"{CSI}{final}".encode()

        if base in _SS3_FUNCTION_KEYS:
            final = _SS3_FUNCTION_KEYS[base]
            if modifier > 1:
                return f"{CSI}1;{modifier}{final}".encode()
            return f"{SS3}{final}".encode()

        if base in _TILDE_KEYS:
            number = _TILDE_KEYS[base]
            if modifier > 1:
                return f"{CSI}{number};{modifier}~".encode()
            return f"{CSI}{number}~".encode()

        prefix = b""
        if "alt" in mods or "meta" in mods:
            prefix = ESC.encode()
            mods = mods - {"alt", "meta"}

        body = self._encode_plain(mods, base, event.character)
        if not body:
            logger.debug("No encoding for key %r", event.key)
            return b""
        return prefix + body

    def _encode_plain(self, mods: frozenset[str], base: str, character: str | None) -> bytes:
        if base == "tab" and "shift" in mods:
            return f"{CSI}Z".encode()
        if base == "backspace":
            if "ctrl" in mods or self.backspace is BackspaceMode.BS:
                return b"\x08"
            return b"\x7f"
        if "ctrl" in mods:
            if len(base) == 1 and base.isascii() and base.isalpha():
                return bytes([ord(base.lower()) & 0x1F])
            if base in _CTRL_SYMBOLS:
                return bytes([_CTRL_SYMBOLS[base]])
            return b""
        if base in _PLAIN_KEYS:
            return _PLAIN_KEYS[base].encode()
        if character and character.isprintable():
            return character.encode("utf-8")
        if len(base) == 1 and base.isprintable():
            return base.encode("utf-8")
        return b""

    def encode_paste(self, event: PasteEvent, bracketed: bool = False) -> bytes:
        text = event.text.replace("\r\n", "\r").replace("\n", "\r")
        if bracketed:
            text = PASTE_START + text.replace(PASTE_END, "") + PASTE_END
        return text.encode("utf-8")

    def encode(self, event: InputEvent, modes: TerminalModes) -> bytes:
        if isinstance(event, PasteEvent):
            return self.encode_paste(event, bracketed=modes.bracketed_paste)
        return self.encode_key(event, application_cursor=modes.application_cursor)

    def forward(self, event: InputEvent, session: PtySession, modes: TerminalModes) -> bool:
        """Write ``event`` to ``session``; returns False when it encodes to nothing."""
        data = self.encode(event, modes)
        if not data:
            return False
        session.write(data)
        return True
