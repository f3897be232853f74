"""Terminal emulation: escape-sequence parsing, the screen grid, key encoding."""

from jarvis.terminal.cell import BLANK, Cell, CellFlags, Color
from jarvis.terminal.keys import BackspaceMode, InputForwarder, KeyEvent, PasteEvent
from jarvis.terminal.parser import EscapeParser, ParserState
from jarvis.terminal.screen import Cursor, Screen, ScreenSnapshot, Selection, TerminalModes

__all__ = [
    "BLANK",
    "BackspaceMode",
    "Cell",
    "CellFlags",
    "Color",
    "Cursor",
    "EscapeParser",
    "InputForwarder",
    "KeyEvent",
    "ParserState",
    "PasteEvent",
    "Screen",
    "ScreenSnapshot",
    "Selection",
    "TerminalModes",
]
