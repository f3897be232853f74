"""Cell and color primitives shared by the parser and the screen model."""

from __future__ import annotations

import enum
from dataclasses import dataclass

# None = terminal default, int = palette index 0-255, tuple = truecolor.
Color = int | tuple[int, int, int] | None


class CellFlags(enum.IntFlag):
    NONE = 0
    BOLD = enum.auto()
    DIM = enum.auto()
    ITALIC = enum.auto()
    UNDERLINE = enum.auto()
    BLINK = enum.auto()
    REVERSE = enum.auto()
    HIDDEN = enum.auto()
    STRIKE = enum.auto()
    WIDE = enum.auto()  # first column of a double-width glyph


@dataclass(frozen=True)
class Cell:
    """One display column.

    ``char`` is ``""`` for the second column of a wide glyph.
    """

    char: str = " "
    fg: Color = None
    bg: Color = None
    flags: CellFlags = CellFlags.NONE

    @property
    def is_continuation(self) -> bool:
        return self.char == ""


BLANK = Cell()
