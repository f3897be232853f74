"""Command descriptors and the base class for per-format discoverers."""

from __future__ import annotations

import enum
import logging
import re
import shlex
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

logger = logging.getLogger(__name__)

DESCRIPTION_PREVIEW = 60

_EMOJI = re.compile(r"^\s*#\s*@emoji\s+(.+)$")
_DESCRIPTION = re.compile(r"^\s*#\s*@description\s+(.+)$")
_IGNORE = re.compile(r"^\s*#\s*@ignore\s*$")
_COMMENT = re.compile(r"^\s*#")
_PLAIN_COMMENT = re.compile(r"^\s*#\s+(.+)$")


class ScriptType(enum.Enum):
    BASH = "bash"
    NPM = "npm"
    DEVBOX = "devbox"
    MAKE = "make"
    JUST = "just"
    TASK = "task"
    CARGO = "cargo"
    NX = "nx"
    TERRAFORM = "terraform"


@dataclass(frozen=True)
class ResolvedCommand:
    """A shell command line ready to run, and where to run it."""

    shell_command: str
    working_directory: Path
    env_overrides: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CommandDescriptor:
    """One runnable entry in the dashboard."""

    display_name: str
    command: ResolvedCommand
    category: str
    source: ScriptType
    annotations: dict[str, str] = field(default_factory=dict)
    name: str = ""

    @property
    def description(self) -> str:
        return self.annotations.get("description", "")

    @property
    def ignored(self) -> bool:
        return "ignore" in self.annotations


def format_display_name(name: str) -> str:
    """``"example_file"`` -> ``"Example File"``; ``_``, ``-`` and ``.`` split words."""
    words = re.sub(r"[_\-.]", " ", name).split()
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def preview(prefix: str, command: str) -> str:
    """``"npm run build - tsc -p ."``, truncated to a readable length."""
    if len(command) > DESCRIPTION_PREVIEW:
        command = command[: DESCRIPTION_PREVIEW - 3] + "..."
    return f"{prefix} - {command}"


def parse_annotations(
    lines: list[str], index: int, plain_fallback: bool = False
) -> dict[str, str]:
    """Read ``# @emoji``, ``# @description`` and ``# @ignore`` above ``lines[index]``.

    Only the unbroken block of comment lines directly above the definition
    counts. With ``plain_fallback``, an ordinary comment in that block is
    used as the description when no ``@description`` is given.
    """
    annotations: dict[str, str] = {}
    plain: str | None = None
    i = index - 1
    while i >= 0:
        line = lines[i]
        if not line.strip() or not _COMMENT.match(line):
            break
        if _IGNORE.match(line):
            annotations["ignore"] = "true"
        elif match := _EMOJI.match(line):
            annotations.setdefault("emoji", match.group(1).strip())
        elif match := _DESCRIPTION.match(line):
            annotations.setdefault("description", match.group(1).strip())
        elif match := _PLAIN_COMMENT.match(line):
            # Walking upwards: keep the comment nearest the definition.
            if plain is None:
                plain = match.group(1).strip()
        i -= 1
    if plain_fallback and plain and "description" not in annotations:
        annotations["description"] = plain
    return annotations


def labelled(name: str, annotations: dict[str, str], default_emoji: str = "") -> str:
    emoji = annotations.get("emoji", default_emoji)
    display = format_display_name(name)
    return f"{emoji} {display}" if emoji else display


def quote(path: Path | str) -> str:
    return shlex.quote(str(path))


class Discoverer(ABC):
    """Finds runnable commands in one kind of file.

    Subclasses declare which file names (or suffix) they read and, when
    the commands need an external runner, the runner's executable name.
    """

    script_type: ClassVar[ScriptType]
    filenames: ClassVar[tuple[str, ...]] = ()
    suffix: ClassVar[str] = ""
    requires: ClassVar[str | None] = None

    def matches(self, path: Path) -> bool:
        if path.name in self.filenames:
            return True
        return bool(self.suffix) and path.suffix == self.suffix

    def available(self) -> bool:
        return self.requires is None or shutil.which(self.requires) is not None

    @abstractmethod
    def parse(self, path: Path, category: str) -> list[CommandDescriptor]:
        """Return the commands defined in ``path``.

        Raises:
            OSError, ValueError: if the file cannot be read or parsed.
        """
