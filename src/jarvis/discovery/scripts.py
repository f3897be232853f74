"""Shell script functions as commands."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from jarvis.discovery.base import (
    CommandDescriptor,
    Discoverer,
    ResolvedCommand,
    ScriptType,
    labelled,
    parse_annotations,
    quote,
)

logger = logging.getLogger(__name__)

# name() {   |   function name {   |   function name() {
_FUNCTION = re.compile(
    r"^\s*(?:function\s+([A-Za-z_][A-Za-z0-9_]*)\s*(?:\(\s*\))?"
    r"|([A-Za-z_][A-Za-z0-9_]*)\s*\(\s*\))\s*\{?\s*$"
)


def bash_command(script: Path, function: str) -> ResolvedCommand:
    """Source ``script`` from its own directory, then call ``function``."""
    directory = script.parent
    return ResolvedCommand(
        shell_command=f"cd {quote(directory)} && . {quote(script)} && {function}",
        working_directory=directory,
    )


class BashDiscoverer(Discoverer):
    """Public functions defined in ``*.sh`` files.

    Functions whose name starts with ``_`` are private helpers and are
    skipped, as are functions annotated with ``# @ignore``.
    """

    script_type = ScriptType.BASH
    suffix = ".sh"

    def parse(self, path: Path, category: str) -> list[CommandDescriptor]:
        lines = path.read_text(errors="replace").splitlines()
        commands: list[CommandDescriptor] = []
        seen: set[str] = set()
        for index, line in enumerate(lines):
            match = _FUNCTION.match(line)
            if not match:
                continue
            name = match.group(1) or match.group(2)
            if name.startswith("_") or name in seen:
                continue
            seen.add(name)
            annotations = parse_annotations(lines, index)
            if "ignore" in annotations:
                logger.debug("Skipping ignored function %s in %s", name, path)
                continue
            commands.append(
                CommandDescriptor(
                    display_name=labelled(name, annotations),
                    command=bash_command(path.resolve(), name),
                    category=category,
                    source=self.script_type,
                    annotations=annotations,
                    name=name,
                )
            )
        return commands
