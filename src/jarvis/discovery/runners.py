"""Task-runner files: Makefile targets, justfile recipes, Taskfile tasks.

Target names come from parsing the file itself; nothing is executed at
discovery time. Annotation comments (``# @emoji``, ``# @description``,
``# @ignore``) above a definition apply to it.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml

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

MAKEFILE_NAMES = ("Makefile", "makefile", "GNUmakefile")
JUSTFILE_NAMES = ("justfile", "Justfile", ".justfile")
TASKFILE_NAMES = (
    "Taskfile.yml",
    "taskfile.yml",
    "Taskfile.yaml",
    "taskfile.yaml",
    "Taskfile.dist.yml",
    "taskfile.dist.yml",
    "Taskfile.dist.yaml",
    "taskfile.dist.yaml",
)

_MAKE_TARGET = re.compile(r"^([A-Za-z_][A-Za-z0-9_-]*)\s*:(?!:?=)")
_JUST_RECIPE = re.compile(r"^@?([A-Za-z_][A-Za-z0-9_-]*)(?:\s+[^:]*)?:(?!=)")
_JUST_KEYWORDS = frozenset({"set", "alias", "export", "import", "mod", "if", "else"})
_TASK_KEY = re.compile(r"^\s+([A-Za-z_][A-Za-z0-9_:-]*):")


def _descriptor(
    runner: Discoverer,
    name: str,
    shell_command: str,
    path: Path,
    category: str,
    annotations: dict[str, str],
) -> CommandDescriptor:
    return CommandDescriptor(
        display_name=labelled(name, annotations),
        command=ResolvedCommand(shell_command, path.parent),
        category=category,
        source=runner.script_type,
        annotations=annotations,
        name=name,
    )


class MakeDiscoverer(Discoverer):
    """Explicit Makefile targets, run with ``make --file``.

    Special targets (``.PHONY`` ...) and variable assignments are skipped.
    A plain comment above a target serves as its description.
    """

    script_type = ScriptType.MAKE
    filenames = MAKEFILE_NAMES
    requires = "make"

    def parse(self, path: Path, category: str) -> list[CommandDescriptor]:
        path = path.resolve()
        lines = path.read_text(errors="replace").splitlines()
        commands = []
        seen: set[str] = set()
        for index, line in enumerate(lines):
            match = _MAKE_TARGET.match(line)
            if not match or match.group(1) in seen:
                continue
            name = match.group(1)
            seen.add(name)
            annotations = parse_annotations(lines, index, plain_fallback=True)
            if "ignore" in annotations:
                continue
            commands.append(
                _descriptor(
                    self,
                    name,
                    f"make --file {quote(path)} {quote(name)}",
                    path,
                    category,
                    annotations,
                )
            )
        return commands


class JustDiscoverer(Discoverer):
    """Public justfile recipes, run with ``just --justfile``."""

    script_type = ScriptType.JUST
    filenames = JUSTFILE_NAMES
    requires = "just"

    def parse(self, path: Path, category: str) -> list[CommandDescriptor]:
        path = path.resolve()
        lines = path.read_text(errors="replace").splitlines()
        commands = []
        seen: set[str] = set()
        for index, line in enumerate(lines):
            if not line or line[0] in " \t#":
                continue
            match = _JUST_RECIPE.match(line)
            if not match:
                continue
            name = match.group(1)
            if name in _JUST_KEYWORDS or name.startswith("_") or name in seen:
                continue
            if ":=" in line:
                continue
            seen.add(name)
            annotations = parse_annotations(lines, index)
            if "ignore" in annotations:
                continue
            commands.append(
                _descriptor(
                    self,
                    name,
                    f"just --justfile {quote(path)} {quote(name)}",
                    path,
                    category,
                    annotations,
                )
            )
        return commands


class TaskDiscoverer(Discoverer):
    """Tasks from a go-task Taskfile, run with ``task --taskfile``.

    The YAML is read with PyYAML; ``desc`` becomes the description and
    ``internal: true`` tasks are hidden. Annotation comments are matched
    to task keys by scanning the raw text.
    """

    script_type = ScriptType.TASK
    filenames = TASKFILE_NAMES
    requires = "task"

    def parse(self, path: Path, category: str) -> list[CommandDescriptor]:
        path = path.resolve()
        text = path.read_text(errors="replace")
        try:
            document = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"{path.name}: {e}") from e
        tasks = document.get("tasks") if isinstance(document, dict) else None
        if not isinstance(tasks, dict):
            return []

        lines = text.splitlines()
        comment_annotations: dict[str, dict[str, str]] = {}
        for index, line in enumerate(lines):
            match = _TASK_KEY.match(line)
            if match and match.group(1) in tasks:
                comment_annotations.setdefault(match.group(1), parse_annotations(lines, index))

        commands = []
        for name in sorted(tasks, key=str):
            body: Any = tasks[name]
            annotations = dict(comment_annotations.get(name, {}))
            if isinstance(body, dict):
                if body.get("internal"):
                    continue
                desc = body.get("desc") or body.get("summary")
                if desc and "description" not in annotations:
                    annotations["description"] = str(desc).strip()
            if "ignore" in annotations:
                continue
            commands.append(
                _descriptor(
                    self,
                    str(name),
                    f"task --taskfile {quote(path)} {quote(str(name))}",
                    path,
                    category,
                    annotations,
                )
            )
        return commands
