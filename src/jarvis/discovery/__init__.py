"""Command discovery: find runnable commands in a project directory.

Each supported file format has a discoverer. ``discover`` walks the root
and its immediate subdirectories (configurable depth) and asks every
discoverer that recognises a file for the commands it defines:

    project/
      Makefile            -> make targets
      package.json        -> npm scripts
      Cargo.toml          -> cargo binaries and examples (asks cargo)
      infra/*.tf          -> terraform commands, category "infra"
      scripts/deploy.sh   -> shell functions, category "scripts"

Files that cannot be read or parsed are logged and skipped.
"""

from __future__ import annotations

import logging
from pathlib import Path

from jarvis.discovery.base import (
    CommandDescriptor,
    Discoverer,
    ResolvedCommand,
    ScriptType,
    format_display_name,
    parse_annotations,
)
from jarvis.discovery.manifests import DevboxDiscoverer, NpmDiscoverer
from jarvis.discovery.runners import JustDiscoverer, MakeDiscoverer, TaskDiscoverer
from jarvis.discovery.scripts import BashDiscoverer
from jarvis.discovery.tools import CargoDiscoverer, NxDiscoverer, TerraformDiscoverer

logger = logging.getLogger(__name__)

SKIPPED_DIRS = frozenset({"node_modules", "__pycache__", "venv", "target", "dist", "build"})


def default_discoverers() -> list[Discoverer]:
    return [
        BashDiscoverer(),
        NpmDiscoverer(),
        DevboxDiscoverer(),
        MakeDiscoverer(),
        JustDiscoverer(),
        TaskDiscoverer(),
        CargoDiscoverer(),
        NxDiscoverer(),
        TerraformDiscoverer(),
    ]


def _category(path: Path, root: Path, script_type: ScriptType) -> str:
    if path.parent == root and script_type is ScriptType.BASH:
        return path.stem
    return path.parent.name or path.stem


def _candidate_files(root: Path, depth: int) -> list[Path]:
    files: list[Path] = []
    directories = [(root, 0)]
    while directories:
        directory, level = directories.pop(0)
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            logger.debug("Cannot list %s: %s", directory, e)
            continue
        for entry in entries:
            if entry.is_file():
                files.append(entry)
            elif (
                entry.is_dir()
                and level < depth
                and not entry.name.startswith(".")
                and entry.name not in SKIPPED_DIRS
            ):
                directories.append((entry, level + 1))
    return files


def discover(
    root: Path,
    depth: int = 1,
    check_tools: bool = True,
    discoverers: list[Discoverer] | None = None,
) -> list[CommandDescriptor]:
    """Return every command found under ``root``, in directory order.

    ``root`` may also be a single file. With ``check_tools``, formats whose
    runner (``make``, ``npm`` ...) is not on PATH are skipped.
    """
    root = Path(root).expanduser().resolve()
    discoverers = discoverers if discoverers is not None else default_discoverers()
    if check_tools:
        discoverers = [d for d in discoverers if d.available()]

    if root.is_file():
        files, base = [root], root.parent
    elif root.is_dir():
        files, base = _candidate_files(root, depth), root
    else:
        logger.warning("Discovery root does not exist: %s", root)
        return []

    commands: list[CommandDescriptor] = []
    for path in files:
        for discoverer in discoverers:
            if not discoverer.matches(path):
                continue
            category = _category(path, base, discoverer.script_type)
            try:
                found = discoverer.parse(path, category)
            except (OSError, ValueError) as e:
                logger.debug("Skipping %s: %s", path, e)
                continue
            logger.debug("%s: %d %s commands", path, len(found), discoverer.script_type.value)
            commands.extend(found)
    return commands


__all__ = [
    "CommandDescriptor",
    "Discoverer",
    "ResolvedCommand",
    "ScriptType",
    "default_discoverers",
    "discover",
    "format_display_name",
    "parse_annotations",
]
