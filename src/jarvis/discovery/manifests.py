"""JSON manifests that carry named scripts: package.json and devbox.json."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jarvis.discovery.base import (
    CommandDescriptor,
    Discoverer,
    ResolvedCommand,
    ScriptType,
    format_display_name,
    preview,
    quote,
)


def _load_object(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: expected a JSON object")
    return data


class NpmDiscoverer(Discoverer):
    """Entries of the ``scripts`` object in package.json, run with ``npm run``."""

    script_type = ScriptType.NPM
    filenames = ("package.json",)
    requires = "npm"

    def parse(self, path: Path, category: str) -> list[CommandDescriptor]:
        scripts = _load_object(path).get("scripts")
        if not isinstance(scripts, dict):
            return []
        directory = path.parent.resolve()
        commands = []
        for name in sorted(scripts):
            body = scripts[name]
            if not isinstance(body, str):
                continue
            commands.append(
                CommandDescriptor(
                    display_name=format_display_name(name),
                    command=ResolvedCommand(f"npm run {quote(name)}", directory),
                    category=category,
                    source=self.script_type,
                    annotations={"description": preview(f"npm run {name}", body)},
                    name=name,
                )
            )
        return commands


class DevboxDiscoverer(Discoverer):
    """``shell.scripts`` in devbox.json, run with ``devbox run``.

    A script is either one command string or a list of them.
    """

    script_type = ScriptType.DEVBOX
    filenames = ("devbox.json",)
    requires = "devbox"

    def parse(self, path: Path, category: str) -> list[CommandDescriptor]:
        shell = _load_object(path).get("shell")
        scripts = shell.get("scripts") if isinstance(shell, dict) else None
        if not isinstance(scripts, dict):
            return []
        directory = path.parent.resolve()
        commands = []
        for name in sorted(scripts):
            body = scripts[name]
            steps = [body] if isinstance(body, str) else [str(step) for step in body or []]
            commands.append(
                CommandDescriptor(
                    display_name=format_display_name(name),
                    command=ResolvedCommand(f"devbox run {quote(name)}", directory),
                    category=category,
                    source=self.script_type,
                    annotations={
                        "description": preview(f"devbox run {name}", " && ".join(steps))
                    },
                    name=name,
                )
            )
        return commands
