"""Build tools that describe their own targets: cargo, nx and terraform.

Unlike the task-runner files, these formats are too rich to parse by
hand, so the tool itself is asked (``cargo metadata``, ``nx graph``,
``terraform workspace list``). Each query runs with stdin closed and a
timeout; a failing query surfaces as ``ValueError`` so discovery skips
the file.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Any

from jarvis.discovery.base import (
    CommandDescriptor,
    Discoverer,
    ResolvedCommand,
    ScriptType,
    format_display_name,
    quote,
)

logger = logging.getLogger(__name__)

QUERY_TIMEOUT = 30.0

CARGO_EMOJI = {"bin": "📦", "example": "📖"}
NX_EMOJI = "🔷"
TERRAFORM_EMOJI = "🏗️"
TERRAFORM_TARGET_EMOJI = "🎯"
TERRAFORM_WORKSPACE_EMOJI = "📂"

TERRAFORM_COMMANDS = (
    ("init", "Initialize a Terraform working directory"),
    ("validate", "Validate the Terraform configuration files"),
    ("plan", "Show an execution plan for infrastructure changes"),
    ("apply", "Apply the planned infrastructure changes"),
    ("destroy", "Destroy all managed infrastructure"),
    ("fmt", "Format Terraform configuration files"),
)
TERRAFORM_TARGETABLE = (
    ("plan", "Plan changes for"),
    ("apply", "Apply changes to"),
    ("destroy", "Destroy"),
)

_TF_BLOCK = re.compile(r'^\s*(resource|data|module)\s+"([^"]+)"(?:\s+"([^"]+)")?')


def run_tool(argv: list[str], cwd: Path) -> str:
    """Run a query command and return its stdout.

    Raises:
        OSError: if the program cannot be started.
        ValueError: if it fails or times out.
    """
    logger.debug("Querying %s in %s", " ".join(argv), cwd)
    try:
        proc = subprocess.run(
            argv,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=QUERY_TIMEOUT,
            check=True,
        )
    except subprocess.SubprocessError as e:
        raise ValueError(f"{argv[0]} query failed: {e}") from e
    return proc.stdout.decode(errors="replace")


def _descriptor(
    discoverer: Discoverer,
    name: str,
    display_name: str,
    shell_command: str,
    directory: Path,
    category: str,
    description: str,
    emoji: str,
) -> CommandDescriptor:
    return CommandDescriptor(
        display_name=f"{emoji} {display_name}",
        command=ResolvedCommand(shell_command, directory),
        category=category,
        source=discoverer.script_type,
        annotations={"emoji": emoji, "description": description},
        name=name,
    )


# ---------------------------------------------------------------------------
# cargo
# ---------------------------------------------------------------------------


def cargo_targets(metadata: str) -> list[tuple[str, str]]:
    """``(kind, name)`` for every binary and example in ``cargo metadata`` output.

    Binaries come before examples, each group sorted by name. Library,
    test, bench and build-script targets are not runnable and are left out.
    """
    data = json.loads(metadata)
    packages = data.get("packages") if isinstance(data, dict) else None
    if not isinstance(packages, list):
        raise ValueError("cargo metadata: expected a 'packages' array")
    targets = []
    for package in packages:
        package_targets = package.get("targets") if isinstance(package, dict) else None
        for target in package_targets or []:
            if not isinstance(target, dict) or not isinstance(target.get("name"), str):
                continue
            name = target["name"]
            kinds = target.get("kind") or []
            if "bin" in kinds:
                targets.append(("bin", name))
            elif "example" in kinds:
                targets.append(("example", name))
    return sorted(targets, key=lambda t: (t[0] != "bin", t[1]))


class CargoDiscoverer(Discoverer):
    """Binary and example targets of a Cargo.toml, run with ``cargo run``."""

    script_type = ScriptType.CARGO
    filenames = ("Cargo.toml",)
    requires = "cargo"

    def parse(self, path: Path, category: str) -> list[CommandDescriptor]:
        path = path.resolve()
        metadata = run_tool(
            [
                "cargo",
                "metadata",
                "--format-version",
                "1",
                "--no-deps",
                "--manifest-path",
                str(path),
            ],
            path.parent,
        )
        commands = []
        for kind, name in cargo_targets(metadata):
            run = f"cargo run --{kind} {quote(name)} --manifest-path {quote(path)}"
            commands.append(
                _descriptor(
                    self,
                    name,
                    format_display_name(name),
                    run,
                    path.parent,
                    category,
                    f"cargo run --{kind} {name}",
                    CARGO_EMOJI[kind],
                )
            )
        return commands


# ---------------------------------------------------------------------------
# nx
# ---------------------------------------------------------------------------


def nx_command(workspace: Path) -> tuple[str, ...] | None:
    """How to invoke nx: the workspace-local copy through npx, else a global nx."""
    if (workspace / "node_modules" / ".bin" / "nx").exists() and shutil.which("npx"):
        return ("npx", "nx")
    if shutil.which("nx") is not None:
        return ("nx",)
    return None


def nx_targets(graph: str) -> list[tuple[str, str]]:
    """``(project, target)`` pairs from ``nx graph --file=stdout`` output."""
    data: Any = json.loads(graph)
    section = data.get("graph") if isinstance(data, dict) else None
    nodes = section.get("nodes") if isinstance(section, dict) else None
    if not isinstance(nodes, dict):
        return []
    pairs = []
    for project in sorted(nodes):
        node = nodes[project]
        node_data = node.get("data") if isinstance(node, dict) else None
        targets = node_data.get("targets") if isinstance(node_data, dict) else None
        if isinstance(targets, dict):
            pairs.extend((project, target) for target in sorted(targets))
    return pairs


class NxDiscoverer(Discoverer):
    """Project targets of an Nx workspace, run with ``nx run project:target``.

    Every project becomes its own category so identical target names
    (``build``, ``test``) stay apart.
    """

    script_type = ScriptType.NX
    filenames = ("nx.json",)
    requires = "nx"

    def available(self) -> bool:
        return shutil.which("nx") is not None or shutil.which("npx") is not None

    def parse(self, path: Path, category: str) -> list[CommandDescriptor]:
        workspace = path.parent.resolve()
        nx = nx_command(workspace)
        if nx is None:
            raise ValueError(f"{path}: nx is not installed in the workspace or on PATH")
        prefix = " ".join(nx)
        graph = run_tool([*nx, "graph", "--file=stdout"], workspace)
        commands = []
        for project, target in nx_targets(graph):
            qualified = f"{project}:{target}"
            commands.append(
                _descriptor(
                    self,
                    qualified,
                    format_display_name(target),
                    f"{prefix} run {quote(qualified)}",
                    workspace,
                    f"{category}:{project}",
                    f"nx run {qualified}",
                    NX_EMOJI,
                )
            )
        return commands


# ---------------------------------------------------------------------------
# terraform
# ---------------------------------------------------------------------------


def terraform_binary() -> str | None:
    """``terraform`` when installed, else OpenTofu's ``tofu``."""
    for name in ("terraform", "tofu"):
        if shutil.which(name) is not None:
            return name
    return None


def resource_addresses(content: str) -> list[str]:
    """Addresses of the ``resource``, ``data`` and ``module`` blocks in a .tf file."""
    addresses = []
    for line in content.splitlines():
        match = _TF_BLOCK.match(line)
        if not match:
            continue
        kind, first, second = match.groups()
        if kind == "module":
            addresses.append(f"module.{first}")
        elif second:
            prefix = "data." if kind == "data" else ""
            addresses.append(f"{prefix}{first}.{second}")
    return addresses


def workspace_names(output: str) -> list[str]:
    """Names from ``terraform workspace list``; the active one is starred."""
    names = []
    for line in output.splitlines():
        name = line.strip().removeprefix("* ").strip()
        if name:
            names.append(name)
    return names


class TerraformDiscoverer(Discoverer):
    """Terraform (or OpenTofu) commands for a directory of .tf files.

    A directory is handled once, through its first .tf file. Besides the
    common commands it offers a workspace switch when there is more than
    one workspace, and targeted plan/apply/destroy for every resource.
    """

    script_type = ScriptType.TERRAFORM
    suffix = ".tf"
    requires = "terraform"

    def matches(self, path: Path) -> bool:
        if path.suffix != self.suffix:
            return False
        return path == min(path.parent.glob(f"*{self.suffix}"))

    def available(self) -> bool:
        return terraform_binary() is not None

    def parse(self, path: Path, category: str) -> list[CommandDescriptor]:
        directory = path.parent.resolve()
        binary = terraform_binary() or "terraform"

        commands = [
            _descriptor(
                self,
                name,
                format_display_name(name),
                f"{binary} {name}",
                directory,
                category,
                description,
                TERRAFORM_EMOJI,
            )
            for name, description in TERRAFORM_COMMANDS
        ]

        workspaces: list[str] = []
        if terraform_binary() is not None:
            try:
                workspaces = workspace_names(run_tool([binary, "workspace", "list"], directory))
            except (OSError, ValueError) as e:
                # Not initialised yet; the common commands still apply.
                logger.debug("No terraform workspaces in %s: %s", directory, e)
        if len(workspaces) > 1:
            for workspace in workspaces:
                commands.append(
                    _descriptor(
                        self,
                        f"workspace select {workspace}",
                        f"Workspace: {format_display_name(workspace)}",
                        f"{binary} workspace select {quote(workspace)}",
                        directory,
                        category,
                        f"Switch to the '{workspace}' workspace",
                        TERRAFORM_WORKSPACE_EMOJI,
                    )
                )

        addresses: set[str] = set()
        for tf_file in directory.glob(f"*{self.suffix}"):
            addresses.update(resource_addresses(tf_file.read_text(errors="replace")))
        for address in sorted(addresses):
            for name, verb in TERRAFORM_TARGETABLE:
                commands.append(
                    _descriptor(
                        self,
                        f"{name} --target={address}",
                        f"{format_display_name(name)} --target={address}",
                        f"{binary} {name} {quote('--target=' + address)}",
                        directory,
                        category,
                        f"{verb} {address}",
                        TERRAFORM_TARGET_EMOJI,
                    )
                )
        return commands
