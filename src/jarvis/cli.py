"""CLI entry point for jarvis."""

from __future__ import annotations

import logging
import os
import shutil
from collections import defaultdict
from pathlib import Path

import typer

from jarvis.config import JarvisConfig
from jarvis.discovery import CommandDescriptor, ResolvedCommand, discover, format_display_name
from jarvis.terminal.screen import ScreenSnapshot

app = typer.Typer(
    name="jarvis",
    help="Discover and run the scripts, tasks and targets of a project in an embedded terminal.",
    no_args_is_help=True,
)

SPAWN_FAILED_EXIT = 127


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _discover(path: str, config: JarvisConfig) -> list[CommandDescriptor]:
    return discover(Path(path), depth=config.discovery_depth)


def find_command(commands: list[CommandDescriptor], name: str) -> CommandDescriptor | None:
    """Match by identifier first, then by display name (case-insensitive)."""
    for command in commands:
        if command.name == name:
            return command
    wanted = name.casefold()
    for command in commands:
        if wanted in (command.name.casefold(), format_display_name(command.name).casefold()):
            return command
    return None


def render_text(snapshot: ScreenSnapshot) -> str:
    """Scrollback plus visible screen as plain text, trailing blank rows dropped."""
    lines = ["".join(cell.char for cell in line).rstrip() for line in snapshot.scrollback]
    lines.extend(snapshot.row_text(row) for row in range(snapshot.rows))
    return "\n".join(lines).rstrip("\n")


@app.command("list")
def list_commands(
    path: str = typer.Argument(".", help="Project directory (or a single script file)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """List discovered commands, grouped by category."""
    setup_logging(verbose)
    config = JarvisConfig.load(config_file)
    commands = _discover(path, config)
    if not commands:
        typer.echo(f"No commands found in {os.path.abspath(path)}")
        raise typer.Exit(1)

    groups: dict[str, list[CommandDescriptor]] = defaultdict(list)
    for command in commands:
        groups[command.category].append(command)
    for category, members in groups.items():
        typer.echo(f"{category}:")
        for command in members:
            line = f"  {command.name:<24} {command.display_name} [{command.source.value}]"
            if command.description:
                line += f" - {command.description}"
            typer.echo(line)


@app.command()
def run(
    name: str | None = typer.Argument(None, help="Command to run (identifier or display name)."),
    path: str = typer.Argument(".", help="Project directory (or a single script file)."),
    command: str | None = typer.Option(
        None, "--command", "-e", help="Run this shell command instead of a discovered one."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Run one command headlessly and print its final screen."""
    from jarvis.session.controller import SessionController

    setup_logging(verbose)
    config = JarvisConfig.load(config_file)

    if command is not None:
        # With --command the only positional is the working directory.
        if name is not None and path == ".":
            path = name
        resolved = ResolvedCommand(command, Path(path).expanduser().resolve())
    elif name is not None:
        descriptor = find_command(_discover(path, config), name)
        if descriptor is None:
            typer.echo(f"Error: No command named {name!r} in {os.path.abspath(path)}", err=True)
            raise typer.Exit(1)
        resolved = descriptor.command
    else:
        typer.echo("Error: Give a command name or --command.", err=True)
        raise typer.Exit(2)

    size = shutil.get_terminal_size()
    controller = SessionController(config, rows=size.lines, cols=size.columns)
    if not controller.start(resolved):
        assert controller.spawn_error is not None
        typer.echo(f"Error: {controller.spawn_error.reason}", err=True)
        raise typer.Exit(SPAWN_FAILED_EXIT)

    try:
        result = controller.wait()
    except KeyboardInterrupt:
        controller.kill()
        result = controller.result

    snapshot = controller.snapshot()
    if snapshot is not None:
        typer.echo(render_text(snapshot))

    if result is None or (result.exit_code is None and result.terminated_by_signal is None):
        raise typer.Exit(1)
    if result.terminated_by_signal is not None:
        raise typer.Exit(128 + result.terminated_by_signal)
    raise typer.Exit(result.exit_code or 0)


@app.command()
def tui(
    path: str = typer.Argument(".", help="Project directory (or a single script file)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Browse and run commands in the interactive dashboard."""
    # No setup_logging() here: a stderr StreamHandler corrupts the Textual
    # display. The app installs its own handler that feeds the status bar.
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)

    config = JarvisConfig.load(config_file)
    root = Path(path).expanduser().resolve()
    if not root.exists():
        typer.echo(f"Error: Path not found: {root}", err=True)
        raise typer.Exit(1)

    from jarvis.session.wire import Wire
    from jarvis.tui.app import JarvisApp

    commands = _discover(path, config)
    tui_app = JarvisApp(root=root, commands=commands, config=config, wire=Wire())
    tui_app.run()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
