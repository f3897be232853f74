"""Main Textual application for the jarvis dashboard."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.markup import escape
from rich.text import Text
from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.css.query import NoMatches
from textual.timer import Timer
from textual.widgets import Footer, Header, OptionList, Static
from textual.widgets.option_list import Option

from jarvis.config import JarvisConfig
from jarvis.discovery import CommandDescriptor
from jarvis.session.controller import SessionController, SessionState
from jarvis.session.wire import EventType, Wire, WireEvent
from jarvis.tui.terminal_view import TerminalView

logger = logging.getLogger(__name__)

_STATE_LABELS = {
    SessionState.IDLE: "[dim]idle[/dim]",
    SessionState.STARTING: "[yellow]starting[/yellow]",
    SessionState.RUNNING: "[green]running[/green]",
    SessionState.EXITED: "[red]exited[/red]",
}


class TUILogHandler(logging.Handler):
    """Logging handler that keeps the last log message for the status bar.

    Writing to stderr would corrupt the Textual display. Records may come
    from the pty reader thread, so the handler only stores the text; the
    app's tick timer picks it up.
    """

    def __init__(self) -> None:
        super().__init__()
        self.last_message: str = ""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.last_message = self.format(record)
        except Exception:
            self.handleError(record)


class JarvisApp(App):
    """jarvis: browse project commands and run them in an embedded terminal."""

    TITLE = "jarvis"
    # ctrl+p is a priority binding and would never reach a running child.
    ENABLE_COMMAND_PALETTE = False
    CSS = """
    #main-layout {
        layout: horizontal;
        height: 1fr;
    }

    #commands {
        width: 1fr;
        min-width: 30;
        max-width: 50;
        border: solid $secondary;
    }

    #session-pane {
        width: 3fr;
    }

    #session-header {
        height: 1;
        padding: 0 1;
        color: $text-muted;
    }

    #terminal {
        border: solid $primary;
    }

    #terminal:focus {
        border: solid $accent;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        background: $surface;
        color: $text-muted;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("x", "kill", "Kill"),
        Binding("t", "focus_terminal", "Terminal"),
        Binding("escape", "focus_commands", "Commands"),
    ]

    def __init__(
        self,
        root: Path,
        commands: list[CommandDescriptor],
        config: JarvisConfig | None = None,
        wire: Wire | None = None,
    ) -> None:
        super().__init__()
        self.root = root
        self.commands = commands
        self.config = config or JarvisConfig()
        self.wire = wire or Wire()
        self.controller = SessionController(self.config, wire=self.wire)
        self._current: CommandDescriptor | None = None
        self._log_handler: TUILogHandler | None = None
        self._tick_timer: Timer | None = None
        self._status_text = ""

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="main-layout"):
            yield OptionList(*self._options(), id="commands")
            with Vertical(id="session-pane"):
                yield Static(id="session-header")
                yield TerminalView(self.config.terminal.detach_key, id="terminal")
        yield Static(id="status-bar")
        yield Footer()

    def _options(self) -> list[Option]:
        options: list[Option] = []
        category = None
        for index, command in enumerate(self.commands):
            if command.category != category:
                category = command.category
                options.append(Option(Text(category, style="bold"), disabled=True))
            options.append(Option(Text(f"  {command.display_name}"), id=str(index)))
        return options

    def on_mount(self) -> None:
        self.sub_title = str(self.root)
        self._install_log_handler()
        self._listen_wire()
        self._tick_timer = self.set_interval(self.config.terminal.tick_interval, self._tick)
        self.query_one("#commands", OptionList).focus()
        if not self.commands:
            self._terminal.show_message(f"No commands found in {self.root}")
        self._update_header()
        self._update_status()

    def _install_log_handler(self) -> None:
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        self._log_handler = TUILogHandler()
        self._log_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root.addHandler(self._log_handler)

    @property
    def _terminal(self) -> TerminalView:
        return self.query_one("#terminal", TerminalView)

    # --- Session driving ---

    def _tick(self) -> None:
        state = self.controller.state
        if self.controller.tick() or state is not self.controller.state:
            self._refresh_terminal()
        self._update_status()

    def _refresh_terminal(self) -> None:
        snapshot = self.controller.snapshot()
        if snapshot is not None:
            self._terminal.update_snapshot(snapshot)

    def _start(self, command: CommandDescriptor) -> None:
        view = self._terminal
        rows, cols = view.size.height, view.size.width
        self._current = command
        view.scroll_offset = 0
        if self.controller.start(command.command, rows or None, cols or None):
            self._refresh_terminal()
        self._update_header()

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        if event.option_id is None:
            return
        self._start(self.commands[int(event.option_id)])

    def on_terminal_view_input(self, message: TerminalView.Input) -> None:
        self.controller.forward_input(message.event)

    def on_terminal_view_detach(self, message: TerminalView.Detach) -> None:
        self.action_focus_commands()

    def on_terminal_view_resized(self, message: TerminalView.Resized) -> None:
        if self.controller.resize(message.rows, message.cols):
            self._refresh_terminal()

    def on_terminal_view_selection_changed(self, message: TerminalView.SelectionChanged) -> None:
        if message.anchor is None or message.head is None:
            self.controller.clear_selection()
        else:
            self.controller.select(message.anchor, message.head)
        self._refresh_terminal()

    # --- Wire event loop ---

    @work(exclusive=True)
    async def _listen_wire(self) -> None:
        queue = self.wire.subscribe()
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                self._handle_event(event)
        finally:
            self.wire.unsubscribe(queue)

    def _handle_event(self, event: WireEvent) -> None:
        handlers = {
            EventType.SESSION_STARTING: self._on_starting,
            EventType.SESSION_RUNNING: self._on_running,
            EventType.SESSION_EXITED: self._on_exited,
            EventType.SPAWN_ERROR: self._on_spawn_error,
            EventType.TITLE: self._on_title,
            EventType.ERROR: self._on_error,
            EventType.STATUS: self._on_status,
        }
        handler = handlers.get(event.type)
        if handler:
            handler(event.data)
        self._update_header()

    def _on_starting(self, data: dict) -> None:
        logger.info("Starting %s", data.get("command", ""))

    def _on_running(self, data: dict) -> None:
        view = self._terminal
        view.interactive = True
        view.focus()

    def _on_exited(self, data: dict) -> None:
        self._terminal.interactive = False
        self._refresh_terminal()
        description = data.get("description", "exited")
        severity = "information" if data.get("exit_code") == 0 else "warning"
        self.notify(f"{self._label()} {description}", severity=severity)

    def _on_spawn_error(self, data: dict) -> None:
        reason = data.get("reason", "unknown error")
        self._terminal.interactive = False
        self._terminal.show_message(Text(f"Failed to start: {reason}", style="bold red"))
        self.notify(reason, title="Failed to start", severity="error")

    def _on_title(self, data: dict) -> None:
        self.title = f"jarvis - {data.get('title', '')}" if data.get("title") else "jarvis"

    def _on_error(self, data: dict) -> None:
        self.notify(data.get("error", "Unknown error"), title="Session error", severity="error")

    def _on_status(self, data: dict) -> None:
        logger.info(data.get("message", ""))

    # --- Header and status bar ---

    def _label(self) -> str:
        return self._current.display_name if self._current else ""

    def _update_header(self) -> None:
        try:
            header = self.query_one("#session-header", Static)
        except NoMatches:
            return
        state = self.controller.state
        parts = [_STATE_LABELS[state]]
        if self._current is not None:
            parts.append(f"[bold]{escape(self._label())}[/bold]")
            parts.append(f"[dim]{escape(self._current.command.shell_command)}[/dim]")
        header.update("  ".join(parts))

    def _update_status(self) -> None:
        parts = [f"{len(self.commands)} commands"]
        result = self.controller.result
        if self.controller.state is SessionState.RUNNING:
            parts.append(f"{self.controller.rows}x{self.controller.cols}")
            parts.append(f"{escape(self.config.terminal.detach_key)} detaches")
        elif result is not None:
            parts.append(escape(result.describe()))
        if self._log_handler and self._log_handler.last_message:
            last_log = self._log_handler.last_message
            if len(last_log) > 80:
                last_log = last_log[:77] + "..."
            parts.append(f"[dim]{escape(last_log)}[/dim]")
        text = " | ".join(parts)
        if text == self._status_text:
            return
        self._status_text = text
        try:
            self.query_one("#status-bar", Static).update(text)
        except NoMatches:
            return

    # --- Actions ---

    def action_kill(self) -> None:
        if self.controller.state is SessionState.RUNNING:
            self.controller.kill()

    def action_focus_terminal(self) -> None:
        self._terminal.focus()

    def action_focus_commands(self) -> None:
        self.query_one("#commands", OptionList).focus()

    async def action_quit(self) -> None:
        self.controller.kill()
        self.wire.close()
        self.exit()

    def on_unmount(self) -> None:
        self.controller.kill()
        if self._log_handler is not None:
            logging.getLogger().removeHandler(self._log_handler)
