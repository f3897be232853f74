"""Configuration: Pydantic models for jarvis settings."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

from jarvis.terminal.keys import BackspaceMode

DEFAULT_CONFIG_PATH = Path("~/.config/jarvis/config.json")


class TerminalConfig(BaseModel):
    """Embedded terminal configuration."""

    shell: str | None = Field(
        default=None,
        description="Shell that runs commands (default: bash from PATH, else /bin/sh)",
    )
    term: str = Field(default="xterm-256color", description="TERM value given to children")
    scrollback_lines: int = Field(default=2000, ge=0, description="Lines kept above the screen")
    backspace: BackspaceMode = Field(
        default=BackspaceMode.DEL,
        description="Byte sent for Backspace: 'del' (0x7f) or 'bs' (0x08)",
    )
    tick_interval: float = Field(
        default=1 / 60, gt=0, description="Seconds between output drains while running"
    )
    exit_grace: float = Field(
        default=0.5,
        ge=0,
        description="Seconds to wait for end of output after the child is reaped",
    )
    detach_key: str = Field(
        default="ctrl+right_square_bracket",
        description="Key that returns focus to the command list instead of the child",
    )


class JarvisConfig(BaseModel):
    """Top-level jarvis configuration."""

    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    env: dict[str, str] = Field(
        default_factory=dict, description="Environment overrides applied to every command"
    )
    discovery_depth: int = Field(
        default=1, ge=0, description="Subdirectory levels scanned for commands"
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> JarvisConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults. Without an explicit
        path, ``~/.config/jarvis/config.json`` is used when it exists.

        Env vars:
            JARVIS_SHELL          - Shell that runs commands
            JARVIS_TERM           - TERM for children
            JARVIS_SCROLLBACK     - Scrollback capacity in lines
            JARVIS_BACKSPACE      - 'del' or 'bs'
            JARVIS_TICK_INTERVAL  - Output drain interval in seconds
        """
        # The .env of the directory jarvis runs in wins over stale exported values.
        load_dotenv(find_dotenv(usecwd=True), override=True)

        config_data: dict[str, Any] = {}

        path = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_PATH.expanduser()
        if path.is_file():
            with open(path) as f:
                config_data = json.load(f)

        terminal = config_data.get("terminal", {})

        env_shell = os.environ.get("JARVIS_SHELL")
        if env_shell:
            terminal["shell"] = env_shell

        env_term = os.environ.get("JARVIS_TERM")
        if env_term:
            terminal["term"] = env_term

        env_scrollback = os.environ.get("JARVIS_SCROLLBACK")
        if env_scrollback:
            terminal["scrollback_lines"] = int(env_scrollback)

        env_backspace = os.environ.get("JARVIS_BACKSPACE")
        if env_backspace:
            terminal["backspace"] = env_backspace.lower()

        env_tick = os.environ.get("JARVIS_TICK_INTERVAL")
        if env_tick:
            terminal["tick_interval"] = float(env_tick)

        if terminal:
            config_data["terminal"] = terminal

        return cls.model_validate(config_data)
