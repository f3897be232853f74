"""jarvis: a terminal dashboard that runs project commands in an embedded PTY."""

__version__ = "0.1.0"
