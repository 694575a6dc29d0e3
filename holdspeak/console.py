from __future__ import annotations

import os
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from rich.console import Console

DEBUG_TO_STDOUT = os.getenv("HOLDSPEAK_DEBUG", "false").lower() == "true"


def debug(*args) -> None:
    if not DEBUG_TO_STDOUT:
        return
    print(f"[{datetime.now()}]", *args, file=sys.stdout)


def errprint(*args) -> None:
    print(*args, file=sys.stderr)


class ConsoleWithLogging:
    """Rich console for the terminal, mirrored into an append-only log file"""

    def __init__(self, log_file: TextIO | None, default_log_width: int = 5000):
        self.console = Console()
        self.log_console = (
            Console(
                file=log_file,
                force_terminal=False,
                legacy_windows=False,
                width=default_log_width,
            )
            if log_file is not None
            else None
        )

    @classmethod
    def open(cls, log_path: Path) -> ConsoleWithLogging:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(open(log_path, "a", encoding="utf-8"))

    def print_and_log(self, *objects, log_max_width=None, **kwargs):
        """Print to both console and log file

        Args:
            *objects: What to display
            log_max_width: If specified, limits width in log (must be <= default_log_width)
            **kwargs: Other arguments passed to print()
        """
        self.console.print(*objects, **kwargs)
        if self.log_console is not None:
            self.log_console.print(*objects, **kwargs, width=log_max_width)

    def print(self, *objects, **kwargs):
        """Print only to console, not to log"""
        self.console.print(*objects, **kwargs)

    def log(self, message: str):
        """Write a timestamped line to the log file only"""
        if self.log_console is None:
            return
        self.log_console.print(f"[{datetime.now():%Y-%m-%d %H:%M:%S}] {message}", markup=False, highlight=False)

    def close(self):
        if self.log_console is not None:
            self.log_console.file.close()
