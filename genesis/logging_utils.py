"""Logging utilities for GENESIS.

Provides color-coded console output to distinguish phases and outcomes of the
autonomy loop, plus a ``Logger`` sink that is constructed once at process start
and injected into the store, submitter and controller.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Deterministic operations (observe, reason, decide)
    YELLOW = "\033[93m"    # Ledger round-trips
    RED = "\033[91m"       # Errors and retries
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if GENESIS_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("GENESIS_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"  # Local computation
LOG_TAG_LEDGER = "[TX]"        # Ledger call
LOG_TAG_ERROR = "[!]"          # Error/retry
LOG_TAG_SUCCESS = "[✓]"        # Success
LOG_TAG_INFO = "[i]"           # Information


class LogLevel(str, Enum):
    """Severity levels understood by ``Logger``."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


_LEVEL_ORDER = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}

_LEVEL_COLORS = {
    LogLevel.DEBUG: Color.CYAN,
    LogLevel.INFO: Color.BLUE,
    LogLevel.WARN: Color.YELLOW,
    LogLevel.ERROR: Color.RED,
}


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return str(value)


class Logger:
    """Console + file log sink.

    Each entry is printed as a colored ``[timestamp] [LEVEL] message`` line and
    appended to ``{log_dir}/genesis.log`` with its context serialized as JSON.
    File write failures are reported on the console and never raised, so a full
    disk cannot stop the loop.
    """

    def __init__(
        self,
        log_dir: Optional[Path | str] = None,
        *,
        console: bool = True,
        level: LogLevel | str = LogLevel.INFO,
        filename: str = "genesis.log",
    ) -> None:
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.log_file = self.log_dir / filename if self.log_dir is not None else None
        self.console = console
        self.level = LogLevel(str(level).upper()) if not isinstance(level, LogLevel) else level

    def _enabled(self, level: LogLevel) -> bool:
        return _LEVEL_ORDER[level] >= _LEVEL_ORDER[self.level]

    def format_entry(self, level: LogLevel, message: str, context: dict[str, Any]) -> str:
        timestamp = datetime.now(timezone.utc).isoformat()
        context_str = f" {json.dumps(context, default=_json_default)}" if context else ""
        return f"[{timestamp}] [{level.value}] {message}{context_str}"

    def log(self, level: LogLevel, message: str, **context: Any) -> None:
        if not self._enabled(level):
            return

        entry = self.format_entry(level, message, context)

        if self.console:
            print(colored(entry, _LEVEL_COLORS[level]))

        if self.log_file is not None:
            try:
                self.log_file.parent.mkdir(parents=True, exist_ok=True)
                with self.log_file.open("a", encoding="utf-8") as handle:
                    handle.write(entry)
                    handle.write("\n")
            except OSError as exc:
                print(colored(f"{LOG_TAG_ERROR} Failed to write log file {self.log_file}: {exc}", Color.RED))

    def debug(self, message: str, **context: Any) -> None:
        self.log(LogLevel.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self.log(LogLevel.INFO, message, **context)

    def warn(self, message: str, **context: Any) -> None:
        self.log(LogLevel.WARN, message, **context)

    def error(self, message: str, **context: Any) -> None:
        self.log(LogLevel.ERROR, message, **context)


def null_logger() -> Logger:
    """Return a logger that writes nowhere (handy for tests and embedding)."""
    return Logger(None, console=False)
