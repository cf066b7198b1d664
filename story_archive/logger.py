"""
Console logging for archive loading and export jobs.
"""
from __future__ import annotations

import sys
import traceback
from enum import Enum
from typing import Optional, TextIO


class LogLevel(Enum):
    """How much the CLI and export jobs print."""
    QUIET = 0  # Nothing but the exit code
    NORMAL = 1  # Listings, saved paths and warnings
    VERBOSE = 2  # Per-story detail (avatar lookups, ffmpeg commands)
    DEBUG = 3  # Parser skips and tracebacks


_ASCII_MARKERS = {
    "❌": "[ERROR]",
    "⚠️": "[WARNING]",
    "✅": "[OK]",
    "📂": "[ARCHIVE]",
    "🎬": "[VIDEO]",
    "📸": "[PHOTO]",
    "👤": "[USER]",
    "📅": "[DATE]",
    "💾": "[SAVED]",
    "•": "-",
}


def _safe_print(message: str, file: Optional[TextIO] = None) -> None:
    """Print a message, downgrading emoji on consoles that cannot encode them."""
    stream = file if file is not None else sys.stdout
    try:
        print(message, file=stream, flush=True)
    except UnicodeEncodeError:
        for marker, replacement in _ASCII_MARKERS.items():
            message = message.replace(marker, replacement)
        print(message.encode("ascii", "ignore").decode("ascii"), file=stream, flush=True)


class Logger:
    """Leveled console logger shared by the CLI and the export pipeline."""

    def __init__(self, level: LogLevel = LogLevel.NORMAL):
        self.level = level

    def enabled(self, level: LogLevel) -> bool:
        return self.level.value >= level.value

    def error(self, message: str, exc: Optional[BaseException] = None) -> None:
        """Report a failed load or export on stderr; silent only at QUIET."""
        if self.level == LogLevel.QUIET:
            return
        if exc is not None and self.enabled(LogLevel.DEBUG):
            _safe_print(f"❌ Error: {message}", file=sys.stderr)
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
            return
        details = ""
        if exc is not None and str(exc).strip():
            details = f": {str(exc).strip()}"
        _safe_print(f"❌ Error: {message}{details}", file=sys.stderr)

    def warning(self, message: str) -> None:
        if self.enabled(LogLevel.NORMAL):
            _safe_print(f"⚠️  Warning: {message}", file=sys.stderr)

    def info(self, message: str) -> None:
        if self.enabled(LogLevel.NORMAL):
            _safe_print(message)

    def verbose(self, message: str) -> None:
        if self.enabled(LogLevel.VERBOSE):
            _safe_print(f"[verbose] {message}")

    def debug(self, message: str) -> None:
        if self.enabled(LogLevel.DEBUG):
            _safe_print(f"[debug] {message}")

    def dry_run(self, message: str) -> None:
        if self.level == LogLevel.QUIET:
            return
        _safe_print(f"DRY RUN: {message}")


# Global logger instance (replaced by the CLI)
_logger: Optional[Logger] = None


def get_logger() -> Logger:
    if _logger is None:
        return Logger(LogLevel.NORMAL)
    return _logger


def set_logger(logger: Optional[Logger]) -> None:
    global _logger
    _logger = logger


def error(message: str, exc: Optional[BaseException] = None) -> None:
    get_logger().error(message, exc)


def warning(message: str) -> None:
    get_logger().warning(message)


def info(message: str) -> None:
    get_logger().info(message)


def verbose(message: str) -> None:
    get_logger().verbose(message)


def debug(message: str) -> None:
    get_logger().debug(message)


def dry_run(message: str) -> None:
    get_logger().dry_run(message)
