"""Console notices for CLI output."""

from __future__ import annotations

import os
import sys
from collections.abc import Callable, Sequence
from typing import TextIO

Notifier = Callable[[str], None]


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"


def _supports_color(stream: TextIO | None = None) -> bool:
    stream = stream or sys.stdout
    if os.environ.get("NO_COLOR") or os.environ.get("TERM") == "dumb":
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def _quiet() -> bool:
    return os.environ.get("MISSIONSYNC_QUIET") == "1"


def colorize(text: str, color: str, bold: bool = False, stream: TextIO | None = None) -> str:
    """Apply color to text if terminal supports it."""
    if not _supports_color(stream):
        return text
    prefix = (Colors.BOLD if bold else "") + color
    return f"{prefix}{text}{Colors.RESET}"


def print_success(message: str, stream: TextIO | None = None) -> None:
    if _quiet():
        return
    stream = stream or sys.stdout
    print(colorize("✓", Colors.GREEN, bold=True, stream=stream) + " " + message, file=stream)


def print_error(message: str, stream: TextIO | None = None) -> None:
    """Print error message in red. Never silenced by quiet mode."""
    stream = stream or sys.stderr
    print(colorize("✗", Colors.RED, bold=True, stream=stream) + " " + message, file=stream)


def print_warning(message: str, stream: TextIO | None = None) -> None:
    if _quiet():
        return
    stream = stream or sys.stdout
    print(colorize("⚠", Colors.YELLOW, bold=True, stream=stream) + " " + message, file=stream)


def print_info(message: str, stream: TextIO | None = None) -> None:
    if _quiet():
        return
    stream = stream or sys.stdout
    print(colorize("ℹ", Colors.BLUE, bold=True, stream=stream) + " " + message, file=stream)


def print_summary_box(
    title: str, items: Sequence[tuple[str, str | int]], stream: TextIO | None = None
) -> None:
    """Print a formatted summary box with key-value pairs."""
    if _quiet():
        return
    stream = stream or sys.stdout
    width = max((len(k) for k, _ in items), default=0)
    print(colorize(f"\n{title}", Colors.CYAN, bold=True, stream=stream), file=stream)
    print(colorize("─" * 60, Colors.DIM, stream=stream), file=stream)
    for key, value in items:
        rendered = str(value)
        if isinstance(value, int) and value > 0:
            rendered = colorize(rendered, Colors.GREEN, bold=True, stream=stream)
        print(f"  {key.ljust(width)}  {rendered}", file=stream)
    print(colorize("─" * 60, Colors.DIM, stream=stream), file=stream)


__all__ = [
    "Colors",
    "Notifier",
    "colorize",
    "print_error",
    "print_info",
    "print_success",
    "print_summary_box",
    "print_warning",
]
