"""Terminal output for ``ttr push`` and ``ttr status``."""

from __future__ import annotations

import os
import sys
from collections.abc import Iterable, Sequence
from typing import TextIO

from .sync import SyncSummary

RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
RED = "\033[31m"
GREEN = "\033[32m"
CYAN = "\033[36m"

_RULE = "─" * 40


def _use_color(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR") or os.environ.get("TERM") == "dumb":
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def colorize(text: str, color: str, bold: bool = False, stream: TextIO | None = None) -> str:
    """Wrap ``text`` in ANSI codes when ``stream`` is a colour terminal."""
    if not _use_color(stream or sys.stdout):
        return text
    return f"{BOLD if bold else ''}{color}{text}{RESET}"


def _emit(symbol: str, color: str, message: str, stream: TextIO) -> None:
    print(f"{colorize(symbol, color, bold=True, stream=stream)} {message}", file=stream)


def print_success(message: str, stream: TextIO | None = None) -> None:
    _emit("✓", GREEN, message, stream or sys.stdout)


def print_error(message: str, stream: TextIO | None = None) -> None:
    _emit("✗", RED, message, stream or sys.stderr)


def print_header(message: str, stream: TextIO | None = None) -> None:
    out = stream or sys.stdout
    print(colorize(message, CYAN, bold=True, stream=out), file=out)


def _count(label: str, value: int, stream: TextIO) -> str:
    if value <= 0:
        return str(value)
    return colorize(str(value), RED if label == "Failed" else GREEN, bold=True, stream=stream)


def print_counts(
    title: str, counts: Sequence[tuple[str, int]], stream: TextIO | None = None
) -> None:
    """Print ``title`` and one aligned ``label  count`` row per entry between rules."""
    out = stream or sys.stdout
    width = max((len(label) for label, _ in counts), default=0)
    print("", file=out)
    print_header(title, stream=out)
    print(colorize(_RULE, DIM, stream=out), file=out)
    for label, value in counts:
        print(f"  {label:<{width}}  {_count(label, value, out)}", file=out)
    print(colorize(_RULE, DIM, stream=out), file=out)


def print_sync_summary(summary: SyncSummary, stream: TextIO | None = None) -> None:
    print_counts(
        "Sync summary",
        [
            ("Created", summary.created),
            ("Updated", summary.updated),
            ("Skipped", summary.skipped),
            ("Failed", summary.failed),
        ],
        stream=stream,
    )


def print_ticket_list(
    heading: str, rows: Iterable[tuple[str, str]], stream: TextIO | None = None
) -> None:
    """Heading plus ``id  detail`` rows; nothing is printed for no rows."""
    entries = list(rows)
    if not entries:
        return
    out = stream or sys.stdout
    print_header(f"{heading} ({len(entries)})", stream=out)
    width = max(len(ticket_id) for ticket_id, _ in entries)
    for ticket_id, detail in entries:
        print(f"  {ticket_id:<{width}}  {detail}", file=out)


__all__ = [
    "colorize",
    "print_counts",
    "print_error",
    "print_header",
    "print_success",
    "print_sync_summary",
    "print_ticket_list",
]
