"""Flat-file ticket store.

Tickets are markdown files with YAML frontmatter::

    ---
    id: ttr-0001
    status: open
    type: feature
    tags: [cli]
    external-ref: gh-12
    ---
    # Title

    Body text.

    ## Notes

    Local-only notes, never pushed.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import TicketError
from .logging import get_logger

TICKETS_DIR_NAME = ".tickets"
TICKETS_DIR_ENV = "TICKETS_DIR"
FRONTMATTER_DELIMITER = "---"
EXTERNAL_REF_KEY = "external-ref"
NOTES_HEADING = "## Notes"
_GH_REF_RE = re.compile(r"^gh-(\d+)$")


@dataclass
class Ticket:
    path: Path
    id: str
    title: str = "Untitled"
    body: str = ""
    status: str = "open"
    ticket_type: str = "task"
    priority: int = 2
    assignee: str | None = None
    created: str | None = None
    links: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    deps: list[str] = field(default_factory=list)
    parent: str | None = None
    external_ref: str | None = None

    def is_synced(self) -> bool:
        return self.github_issue_number() is not None

    def github_issue_number(self) -> int | None:
        if not self.external_ref:
            return None
        m = _GH_REF_RE.match(self.external_ref.strip())
        return int(m.group(1)) if m else None

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    def write_external_ref(self, external_ref: str) -> None:
        """Persist ``external-ref`` into this ticket's frontmatter."""
        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise TicketError(f"Failed to read ticket: {self.path}: {exc}") from exc
        updated = set_frontmatter_value(content, EXTERNAL_REF_KEY, external_ref)
        try:
            self.path.write_text(updated, encoding="utf-8")
        except OSError as exc:
            raise TicketError(f"Failed to write ticket: {self.path}: {exc}") from exc
        self.external_ref = external_ref


def set_frontmatter_value(content: str, key: str, value: str) -> str:
    """Set ``key: value`` inside the first ``---`` block of ``content``.

    Only the frontmatter is touched: an existing line is replaced in place,
    otherwise the line goes right before the closing delimiter. The result
    always ends with a newline.
    """
    lines = content.splitlines()
    prefix = f"{key}:"
    new_line = f"{key}: {value}"
    opening: int | None = None
    closing: int | None = None
    for i, line in enumerate(lines):
        if line == FRONTMATTER_DELIMITER:
            if opening is None:
                opening = i
            else:
                closing = i
                break
    if opening is None or closing is None:
        raise TicketError("No frontmatter block found")
    for i in range(opening + 1, closing):
        if lines[i].startswith(prefix):
            lines[i] = new_line
            break
    else:
        lines.insert(closing, new_line)
    out = "\n".join(lines)
    return out if out.endswith("\n") else out + "\n"


def split_frontmatter(content: str) -> tuple[str, str]:
    """Return ``(frontmatter_yaml, markdown)``; the file must open with ``---``."""
    lines = content.splitlines()
    if not lines or lines[0].strip() != FRONTMATTER_DELIMITER:
        raise TicketError("No frontmatter found")
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONTMATTER_DELIMITER:
            return "\n".join(lines[1:i]), "\n".join(lines[i + 1:])
    raise TicketError("Unterminated frontmatter")


def extract_title(markdown: str) -> str:
    for line in markdown.strip().splitlines():
        if line.startswith("# "):
            return line[2:].strip()
    return "Untitled"


def extract_body(markdown: str) -> str:
    """Markdown without the leading title and without the ``## Notes`` section."""
    kept: list[str] = []
    in_notes = False
    for line in markdown.strip().splitlines():
        if line.startswith("# ") and not kept:
            continue
        if line.startswith(NOTES_HEADING):
            in_notes = True
            continue
        if in_notes and line.startswith("## "):
            in_notes = False
        if not in_notes:
            kept.append(line)
    return "\n".join(kept).strip()


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


def parse_ticket_text(content: str, path: Path) -> Ticket:
    frontmatter, markdown = split_frontmatter(content)
    try:
        data = yaml.safe_load(frontmatter) or {}
    except yaml.YAMLError as exc:
        raise TicketError(f"Failed to parse frontmatter in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TicketError(f"Frontmatter in {path} must be a mapping")
    ticket_id = data.get("id")
    if not ticket_id:
        raise TicketError(f"Missing 'id' in frontmatter of {path}")
    try:
        priority = int(data.get("priority", 2))
    except (TypeError, ValueError) as exc:
        raise TicketError(f"Invalid priority in {path}: {data.get('priority')!r}") from exc
    return Ticket(
        path=path,
        id=str(ticket_id),
        title=extract_title(markdown),
        body=extract_body(markdown),
        status=str(data.get("status") or "open"),
        ticket_type=str(data.get("type") or "task"),
        priority=priority,
        assignee=_opt_str(data.get("assignee")),
        created=_opt_str(data.get("created")),
        links=_str_list(data.get("links")),
        tags=_str_list(data.get("tags")),
        deps=_str_list(data.get("deps")),
        parent=_opt_str(data.get("parent")),
        external_ref=_opt_str(data.get(EXTERNAL_REF_KEY)),
    )


def parse_ticket(path: Path) -> Ticket:
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise TicketError(f"Failed to read ticket: {path}: {exc}") from exc
    try:
        return parse_ticket_text(content, Path(path))
    except TicketError as exc:
        if str(path) in str(exc):
            raise
        raise TicketError(f"{path}: {exc}") from exc


def load_tickets(tickets_dir: Path) -> list[Ticket]:
    """Parse every ticket under ``tickets_dir`` sorted by id.

    Unparseable files are logged and skipped.
    """
    logger = get_logger()
    tickets: list[Ticket] = []
    for path in sorted(Path(tickets_dir).glob("*.md")):
        if path.stem == "sync":
            continue
        try:
            tickets.append(parse_ticket(path))
        except TicketError as exc:
            logger.warning(f"Failed to parse {path}: {exc}", path=str(path))
    tickets.sort(key=lambda t: t.id)
    return tickets


def find_tickets_dir(start: Path | None = None) -> Path | None:
    env = os.environ.get(TICKETS_DIR_ENV)
    if env and Path(env).is_dir():
        return Path(env)
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / TICKETS_DIR_NAME
        if candidate.is_dir():
            return candidate
    return None


def select_tickets(tickets: Sequence[Ticket], ids: Iterable[str]) -> list[Ticket]:
    """Tickets whose id equals or contains any of ``ids`` (all when empty)."""
    wanted = [i for i in ids if i]
    if not wanted:
        return list(tickets)
    return [t for t in tickets if any(w == t.id or w in t.id for w in wanted)]


__all__ = [
    "Ticket",
    "TICKETS_DIR_NAME",
    "set_frontmatter_value",
    "split_frontmatter",
    "extract_title",
    "extract_body",
    "parse_ticket_text",
    "parse_ticket",
    "load_tickets",
    "find_tickets_dir",
    "select_tickets",
]
