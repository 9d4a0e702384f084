"""Issue body rendering and identity marker parsing.

Every issue body ttr writes starts with a hidden marker naming the owning
ticket. Its presence on a remote issue is the only signal that the issue is
still managed by ttr; a body without it is treated as a conflict.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

MARKER_PREFIX = "<!-- ticket:"
MARKER_SUFFIX = " -->"
SECTION_SEPARATOR = "\n\n---\n"


def ticket_marker(ticket_id: str) -> str:
    return f"{MARKER_PREFIX}{ticket_id}{MARKER_SUFFIX}"


def has_ticket_marker(body: str, ticket_id: str) -> bool:
    return ticket_marker(ticket_id) in (body or "")


def format_dependencies_section(
    deps: Iterable[str], ticket_to_issue: Mapping[str, int]
) -> str:
    refs = [
        f"#{ticket_to_issue[dep]}" if dep in ticket_to_issue else f"`{dep}` (not synced)"
        for dep in deps
    ]
    return "**Depends on:** " + ", ".join(refs)


def format_issue_body(
    ticket_id: str,
    body: str,
    deps: Iterable[str] = (),
    ticket_to_issue: Mapping[str, int] | None = None,
) -> str:
    """Render the GitHub issue body for a ticket.

    Layout: marker, blank line, the ticket body, an optional "Depends on"
    section, and the attribution footer. Dependencies missing from
    ``ticket_to_issue`` are rendered as not-synced ticket ids so forward
    references survive until the dependency is pushed.
    """
    deps = list(deps)
    out = ticket_marker(ticket_id) + "\n\n" + body
    if deps:
        out += SECTION_SEPARATOR + format_dependencies_section(deps, ticket_to_issue or {})
    out += SECTION_SEPARATOR + f"<sub>Synced from ticket `{ticket_id}`</sub>"
    return out


def extract_ticket_marker(body: str) -> str | None:
    """Return the ticket id from the first marker found anywhere in ``body``."""
    if not body:
        return None
    start = body.find(MARKER_PREFIX)
    if start == -1:
        return None
    rest = body[start + len(MARKER_PREFIX):]
    end = rest.find(MARKER_SUFFIX)
    if end == -1:
        return None
    return rest[:end]


__all__ = [
    "MARKER_PREFIX",
    "ticket_marker",
    "has_ticket_marker",
    "format_dependencies_section",
    "format_issue_body",
    "extract_ticket_marker",
]
