"""Read-only drift report backing ``ttr status``."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from .body import format_issue_body
from .errors import GitHubAPIError
from .github_graphql import GraphQLTransport
from .issues import fetch_issues
from .logging import get_logger
from .sync import REASON_NO_CHANGES, SKIPPED, SyncOutcome, UpdatePlan, plan_update
from .tickets import Ticket


@dataclass
class StatusReport:
    """Tickets grouped by sync state.

    ``modified`` pairs each ticket with the first detected difference.
    ``checked_remote`` is false in quick mode, when only local state is known.
    """

    unsynced: list[Ticket] = field(default_factory=list)
    synced: list[Ticket] = field(default_factory=list)
    modified: list[tuple[Ticket, str]] = field(default_factory=list)
    conflicts: list[Ticket] = field(default_factory=list)
    checked_remote: bool = True

    @property
    def total(self) -> int:
        return len(self.unsynced) + len(self.synced) + len(self.modified) + len(self.conflicts)


def _difference(plan: UpdatePlan) -> str:
    if plan.title_changed:
        return "title changed"
    if plan.body_changed:
        return "body changed"
    return "state changed"


async def build_status_report(
    tickets: Sequence[Ticket],
    client: GraphQLTransport | None = None,
    owner: str = "",
    repo: str = "",
) -> StatusReport:
    """Classify ``tickets``; without a client only synced/unsynced is known."""
    report = StatusReport(checked_remote=client is not None)
    synced: list[Ticket] = []
    for ticket in tickets:
        (synced if ticket.is_synced() else report.unsynced).append(ticket)
    if client is None or not synced:
        report.synced = synced
        return report

    lookup = {t.id: n for t in tickets if (n := t.github_issue_number()) is not None}
    numbers = [n for t in synced if (n := t.github_issue_number()) is not None]
    try:
        remote = await fetch_issues(client, owner, repo, numbers)
    except GitHubAPIError as exc:
        get_logger().warning(f"Failed to fetch existing issues: {exc}")
        remote = {}

    for ticket in synced:
        number = ticket.github_issue_number()
        body = format_issue_body(ticket.id, ticket.body, ticket.deps, lookup)
        decision = plan_update(ticket, remote.get(number) if number else None, body)
        if isinstance(decision, UpdatePlan):
            report.modified.append((ticket, _difference(decision)))
        elif _is_up_to_date(decision):
            report.synced.append(ticket)
        else:
            report.conflicts.append(ticket)
    return report


def _is_up_to_date(outcome: SyncOutcome) -> bool:
    return outcome.action == SKIPPED and outcome.reason == REASON_NO_CHANGES


__all__ = ["StatusReport", "build_status_report"]
