"""Ticket → GitHub reconciliation engine.

``SyncEngine.create`` performs every lookup that can fail fatally (repository,
assignee, labels, issue types, project and project fields) before a single
mutation is issued. ``SyncEngine.sync`` then runs one push:

1. prefetch the remote issues of synced tickets (and their parents) in a
   single query;
2. classify every ticket as create / update / skip / fail;
3. create new issues in one aliased mutation and write ``gh-<n>`` back into
   each ticket file;
4. update changed issues, then close and reopen those whose state drifted;
5. report per-ticket outcomes in input order;
6. link sub-issues, add new issues to the project and sync project fields.

Step 6 is advisory: failures there are logged and never change an outcome.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .batch import BatchItemResult
from .body import format_issue_body, has_ticket_marker
from .config import SyncConfig
from .errors import GitHubAPIError, ProjectNotFoundError, TicketError
from .github_graphql import GraphQLTransport
from .issues import (
    IssueCreate,
    IssueUpdate,
    close_issues,
    create_issues,
    fetch_issue_types,
    fetch_issues,
    fetch_labels,
    get_repository,
    get_user_id,
    reopen_issues,
    update_issues,
)
from .logging import get_logger
from .mapping import LabelResolver, resolve_issue_type, validate_issue_type_mappings
from .models import IssueInfo, ProjectFieldsCache, ProjectInfo, RemoteIssue
from .projects import (
    add_issues_to_project,
    build_project_fields_cache,
    count_failures,
    fetch_project_item_ids,
    find_project,
    set_iteration_values,
    set_single_select_values,
)
from .subissues import SubIssueLink, add_sub_issues
from .tickets import Ticket

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"
FAILED = "failed"

REASON_NO_CHANGES = "no changes"
REASON_CONFLICT = "issue modified outside ttr"


@dataclass(frozen=True)
class SyncOutcome:
    """What happened to one ticket during a push."""

    action: str
    issue_id: str | None = None
    issue_number: int | None = None
    url: str | None = None
    reason: str | None = None
    error: str | None = None

    @classmethod
    def created(cls, info: IssueInfo) -> SyncOutcome:
        return cls(CREATED, issue_id=info.id, issue_number=info.number, url=info.url)

    @classmethod
    def updated(cls, issue_number: int) -> SyncOutcome:
        return cls(UPDATED, issue_number=issue_number)

    @classmethod
    def skipped(cls, reason: str) -> SyncOutcome:
        return cls(SKIPPED, reason=reason)

    @classmethod
    def failed(cls, error: str) -> SyncOutcome:
        return cls(FAILED, error=error)


@dataclass
class SyncSummary:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, outcome: SyncOutcome) -> None:
        setattr(self, outcome.action, getattr(self, outcome.action) + 1)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.failed

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    def as_dict(self) -> dict[str, int]:
        return {
            CREATED: self.created,
            UPDATED: self.updated,
            SKIPPED: self.skipped,
            FAILED: self.failed,
        }


@dataclass(frozen=True)
class UpdatePlan:
    issue_id: str
    issue_number: int
    title: str
    body: str
    title_changed: bool
    body_changed: bool
    needs_close: bool
    needs_reopen: bool


def plan_update(ticket: Ticket, remote: RemoteIssue | None, body: str) -> SyncOutcome | UpdatePlan:
    """Decide what a synced ticket needs given its remote issue.

    ``body`` is the freshly rendered issue body for the ticket.
    """
    number = ticket.github_issue_number()
    if number is None:
        return SyncOutcome.skipped("invalid external-ref")
    if remote is None:
        return SyncOutcome.failed(f"Issue #{number} not found")
    if not has_ticket_marker(remote.body, ticket.id):
        return SyncOutcome.skipped(REASON_CONFLICT)
    title_changed = remote.title != ticket.title
    body_changed = remote.body != body
    should_close = ticket.is_closed
    state_changed = should_close == remote.is_open
    if not (title_changed or body_changed or state_changed):
        return SyncOutcome.skipped(REASON_NO_CHANGES)
    return UpdatePlan(
        issue_id=remote.id,
        issue_number=number,
        title=ticket.title,
        body=body,
        title_changed=title_changed,
        body_changed=body_changed,
        needs_close=state_changed and should_close,
        needs_reopen=state_changed and not should_close,
    )


@dataclass
class _PendingCreate:
    index: int
    ticket: Ticket
    request: IssueCreate


@dataclass
class _PendingUpdate:
    index: int
    ticket: Ticket
    plan: UpdatePlan
    issue_type_id: str | None = None


def _failed_everywhere(count: int, error: str) -> dict[int, BatchItemResult]:
    return {i: BatchItemResult(error=error) for i in range(count)}


class SyncEngine:
    def __init__(
        self,
        client: GraphQLTransport,
        config: SyncConfig,
        *,
        repository_id: str,
        assignee_id: str | None = None,
        labels: Mapping[str, str] | None = None,
        issue_types: Mapping[str, str] | None = None,
        project: ProjectInfo | None = None,
        project_fields: ProjectFieldsCache | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.owner, self.repo = config.github.repo_parts()
        self.repository_id = repository_id
        self.assignee_id = assignee_id
        self.labels = LabelResolver(
            client,
            self.owner,
            self.repo,
            repository_id,
            labels,
            sync_tags=config.labels.sync_tags,
            create_missing=config.labels.create_missing,
        )
        self.issue_types: dict[str, str] = dict(issue_types or {})
        self.project = project
        self.project_fields = project_fields
        self.ticket_to_issue: dict[str, int] = {}
        self.last_outcomes: dict[str, SyncOutcome] = {}
        self.logger = get_logger()

    @classmethod
    async def create(cls, client: GraphQLTransport, config: SyncConfig) -> SyncEngine:
        """Resolve everything a push needs; any failure here is fatal."""
        logger = get_logger()
        owner, repo = config.github.repo_parts()
        with logger.timed_operation("engine_setup", repo=config.github.repo):
            repository = await get_repository(client, owner, repo)
            assignee_id = (
                await get_user_id(client, config.github.assignee)
                if config.github.assignee
                else None
            )
            labels = await fetch_labels(client, owner, repo)
            issue_types = await fetch_issue_types(client, owner, repo)
            validate_issue_type_mappings(config.mapping.type_map, issue_types)

            project: ProjectInfo | None = None
            project_fields: ProjectFieldsCache | None = None
            if config.github.project:
                project = await find_project(client, owner, repo, config.github.project)
                if project is None:
                    raise ProjectNotFoundError(
                        f"Project '{config.github.project}' not found. "
                        "Check the project name or number in sync.yaml."
                    )
                logger.info(f"Using project: {project.title} (#{project.number})")
                if config.project.wants_fields:
                    project_fields = await build_project_fields_cache(
                        client,
                        project,
                        status_field=config.project.status_field,
                        status_mapping=config.project.status,
                        iteration_field=config.project.iteration_field,
                        iteration=config.project.iteration,
                    )
        return cls(
            client,
            config,
            repository_id=repository.id,
            assignee_id=assignee_id,
            labels=labels,
            issue_types=issue_types,
            project=project,
            project_fields=project_fields,
        )

    # ---- helpers -----------------------------------------------------
    def render_body(self, ticket: Ticket) -> str:
        return format_issue_body(ticket.id, ticket.body, ticket.deps, self.ticket_to_issue)

    def resolve_issue_type_id(self, ticket_type: str) -> str | None:
        return resolve_issue_type(ticket_type, self.config.mapping.type_map, self.issue_types)

    async def _prefetch(self, tickets: Sequence[Ticket]) -> dict[int, RemoteIssue]:
        numbers: list[int] = []
        for ticket in tickets:
            number = ticket.github_issue_number()
            if number is not None and number not in numbers:
                numbers.append(number)
        for ticket in tickets:
            parent_number = self.ticket_to_issue.get(ticket.parent) if ticket.parent else None
            if parent_number is not None and parent_number not in numbers:
                numbers.append(parent_number)
        if not numbers:
            return {}
        try:
            return await fetch_issues(self.client, self.owner, self.repo, numbers)
        except GitHubAPIError as exc:
            self.logger.warning(f"Failed to fetch existing issues: {exc}")
            return {}

    # ---- main entry point --------------------------------------------
    async def sync(
        self, tickets: Sequence[Ticket], all_tickets: Iterable[Ticket] | None = None
    ) -> SyncSummary:
        """Push ``tickets``; ``all_tickets`` resolves dependency references."""
        tickets = list(tickets)
        everything = list(all_tickets) if all_tickets is not None else list(tickets)
        self.ticket_to_issue = {}
        for ticket in everything:
            number = ticket.github_issue_number()
            if number is not None:
                self.ticket_to_issue[ticket.id] = number

        self.logger.log_operation("sync_start", tickets=len(tickets))
        with self.logger.timed_operation("sync", tickets=len(tickets)):
            remote = await self._prefetch(tickets)
            outcomes: dict[int, SyncOutcome] = {}
            creates: list[_PendingCreate] = []
            updates: list[_PendingUpdate] = []

            for index, ticket in enumerate(tickets):
                body = self.render_body(ticket)
                if not ticket.is_synced():
                    creates.append(
                        _PendingCreate(
                            index,
                            ticket,
                            IssueCreate(
                                title=ticket.title,
                                body=body,
                                label_ids=tuple(await self.labels.resolve_label_ids(ticket.tags)),
                                issue_type_id=self.resolve_issue_type_id(ticket.ticket_type),
                            ),
                        )
                    )
                    continue
                number = ticket.github_issue_number()
                decision = plan_update(ticket, remote.get(number) if number else None, body)
                if isinstance(decision, SyncOutcome):
                    outcomes[index] = decision
                else:
                    updates.append(
                        _PendingUpdate(
                            index,
                            ticket,
                            decision,
                            self.resolve_issue_type_id(ticket.ticket_type),
                        )
                    )

            await self._apply_creates(creates, outcomes)
            await self._apply_updates(updates, outcomes)

            summary = self._report(tickets, outcomes)

            await self._link_sub_issues(tickets, everything, outcomes, remote)
            await self._add_to_project(tickets, outcomes)
            await self._sync_project_status(tickets, outcomes, remote)
        return summary

    # ---- phases --------------------------------------------------------
    async def _apply_creates(
        self, pending: Sequence[_PendingCreate], outcomes: dict[int, SyncOutcome]
    ) -> None:
        if not pending:
            return
        assignees = [self.assignee_id] if self.assignee_id else []
        try:
            results = await create_issues(
                self.client, self.repository_id, [p.request for p in pending], assignees
            )
        except GitHubAPIError as exc:
            results = _failed_everywhere(len(pending), str(exc))
        for i, item in enumerate(pending):
            result = results.get(i) or BatchItemResult(error="not processed")
            if not result.ok:
                outcomes[item.index] = SyncOutcome.failed(str(result.error))
                continue
            info: IssueInfo = result.value
            try:
                item.ticket.write_external_ref(f"gh-{info.number}")
            except TicketError as exc:
                outcomes[item.index] = SyncOutcome.failed(
                    f"Created #{info.number} but failed to write external-ref: {exc}"
                )
                continue
            self.ticket_to_issue[item.ticket.id] = info.number
            outcomes[item.index] = SyncOutcome.created(info)

    async def _apply_updates(
        self, pending: Sequence[_PendingUpdate], outcomes: dict[int, SyncOutcome]
    ) -> None:
        if not pending:
            return
        requests_ = [
            IssueUpdate(p.plan.issue_id, p.plan.title, p.plan.body, p.issue_type_id)
            for p in pending
        ]
        try:
            results = await update_issues(self.client, requests_)
        except GitHubAPIError as exc:
            # The whole batch was rejected; leave issue state alone.
            for item in pending:
                outcomes[item.index] = SyncOutcome.failed(str(exc))
            return
        for i, item in enumerate(pending):
            result = results.get(i) or BatchItemResult(error="not processed")
            if result.ok:
                outcomes[item.index] = SyncOutcome.updated(item.plan.issue_number)
            else:
                outcomes[item.index] = SyncOutcome.failed(str(result.error))

        await self._apply_state(
            [p for p in pending if p.plan.needs_close], close_issues, "close", outcomes
        )
        await self._apply_state(
            [p for p in pending if p.plan.needs_reopen], reopen_issues, "reopen", outcomes
        )

    async def _apply_state(
        self,
        pending: Sequence[_PendingUpdate],
        mutation: Callable[[GraphQLTransport, Sequence[str]], Awaitable[dict[int, BatchItemResult]]],
        verb: str,
        outcomes: dict[int, SyncOutcome],
    ) -> None:
        if not pending:
            return
        try:
            results = await mutation(self.client, [p.plan.issue_id for p in pending])
        except GitHubAPIError as exc:
            results = _failed_everywhere(len(pending), str(exc))
        for i, item in enumerate(pending):
            result = results.get(i) or BatchItemResult(error="not processed")
            if not result.ok:
                outcomes[item.index] = SyncOutcome.failed(f"Failed to {verb}: {result.error}")

    def _report(self, tickets: Sequence[Ticket], outcomes: Mapping[int, SyncOutcome]) -> SyncSummary:
        summary = SyncSummary()
        self.last_outcomes = {}
        for index, ticket in enumerate(tickets):
            outcome = outcomes.get(index) or SyncOutcome.failed("not processed")
            self.last_outcomes[ticket.id] = outcome
            summary.record(outcome)
            if outcome.action == CREATED:
                self.logger.log_ticket_action(
                    "create", ticket.id, outcome.issue_number, ticket.title, url=outcome.url
                )
            elif outcome.action == UPDATED:
                self.logger.log_ticket_action("update", ticket.id, outcome.issue_number, ticket.title)
            elif outcome.action == SKIPPED:
                self.logger.log_ticket_action("skip", ticket.id, detail=f"({outcome.reason})")
            else:
                self.logger.log_ticket_action("fail", ticket.id, detail=outcome.error)
        return summary

    async def _link_sub_issues(
        self,
        tickets: Sequence[Ticket],
        all_tickets: Sequence[Ticket],
        outcomes: Mapping[int, SyncOutcome],
        remote: Mapping[int, RemoteIssue],
    ) -> None:
        node_ids: dict[str, str] = {}
        for ticket in all_tickets:
            number = ticket.github_issue_number()
            if number is not None and number in remote:
                node_ids[ticket.id] = remote[number].id
        for index, outcome in outcomes.items():
            if outcome.action == CREATED and outcome.issue_id:
                node_ids[tickets[index].id] = outcome.issue_id

        links: list[tuple[Ticket, SubIssueLink]] = []
        for ticket in tickets:
            # An unsynced parent links on a later push.
            if ticket.parent and ticket.parent in node_ids and ticket.id in node_ids:
                links.append(
                    (ticket, SubIssueLink(node_ids[ticket.parent], node_ids[ticket.id]))
                )
        if not links:
            return
        try:
            results = await add_sub_issues(self.client, [link for _, link in links])
        except GitHubAPIError as exc:
            self.logger.warning(f"sub-issue batch link failed: {exc}")
            return
        for i, (ticket, _) in enumerate(links):
            result = results.get(i)
            if result is not None and result.ok:
                self.logger.log_ticket_action(
                    "link", ticket.id, detail=f"-> {ticket.parent} (sub-issue)"
                )
            else:
                error = result.error if result is not None else "no result"
                self.logger.warning(f"{ticket.id} sub-issue link failed: {error}")

    async def _add_to_project(
        self, tickets: Sequence[Ticket], outcomes: Mapping[int, SyncOutcome]
    ) -> None:
        if self.project is None:
            return
        created = [
            (tickets[index], str(outcome.issue_id))
            for index, outcome in sorted(outcomes.items())
            if outcome.action == CREATED
        ]
        if not created:
            return
        try:
            results = await add_issues_to_project(
                self.client, self.project.id, [issue_id for _, issue_id in created]
            )
        except GitHubAPIError as exc:
            self.logger.warning(f"Failed to add issues to project: {exc}")
            return

        added: list[tuple[str, Ticket]] = []
        without_item: list[tuple[str, Ticket]] = []
        for i, (ticket, issue_id) in enumerate(created):
            result = results.get(i)
            if result is None or not result.ok:
                error = result.error if result is not None else "no result"
                self.logger.warning(f"{ticket.id} project add failed: {error}")
                continue
            self.logger.log_ticket_action(
                "project", ticket.id, detail=f"-> {self.project.title} (added)"
            )
            if result.value:
                added.append((str(result.value), ticket))
            else:
                without_item.append((issue_id, ticket))

        if self.project_fields is None:
            return
        if without_item:
            # "Already in the project" carries no item id; look the items up.
            try:
                item_ids = await fetch_project_item_ids(
                    self.client, self.project.id, [issue_id for issue_id, _ in without_item]
                )
            except GitHubAPIError as exc:
                self.logger.warning(f"Failed to fetch project item IDs: {exc}")
                item_ids = {}
            added.extend(
                (item_ids[issue_id], ticket)
                for issue_id, ticket in without_item
                if issue_id in item_ids
            )
        if added:
            await self._set_project_field_values(added)

    async def _set_project_field_values(self, items: Sequence[tuple[str, Ticket]]) -> None:
        if self.project is None or self.project_fields is None:
            return
        status_cache = self.project_fields.status
        if status_cache is not None:
            updates = [
                (item_id, option_id)
                for item_id, ticket in items
                if (option_id := status_cache.option_for(ticket.status))
            ]
            if updates:
                await self._advisory(
                    set_single_select_values(
                        self.client, self.project.id, status_cache.field_id, updates
                    ),
                    "status",
                )
        iteration_cache = self.project_fields.iteration
        if iteration_cache is not None:
            await self._advisory(
                set_iteration_values(
                    self.client,
                    self.project.id,
                    iteration_cache.field_id,
                    iteration_cache.iteration_id,
                    [item_id for item_id, _ in items],
                ),
                "iteration",
            )

    async def _advisory(
        self, call: Awaitable[dict[int, BatchItemResult]], what: str
    ) -> dict[int, BatchItemResult]:
        try:
            results = await call
        except GitHubAPIError as exc:
            self.logger.warning(f"Failed to set project {what}: {exc}")
            return {}
        failures = count_failures(results)
        if failures:
            self.logger.warning(f"{failures} {what} updates failed")
        return results

    async def _sync_project_status(
        self,
        tickets: Sequence[Ticket],
        outcomes: Mapping[int, SyncOutcome],
        remote: Mapping[int, RemoteIssue],
    ) -> None:
        if self.project is None or self.project_fields is None:
            return
        status_cache = self.project_fields.status
        if status_cache is None:
            return
        wanted: list[tuple[str, str]] = []  # (issue node id, option id)
        for index, ticket in enumerate(tickets):
            if outcomes.get(index, SyncOutcome.skipped("")).action == CREATED:
                continue
            number = ticket.github_issue_number()
            issue = remote.get(number) if number is not None else None
            option_id = status_cache.option_for(ticket.status)
            if issue is not None and option_id:
                wanted.append((issue.id, option_id))
        if not wanted:
            return
        try:
            item_ids = await fetch_project_item_ids(
                self.client, self.project.id, [issue_id for issue_id, _ in wanted]
            )
        except GitHubAPIError as exc:
            self.logger.warning(f"Failed to fetch project item IDs: {exc}")
            return
        updates = [
            (item_ids[issue_id], option_id)
            for issue_id, option_id in wanted
            if issue_id in item_ids
        ]
        if not updates:
            return
        results = await self._advisory(
            set_single_select_values(self.client, self.project.id, status_cache.field_id, updates),
            "status",
        )
        synced = len(results) - count_failures(results)
        if synced:
            self.logger.info(f"STATUS  {synced} project item(s) synced", synced=synced)


def summarize_outcomes(outcomes: Mapping[str, SyncOutcome]) -> dict[str, Any]:
    """JSON-friendly view of ``SyncEngine.last_outcomes``."""
    return {
        ticket_id: {k: v for k, v in vars(outcome).items() if v is not None}
        for ticket_id, outcome in outcomes.items()
    }


__all__ = [
    "SyncEngine",
    "SyncOutcome",
    "SyncSummary",
    "UpdatePlan",
    "plan_update",
    "summarize_outcomes",
]
