"""Aliased GraphQL batches.

N homogeneous operations are folded into a single GraphQL document: item ``i``
is bound to the variable ``$input_i`` and answered under the alias
``<prefix>_i``. ``demultiplex`` maps the response back to per-index results so
one failing item never hides the others.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import GitHubAPIError
from .github_graphql import GraphQLTransport
from .logging import get_logger


class BatchOperation(Enum):
    """Operation templates: field, input type, selection set, alias prefix."""

    CREATE_ISSUE = ("createIssue", "CreateIssueInput!", "{ issue { id number url } }", "create")
    UPDATE_ISSUE = ("updateIssue", "UpdateIssueInput!", "{ issue { id number url } }", "update")
    CLOSE_ISSUE = ("closeIssue", "CloseIssueInput!", "{ issue { id } }", "close")
    REOPEN_ISSUE = ("reopenIssue", "ReopenIssueInput!", "{ issue { id } }", "reopen")
    ADD_SUB_ISSUE = ("addSubIssue", "AddSubIssueInput!", "{ subIssue { id } }", "link")
    ADD_PROJECT_ITEM = (
        "addProjectV2ItemById",
        "AddProjectV2ItemByIdInput!",
        "{ item { id } }",
        "add",
    )
    SET_FIELD_VALUE = (
        "updateProjectV2ItemFieldValue",
        "UpdateProjectV2ItemFieldValueInput!",
        "{ projectV2Item { id } }",
        "status",
    )
    SET_ITERATION = (
        "updateProjectV2ItemFieldValue",
        "UpdateProjectV2ItemFieldValueInput!",
        "{ projectV2Item { id } }",
        "iteration",
    )
    PROJECT_ITEMS = (
        "node",
        "ID!",
        "{ ... on Issue { projectItems(first: 50) { nodes { id project { id } } } } }",
        "item",
        "query",
        "id",
    )

    def __init__(
        self,
        field: str,
        input_type: str,
        selection: str,
        alias_prefix: str,
        kind: str = "mutation",
        argument: str = "input",
    ) -> None:
        self.field = field
        self.input_type = input_type
        self.selection = selection
        self.alias_prefix = alias_prefix
        self.kind = kind
        self.argument = argument

    @property
    def is_query(self) -> bool:
        return self.kind == "query"


@dataclass(frozen=True)
class BatchDocument:
    document: str
    variables: dict[str, Any]
    aliases: list[str]


@dataclass(frozen=True)
class BatchItemResult:
    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_batch(operation: BatchOperation, payloads: Sequence[Any]) -> BatchDocument:
    """Build one aliased document for ``payloads``.

    Aliases and variables are numbered in payload order starting at 0.
    """
    if not payloads:
        raise ValueError("cannot build an empty batch")
    definitions: list[str] = []
    selections: list[str] = []
    variables: dict[str, Any] = {}
    aliases: list[str] = []
    for i, payload in enumerate(payloads):
        alias = f"{operation.alias_prefix}_{i}"
        var = f"input_{i}"
        definitions.append(f"${var}: {operation.input_type}")
        selections.append(
            f"  {alias}: {operation.field}({operation.argument}: ${var}) {operation.selection}"
        )
        variables[var] = payload
        aliases.append(alias)
    document = f"{operation.kind}({', '.join(definitions)}) {{\n" + "\n".join(selections) + "\n}"
    return BatchDocument(document=document, variables=variables, aliases=aliases)


def demultiplex(
    response: Mapping[str, Any],
    aliases: Sequence[str],
    extract: Callable[[Mapping[str, Any]], Any],
) -> dict[int, BatchItemResult]:
    """Map an aliased response back to per-index results.

    ``extract`` pulls the wanted value out of one alias node and returns
    ``None`` when the expected sub-field is missing.
    """
    results: dict[int, BatchItemResult] = {}
    for i, alias in enumerate(aliases):
        node = response.get(alias)
        if not isinstance(node, Mapping):
            results[i] = BatchItemResult(error=f"no response for {alias}")
            continue
        value = extract(node)
        if value is None:
            results[i] = BatchItemResult(error=f"missing data in response for {alias}")
        else:
            results[i] = BatchItemResult(value=value)
    return results


class ConflictClassifier:
    """Recognises GitHub errors that mean "the desired state already holds"."""

    PHRASES: tuple[str, ...] = (
        "already a sub-issue",
        "is already a child",
        "already has this sub-issue",
        "duplicate sub-issues",
        "may only have one parent",
        "already in the project",
        "already added",
        "already exists",
    )

    def __init__(self, phrases: Iterable[str] | None = None) -> None:
        self._phrases = tuple(p.lower() for p in (self.PHRASES if phrases is None else phrases))

    def is_idempotent_conflict(self, text: str) -> bool:
        low = (text or "").lower()
        return any(p in low for p in self._phrases)


DEFAULT_CLASSIFIER = ConflictClassifier()


def is_idempotent_conflict(text: str) -> bool:
    return DEFAULT_CLASSIFIER.is_idempotent_conflict(text)


async def execute_batch(
    client: GraphQLTransport,
    operation: BatchOperation,
    payloads: Sequence[Any],
    extract: Callable[[Mapping[str, Any]], Any],
    idempotent: bool = False,
) -> dict[int, BatchItemResult]:
    """Run ``payloads`` as a single request and return per-index results.

    With ``idempotent`` set, a whole-batch error recognised by the conflict
    classifier reports every item as succeeded with an empty value.
    """
    if not payloads:
        return {}
    batch = build_batch(operation, payloads)
    call = client.query if operation.is_query else client.mutate
    try:
        response = await call(batch.document, batch.variables)
    except GitHubAPIError as exc:
        if idempotent and is_idempotent_conflict(str(exc)):
            get_logger().debug(
                f"{operation.field}: treating conflict as success",
                operation=operation.alias_prefix,
                items=len(payloads),
            )
            return {i: BatchItemResult(value="") for i in range(len(payloads))}
        raise
    return demultiplex(response, batch.aliases, extract)


__all__ = [
    "BatchOperation",
    "BatchDocument",
    "BatchItemResult",
    "build_batch",
    "demultiplex",
    "ConflictClassifier",
    "is_idempotent_conflict",
    "execute_batch",
]
