"""Parent/child sub-issue links."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .batch import BatchItemResult, BatchOperation, execute_batch
from .github_graphql import GraphQLTransport


@dataclass(frozen=True)
class SubIssueLink:
    parent_issue_id: str
    child_issue_id: str

    def to_input(self) -> dict[str, str]:
        return {"issueId": self.parent_issue_id, "subIssueId": self.child_issue_id}


def _sub_issue_id(node: Mapping[str, Any]) -> str | None:
    sub = node.get("subIssue")
    if not isinstance(sub, Mapping):
        return None
    return sub.get("id")


async def add_sub_issues(
    client: GraphQLTransport, links: Sequence[SubIssueLink]
) -> dict[int, BatchItemResult]:
    """Link every child under its parent in one mutation.

    Linking is idempotent: GitHub's "already linked" errors count as success.
    """
    return await execute_batch(
        client,
        BatchOperation.ADD_SUB_ISSUE,
        [link.to_input() for link in links],
        _sub_issue_id,
        idempotent=True,
    )


__all__ = ["SubIssueLink", "add_sub_issues"]
