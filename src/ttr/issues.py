"""Repository, user, label, issue-type and issue operations."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .batch import BatchItemResult, BatchOperation, execute_batch
from .errors import GitHubAPIError, GraphQLError, RepositoryNotFoundError, UserNotFoundError
from .github_graphql import GraphQLTransport
from .logging import get_logger
from .models import IssueInfo, RemoteIssue

REPOSITORY_QUERY = """
query($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    id
    owner { __typename }
  }
}
"""

USER_QUERY = """
query($login: String!) {
  user(login: $login) { id }
}
"""

LABELS_QUERY = """
query($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    labels(first: 100) { nodes { id name } }
  }
}
"""

CREATE_LABEL_MUTATION = """
mutation($input: CreateLabelInput!) {
  createLabel(input: $input) { label { id name } }
}
"""

ISSUE_TYPES_QUERY = """
query($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    issueTypes(first: 50) { nodes { id name } }
  }
}
"""

ISSUE_FIELDS = "id number title body state url"


@dataclass(frozen=True)
class RepositoryInfo:
    id: str
    owner_type: str  # Organization / User

    @property
    def is_organization(self) -> bool:
        return self.owner_type == "Organization"


@dataclass(frozen=True)
class IssueCreate:
    title: str
    body: str
    label_ids: tuple[str, ...] = ()
    issue_type_id: str | None = None


@dataclass(frozen=True)
class IssueUpdate:
    issue_id: str
    title: str
    body: str
    issue_type_id: str | None = None


def _nodes(container: Any, key: str) -> list[Mapping[str, Any]]:
    if not isinstance(container, Mapping):
        return []
    connection = container.get(key)
    if not isinstance(connection, Mapping):
        return []
    return [n for n in connection.get("nodes") or [] if isinstance(n, Mapping)]


async def get_repository(client: GraphQLTransport, owner: str, name: str) -> RepositoryInfo:
    data = await client.query(REPOSITORY_QUERY, {"owner": owner, "name": name})
    repo = data.get("repository")
    if not isinstance(repo, Mapping) or not repo.get("id"):
        raise RepositoryNotFoundError(f"Repository {owner}/{name} not found")
    owner_node = repo.get("owner") or {}
    return RepositoryInfo(id=str(repo["id"]), owner_type=str(owner_node.get("__typename", "")))


async def get_user_id(client: GraphQLTransport, login: str) -> str:
    data = await client.query(USER_QUERY, {"login": login})
    user = data.get("user")
    if not isinstance(user, Mapping) or not user.get("id"):
        raise UserNotFoundError(f"User '{login}' not found")
    return str(user["id"])


async def fetch_labels(client: GraphQLTransport, owner: str, name: str) -> dict[str, str]:
    """Return the repository labels as ``lower-cased name -> node id``."""
    data = await client.query(LABELS_QUERY, {"owner": owner, "name": name})
    return {
        str(n["name"]).lower(): str(n["id"])
        for n in _nodes(data.get("repository"), "labels")
        if n.get("name") and n.get("id")
    }


async def create_label(client: GraphQLTransport, repository_id: str, name: str, color: str) -> str:
    data = await client.mutate(
        CREATE_LABEL_MUTATION,
        {"input": {"repositoryId": repository_id, "name": name, "color": color}},
    )
    label = (data.get("createLabel") or {}).get("label")
    if not isinstance(label, Mapping) or not label.get("id"):
        raise GitHubAPIError(f"Failed to create label '{name}'")
    return str(label["id"])


async def fetch_issue_types(client: GraphQLTransport, owner: str, name: str) -> dict[str, str]:
    """Return issue types as ``lower-cased name -> node id``.

    Issue types are an organisation feature; personal repositories (and hosts
    that do not know the field) yield an empty mapping.
    """
    try:
        data = await client.query(ISSUE_TYPES_QUERY, {"owner": owner, "name": name})
    except GraphQLError as exc:
        get_logger().debug("issue types unavailable", error=str(exc))
        return {}
    return {
        str(n["name"]).lower(): str(n["id"])
        for n in _nodes(data.get("repository"), "issueTypes")
        if n.get("name") and n.get("id")
    }


def build_issues_query(numbers: Sequence[int]) -> str:
    selections = "\n    ".join(
        f"issue_{n}: issue(number: {int(n)}) {{ {ISSUE_FIELDS} }}" for n in numbers
    )
    return (
        "query($owner: String!, $name: String!) {\n"
        "  repository(owner: $owner, name: $name) {\n"
        f"    {selections}\n"
        "  }\n"
        "}"
    )


async def fetch_issues(
    client: GraphQLTransport, owner: str, name: str, numbers: Iterable[int]
) -> dict[int, RemoteIssue]:
    """Fetch issues by number in a single request.

    Numbers GitHub does not know are absent from the result.
    """
    unique = list(dict.fromkeys(numbers))
    if not unique:
        return {}
    data = await client.query(build_issues_query(unique), {"owner": owner, "name": name})
    repo = data.get("repository")
    if not isinstance(repo, Mapping):
        return {}
    found: dict[int, RemoteIssue] = {}
    for number in unique:
        node = repo.get(f"issue_{number}")
        if isinstance(node, Mapping) and node.get("id"):
            found[number] = RemoteIssue.from_payload({**node, "number": number})
    return found


def _issue_info(node: Mapping[str, Any]) -> IssueInfo | None:
    issue = node.get("issue")
    if not isinstance(issue, Mapping) or not issue.get("id") or issue.get("number") is None:
        return None
    return IssueInfo.from_payload(issue)


def _issue_id(node: Mapping[str, Any]) -> str | None:
    issue = node.get("issue")
    if not isinstance(issue, Mapping):
        return None
    return issue.get("id")


def create_input(
    repository_id: str, create: IssueCreate, assignee_ids: Sequence[str] = ()
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "repositoryId": repository_id,
        "title": create.title,
        "body": create.body,
    }
    if assignee_ids:
        payload["assigneeIds"] = list(assignee_ids)
    if create.label_ids:
        payload["labelIds"] = list(create.label_ids)
    if create.issue_type_id:
        payload["issueTypeId"] = create.issue_type_id
    return payload


def update_input(update: IssueUpdate) -> dict[str, Any]:
    payload: dict[str, Any] = {"id": update.issue_id, "title": update.title, "body": update.body}
    if update.issue_type_id:
        payload["issueTypeId"] = update.issue_type_id
    return payload


async def create_issues(
    client: GraphQLTransport,
    repository_id: str,
    creates: Sequence[IssueCreate],
    assignee_ids: Sequence[str] = (),
) -> dict[int, BatchItemResult]:
    """Create issues in one aliased mutation; values are ``IssueInfo``."""
    payloads = [create_input(repository_id, c, assignee_ids) for c in creates]
    return await execute_batch(client, BatchOperation.CREATE_ISSUE, payloads, _issue_info)


async def update_issues(
    client: GraphQLTransport, updates: Sequence[IssueUpdate]
) -> dict[int, BatchItemResult]:
    payloads = [update_input(u) for u in updates]
    return await execute_batch(client, BatchOperation.UPDATE_ISSUE, payloads, _issue_info)


async def close_issues(
    client: GraphQLTransport, issue_ids: Sequence[str]
) -> dict[int, BatchItemResult]:
    payloads = [{"issueId": i} for i in issue_ids]
    return await execute_batch(client, BatchOperation.CLOSE_ISSUE, payloads, _issue_id)


async def reopen_issues(
    client: GraphQLTransport, issue_ids: Sequence[str]
) -> dict[int, BatchItemResult]:
    payloads = [{"issueId": i} for i in issue_ids]
    return await execute_batch(client, BatchOperation.REOPEN_ISSUE, payloads, _issue_id)


__all__ = [
    "RepositoryInfo",
    "IssueCreate",
    "IssueUpdate",
    "get_repository",
    "get_user_id",
    "fetch_labels",
    "create_label",
    "fetch_issue_types",
    "build_issues_query",
    "fetch_issues",
    "create_input",
    "update_input",
    "create_issues",
    "update_issues",
    "close_issues",
    "reopen_issues",
]
