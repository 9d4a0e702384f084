"""GitHub Projects (v2) support.

Project lookup, field discovery and the batched item operations used by the
sync engine. Project membership and field values are advisory: callers log
failures and carry on.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .batch import BatchItemResult, BatchOperation, execute_batch
from .errors import ProjectConfigError
from .github_graphql import GraphQLTransport
from .issues import get_repository
from .logging import get_logger
from .models import (
    IterationFieldCache,
    ProjectField,
    ProjectFieldsCache,
    ProjectInfo,
    ProjectIteration,
    StatusFieldCache,
)

CURRENT_ITERATION = "@current"

_PROJECTS_SELECTION = "projectsV2(first: 50) { nodes { id title number } }"

REPOSITORY_PROJECTS_QUERY = f"""
query($owner: String!, $name: String!) {{
  repository(owner: $owner, name: $name) {{ {_PROJECTS_SELECTION} }}
}}
"""

ORGANIZATION_PROJECTS_QUERY = f"""
query($login: String!) {{
  organization(login: $login) {{ {_PROJECTS_SELECTION} }}
}}
"""

USER_PROJECTS_QUERY = f"""
query($login: String!) {{
  user(login: $login) {{ {_PROJECTS_SELECTION} }}
}}
"""

PROJECT_FIELDS_QUERY = """
query($id: ID!) {
  node(id: $id) {
    ... on ProjectV2 {
      fields(first: 50) {
        nodes {
          __typename
          ... on ProjectV2FieldCommon { id name }
          ... on ProjectV2SingleSelectField { options { id name } }
          ... on ProjectV2IterationField {
            configuration {
              iterations { id title startDate }
              completedIterations { id title startDate }
            }
          }
        }
      }
    }
  }
}
"""


def _parse_projects(owner_node: Any) -> list[ProjectInfo]:
    if not isinstance(owner_node, Mapping):
        return []
    connection = owner_node.get("projectsV2") or {}
    projects: list[ProjectInfo] = []
    for node in connection.get("nodes") or []:
        if not isinstance(node, Mapping) or not node.get("id"):
            continue
        projects.append(
            ProjectInfo(
                id=str(node["id"]),
                title=str(node.get("title") or ""),
                number=int(node.get("number") or 0),
            )
        )
    return projects


def find_matching_project(
    projects: Iterable[ProjectInfo], name: str, number: int | None = None
) -> ProjectInfo | None:
    """Exact number match wins over a case-insensitive title match."""
    projects = list(projects)
    if number is not None:
        for project in projects:
            if project.number == number:
                return project
    wanted = name.lower()
    for project in projects:
        if project.title.lower() == wanted:
            return project
    return None


def _as_number(name_or_number: str) -> int | None:
    text = str(name_or_number).strip()
    return int(text) if text.isdigit() else None


async def find_project(
    client: GraphQLTransport, owner: str, repo: str, name_or_number: str
) -> ProjectInfo | None:
    """Find a project linked to the repository, else owned by its owner."""
    name = str(name_or_number)
    number = _as_number(name)
    data = await client.query(REPOSITORY_PROJECTS_QUERY, {"owner": owner, "name": repo})
    found = find_matching_project(_parse_projects(data.get("repository")), name, number)
    if found:
        return found
    repository = await get_repository(client, owner, repo)
    if repository.is_organization:
        data = await client.query(ORGANIZATION_PROJECTS_QUERY, {"login": owner})
        owner_node = data.get("organization")
    else:
        data = await client.query(USER_PROJECTS_QUERY, {"login": owner})
        owner_node = data.get("user")
    return find_matching_project(_parse_projects(owner_node), name, number)


def _parse_iterations(items: Any) -> tuple[ProjectIteration, ...]:
    return tuple(
        ProjectIteration(
            id=str(i["id"]), title=str(i.get("title") or ""), start_date=i.get("startDate")
        )
        for i in items or []
        if isinstance(i, Mapping) and i.get("id")
    )


def parse_project_field(node: Mapping[str, Any]) -> ProjectField:
    typename = node.get("__typename")
    field_id = str(node.get("id", ""))
    name = str(node.get("name", ""))
    if typename == "ProjectV2SingleSelectField":
        options = {
            str(o["name"]): str(o["id"])
            for o in node.get("options") or []
            if isinstance(o, Mapping) and o.get("id")
        }
        return ProjectField(id=field_id, name=name, kind="single_select", options=options)
    if typename == "ProjectV2IterationField":
        config = node.get("configuration") or {}
        return ProjectField(
            id=field_id,
            name=name,
            kind="iteration",
            active_iterations=_parse_iterations(config.get("iterations")),
            completed_iterations=_parse_iterations(config.get("completedIterations")),
        )
    return ProjectField(id=field_id, name=name, kind="other")


async def fetch_project_fields(client: GraphQLTransport, project_id: str) -> list[ProjectField]:
    data = await client.query(PROJECT_FIELDS_QUERY, {"id": project_id})
    node = data.get("node") or {}
    nodes = (node.get("fields") or {}).get("nodes") or []
    return [parse_project_field(n) for n in nodes if isinstance(n, Mapping) and n.get("id")]


def _find_field(fields: Iterable[ProjectField], name: str) -> ProjectField | None:
    wanted = name.lower()
    return next((f for f in fields if f.name.lower() == wanted), None)


def build_status_field_cache(
    fields: Sequence[ProjectField], field_name: str, status_mapping: Mapping[str, str]
) -> StatusFieldCache | None:
    """Map ticket statuses onto option ids of the single-select ``field_name``.

    A missing field is skipped with a warning; a missing option is fatal.
    """
    logger = get_logger()
    field = _find_field(fields, field_name)
    if field is None:
        logger.warning(f"Project field '{field_name}' not found, skipping status sync")
        return None
    if field.kind != "single_select":
        logger.warning(
            f"Project field '{field_name}' is not a single-select field, skipping status sync"
        )
        return None
    options = {name.lower(): option_id for name, option_id in field.options.items()}
    status_to_option: dict[str, str] = {}
    for ticket_status, option_name in status_mapping.items():
        option_id = options.get(option_name.lower())
        if option_id is None:
            raise ProjectConfigError(
                f"Project status option '{option_name}' (for ticket status '{ticket_status}') "
                f"not found.\nAvailable options: {list(field.options)}"
            )
        status_to_option[ticket_status.lower()] = option_id
    return StatusFieldCache(field_id=field.id, status_to_option=status_to_option)


def build_iteration_field_cache(
    fields: Sequence[ProjectField], field_name: str, iteration: str
) -> IterationFieldCache | None:
    """Resolve ``iteration`` (a title or ``@current``) among active iterations."""
    logger = get_logger()
    field = _find_field(fields, field_name)
    if field is None:
        logger.warning(f"Project field '{field_name}' not found, skipping iteration sync")
        return None
    if field.kind != "iteration":
        logger.warning(
            f"Project field '{field_name}' is not an iteration field, skipping iteration sync"
        )
        return None
    active = field.active_iterations
    if iteration == CURRENT_ITERATION:
        if not active:
            logger.warning("No active iteration found, skipping iteration sync")
            return None
        return IterationFieldCache(field_id=field.id, iteration_id=active[0].id)
    wanted = iteration.lower()
    match = next((i for i in active if i.title.lower() == wanted), None)
    if match is None:
        raise ProjectConfigError(
            f"Iteration '{iteration}' not found.\n"
            f"Available active iterations: {[i.title for i in active]}"
        )
    return IterationFieldCache(field_id=field.id, iteration_id=match.id)


async def build_project_fields_cache(
    client: GraphQLTransport,
    project: ProjectInfo,
    *,
    status_field: str,
    status_mapping: Mapping[str, str],
    iteration_field: str,
    iteration: str | None,
) -> ProjectFieldsCache | None:
    if not status_mapping and not iteration:
        return None
    fields = await fetch_project_fields(client, project.id)
    status = (
        build_status_field_cache(fields, status_field, status_mapping) if status_mapping else None
    )
    iteration_cache = (
        build_iteration_field_cache(fields, iteration_field, iteration) if iteration else None
    )
    cache = ProjectFieldsCache(status=status, iteration=iteration_cache)
    return None if cache.is_empty else cache


def _item_id(node: Mapping[str, Any]) -> str | None:
    item = node.get("item")
    if not isinstance(item, Mapping):
        return None
    return item.get("id")


def _field_item_id(node: Mapping[str, Any]) -> str | None:
    item = node.get("projectV2Item")
    if not isinstance(item, Mapping):
        return None
    return item.get("id")


async def add_issues_to_project(
    client: GraphQLTransport, project_id: str, issue_ids: Sequence[str]
) -> dict[int, BatchItemResult]:
    """Add issues to a project; values are item ids.

    An "already in the project" rejection reports every item with an empty id.
    """
    payloads = [{"projectId": project_id, "contentId": issue_id} for issue_id in issue_ids]
    return await execute_batch(
        client, BatchOperation.ADD_PROJECT_ITEM, payloads, _item_id, idempotent=True
    )


async def fetch_project_item_ids(
    client: GraphQLTransport, project_id: str, issue_ids: Sequence[str]
) -> dict[str, str]:
    """Map issue node ids to their item id in ``project_id``.

    Issues that are not in the project are absent from the result.
    """

    def extract(node: Mapping[str, Any]) -> str:
        items = (node.get("projectItems") or {}).get("nodes") or []
        for item in items:
            if isinstance(item, Mapping) and (item.get("project") or {}).get("id") == project_id:
                return str(item.get("id", ""))
        return ""

    results = await execute_batch(client, BatchOperation.PROJECT_ITEMS, list(issue_ids), extract)
    return {
        issue_ids[i]: result.value
        for i, result in results.items()
        if result.ok and result.value
    }


async def set_single_select_values(
    client: GraphQLTransport,
    project_id: str,
    field_id: str,
    updates: Sequence[tuple[str, str]],
) -> dict[int, BatchItemResult]:
    """Set ``(item_id, option_id)`` pairs on a single-select field."""
    payloads = [
        {
            "projectId": project_id,
            "itemId": item_id,
            "fieldId": field_id,
            "value": {"singleSelectOptionId": option_id},
        }
        for item_id, option_id in updates
    ]
    return await execute_batch(client, BatchOperation.SET_FIELD_VALUE, payloads, _field_item_id)


async def set_iteration_values(
    client: GraphQLTransport,
    project_id: str,
    field_id: str,
    iteration_id: str,
    item_ids: Sequence[str],
) -> dict[int, BatchItemResult]:
    payloads = [
        {
            "projectId": project_id,
            "itemId": item_id,
            "fieldId": field_id,
            "value": {"iterationId": iteration_id},
        }
        for item_id in item_ids
    ]
    return await execute_batch(client, BatchOperation.SET_ITERATION, payloads, _field_item_id)


def count_failures(results: Mapping[int, BatchItemResult]) -> int:
    return sum(1 for r in results.values() if not r.ok)


__all__ = [
    "CURRENT_ITERATION",
    "find_matching_project",
    "find_project",
    "parse_project_field",
    "fetch_project_fields",
    "build_status_field_cache",
    "build_iteration_field_cache",
    "build_project_fields_cache",
    "add_issues_to_project",
    "fetch_project_item_ids",
    "set_single_select_values",
    "set_iteration_values",
    "count_failures",
]
