"""Pytest configuration for ttr tests.

Ensures the in-repo ``src`` directory is on ``sys.path`` so the package can be
imported without an editable install, and provides an in-memory GitHub
GraphQL fake for engine-level tests.
"""

from __future__ import annotations

import re
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import ttr.logging as ttr_logging  # noqa: E402

# Ensure pytest-asyncio plugin is loaded explicitly so @pytest.mark.asyncio tests run
pytest_plugins = ["pytest_asyncio"]

_ALIAS_RE = re.compile(r"(\w+)_(\d+): (\w+)\(")


class FakeGraphQLClient:
    """Records every call and answers through ``handler(kind, document, variables)``.

    A handler returning an exception instance makes the call raise it.
    """

    def __init__(self, handler: Callable[[str, str, dict[str, Any]], Any]):
        self.handler = handler
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.closed = False

    def close(self) -> None:
        self.closed = True

    async def query(self, document: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._dispatch("query", document, variables)

    async def mutate(self, document: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._dispatch("mutate", document, variables)

    def _dispatch(self, kind: str, document: str, variables: dict[str, Any] | None) -> Any:
        variables = dict(variables or {})
        self.calls.append((kind, document, variables))
        result = self.handler(kind, document, variables)
        if isinstance(result, Exception):
            raise result
        return result

    def mutations(self, field: str | None = None) -> list[tuple[str, str, dict[str, Any]]]:
        return [
            c for c in self.calls if c[0] == "mutate" and (field is None or f"{field}(" in c[1])
        ]


class FakeGitHub:
    """A tiny stateful GitHub: one repository, its labels, issues and a project."""

    def __init__(self) -> None:
        self.repository_id = "R_1"
        self.owner_type = "User"
        self.users = {"octocat": "U_1"}
        self.labels: dict[str, str] = {"bug": "L_bug"}
        self.issue_types: dict[str, str] | None = None
        self.issues: dict[int, dict[str, Any]] = {}
        self.next_number = 42
        self.projects: list[dict[str, Any]] = []
        self.project_fields: list[dict[str, Any]] = []
        self.project_items: dict[str, str] = {}  # issue node id -> item id
        self.sub_issues: list[tuple[str, str]] = []
        self.field_values: list[dict[str, Any]] = []
        self.failures: dict[str, Exception] = {}
        self.item_failures: dict[str, set[int]] = {}
        self.client = FakeGraphQLClient(self.handle)

    # ---- helpers ----------------------------------------------------
    def add_issue(self, number: int, title: str, body: str, state: str = "OPEN") -> str:
        node_id = f"I_{number}"
        self.issues[number] = {
            "id": node_id,
            "number": number,
            "title": title,
            "body": body,
            "state": state,
            "url": f"https://github.com/acme/widgets/issues/{number}",
        }
        return node_id

    def _by_id(self, node_id: str) -> dict[str, Any] | None:
        return next((i for i in self.issues.values() if i["id"] == node_id), None)

    # ---- dispatcher -------------------------------------------------
    def handle(self, kind: str, document: str, variables: dict[str, Any]) -> Any:
        for field, exc in self.failures.items():
            if f"{field}(" in document:
                return exc
        if kind == "mutate":
            return self._mutation(document, variables)
        return self._query(document, variables)

    def _query(self, document: str, variables: dict[str, Any]) -> Any:
        if "projectsV2(" in document:
            nodes = {"nodes": self.projects}
            if "repository(" in document:
                return {"repository": {"projectsV2": {"nodes": []}}}
            if "organization(" in document:
                return {"organization": {"projectsV2": nodes}}
            return {"user": {"projectsV2": nodes}}
        if "fields(first: 50)" in document:
            return {"node": {"fields": {"nodes": self.project_fields}}}
        if "issueTypes(" in document:
            if self.issue_types is None:
                return {"repository": {"issueTypes": None}}
            nodes = [{"id": v, "name": k} for k, v in self.issue_types.items()]
            return {"repository": {"issueTypes": {"nodes": nodes}}}
        if "labels(first: 100)" in document:
            nodes = [{"id": v, "name": k} for k, v in self.labels.items()]
            return {"repository": {"labels": {"nodes": nodes}}}
        if "owner { __typename }" in document:
            return {"repository": {"id": self.repository_id, "owner": {"__typename": self.owner_type}}}
        if "user(login: $login)" in document:
            user_id = self.users.get(variables["login"])
            return {"user": {"id": user_id} if user_id else None}
        if "issue(number:" in document:
            repo: dict[str, Any] = {}
            for number in re.findall(r"issue_(\d+): issue", document):
                repo[f"issue_{number}"] = self.issues.get(int(number))
            return {"repository": repo}
        if "projectItems(" in document:
            out: dict[str, Any] = {}
            for alias, index, _ in _ALIAS_RE.findall(document):
                issue_id = variables[f"input_{index}"]
                item = self.project_items.get(issue_id)
                nodes = [{"id": item, "project": {"id": "PVT_1"}}] if item else []
                out[f"{alias}_{index}"] = {"projectItems": {"nodes": nodes}}
            return out
        raise AssertionError(f"unexpected query: {document}")

    def _mutation(self, document: str, variables: dict[str, Any]) -> Any:
        if "createLabel(" in document:
            name = variables["input"]["name"]
            self.labels[name] = f"L_{name}"
            return {"createLabel": {"label": {"id": f"L_{name}", "name": name}}}
        out: dict[str, Any] = {}
        for alias, index, field in _ALIAS_RE.findall(document):
            key = f"{alias}_{index}"
            if int(index) in self.item_failures.get(field, set()):
                out[key] = None
                continue
            payload = variables[f"input_{index}"]
            out[key] = getattr(self, f"_m_{field}")(payload)
        return out

    def _m_createIssue(self, payload: dict[str, Any]) -> dict[str, Any]:
        number = self.next_number
        self.next_number += 1
        node_id = self.add_issue(number, payload["title"], payload["body"])
        self.issues[number]["input"] = payload
        return {"issue": {"id": node_id, "number": number, "url": self.issues[number]["url"]}}

    def _m_updateIssue(self, payload: dict[str, Any]) -> dict[str, Any]:
        issue = self._by_id(payload["id"])
        assert issue is not None
        issue["title"] = payload["title"]
        issue["body"] = payload["body"]
        return {"issue": {"id": issue["id"], "number": issue["number"], "url": issue["url"]}}

    def _m_closeIssue(self, payload: dict[str, Any]) -> dict[str, Any]:
        issue = self._by_id(payload["issueId"])
        assert issue is not None
        issue["state"] = "CLOSED"
        return {"issue": {"id": issue["id"]}}

    def _m_reopenIssue(self, payload: dict[str, Any]) -> dict[str, Any]:
        issue = self._by_id(payload["issueId"])
        assert issue is not None
        issue["state"] = "OPEN"
        return {"issue": {"id": issue["id"]}}

    def _m_addSubIssue(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.sub_issues.append((payload["issueId"], payload["subIssueId"]))
        return {"subIssue": {"id": payload["subIssueId"]}}

    def _m_addProjectV2ItemById(self, payload: dict[str, Any]) -> dict[str, Any]:
        item_id = f"PVTI_{payload['contentId']}"
        self.project_items[payload["contentId"]] = item_id
        return {"item": {"id": item_id}}

    def _m_updateProjectV2ItemFieldValue(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.field_values.append(payload)
        return {"projectV2Item": {"id": payload["itemId"]}}


@pytest.fixture(autouse=True)
def _reset_logger():
    yield
    ttr_logging._GLOBAL = None


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def fake_client_factory() -> type[FakeGraphQLClient]:
    return FakeGraphQLClient


@pytest.fixture
def write_ticket(tmp_path: Path) -> Callable[..., Path]:
    """Write a ticket file under ``tmp_path/.tickets`` and return its path."""
    tickets_dir = tmp_path / ".tickets"
    tickets_dir.mkdir(exist_ok=True)

    def _write(name: str, content: str) -> Path:
        path = tickets_dir / name
        path.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
        return path

    return _write
