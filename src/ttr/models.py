from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class RemoteIssue:
    """An issue as currently stored on GitHub.

    Fetched fresh at the start of every sync and never cached across runs.
    """

    id: str
    number: int
    title: str
    body: str
    state: str  # OPEN / CLOSED
    url: str

    @property
    def is_open(self) -> bool:
        return self.state.upper() == "OPEN"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> RemoteIssue:
        return cls(
            id=str(payload.get("id", "")),
            number=int(payload.get("number", 0)),
            title=str(payload.get("title") or ""),
            body=str(payload.get("body") or ""),
            state=str(payload.get("state") or "OPEN"),
            url=str(payload.get("url") or ""),
        )


@dataclass(frozen=True)
class IssueInfo:
    id: str
    number: int
    url: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> IssueInfo:
        return cls(
            id=str(payload.get("id", "")),
            number=int(payload.get("number", 0)),
            url=str(payload.get("url") or ""),
        )


@dataclass(frozen=True)
class ProjectInfo:
    id: str
    title: str
    number: int


@dataclass(frozen=True)
class ProjectIteration:
    id: str
    title: str
    start_date: str | None = None


@dataclass(frozen=True)
class ProjectField:
    """A GitHub Projects v2 field.

    ``kind`` is one of ``single_select``, ``iteration`` or ``other``. Options
    keep their display names; lookups are case-insensitive at the call site.
    """

    id: str
    name: str
    kind: str
    options: dict[str, str] = field(default_factory=dict)  # option name -> id
    active_iterations: tuple[ProjectIteration, ...] = ()
    completed_iterations: tuple[ProjectIteration, ...] = ()


@dataclass(frozen=True)
class StatusFieldCache:
    field_id: str
    status_to_option: dict[str, str]  # lower-cased ticket status -> option id

    def option_for(self, status: str) -> str | None:
        return self.status_to_option.get(status.lower())


@dataclass(frozen=True)
class IterationFieldCache:
    field_id: str
    iteration_id: str


@dataclass(frozen=True)
class ProjectFieldsCache:
    status: StatusFieldCache | None = None
    iteration: IterationFieldCache | None = None

    @property
    def is_empty(self) -> bool:
        return self.status is None and self.iteration is None


__all__ = [
    "RemoteIssue",
    "IssueInfo",
    "ProjectInfo",
    "ProjectIteration",
    "ProjectField",
    "StatusFieldCache",
    "IterationFieldCache",
    "ProjectFieldsCache",
]
