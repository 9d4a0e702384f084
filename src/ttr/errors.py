"""Errors raised by ttr, plus classification and token redaction.

Three tiers of failure flow through ttr:

- fatal errors raised while the sync engine is being constructed (repository,
  user or project lookups, invalid type/field mappings). These are
  ``SyncError`` subclasses and abort the run before any issue is touched.
- per-ticket failures, which are recorded in that ticket's outcome and never
  raised out of ``SyncEngine.sync``.
- advisory failures (sub-issue links, project membership and fields), which are
  only logged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


class TtrError(RuntimeError):
    """Base class for all ttr errors."""


class ConfigError(TtrError):
    pass


class TicketError(TtrError):
    """Raised when a ticket file cannot be read, parsed or written."""


class GitHubAPIError(TtrError):
    """Raised when the GitHub GraphQL API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


class AuthenticationError(GitHubAPIError):
    pass


class RateLimitError(GitHubAPIError):
    pass


class GraphQLError(GitHubAPIError):
    """GraphQL-level errors; ``messages`` holds each error's text."""

    def __init__(self, messages: list[str]):
        super().__init__("GitHub GraphQL errors:\n  " + "\n  ".join(messages))
        self.messages = messages


class SyncError(TtrError):
    """Fatal error raised before any mutation is issued."""


class RepositoryNotFoundError(SyncError):
    pass


class UserNotFoundError(SyncError):
    pass


class ProjectNotFoundError(SyncError):
    pass


class MappingError(SyncError):
    """A configured ticket-type mapping names an unknown GitHub issue type."""


class ProjectConfigError(SyncError):
    """A configured project option or iteration does not exist remotely."""


# Classic/OAuth/fine-grained GitHub tokens and bearer credentials.
_TOKEN_RE = re.compile(
    r"gh[po]_[A-Za-z0-9]{20,40}"
    r"|github_pat_\w{20,}"
    r"|Bearer\s+[A-Za-z0-9_\-.]{20,}"
)

REDACTED = "<redacted>"

_NETWORK_HINTS = ("timeout", "timed out", "connection reset", "temporarily unavailable")


@dataclass(frozen=True)
class ErrorInfo:
    """Category and redacted message describing why a run failed."""

    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


def redact(text: str) -> str:
    """Replace anything that looks like a GitHub credential in ``text``."""
    return _TOKEN_RE.sub(REDACTED, text) if text else text


def classify_error(exc: BaseException) -> ErrorInfo:
    """Map ``exc`` to an :class:`ErrorInfo`.

    Typed errors map directly. Anything else is matched on keywords in its
    message: rate limits and network trouble are transient, YAML or
    frontmatter problems are ``parse``, the rest is ``generic``.
    """
    text = str(exc)
    lowered = text.lower()

    def info(category: str, **kw: Any) -> ErrorInfo:
        return ErrorInfo(category, redact(text), type(exc).__name__, **kw)

    if isinstance(exc, RateLimitError) or "rate limit" in lowered:
        return info("github.rate_limit", transient=True)
    if isinstance(exc, AuthenticationError):
        return info("github.auth")
    if isinstance(exc, GraphQLError):
        return info("github.graphql", details={"messages": list(exc.messages)})
    if isinstance(exc, ConfigError):
        return info("config")
    if isinstance(exc, SyncError):
        return info("sync.setup")
    if any(hint in lowered for hint in _NETWORK_HINTS):
        return info("network", transient=True)
    if isinstance(exc, TicketError) or "yaml" in lowered or "frontmatter" in lowered:
        return info("parse")
    if isinstance(exc, GitHubAPIError):
        return info("github.http", details={"status": exc.status})
    return info("generic")


__all__ = [
    "TtrError",
    "ConfigError",
    "TicketError",
    "GitHubAPIError",
    "AuthenticationError",
    "RateLimitError",
    "GraphQLError",
    "SyncError",
    "RepositoryNotFoundError",
    "UserNotFoundError",
    "ProjectNotFoundError",
    "MappingError",
    "ProjectConfigError",
    "REDACTED",
    "ErrorInfo",
    "classify_error",
    "redact",
]
