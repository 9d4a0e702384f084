"""GitHub GraphQL transport.

A thin ``requests`` based client exposing two awaitables, ``query`` and
``mutate``. Each executes one GraphQL document against the configured endpoint
and returns the decoded ``data`` object, or raises a classified
``GitHubAPIError`` subclass. The blocking HTTP call runs in the default
executor so the sync engine can stay a single ``asyncio`` flow.

No retries happen here: re-running a sync is safe and is the recovery path.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from .errors import AuthenticationError, GitHubAPIError, GraphQLError, RateLimitError

DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "ttr"
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_ERROR_STATUS = 400


class GraphQLTransport(Protocol):
    """The capability the sync core depends on."""

    async def query(
        self, document: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]: ...  # pragma: no cover - structural only

    async def mutate(
        self, document: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]: ...  # pragma: no cover - structural only


def _format_graphql_error(error: Any) -> str:
    if not isinstance(error, dict):
        return str(error)
    message = str(error.get("message", error))
    path = error.get("path")
    if isinstance(path, list) and path:
        message += f" (path: {path})"
    return message


@dataclass
class GitHubGraphQLClient:
    """GraphQL client for the GitHub API."""

    token: str
    endpoint: str = DEFAULT_GRAPHQL_URL
    timeout: float = 30
    session: requests.Session | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    def execute(self, document: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Blocking execution of a single GraphQL document."""
        payload: dict[str, Any] = {"query": document}
        if variables:
            payload["variables"] = variables
        try:
            response = self._session.post(self.endpoint, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise GitHubAPIError(f"Failed to send request to GitHub API: {exc}") from exc

        status = response.status_code
        if status == HTTP_UNAUTHORIZED:
            raise AuthenticationError(
                "GitHub API authentication failed. Check your token.",
                status=status,
                response_text=response.text,
            )
        if status == HTTP_FORBIDDEN:
            text = response.text or ""
            if "rate limit" in text.lower():
                raise RateLimitError(
                    "GitHub API rate limit exceeded. Please wait and try again.",
                    status=status,
                    response_text=text,
                )
            raise GitHubAPIError(f"GitHub API forbidden: {text}", status=status, response_text=text)
        if status >= HTTP_ERROR_STATUS:
            raise GitHubAPIError(
                f"GitHub API error ({status}): {response.text}",
                status=status,
                response_text=response.text,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise GitHubAPIError(
                f"Failed to parse GitHub API response: {exc}", status=status
            ) from exc
        if not isinstance(body, dict):
            raise GitHubAPIError("Unexpected GitHub API response shape", status=status)
        errors = body.get("errors")
        if errors:
            raise GraphQLError([_format_graphql_error(e) for e in errors])
        data = body.get("data")
        if not isinstance(data, dict):
            raise GitHubAPIError("No data in GitHub API response", status=status)
        return data

    async def query(
        self, document: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.execute, document, variables)
        )

    async def mutate(
        self, document: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        # Same wire call as query; kept separate so callers state intent.
        return await self.query(document, variables)

    def close(self) -> None:
        self._session.close()


__all__ = [
    "DEFAULT_GRAPHQL_URL",
    "GraphQLTransport",
    "GitHubGraphQLClient",
]
