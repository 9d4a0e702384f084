from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import pytest
import requests

from ttr.errors import AuthenticationError, GitHubAPIError, GraphQLError, RateLimitError
from ttr.github_graphql import DEFAULT_GRAPHQL_URL, GitHubGraphQLClient


@dataclass
class _DummyResponse:
    status_code: int
    payload: Any

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    @property
    def text(self) -> str:
        payload = self.payload
        if isinstance(payload, (dict, list)):
            return json.dumps(payload)
        return str(payload)


class _DummySession:
    def __init__(self, responses: list[Any]):
        self._responses = responses
        self.request_log: list[tuple[str, dict[str, Any]]] = []
        self.headers: dict[str, str] = {}
        self.closed = False

    def post(self, url: str, *, json: Any | None = None, timeout: float | None = None):
        self.request_log.append((url, {"json": json, "timeout": timeout}))
        if not self._responses:
            raise AssertionError("No response queued for request")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


def _client(*responses: Any) -> tuple[GitHubGraphQLClient, _DummySession]:
    session = _DummySession(list(responses))
    return GitHubGraphQLClient(token="tkn", session=session), session  # type: ignore[arg-type]


def test_execute_posts_document_and_returns_data():
    client, session = _client(_DummyResponse(200, {"data": {"viewer": {"login": "octocat"}}}))

    data = client.execute("query { viewer { login } }", {"a": 1})

    assert data == {"viewer": {"login": "octocat"}}
    url, sent = session.request_log[0]
    assert url == DEFAULT_GRAPHQL_URL
    assert sent["json"] == {"query": "query { viewer { login } }", "variables": {"a": 1}}
    assert session.headers["Authorization"] == "Bearer tkn"
    assert session.headers["User-Agent"] == "ttr"


def test_execute_omits_empty_variables():
    client, session = _client(_DummyResponse(200, {"data": {}}))
    client.execute("query { x }")
    assert session.request_log[0][1]["json"] == {"query": "query { x }"}


def test_unauthorized_maps_to_authentication_error():
    client, _ = _client(_DummyResponse(401, {"message": "Bad credentials"}))
    with pytest.raises(AuthenticationError) as exc:
        client.execute("query { x }")
    assert exc.value.status == 401


def test_forbidden_rate_limit_maps_to_rate_limit_error():
    client, _ = _client(_DummyResponse(403, {"message": "API rate limit exceeded"}))
    with pytest.raises(RateLimitError):
        client.execute("query { x }")


def test_forbidden_without_rate_limit_is_generic():
    client, _ = _client(_DummyResponse(403, {"message": "Resource not accessible"}))
    with pytest.raises(GitHubAPIError) as exc:
        client.execute("query { x }")
    assert not isinstance(exc.value, RateLimitError)
    assert "Resource not accessible" in str(exc.value)


def test_server_error_carries_status():
    client, _ = _client(_DummyResponse(502, "Bad gateway"))
    with pytest.raises(GitHubAPIError) as exc:
        client.execute("query { x }")
    assert exc.value.status == 502
    assert exc.value.response_text == "Bad gateway"


def test_graphql_errors_are_collected():
    payload = {
        "data": None,
        "errors": [
            {"message": "Could not resolve to an Issue", "path": ["repository", "issue_9"]},
            {"message": "Something else"},
        ],
    }
    client, _ = _client(_DummyResponse(200, payload))
    with pytest.raises(GraphQLError) as exc:
        client.execute("query { x }")
    assert exc.value.messages == [
        "Could not resolve to an Issue (path: ['repository', 'issue_9'])",
        "Something else",
    ]


def test_invalid_json_and_missing_data():
    client, _ = _client(_DummyResponse(200, ValueError("not json")), _DummyResponse(200, {}))
    with pytest.raises(GitHubAPIError, match="Failed to parse"):
        client.execute("query { x }")
    with pytest.raises(GitHubAPIError, match="No data"):
        client.execute("query { x }")


def test_transport_failure_wrapped():
    client, _ = _client(requests.ConnectionError("connection refused"))
    with pytest.raises(GitHubAPIError, match="Failed to send request"):
        client.execute("query { x }")


def test_async_query_and_mutate_run_in_executor():
    client, session = _client(
        _DummyResponse(200, {"data": {"a": 1}}), _DummyResponse(200, {"data": {"b": 2}})
    )

    async def _run() -> None:
        assert await client.query("query { a }") == {"a": 1}
        assert await client.mutate("mutation { b }", {"input": {}}) == {"b": 2}

    asyncio.run(_run())
    assert len(session.request_log) == 2


def test_close_closes_session():
    client, session = _client()
    client.close()
    assert session.closed
