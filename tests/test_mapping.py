from __future__ import annotations

import re

import pytest

from ttr.errors import GitHubAPIError, MappingError
from ttr.mapping import (
    LabelResolver,
    generate_label_color,
    resolve_issue_type,
    validate_issue_type_mappings,
)


def test_label_color_is_deterministic_hex():
    assert generate_label_color("bug") == "567834"
    color = generate_label_color("frontend")
    assert color == generate_label_color("frontend")
    assert re.fullmatch(r"[0-9a-f]{6}", color)


def test_label_color_channels_stay_muted():
    for name in ("a", "docs", "needs-triage", "ünïcode"):
        color = generate_label_color(name)
        channels = [int(color[i : i + 2], 16) for i in (0, 2, 4)]
        assert all(40 <= c < 220 for c in channels)


def test_resolve_issue_type():
    cache = {"bug": "IT_1", "feature": "IT_2"}
    mapping = {"bug": "Bug", "epic": "Epic"}
    assert resolve_issue_type("bug", mapping, cache) == "IT_1"
    assert resolve_issue_type("epic", mapping, cache) is None
    assert resolve_issue_type("task", mapping, cache) is None
    assert resolve_issue_type("bug", mapping, {}) is None


def test_validate_mappings_passes_without_issue_types():
    validate_issue_type_mappings({"bug": "Bug"}, {})


def test_validate_mappings_rejects_unknown_type():
    with pytest.raises(MappingError) as exc:
        validate_issue_type_mappings({"bug": "Defect"}, {"bug": "IT_1", "task": "IT_2"})
    assert "Available issue types: ['bug', 'task']" in str(exc.value)


class _LabelClient:
    def __init__(self, labels, fail_create=False):
        self.labels = labels
        self.fail_create = fail_create
        self.created = []
        self.queries = 0

    async def query(self, document, variables=None):
        self.queries += 1
        nodes = [{"id": v, "name": k} for k, v in self.labels.items()]
        return {"repository": {"labels": {"nodes": nodes}}}

    async def mutate(self, document, variables=None):
        if self.fail_create:
            raise GitHubAPIError("forbidden")
        name = variables["input"]["name"]
        self.created.append(variables["input"])
        return {"createLabel": {"label": {"id": f"L_{name}", "name": name}}}


@pytest.mark.asyncio
async def test_label_resolver_uses_cache_case_insensitively():
    client = _LabelClient({})
    resolver = LabelResolver(client, "o", "r", "R_1", {"bug": "L_bug"})
    assert await resolver.resolve_label_ids(["BUG", "bug"]) == ["L_bug"]
    assert client.queries == 0


@pytest.mark.asyncio
async def test_label_resolver_refreshes_then_creates():
    client = _LabelClient({"Docs": "L_docs"})
    resolver = LabelResolver(client, "o", "r", "R_1")
    ids = await resolver.resolve_label_ids(["docs", "ui"])

    assert ids == ["L_docs", "L_ui"]
    assert client.created == [
        {"repositoryId": "R_1", "name": "ui", "color": generate_label_color("ui")}
    ]


@pytest.mark.asyncio
async def test_label_resolver_without_create_drops_unknown_tags():
    client = _LabelClient({})
    resolver = LabelResolver(client, "o", "r", "R_1", create_missing=False)
    assert await resolver.resolve_label_ids(["ui"]) == []
    assert client.created == []


@pytest.mark.asyncio
async def test_label_resolver_create_failure_is_not_fatal():
    client = _LabelClient({}, fail_create=True)
    resolver = LabelResolver(client, "o", "r", "R_1")
    assert await resolver.resolve_label_id("ui") is None


@pytest.mark.asyncio
async def test_label_sync_disabled_returns_nothing():
    resolver = LabelResolver(_LabelClient({}), "o", "r", "R_1", sync_tags=False)
    assert await resolver.resolve_label_ids(["bug"]) == []
