"""Label and issue-type resolution.

Ticket tags become GitHub labels (looked up case-insensitively, optionally
created with a colour derived from the name) and ticket types map onto
organisation issue types through the ``mapping.type`` config table.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from .errors import GitHubAPIError, MappingError
from .github_graphql import GraphQLTransport
from .issues import create_label, fetch_labels
from .logging import get_logger

_MASK32 = 0xFFFFFFFF


def generate_label_color(name: str) -> str:
    """Deterministic muted colour (``rrggbb``) for a label name."""
    acc = 0
    for byte in name.encode("utf-8"):
        acc = ((acc + byte) * 31) & _MASK32
    r = ((acc >> 16) & 0xFF) % 180 + 40
    g = ((acc >> 8) & 0xFF) % 180 + 40
    b = (acc & 0xFF) % 180 + 40
    return f"{r:02x}{g:02x}{b:02x}"


def resolve_issue_type(
    ticket_type: str, mapping: Mapping[str, str], cache: Mapping[str, str]
) -> str | None:
    """Return the issue type node id for ``ticket_type`` or ``None``.

    ``cache`` is keyed by lower-cased GitHub issue type name.
    """
    if not cache:
        return None
    github_type = mapping.get(ticket_type)
    if github_type is None:
        return None
    return cache.get(github_type.lower())


def validate_issue_type_mappings(mapping: Mapping[str, str], cache: Mapping[str, str]) -> None:
    if not cache or not mapping:
        return
    for ticket_type, github_type in mapping.items():
        if github_type.lower() not in cache:
            available = sorted(cache)
            raise MappingError(
                f"Issue type mapping error: '{ticket_type}' -> '{github_type}' not found.\n"
                f"Available issue types: {available}"
            )


class LabelResolver:
    """Resolve tags to label node ids, caching by lower-cased name."""

    def __init__(
        self,
        client: GraphQLTransport,
        owner: str,
        repo: str,
        repository_id: str,
        cache: Mapping[str, str] | None = None,
        *,
        sync_tags: bool = True,
        create_missing: bool = True,
    ) -> None:
        self.client = client
        self.owner = owner
        self.repo = repo
        self.repository_id = repository_id
        self.cache: dict[str, str] = dict(cache or {})
        self.sync_tags = sync_tags
        self.create_missing = create_missing
        self._logger = get_logger()

    async def resolve_label_id(self, tag: str) -> str | None:
        key = tag.lower()
        if key in self.cache:
            return self.cache[key]
        try:
            fresh = await fetch_labels(self.client, self.owner, self.repo)
        except GitHubAPIError as exc:
            self._logger.warning(f"Label lookup for '{tag}' failed: {exc}", tag=tag)
            return None
        self.cache.update(fresh)
        if key in self.cache:
            return self.cache[key]
        if not self.create_missing:
            self._logger.debug(f"Label '{tag}' not found; not creating", tag=tag)
            return None
        try:
            label_id = await create_label(
                self.client, self.repository_id, tag, generate_label_color(tag)
            )
        except GitHubAPIError as exc:
            self._logger.warning(f"Could not create label '{tag}': {exc}", tag=tag)
            return None
        self.cache[key] = label_id
        return label_id

    async def resolve_label_ids(self, tags: Iterable[str]) -> list[str]:
        """Label ids for ``tags``; unresolvable tags are dropped."""
        if not self.sync_tags:
            return []
        ids: list[str] = []
        for tag in tags:
            label_id = await self.resolve_label_id(tag)
            if label_id and label_id not in ids:
                ids.append(label_id)
        return ids


__all__ = [
    "generate_label_color",
    "resolve_issue_type",
    "validate_issue_type_mappings",
    "LabelResolver",
]
