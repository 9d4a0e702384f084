"""ttr - sync a flat-file ticket store to GitHub Issues and Projects.

High-level public API:

import asyncio
from ttr import GitHubGraphQLClient, SyncEngine, load_config, load_tickets

cfg = load_config('.tickets/sync.yaml')
tickets = load_tickets('.tickets')

async def push():
    engine = await SyncEngine.create(GitHubGraphQLClient(token), cfg)
    return await engine.sync(tickets, tickets)

summary = asyncio.run(push())
print(summary.created, summary.updated, summary.skipped, summary.failed)

The CLI (``ttr push`` / ``ttr status`` / ``ttr init``) delegates to this library.
"""

from __future__ import annotations

from .body import extract_ticket_marker, format_issue_body
from .config import SyncConfig, load_config
from .errors import SyncError, TtrError
from .github_graphql import GitHubGraphQLClient
from .sync import SyncEngine, SyncOutcome, SyncSummary
from .tickets import Ticket, load_tickets

__version__ = "0.1.0"

__all__ = [
    "GitHubGraphQLClient",
    "SyncConfig",
    "SyncEngine",
    "SyncError",
    "SyncOutcome",
    "SyncSummary",
    "Ticket",
    "TtrError",
    "extract_ticket_marker",
    "format_issue_body",
    "load_config",
    "load_tickets",
    "__version__",
]
