"""ttr command line interface.

Subcommands:
  push    -> create/update GitHub issues for tickets (optionally a subset)
  status  -> report unsynced / synced / modified / conflicting tickets
  init    -> write .tickets/sync.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import subprocess
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .auth import AuthConfig, TokenResolver
from .config import CONFIG_FILENAME, SyncConfig, load_config, locate_config, render_default_config
from .errors import ConfigError, TtrError, classify_error
from .github_graphql import GitHubGraphQLClient
from .logging import configure_logging, get_logger
from .status import StatusReport, build_status_report
from .sync import SyncEngine, SyncSummary, summarize_outcomes
from .tickets import TICKETS_DIR_NAME, Ticket, load_tickets, select_tickets
from .ux import print_error, print_header, print_success, print_sync_summary, print_ticket_list

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(prog="ttr", description="Sync tickets to GitHub Issues")
    p.add_argument("--config", help=f"Path to {CONFIG_FILENAME} (default: .tickets/{CONFIG_FILENAME})")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON log lines on stderr")
    p.add_argument("--log-level", help="Logging level (default from config, else INFO)")
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    pp = sub.add_parser("push", help="Sync tickets to GitHub Issues")
    pp.add_argument("ids", nargs="*", help="Ticket ids to sync (exact or partial; all if omitted)")

    ps = sub.add_parser("status", help="Show sync status of tickets")
    ps.add_argument(
        "-q", "--quick", action="store_true", help="Skip the GitHub fetch; local state only"
    )

    pi = sub.add_parser("init", help=f"Create .tickets/{CONFIG_FILENAME}")
    pi.add_argument("-r", "--repo", help="GitHub repository (owner/repo)")
    pi.add_argument("-p", "--project", help="GitHub Project name or number")
    pi.add_argument("-a", "--assignee", help="Default assignee username")
    pi.add_argument("-f", "--force", action="store_true", help="Overwrite existing config")
    return p


def prepare_config(args: argparse.Namespace) -> tuple[SyncConfig, Path] | None:
    """Load config for commands that need it; returns ``(config, tickets_dir)``."""
    if args.cmd == "init":
        return None
    if args.config:
        path = Path(args.config)
        return load_config(path), path.resolve().parent
    return locate_config()


def _make_client(cfg: SyncConfig) -> GitHubGraphQLClient:
    resolver = TokenResolver(
        AuthConfig(load_dotenv=cfg.env_auth_load_dotenv, dotenv_path=cfg.env_auth_dotenv_path)
    )
    return GitHubGraphQLClient(token=resolver.resolve())


async def _run_push(
    client: GitHubGraphQLClient, cfg: SyncConfig, tickets: list[Ticket], everything: list[Ticket]
) -> SyncSummary:
    engine = await SyncEngine.create(client, cfg)
    summary = await engine.sync(tickets, everything)
    logger = get_logger()
    if logger.json_logging:
        logger.info(
            "Push outcomes",
            operation="push_outcomes",
            outcomes=summarize_outcomes(engine.last_outcomes),
        )
    return summary


def _cmd_push(cfg: SyncConfig, tickets_dir: Path, args: argparse.Namespace) -> int:
    everything = load_tickets(tickets_dir)
    if not everything:
        print(f"No tickets found in {tickets_dir}")
        return 0
    tickets = select_tickets(everything, args.ids)
    if not tickets:
        print(f"No tickets matched the provided IDs: {args.ids}")
        return 0
    print(f"Syncing {len(tickets)} ticket(s) to {cfg.github.repo}...")
    client = _make_client(cfg)
    try:
        summary = asyncio.run(_run_push(client, cfg, tickets, everything))
    finally:
        client.close()
    print_sync_summary(summary)
    if summary.has_failures:
        print_error(f"{summary.failed} ticket(s) failed")
        return 1
    print_success(
        f"{summary.created} created, {summary.updated} updated, {summary.skipped} skipped"
    )
    return 0


def _issue_ref(ticket: Ticket) -> str:
    return f"#{ticket.github_issue_number() or 0:<5}"


def _print_status(cfg: SyncConfig, report: StatusReport, total: int) -> None:
    print(f"Repository: {cfg.github.repo}")
    if not report.checked_remote:
        print("(quick mode - GitHub state not checked)")
    print()
    print(f"Tickets: {total} total")
    print(f"  Unsynced:  {len(report.unsynced):>3}  (will create new issues)")
    print(f"  Synced:    {len(report.synced):>3}  (up to date)")
    if report.checked_remote:
        print(f"  Modified:  {len(report.modified):>3}  (will update)")
        print(f"  Conflicts: {len(report.conflicts):>3}  (modified outside ttr)")
    print_ticket_list(
        "Unsynced", ((t.id, f"[{t.ticket_type}]  {t.title}") for t in report.unsynced)
    )
    print_ticket_list(
        "Modified",
        ((t.id, f"-> {_issue_ref(t)}  {t.title} ({reason})") for t, reason in report.modified),
    )
    print_ticket_list(
        "Conflicts", ((t.id, f"-> {_issue_ref(t)}  {t.title}") for t in report.conflicts)
    )
    if report.synced and (not report.unsynced or not report.checked_remote):
        print_ticket_list(
            "Synced", ((t.id, f"-> {_issue_ref(t)}  {t.title}") for t in report.synced)
        )


def _cmd_status(cfg: SyncConfig, tickets_dir: Path, args: argparse.Namespace) -> int:
    tickets = load_tickets(tickets_dir)
    if not tickets:
        print(f"No tickets found in {tickets_dir}")
        return 0
    needs_remote = not args.quick and any(t.is_synced() for t in tickets)
    if needs_remote:
        owner, repo = cfg.github.repo_parts()
        client = _make_client(cfg)
        try:
            report = asyncio.run(build_status_report(tickets, client, owner, repo))
        finally:
            client.close()
    else:
        report = asyncio.run(build_status_report(tickets))
        report.checked_remote = not args.quick
    _print_status(cfg, report, len(tickets))
    return 0


def parse_github_remote(url: str) -> str | None:
    """``owner/repo`` from an ssh or https GitHub remote URL."""
    url = url.strip()
    for prefix in ("git@github.com:", "https://github.com/", "ssh://git@github.com/"):
        if url.startswith(prefix):
            rest = url[len(prefix):].rstrip("/")
            if rest.endswith(".git"):
                rest = rest[: -len(".git")]
            return rest or None
    return None


def detect_github_repo() -> str | None:
    try:
        completed = subprocess.run(  # noqa: S603
            ["git", "remote", "get-url", "origin"],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return None
    if completed.returncode != 0:
        return None
    return parse_github_remote(completed.stdout)


def _prompt(question: str) -> str | None:
    if not sys.stdin.isatty():
        return None
    answer = input(question).strip()
    return answer or None


def _cmd_init(args: argparse.Namespace) -> int:
    tickets_dir = Path(TICKETS_DIR_NAME)
    config_path = tickets_dir / CONFIG_FILENAME
    if config_path.exists() and not args.force:
        print_error(f"Configuration already exists: {config_path}\nUse --force to overwrite.")
        return 1
    if not tickets_dir.exists():
        tickets_dir.mkdir(parents=True)
        print(f"Created {tickets_dir}/")

    repo = args.repo
    if not repo:
        repo = detect_github_repo()
        if repo:
            print(f"Detected repository: {repo}")
        else:
            repo = _prompt("GitHub repository (owner/repo): ")
    if not repo:
        raise ConfigError("Repository is required")
    parts = repo.split("/")
    if len(parts) != 2 or not all(parts):
        raise ConfigError("Invalid repository format. Expected 'owner/repo'")

    project = args.project or _prompt("GitHub Project name (optional, press Enter to skip): ")
    assignee = args.assignee or _prompt("Default assignee (optional, press Enter to skip): ")

    config_path.write_text(render_default_config(repo, project, assignee), encoding="utf-8")
    print()
    print_success(f"Created {config_path}")
    print_header("Next steps:")
    if project is None or assignee is None:
        print(f"  1. Edit {config_path} to customize settings")
        print("  2. Run 'ttr push' to sync tickets")
    else:
        print("  1. Run 'ttr push' to sync tickets")
    return 0


def _build_handlers(
    args: argparse.Namespace, loaded: tuple[SyncConfig, Path] | None
) -> dict[str, Any]:
    def _require() -> tuple[SyncConfig, Path]:
        if loaded is None:  # pragma: no cover - prepare_config always loads for these
            raise ConfigError("configuration not loaded")
        return loaded

    return {
        "push": lambda: _cmd_push(*_require(), args),
        "status": lambda: _cmd_status(*_require(), args),
        "init": lambda: _cmd_init(args),
    }


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(json_logging=args.json_logs, level=args.log_level or "INFO")
    try:
        loaded = prepare_config(args)
        if loaded is not None:
            cfg = loaded[0]
            configure_logging(
                json_logging=args.json_logs or cfg.logging_json_enabled,
                level=args.log_level or cfg.logging_level,
            )
        handler = _build_handlers(args, loaded).get(args.cmd)
        if handler is None:  # pragma: no cover - argparse enforces valid choices
            parser.print_help()
            return 1
        return int(handler())
    except TtrError as exc:
        info = classify_error(exc)
        print_error(f"Error: {info.message}")
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
