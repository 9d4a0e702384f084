# ruff: noqa: ANN201, ANN001

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from ttr import cli
from ttr.body import format_issue_body
from ttr.cli import main, parse_github_remote


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.delenv("TICKETS_DIR", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def configured(workspace: Path, write_ticket, fake_github, monkeypatch) -> Path:
    (workspace / ".tickets" / "sync.yaml").parent.mkdir(exist_ok=True)
    (workspace / ".tickets" / "sync.yaml").write_text("github:\n  repo: acme/widgets\n")
    monkeypatch.setattr(cli, "_make_client", lambda cfg: fake_github.client)
    return workspace


def test_init_writes_config(workspace: Path, capsys) -> None:
    rc = main(["init", "--repo", "acme/widgets", "--project", "Roadmap", "--assignee", "octocat"])

    assert rc == 0
    raw = yaml.safe_load((workspace / ".tickets" / "sync.yaml").read_text(encoding="utf-8"))
    assert raw["github"] == {"repo": "acme/widgets", "project": "Roadmap", "assignee": "octocat"}
    out = capsys.readouterr().out
    assert "Created .tickets" in out
    assert "Run 'ttr push' to sync tickets" in out


def test_init_refuses_to_overwrite_without_force(workspace: Path, capsys) -> None:
    args = ["init", "-r", "acme/widgets", "-p", "1", "-a", "octocat"]
    assert main(args) == 0
    assert main(args) == 1
    assert "Use --force to overwrite" in capsys.readouterr().err
    assert main([*args, "--force"]) == 0


def test_init_rejects_invalid_repo(workspace: Path, capsys) -> None:
    rc = main(["init", "-r", "not-a-repo", "-p", "1", "-a", "octocat"])
    assert rc == 1
    assert "Invalid repository format" in capsys.readouterr().err
    assert not (workspace / ".tickets" / "sync.yaml").exists()


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("git@github.com:acme/widgets.git", "acme/widgets"),
        ("https://github.com/acme/widgets", "acme/widgets"),
        ("https://github.com/acme/widgets.git\n", "acme/widgets"),
        ("ssh://git@github.com/acme/widgets.git", "acme/widgets"),
        ("https://gitlab.com/acme/widgets.git", None),
    ],
)
def test_parse_github_remote(url: str, expected: str | None) -> None:
    assert parse_github_remote(url) == expected


def test_push_creates_issues(configured: Path, write_ticket, fake_github, capsys) -> None:
    path = write_ticket("t-1.md", "---\nid: t-1\n---\n# Widget\n\nText.\n")

    rc = main(["push"])

    assert rc == 0
    assert "external-ref: gh-42" in path.read_text(encoding="utf-8")
    out = capsys.readouterr().out
    assert "Syncing 1 ticket(s) to acme/widgets..." in out
    assert "1 created, 0 updated, 0 skipped" in out
    assert fake_github.client.closed


def test_push_json_logs_include_outcomes(configured: Path, write_ticket, capsys) -> None:
    write_ticket("t-1.md", "---\nid: t-1\n---\n# Widget\n")

    assert main(["--json-logs", "push"]) == 0

    entries = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line]
    pushed = [e for e in entries if e.get("operation") == "push_outcomes"]
    assert pushed[0]["outcomes"]["t-1"]["action"] == "created"
    assert pushed[0]["outcomes"]["t-1"]["issue_number"] == 42


def test_push_subset_by_partial_id(configured: Path, write_ticket, fake_github) -> None:
    write_ticket("t-1.md", "---\nid: ttr-0001\n---\n# One\n")
    write_ticket("t-2.md", "---\nid: ttr-0002\n---\n# Two\n")

    assert main(["push", "0002"]) == 0
    assert [i["title"] for i in fake_github.issues.values()] == ["Two"]


def test_push_no_matching_ids(configured: Path, write_ticket, capsys) -> None:
    write_ticket("t-1.md", "---\nid: ttr-0001\n---\n# One\n")
    assert main(["push", "zzz"]) == 0
    assert "No tickets matched the provided IDs" in capsys.readouterr().out


def test_push_reports_failures(configured: Path, write_ticket, capsys) -> None:
    write_ticket("t-1.md", "---\nid: t-1\nexternal-ref: gh-99\n---\n# Gone\n")

    assert main(["push"]) == 1
    assert "1 ticket(s) failed" in capsys.readouterr().err


def test_push_setup_error_is_reported(configured: Path, write_ticket, fake_github, capsys) -> None:
    write_ticket("t-1.md", "---\nid: t-1\n---\n# One\n")
    fake_github.repository_id = ""

    assert main(["push"]) == 1
    assert "Error: Repository acme/widgets not found" in capsys.readouterr().err


def test_status_quick(configured: Path, write_ticket, fake_github, capsys) -> None:
    write_ticket("t-1.md", "---\nid: t-1\n---\n# One\n")
    write_ticket("t-2.md", "---\nid: t-2\nexternal-ref: gh-5\n---\n# Two\n")

    assert main(["status", "--quick"]) == 0

    out = capsys.readouterr().out
    assert "(quick mode - GitHub state not checked)" in out
    assert "Unsynced:    1" in out
    assert "Synced:      1" in out
    assert fake_github.client.calls == []


def test_status_remote(configured: Path, write_ticket, fake_github, capsys) -> None:
    write_ticket("t-1.md", "---\nid: t-1\nexternal-ref: gh-5\n---\n# One\n\nText.\n")
    write_ticket("t-2.md", "---\nid: t-2\nexternal-ref: gh-6\n---\n# Two\n")
    fake_github.add_issue(5, "Old", format_issue_body("t-1", "Text."))
    fake_github.add_issue(6, "Two", "not managed")

    assert main(["status"]) == 0

    out = capsys.readouterr().out
    assert "Modified:    1" in out
    assert "Conflicts:   1" in out
    assert "t-1  -> #5      One (title changed)" in out


def test_missing_config_is_an_error(workspace: Path, capsys) -> None:
    (workspace / ".tickets").mkdir()
    assert main(["status"]) == 1
    assert "Configuration file not found" in capsys.readouterr().err
