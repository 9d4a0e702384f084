from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import ConfigError
from .tickets import find_tickets_dir

CONFIG_FILENAME = "sync.yaml"

DEFAULT_CONFIG_TEMPLATE = """\
# ttr sync configuration
github:
  repo: {repo}
{project_line}{assignee_line}
mapping:
  type_field: Type
  # Map ticket types to GitHub issue types (organisation repositories only)
  # type:
  #   bug: Bug
  #   feature: Feature

labels:
  sync_tags: true
  create_missing: true

# project:
#   status_field: Status
#   status:
#     open: Todo
#     in_progress: In Progress
#     closed: Done
#   iteration_field: Iteration
#   iteration: "@current"

logging:
  json_enabled: false
  level: INFO
"""


@dataclass
class GitHubSettings:
    repo: str
    project: str | None = None
    assignee: str | None = None

    def repo_parts(self) -> tuple[str, str]:
        parts = self.repo.split("/")
        if len(parts) != 2 or not all(parts):
            raise ConfigError(f"Invalid repo format '{self.repo}'. Expected 'owner/repo'")
        return parts[0], parts[1]


@dataclass
class MappingSettings:
    type_field: str = "Type"
    type_map: dict[str, str] = field(default_factory=dict)


@dataclass
class LabelSettings:
    sync_tags: bool = True
    create_missing: bool = True


@dataclass
class ProjectSettings:
    status_field: str = "Status"
    status: dict[str, str] = field(default_factory=dict)
    iteration_field: str = "Iteration"
    iteration: str | None = None

    @property
    def wants_fields(self) -> bool:
        return bool(self.status or self.iteration)


@dataclass
class SyncConfig:
    github: GitHubSettings
    mapping: MappingSettings = field(default_factory=MappingSettings)
    labels: LabelSettings = field(default_factory=LabelSettings)
    project: ProjectSettings = field(default_factory=ProjectSettings)
    # Logging configuration
    logging_json_enabled: bool = False
    logging_level: str = "INFO"
    # Environment authentication configuration
    env_auth_load_dotenv: bool = True
    env_auth_dotenv_path: str | None = None
    source_file: Path | None = None


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith("$"):
        return os.getenv(value[1:], value)  # Fallback to original if not found
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return cast(dict[str, Any], value)


def _opt_str(value: Any) -> str | None:
    value = _resolve_env_var(value)
    return None if value in (None, "") else str(value)


def _str_map(value: Any, name: str) -> dict[str, str]:
    if not value:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


def parse_config(raw: dict[str, Any], source: Path | None = None) -> SyncConfig:
    gh = _section(raw, "github")
    repo = _opt_str(gh.get("repo"))
    if not repo:
        raise ConfigError("Missing required 'github.repo' (expected 'owner/repo')")
    github = GitHubSettings(
        repo=repo,
        project=_opt_str(gh.get("project")),
        assignee=_opt_str(gh.get("assignee")),
    )
    github.repo_parts()

    mapping = _section(raw, "mapping")
    labels = _section(raw, "labels")
    project = _section(raw, "project")
    logging_config = _section(raw, "logging")
    env_auth = _section(raw, "environment")

    return SyncConfig(
        github=github,
        mapping=MappingSettings(
            type_field=str(mapping.get("type_field", "Type")),
            type_map=_str_map(mapping.get("type"), "mapping.type"),
        ),
        labels=LabelSettings(
            sync_tags=bool(labels.get("sync_tags", True)),
            create_missing=bool(labels.get("create_missing", True)),
        ),
        project=ProjectSettings(
            status_field=str(project.get("status_field", "Status")),
            status=_str_map(project.get("status"), "project.status"),
            iteration_field=str(project.get("iteration_field", "Iteration")),
            iteration=_opt_str(project.get("iteration")),
        ),
        logging_json_enabled=bool(logging_config.get("json_enabled", False)),
        logging_level=str(logging_config.get("level", "INFO")),
        env_auth_load_dotenv=bool(env_auth.get("load_dotenv", True)),
        env_auth_dotenv_path=_opt_str(env_auth.get("dotenv_path")),
        source_file=source,
    )


def load_config(path: str | Path) -> SyncConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}\nRun 'ttr init' to create one.")
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{p} must contain a YAML mapping")
    return parse_config(cast(dict[str, Any], raw), p)


def locate_config() -> tuple[SyncConfig, Path]:
    """Find ``.tickets/`` and load its ``sync.yaml``; returns ``(config, tickets_dir)``."""
    tickets_dir = find_tickets_dir()
    if tickets_dir is None:
        raise ConfigError("No .tickets directory found. Run 'ttr init' first.")
    return load_config(tickets_dir / CONFIG_FILENAME), tickets_dir


def render_default_config(
    repo: str, project: str | None = None, assignee: str | None = None
) -> str:
    project_line = f"  project: \"{project}\"\n" if project else "  # project: \"Roadmap\"\n"
    assignee_line = f"  assignee: {assignee}\n" if assignee else "  # assignee: octocat\n"
    return DEFAULT_CONFIG_TEMPLATE.format(
        repo=repo, project_line=project_line, assignee_line=assignee_line
    )


__all__ = [
    "CONFIG_FILENAME",
    "GitHubSettings",
    "MappingSettings",
    "LabelSettings",
    "ProjectSettings",
    "SyncConfig",
    "parse_config",
    "load_config",
    "locate_config",
    "render_default_config",
]
