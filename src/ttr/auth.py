"""GitHub token resolution.

Order: ``GITHUB_TOKEN``, ``GH_TOKEN`` (both optionally seeded from a ``.env``
file), then ``gh auth token``.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import AuthenticationError
from .logging import get_logger

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
DOTENV_LOCATIONS = (".env", ".env.local")

NO_TOKEN_MESSAGE = (
    "No GitHub token found.\n"
    "\n"
    "Options:\n"
    "1. Set GITHUB_TOKEN environment variable\n"
    "2. Run 'gh auth login' to authenticate GitHub CLI"
)


@dataclass
class AuthConfig:
    load_dotenv: bool = True
    dotenv_path: str | None = None
    use_gh_cli: bool = True


class TokenResolver:
    def __init__(self, config: AuthConfig | None = None):
        self.config = config or AuthConfig()
        self.logger = get_logger()
        self._dotenv_loaded = False
        if self.config.load_dotenv:
            self._load_dotenv()

    def _load_dotenv(self) -> None:
        candidates = (
            [self.config.dotenv_path] if self.config.dotenv_path else list(DOTENV_LOCATIONS)
        )
        for location in candidates:
            env_path = Path(location)
            if env_path.exists():
                # Existing environment variables win over the file.
                load_dotenv(str(env_path), override=False)
                self._dotenv_loaded = True
                self.logger.debug(f"Loaded environment variables from {env_path}")
                break

    def token_from_env(self) -> str | None:
        for name in TOKEN_ENV_VARS:
            token = os.getenv(name, "").strip()
            if token:
                self.logger.debug(f"Found GitHub token in {name}")
                return token
        return None

    def token_from_gh_cli(self) -> str | None:
        try:
            completed = subprocess.run(  # noqa: S603
                ["gh", "auth", "token"],  # noqa: S607
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            self.logger.debug(f"'gh auth token' unavailable: {exc}")
            return None
        if completed.returncode != 0:
            return None
        token = completed.stdout.strip()
        return token or None

    def resolve(self) -> str:
        token = self.token_from_env()
        if token:
            return token
        if self.config.use_gh_cli:
            token = self.token_from_gh_cli()
            if token:
                self.logger.debug("Using token from 'gh auth token'")
                return token
        raise AuthenticationError(NO_TOKEN_MESSAGE)


def get_github_token(config: AuthConfig | None = None) -> str:
    return TokenResolver(config).resolve()


__all__ = ["AuthConfig", "TokenResolver", "get_github_token"]
