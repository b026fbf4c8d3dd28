"""Access-token discovery from the environment and ``.env`` files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .logging import get_logger

DEFAULT_DOTENV_LOCATIONS = (".env", ".env.local")


@dataclass
class EnvAuthConfig:
    """Configuration for environment-based authentication."""

    load_dotenv: bool = True
    dotenv_path: str | None = None
    github_token_var: str = "GITHUB_TOKEN"
    alternative_token_vars: tuple[str, ...] = field(
        default=("GH_TOKEN", "GITHUB_ACCESS_TOKEN", "GITHUB_PAT")
    )


class EnvironmentAuthManager:
    """Resolves tracker credentials from environment variables and .env files."""

    def __init__(self, config: EnvAuthConfig, base_dir: Path | None = None):
        self.config = config
        self.base_dir = base_dir or Path.cwd()
        self.logger = get_logger()
        self._dotenv_loaded = False

        if config.load_dotenv:
            self._load_dotenv()

    @property
    def dotenv_loaded(self) -> bool:
        return self._dotenv_loaded

    def _load_dotenv(self) -> None:
        """Load the configured .env file, or the first default one found."""
        if self.config.dotenv_path:
            candidates = [self.base_dir / self.config.dotenv_path]
        else:
            candidates = [self.base_dir / name for name in DEFAULT_DOTENV_LOCATIONS]
        for env_file in candidates:
            if env_file.exists():
                # existing environment variables win over the file
                load_dotenv(str(env_file), override=False)
                self._dotenv_loaded = True
                self.logger.debug(f"Loaded environment variables from {env_file}")
                return

    def get_github_token(self) -> str | None:
        """Get GitHub token from environment variables."""
        token = os.getenv(self.config.github_token_var)
        if token:
            self.logger.debug("Found GitHub token in environment variables")
            return token

        for alt_var in self.config.alternative_token_vars:
            token = os.getenv(alt_var)
            if token:
                self.logger.debug(f"Found GitHub token in {alt_var}")
                return token

        return None

    def get_authentication_recommendations(self) -> list[str]:
        if self.get_github_token():
            return []
        return [
            f"Set the {self.config.github_token_var} environment variable",
            f"Or create a .env file with {self.config.github_token_var}=your_token",
            "Or set github.token in missionsync.config.yaml",
        ]


def create_env_auth_manager(
    config: EnvAuthConfig | None = None, base_dir: Path | None = None
) -> EnvironmentAuthManager:
    """Factory function to create environment authentication manager."""
    if config is None:
        config = EnvAuthConfig()
    return EnvironmentAuthManager(config, base_dir=base_dir)


__all__ = ["EnvAuthConfig", "EnvironmentAuthManager", "create_env_auth_manager"]
