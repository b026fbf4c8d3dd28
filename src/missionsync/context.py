"""Explicit settings + cache context handed to the reconciler.

``SyncContext.open`` is the init boundary (load the persisted change
cache, discover credentials) and ``close`` the teardown boundary (flush
the cache back to disk). Nothing here lives in module globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import TracebackType

from .cache import ChangeCache, load_cache, persist_cache
from .config import SyncConfig
from .env_auth import EnvAuthConfig, EnvironmentAuthManager, create_env_auth_manager
from .errors import ConfigurationError
from .logging import get_logger
from .ux import Notifier, print_warning


@dataclass
class SyncContext:
    config: SyncConfig
    cache: ChangeCache = field(default_factory=ChangeCache)
    notify: Notifier = print_warning
    env_auth: EnvironmentAuthManager | None = None

    @classmethod
    def open(cls, config: SyncConfig, *, notify: Notifier = print_warning) -> SyncContext:
        cache = load_cache(config.cache_file) if config.cache_file else ChangeCache()
        env_auth = create_env_auth_manager(
            EnvAuthConfig(
                load_dotenv=config.env_auth_load_dotenv,
                dotenv_path=config.env_auth_dotenv_path,
            ),
            base_dir=config.root,
        )
        get_logger().debug(
            f"Opened sync context for {config.root} ({len(cache.notes)} cached notes)"
        )
        return cls(config=config, cache=cache, notify=notify, env_auth=env_auth)

    @property
    def tracker(self) -> str:
        return self.config.tracker

    @property
    def base_url(self) -> str:
        return self.config.base_url

    @property
    def autosync(self) -> bool:
        return self.config.autosync

    @property
    def access_token(self) -> str | None:
        if self.config.access_token:
            return self.config.access_token
        return self.env_auth.get_github_token() if self.env_auth else None

    def require_token(self) -> str:
        token = self.access_token
        if not token:
            hints = self.env_auth.get_authentication_recommendations() if self.env_auth else []
            message = "No access token configured"
            if hints:
                message += ": " + "; ".join(hints)
            raise ConfigurationError(message)
        return token

    def flush(self) -> None:
        if self.config.cache_file is None:
            return
        persist_cache(self.config.cache_file, self.cache)

    def close(self) -> None:
        self.flush()

    def __enter__(self) -> SyncContext:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["SyncContext"]
