"""Runtime helpers for missionsync CLI orchestration."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from .config import CONFIG_DEFAULT, SyncConfig, default_config, load_config
from .errors import MissionSyncError, classify_error, redact
from .logging import get_logger
from .ux import print_error


class _HandlerCallable(Protocol):
    def __call__(self) -> Any: ...


def prepare_config(
    args: Any, *, loader: Callable[[str], SyncConfig] = load_config
) -> SyncConfig:
    """Load SyncConfig for the given argparse namespace.

    A missing *default* config file falls back to built-in defaults rooted
    at the working directory; an explicitly named file must exist.
    """
    if not hasattr(args, "config"):
        raise AttributeError("Command namespace is missing 'config' attribute")
    path = Path(args.config)
    if args.config == CONFIG_DEFAULT and not path.exists():
        cfg = default_config(Path.cwd())
    else:
        cfg = loader(args.config)
    return cfg


def execute_command(handler: _HandlerCallable, args: Any, command: str) -> int:
    """Run a command handler, logging its duration and any failure.

    ``MissionSyncError`` subclasses are reported to the user and turned
    into exit code 1; anything else propagates.
    """
    logger = get_logger()
    start = time.monotonic()
    try:
        result = handler()
        exit_code = int(result) if result is not None else 0
    except MissionSyncError as exc:
        info = classify_error(exc)
        logger.log_error(
            f"Command {command} failed",
            error=redact(info.message),
            category=info.category,
        )
        print_error(redact(str(exc)))
        exit_code = 1
    except Exception as exc:
        logger.log_error(f"Command {command} crashed", error=redact(str(exc)))
        raise
    finally:
        duration_ms = max(0.0, time.monotonic() - start) * 1000
        logger.log_performance(f"cli_{command}", duration_ms)
    return exit_code


__all__ = ["execute_command", "prepare_config"]
