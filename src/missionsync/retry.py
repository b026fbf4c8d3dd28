"""Centralized retry / backoff helpers for tracker HTTP calls.

``run_with_retries`` re-issues a request only when the tracker reports a
rate limit (HTTP 429, or a 403 whose body mentions a primary/secondary
rate limit). Every other response, success or failure, is returned to the
caller untouched; the reconciler itself never retries.

Environment overrides:
  MISSIONSYNC_RETRY_ATTEMPTS (default 3)
  MISSIONSYNC_RETRY_BASE (seconds base, default 0.5)
  MISSIONSYNC_RETRY_MAX_SLEEP (cap in seconds, optional)
"""

from __future__ import annotations

import os
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from .logging import get_logger

TRANSIENT_TOKENS = (
    "rate limit",
    "abuse detection",
    "secondary rate",
)
HTTP_FORBIDDEN = 403
HTTP_TOO_MANY_REQUESTS = 429

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


class _ResponseLike(Protocol):
    status_code: int

    @property
    def text(self) -> str: ...

    @property
    def headers(self) -> object: ...


R = TypeVar("R", bound=_ResponseLike)


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from a header value or message.

    Supports patterns like:
      12
      Retry-After: 12
      wait 30 seconds
    Returns None if no valid positive value found.
    """
    if not text:
        return None
    stripped = text.strip()
    if stripped.isdigit():
        val = float(stripped)
        return val if val > 0 else None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: _env_int("MISSIONSYNC_RETRY_ATTEMPTS", 3))
    base_sleep: float = field(default_factory=lambda: _env_float("MISSIONSYNC_RETRY_BASE", 0.5))


def is_transient(output: str) -> bool:
    out_lower = output.lower()
    return any(tok in out_lower for tok in TRANSIENT_TOKENS)


def is_rate_limited(response: _ResponseLike) -> bool:
    if response.status_code == HTTP_TOO_MANY_REQUESTS:
        return True
    return response.status_code == HTTP_FORBIDDEN and is_transient(response.text or "")


def _retry_after(response: _ResponseLike) -> str:
    headers = response.headers
    getter = getattr(headers, "get", None)
    value = getter("Retry-After") if callable(getter) else None
    return str(value) if value else (response.text or "")


def _compute_sleep(attempt: int, cfg: RetryConfig, hint: str) -> float:
    explicit = _extract_explicit_backoff(hint)
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("MISSIONSYNC_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
        except ValueError:
            return sleep_for
        if cap >= 0:
            sleep_for = min(sleep_for, cap)
    return sleep_for


def run_with_retries(
    fn: Callable[[], R],
    *,
    cfg: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> R:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        response = fn()
        if attempt >= attempts or not is_rate_limited(response):
            return response
        sleep_for = _compute_sleep(attempt, cfg, _retry_after(response))
        get_logger().warning(
            f"[retry] rate limited, attempt {attempt}/{attempts}, sleeping {sleep_for:.2f}s",
            operation="retry",
        )
        sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "is_rate_limited", "is_transient", "run_with_retries"]
