"""Error taxonomy & redaction helpers.

Three failure families matter to a sync pass:

- ``ConfigurationError`` - the command cannot start (no token, no repo,
  no tracked id). Fatal to the triggering command and shown to the user.
- ``ParseError`` / ``NotFoundError`` - a note could not be read or a line
  could not be located. Recovered locally: logged, that single entity is
  skipped and its siblings carry on.
- ``RemoteError`` - the tracker rejected a call. Propagated to the caller
  of the top-level command; already applied writes are not rolled back.

``classify_error`` and ``redact`` prepare any of these for safe logging.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

# Simple token patterns; can be expanded (e.g., GitHub token, private key markers)
_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ghp_[A-Za-z0-9]{20,40}"),  # GitHub classic tokens
    re.compile(r"github_pat_\w{20,}"),  # GitHub fine-grained tokens
    re.compile(r"gh[osu]_[A-Za-z0-9]{20,40}"),  # OAuth / app tokens
    re.compile(r"Bearer\s+[A-Za-z0-9._-]{16,}"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


class MissionSyncError(Exception):
    """Base class for all errors raised by missionsync."""


class ConfigurationError(MissionSyncError):
    """Missing token, repo, tracked id/type or an unusable config file."""


class ParseError(MissionSyncError, ValueError):
    """Note text could not be interpreted."""


class NotFoundError(ParseError):
    """A line or heading that an edit depends on does not exist."""


class RemoteError(MissionSyncError):
    """The remote tracker failed to serve a request."""


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


def redact(text: str) -> str:
    """Redact sensitive tokens in arbitrary text."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of an exception.

    Typed errors map straight to their category; anything else falls back
    to keyword sniffing on the message (rate limit, network, parse).
    """
    msg = str(exc) if exc else ""
    low = msg.lower()
    name = exc.__class__.__name__

    if isinstance(exc, ConfigurationError):
        return ErrorInfo("config", redact(msg), name)
    if isinstance(exc, NotFoundError):
        return ErrorInfo("parse.not_found", redact(msg), name)
    if isinstance(exc, ParseError):
        return ErrorInfo("parse", redact(msg), name)
    if "rate limit" in low or "secondary rate" in low:
        return ErrorInfo("remote.rate_limit", redact(msg), name, transient=True)
    if any(k in low for k in ("timeout", "timed out", "connection reset", "temporarily unavailable")):
        return ErrorInfo("network", redact(msg), name, transient=True)
    if isinstance(exc, RemoteError):
        status = getattr(exc, "status", None)
        details = {"status": status} if status is not None else None
        return ErrorInfo("remote", redact(msg), name, details=details)
    if any(k in low for k in ("yaml", "scannererror", "parsererror")):
        return ErrorInfo("parse", redact(msg), name)
    return ErrorInfo("generic", redact(msg), name)


__all__ = [
    "ConfigurationError",
    "ErrorInfo",
    "MissionSyncError",
    "NotFoundError",
    "ParseError",
    "RemoteError",
    "classify_error",
    "redact",
]
