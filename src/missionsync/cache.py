"""Change cache: last reconciled note text and last synced issues.

The note-text half suppresses feedback loops. A note whose text the
reconciler is about to overwrite is *invalidated* first, so the change
notification caused by that write finds no baseline and is recorded
instead of diffed.

The cache can be persisted between runs (``persist_cache`` /
``load_cache``) so a fresh process still has a baseline for each note.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import Issue

logger = logging.getLogger(__name__)

CACHE_VERSION = 1


class IssueCache:
    """Optimistic local copy of issues keyed by remote id."""

    def __init__(self, initial: Iterable[Issue] | None = None) -> None:
        self._state: dict[str, Issue] = {}
        if initial:
            self.set_all(initial)

    def get(self, issue_id: str) -> Issue | None:
        return self._state.get(issue_id)

    def add(self, issue: Issue) -> Issue:
        if not issue.id:
            raise ValueError(f"cannot cache issue without id: {issue.title!r}")
        self._state[issue.id] = issue
        return issue

    def update(self, issue: Issue) -> Issue:
        if not issue.id or issue.id not in self._state:
            raise KeyError(f"issue {issue.id} not found")
        previous = self._state[issue.id]
        self._state[issue.id] = issue
        return previous

    def upsert(self, issue: Issue) -> Issue:
        return self.update(issue) if issue.id in self._state else self.add(issue)

    def remove(self, issue_id: str) -> Issue | None:
        return self._state.pop(issue_id, None)

    def set_all(self, issues: Iterable[Issue]) -> None:
        self._state = {issue.id: issue for issue in issues if issue.id}

    def values(self) -> list[Issue]:
        return list(self._state.values())

    def __contains__(self, issue_id: object) -> bool:
        return issue_id in self._state

    def __iter__(self) -> Iterator[Issue]:
        return iter(list(self._state.values()))

    def __len__(self) -> int:
        return len(self._state)

    def __str__(self) -> str:
        return "\n".join(f"{i.id}: {i.title}" for i in self._state.values())


@dataclass
class ChangeCache:
    notes: dict[str, str] = field(default_factory=dict)
    issues: IssueCache = field(default_factory=IssueCache)

    def get_text(self, path: str) -> str | None:
        return self.notes.get(path)

    def set_text(self, path: str, text: str) -> None:
        self.notes[path] = text

    def invalidate(self, path: str) -> None:
        self.notes.pop(path, None)

    def clear(self) -> None:
        self.notes.clear()
        self.issues.set_all([])


def compute_signature(entries: dict[str, Any]) -> str:
    canonical = json.dumps(entries, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def _issue_from_payload(payload: Any) -> Issue | None:
    if not isinstance(payload, dict):
        return None
    issue_id = payload.get("id")
    title = payload.get("title")
    if not isinstance(issue_id, str) or not isinstance(title, str):
        return None
    try:
        return Issue(**{k: payload.get(k) for k in Issue.__dataclass_fields__})
    except TypeError:  # pragma: no cover
        return None


def persist_cache(path: Path, cache: ChangeCache) -> None:
    entries = {
        "notes": dict(cache.notes),
        "issues": {i.id: asdict(i) for i in cache.issues if i.id},
    }
    payload = {
        "version": CACHE_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "entries": entries,
        "signature": compute_signature(entries),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


def load_cache(path: Path) -> ChangeCache:
    """Load a persisted cache; any problem yields an empty cache."""
    if not path.exists():
        return ChangeCache()
    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.debug("Failed to read cache %s: %s", path, exc)
        return ChangeCache()
    if not isinstance(raw, dict) or not isinstance(raw.get("entries"), dict):
        return ChangeCache()
    entries = raw["entries"]
    signature = raw.get("signature")
    if signature and signature != compute_signature(entries):
        logger.warning("Cache signature mismatch detected at %s; ignoring entries", path)
        return ChangeCache()
    notes_raw = entries.get("notes")
    notes = (
        {str(k): v for k, v in notes_raw.items() if isinstance(v, str)}
        if isinstance(notes_raw, dict)
        else {}
    )
    issues_raw = entries.get("issues")
    issues = (
        [i for i in map(_issue_from_payload, issues_raw.values()) if i]
        if isinstance(issues_raw, dict)
        else []
    )
    return ChangeCache(notes=notes, issues=IssueCache(issues))


__all__ = ["ChangeCache", "IssueCache", "compute_signature", "load_cache", "persist_cache"]
