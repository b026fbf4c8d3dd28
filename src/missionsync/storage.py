"""Note storage: read/write vault files and stream their changes.

The change stream does not tell self-writes from external edits; the
reconciler's change cache reconstructs that distinction.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from pathlib import Path
from typing import Protocol

from watchfiles import Change, awatch

from .logging import get_logger

DEFAULT_IGNORED_DIRS = (".obsidian", ".git")


class NoteStorage(Protocol):
    async def read_text(self, path: str) -> str: ...
    async def write_text(self, path: str, text: str) -> None: ...
    def changes(self) -> AsyncIterator[str]: ...


class VaultStorage:
    """Filesystem-backed note storage rooted at a vault directory.

    Paths are vault-relative POSIX strings (``notes/Roadmap.md``).
    """

    def __init__(
        self,
        root: str | Path,
        *,
        ignored_dirs: Iterable[str] = DEFAULT_IGNORED_DIRS,
        debounce: int = 200,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.ignored_dirs = tuple(ignored_dirs)
        self.debounce = debounce
        self.stop_event = stop_event or asyncio.Event()
        self.logger = get_logger()

    def resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if not full.is_relative_to(self.root):
            raise ValueError(f"Path escapes the vault: {path}")
        return full

    def relative(self, path: str | Path) -> str:
        return Path(path).resolve().relative_to(self.root).as_posix()

    async def read_text(self, path: str) -> str:
        return await asyncio.to_thread(self.resolve(path).read_text, encoding="utf-8")

    async def write_text(self, path: str, text: str) -> None:
        target = self.resolve(path)
        await asyncio.to_thread(target.write_text, text, encoding="utf-8")
        self.logger.debug(f"Wrote {path}", path=path)

    def _is_ignored(self, relative: str) -> bool:
        parts = relative.split("/")
        return any(part in self.ignored_dirs for part in parts[:-1])

    async def changes(self) -> AsyncIterator[str]:
        """Yield vault-relative paths of files added or modified on disk."""
        async for batch in awatch(
            self.root, debounce=self.debounce, stop_event=self.stop_event
        ):
            seen: set[str] = set()
            for change, raw_path in sorted(batch, key=lambda item: item[1]):
                if change == Change.deleted:
                    continue
                relative = self.relative(raw_path)
                if relative in seen or self._is_ignored(relative):
                    continue
                seen.add(relative)
                yield relative

    def stop(self) -> None:
        self.stop_event.set()


__all__ = ["NoteStorage", "VaultStorage"]
