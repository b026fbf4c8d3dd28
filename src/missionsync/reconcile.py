"""Note/tracker reconciliation.

Each change notification for a note runs one pass:

1. ignore non-markdown files, vault internals and (for watch-triggered
   events) disabled auto-sync;
2. the first observation of a path only records its text as baseline;
3. a note that declares a tracked type but has no usable repo gets a
   placeholder ``mission.repo`` and a notice, and nothing else happens;
4. the cached and current text are parsed and diffed;
5. when the diff contains additions the cache entry is dropped (an id is
   about to be written back), otherwise the current text becomes the
   baseline;
6. the per-entity remote operations run concurrently and their outcome
   (ids, tracked type/id, head text) is written back into the note.

Every write made here invalidates the cache entry first, so the change
notification it causes is taken as a fresh baseline rather than a user
edit. A notification for a path that is already being reconciled is
coalesced into a single re-run once the running pass finishes.
"""

from __future__ import annotations

import asyncio
import functools
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from . import markdown
from .cache import ChangeCache
from .context import SyncContext
from .diffing import NoteDiff, diff_snapshots
from .errors import (
    ConfigurationError,
    NotFoundError,
    ParseError,
    RemoteError,
    classify_error,
    redact,
)
from .logging import get_logger
from .models import Issue, Milestone, Project
from .note import (
    PLACEHOLDER_REPO,
    NoteSnapshot,
    RepoRef,
    set_id_on_issue,
    set_properties,
    write_issues,
)
from .repository import (
    CreateIssue,
    CreateMilestone,
    CreateProject,
    IssueRepository,
    RepositoryFactory,
    UpdateIssue,
    UpdateMilestone,
    UpdateProject,
    build_repository,
)
from .storage import NoteStorage

NOTE_SUFFIX = ".md"
FETCHABLE_TYPES = ("milestone", "project")


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass over a note.

    ``outcome`` is one of ``ignored``, ``queued``, ``baseline``,
    ``repo_missing``, ``invalid``, ``unchanged``, ``local_only`` or
    ``applied``.
    """

    path: str
    outcome: str
    diff: NoteDiff | None = None
    operations: int = 0

    def summary(self) -> list[tuple[str, str | int]]:
        items: list[tuple[str, str | int]] = [("note", self.path), ("outcome", self.outcome)]
        if self.diff is not None:
            items.extend(self.diff.counts().items())
        items.append(("remote operations", self.operations))
        return items


def _remote_id(issue: Issue) -> str:
    if not issue.id:
        raise RemoteError(f"tracker returned issue {issue.title!r} without an id")
    return issue.id


class Reconciler:
    def __init__(
        self,
        context: SyncContext,
        storage: NoteStorage,
        repository_factory: RepositoryFactory = build_repository,
    ):
        self.context = context
        self.storage = storage
        self._repository_factory = repository_factory
        self.logger = get_logger()
        self._in_flight: set[str] = set()
        self._pending: set[str] = set()
        self._note_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: defaultdict[str, int] = defaultdict(int)

    @property
    def cache(self) -> ChangeCache:
        return self.context.cache

    # ---- guards -----------------------------------------------------------
    def should_handle(self, path: str) -> bool:
        if not path.endswith(NOTE_SUFFIX):
            return False
        parents = PurePosixPath(path).parts[:-1]
        return not any(part in self.context.config.ignored_dirs for part in parents)

    def _repository_for(self, snapshot: NoteSnapshot, repo: RepoRef) -> IssueRepository:
        return self._repository_factory(repo, self.context, snapshot.tracker, snapshot.host)

    async def _require_repo(self, snapshot: NoteSnapshot) -> RepoRef:
        repo = snapshot.repo
        if repo is not None:
            return repo
        if not snapshot.has_placeholder_repo:
            await self._edit_note(
                snapshot.path, lambda text: set_properties(text, {"repo": PLACEHOLDER_REPO})
            )
        raise ConfigurationError(
            f"{snapshot.path}: set mission.repo to 'org/repo' before syncing"
        )

    # ---- note writes ------------------------------------------------------
    async def _edit_note(self, path: str, transform: Callable[[str], str]) -> bool:
        """Read-modify-write ``path`` against its current text.

        Returns ``False`` when the transform leaves the text unchanged.
        """
        lock = self._note_locks.setdefault(path, asyncio.Lock())
        self._lock_users[path] += 1
        try:
            async with lock:
                text = await self.storage.read_text(path)
                updated = transform(text)
                if updated == text:
                    return False
                self.cache.invalidate(path)
                await self.storage.write_text(path, updated)
                return True
        finally:
            self._lock_users[path] -= 1
            if not self._lock_users[path]:
                del self._lock_users[path]
                del self._note_locks[path]

    async def _write_issue_id(self, path: str, title: str, issue_id: str) -> bool:
        try:
            return await self._edit_note(
                path, functools.partial(set_id_on_issue, title=title, issue_id=issue_id)
            )
        except NotFoundError as exc:
            self.logger.warning(
                f"Could not record id {issue_id} for {title!r} in {path}: {exc}",
                path=path,
                entity_id=issue_id,
            )
            return False

    async def _write_tracked(self, path: str, kind: str, entity: Milestone | Project) -> None:
        def _transform(text: str) -> str:
            text = set_properties(text, {"type": kind, "id": entity.id})
            if entity.description:
                text = markdown.set_head_section(text, entity.description)
            return text

        await self._edit_note(path, _transform)

    # ---- per-event protocol -------------------------------------------------
    async def handle_change(self, path: str) -> ReconcileResult:
        """Entry point for change notifications (subject to auto-sync)."""
        if not self.context.autosync:
            return ReconcileResult(path, "ignored")
        return await self.reconcile_note(path)

    async def reconcile_note(self, path: str) -> ReconcileResult:
        """Run a pass for ``path`` regardless of the auto-sync setting."""
        if not self.should_handle(path):
            return ReconcileResult(path, "ignored")
        if path in self._in_flight:
            self._pending.add(path)
            self.logger.debug(f"Queued re-run for {path}", path=path)
            return ReconcileResult(path, "queued")
        self._in_flight.add(path)
        try:
            result = await self._reconcile(path)
            while path in self._pending:
                self._pending.discard(path)
                result = await self._reconcile(path)
            return result
        finally:
            self._in_flight.discard(path)
            self._pending.discard(path)

    async def _reconcile(self, path: str) -> ReconcileResult:
        text = await self.storage.read_text(path)
        cached = self.cache.get_text(path)
        if cached is None:
            self.cache.set_text(path, text)
            return ReconcileResult(path, "baseline")

        try:
            current = NoteSnapshot.parse(path, text)
            previous = NoteSnapshot.parse(path, cached)
        except ParseError as exc:
            self.cache.invalidate(path)
            self.logger.warning(f"Skipping {path}: {exc}", path=path)
            return ReconcileResult(path, "invalid")

        if current.declared_type and current.repo is None:
            self.cache.invalidate(path)
            if not current.has_placeholder_repo:
                await self._edit_note(
                    path, lambda t: set_properties(t, {"repo": PLACEHOLDER_REPO})
                )
            self.context.notify(
                f"{path}: set mission.repo to your 'org/repo' to enable issue syncing"
            )
            return ReconcileResult(path, "repo_missing")

        diff = diff_snapshots(previous, current)
        if diff.has_additions:
            self.cache.invalidate(path)
        else:
            self.cache.set_text(path, text)
        if diff.is_empty:
            return ReconcileResult(path, "unchanged", diff)

        repo = current.repo
        if repo is None:
            return ReconcileResult(path, "local_only", diff)

        repository = self._repository_for(current, repo)
        with self.logger.timed_operation("reconcile", path=path, **diff.counts()):
            operations = await self._apply(path, diff, repository)
        return ReconcileResult(path, "applied", diff, operations=operations)

    async def _apply(self, path: str, diff: NoteDiff, repository: IssueRepository) -> int:
        ops: list[Coroutine[Any, Any, Any]] = []
        ops.extend(self._resolve_issue(path, issue, repository) for issue in diff.issues.added)
        ops.extend(
            self._hide_issue(issue.id, repository) for issue in diff.issues.removed if issue.id
        )
        ops.extend(self._push_issue(c.after, repository) for c in diff.issues.changed)
        ops.extend(self._resolve_milestone(path, m, repository) for m in diff.milestone.added)
        ops.extend(self._push_milestone(c.after, repository) for c in diff.milestone.changed)
        ops.extend(self._resolve_project(path, p, repository) for p in diff.project.added)
        ops.extend(self._push_project(c.after, repository) for c in diff.project.changed)
        for milestone in diff.milestone.removed:
            self.logger.info(
                f"{path} no longer tracks milestone {milestone.title!r}; nothing to do remotely",
                path=path,
            )
        for project in diff.project.removed:
            self.logger.info(
                f"{path} no longer tracks project {project.title!r}; nothing to do remotely",
                path=path,
            )
        await self._gather(ops)
        return len(ops)

    async def _gather(self, ops: list[Coroutine[Any, Any, Any]]) -> list[Any]:
        """Run ``ops`` concurrently and re-raise the first failure after all finish."""
        results = await asyncio.gather(*ops, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            info = classify_error(failure)
            self.logger.log_error(
                "Remote operation failed",
                error=redact(info.message),
                category=info.category,
            )
        if failures:
            raise failures[0]
        return list(results)

    # ---- issue operations -------------------------------------------------
    async def _resolve_issue(
        self, path: str, issue: Issue, repository: IssueRepository
    ) -> Issue:
        existing = await repository.fetch_issue_by_title(issue.title)
        if existing is None:
            remote = await repository.create_issue(CreateIssue.from_issue(issue))
        elif issue.milestone_id and issue.milestone_id != existing.milestone_id:
            remote = await repository.update_issue(
                UpdateIssue(id=_remote_id(existing), milestone_id=issue.milestone_id)
            )
        else:
            remote = existing
        remote_id = _remote_id(remote)
        self.cache.issues.upsert(remote)
        await self._write_issue_id(path, issue.title, remote_id)
        return remote

    async def _hide_issue(self, issue_id: str, repository: IssueRepository) -> None:
        await repository.hide_issue(issue_id)
        self.cache.issues.remove(issue_id)

    async def _push_issue(self, issue: Issue, repository: IssueRepository) -> Issue:
        remote = await repository.update_issue(UpdateIssue.from_issue(issue))
        self.cache.issues.upsert(remote)
        return remote

    # ---- tracked entity operations -------------------------------------------
    async def _resolve_milestone(
        self, path: str, milestone: Milestone, repository: IssueRepository
    ) -> Milestone:
        if milestone.id:
            self.logger.info(f"{path} already links milestone {milestone.id}", path=path)
            return milestone
        remote = await repository.fetch_milestone_by_title(milestone.title)
        if remote is None:
            remote = await repository.create_milestone(
                CreateMilestone(title=milestone.title, description=milestone.description)
            )
        await self._write_tracked(path, "milestone", remote)
        return remote

    async def _push_milestone(
        self, milestone: Milestone, repository: IssueRepository
    ) -> Milestone | None:
        if not milestone.id:
            self.logger.info(f"Milestone {milestone.title!r} has no id yet; not pushed")
            return None
        return await repository.update_milestone(
            UpdateMilestone(
                id=milestone.id, title=milestone.title, description=milestone.description
            )
        )

    async def _resolve_project(
        self, path: str, project: Project, repository: IssueRepository
    ) -> Project:
        if project.id:
            self.logger.info(f"{path} already links project {project.id}", path=path)
            return project
        title = project.title or PurePosixPath(path).stem
        remote = await repository.fetch_project_by_title(title)
        if remote is None:
            remote = await repository.create_project(
                CreateProject(title=title, description=project.description)
            )
        await self._write_tracked(path, "project", remote)
        return remote

    async def _push_project(
        self, project: Project, repository: IssueRepository
    ) -> Project | None:
        if not project.id:
            self.logger.info(f"Project {project.title!r} has no id yet; not pushed")
            return None
        return await repository.update_project(
            UpdateProject(id=project.id, title=project.title, description=project.description)
        )

    # ---- explicit commands ------------------------------------------------
    async def _load(self, path: str) -> NoteSnapshot:
        return NoteSnapshot.parse(path, await self.storage.read_text(path))

    @staticmethod
    def _require_tracked(snapshot: NoteSnapshot) -> tuple[str, str]:
        kind, tracked_id = snapshot.tracked_type, snapshot.tracked_id
        if not tracked_id or not kind:
            raise ConfigurationError(
                f"{snapshot.path} does not track a milestone or project (mission.type/mission.id)"
            )
        if kind not in FETCHABLE_TYPES:
            raise ConfigurationError(f"{snapshot.path}: cannot sync issues of a {kind} note")
        return kind, tracked_id

    async def fetch_issues(self, path: str) -> list[Issue]:
        """Replace the note's ``Issues`` section with the remote issue list."""
        snapshot = await self._load(path)
        kind, tracked_id = self._require_tracked(snapshot)
        repo = await self._require_repo(snapshot)
        repository = self._repository_for(snapshot, repo)

        with self.logger.timed_operation("fetch_issues", path=path, kind=kind):
            if kind == "milestone":
                issues = await repository.fetch_issues_in_milestone(tracked_id)
            else:
                issues = await repository.fetch_issues_in_project(tracked_id)

        def _order(a: Issue, b: Issue) -> int:
            left, right = a.status or "", b.status or ""
            if left != right:
                return -1 if left > right else 1
            return repository.compare_ids(a.id or "", b.id or "")

        ordered = sorted(issues, key=functools.cmp_to_key(_order))
        for issue in ordered:
            self.cache.issues.upsert(issue)
        await self._edit_note(path, lambda text: write_issues(text, ordered))
        self.logger.log_operation("fetch_issues", path=path, count=len(ordered))
        return ordered

    @staticmethod
    def _differs(local: Issue, remote: Issue) -> bool:
        return (
            local.title != remote.title
            or (local.description or None) != (remote.description or None)
            or local.status != remote.status
            or (local.milestone_id is not None and local.milestone_id != remote.milestone_id)
        )

    async def _push_one(
        self, path: str, issue: Issue, repository: IssueRepository
    ) -> Issue | None:
        if not issue.id:
            return await self._resolve_issue(path, issue, repository)
        remote = await repository.fetch_issue_by_id(issue.id)
        if remote is None:
            self.logger.warning(
                f"Issue {issue.id} ({issue.title!r}) not found remotely", path=path
            )
            return None
        if not self._differs(issue, remote):
            self.cache.issues.upsert(remote)
            return remote
        return await self._push_issue(issue, repository)

    async def push_issues(self, path: str) -> int:
        """Push every issue in the note's list; returns how many were processed."""
        snapshot = await self._load(path)
        self._require_tracked(snapshot)
        repo = await self._require_repo(snapshot)
        repository = self._repository_for(snapshot, repo)
        if any(not issue.id for issue in snapshot.issues):
            self.cache.invalidate(path)
        with self.logger.timed_operation("push_issues", path=path):
            await self._gather(
                [self._push_one(path, issue, repository) for issue in snapshot.issues]
            )
        return len(snapshot.issues)

    async def create_tracked(self, path: str, kind: str) -> Milestone | Project:
        """Create (or link by title) the milestone/project this note describes."""
        if kind not in FETCHABLE_TYPES:
            raise ConfigurationError(f"Unsupported tracked type: {kind}")
        snapshot = await self._load(path)
        if snapshot.tracked_id:
            raise ConfigurationError(
                f"{path} already tracks {snapshot.declared_type or 'an entity'} {snapshot.tracked_id}"
            )
        repo = await self._require_repo(snapshot)
        repository = self._repository_for(snapshot, repo)
        description = snapshot.head or None
        if kind == "milestone":
            return await self._resolve_milestone(
                path,
                Milestone(id=None, title=snapshot.tracked_name, description=description),
                repository,
            )
        return await self._resolve_project(
            path,
            Project(id=None, title=snapshot.tracked_name, description=description),
            repository,
        )

    # ---- watch loop -------------------------------------------------------
    async def _handle_logged(self, path: str) -> None:
        try:
            await self.handle_change(path)
        except Exception as exc:  # noqa: BLE001 - auto-sync never interrupts editing
            info = classify_error(exc)
            self.logger.log_error(
                f"Auto-sync failed for {path}",
                error=redact(info.message),
                category=info.category,
                path=path,
            )

    async def watch(self) -> None:
        """Reconcile every change from the storage stream until it ends."""
        tasks: set[asyncio.Task[None]] = set()
        self.logger.log_operation("watch_start")
        try:
            async for path in self.storage.changes():
                if not self.should_handle(path):
                    continue
                task = asyncio.create_task(self._handle_logged(path))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
        finally:
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            self.context.flush()
            self.logger.log_operation("watch_stop")


__all__ = ["ReconcileResult", "Reconciler"]
