"""Classify what changed between two snapshots of the same note.

Text edits are the only change signal, so intent is inferred from ids
and field deltas alone:

* issues without an id are *added* (new, or not yet resolved remotely);
* id'd issues that disappeared are *removed*;
* id'd issues whose fields differ from the earlier copy are *changed*.

The tracked milestone and project are singletons per note and produce at
most one entry per bucket.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from .models import Issue, Milestone, Project
from .note import NoteSnapshot

T = TypeVar("T")


@dataclass(frozen=True)
class Change(Generic[T]):
    before: T
    after: T


@dataclass(frozen=True)
class Diff(Generic[T]):
    added: list[T] = field(default_factory=list)
    removed: list[T] = field(default_factory=list)
    changed: list[Change[T]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


def diff_collection(
    before: Sequence[T],
    after: Sequence[T],
    key: Callable[[T], str | None],
    equals: Callable[[T, T], bool],
) -> Diff[T]:
    """Diff two ordered collections keyed by an optional id.

    ``added`` and ``changed`` follow the order of ``after``; ``removed``
    follows the order of ``before``.
    """
    before_by_key = {k: item for item in before if (k := key(item))}
    after_keys = {k for item in after if (k := key(item))}

    added = [item for item in after if not key(item)]
    removed = [item for item in before if (k := key(item)) and k not in after_keys]
    changed: list[Change[T]] = []
    for item in after:
        k = key(item)
        if not k or k not in before_by_key:
            continue
        previous = before_by_key[k]
        if not equals(previous, item):
            changed.append(Change(before=previous, after=item))
    return Diff(added=added, removed=removed, changed=changed)


def diff_single(before: T | None, after: T | None, equals: Callable[[T, T], bool]) -> Diff[T]:
    if before is None and after is not None:
        return Diff(added=[after])
    if before is not None and after is None:
        return Diff(removed=[before])
    if before is not None and after is not None and not equals(before, after):
        return Diff(changed=[Change(before=before, after=after)])
    return Diff()


def diff_issues(before: Sequence[Issue], after: Sequence[Issue]) -> Diff[Issue]:
    return diff_collection(before, after, key=lambda i: i.id, equals=Issue.equals)


def diff_milestones(before: Milestone | None, after: Milestone | None) -> Diff[Milestone]:
    return diff_single(before, after, Milestone.equals)


def diff_projects(before: Project | None, after: Project | None) -> Diff[Project]:
    return diff_single(before, after, Project.equals)


@dataclass(frozen=True)
class NoteDiff:
    issues: Diff[Issue]
    milestone: Diff[Milestone]
    project: Diff[Project]

    @property
    def is_empty(self) -> bool:
        return self.issues.is_empty and self.milestone.is_empty and self.project.is_empty

    @property
    def has_additions(self) -> bool:
        return bool(self.issues.added or self.milestone.added or self.project.added)

    def counts(self) -> dict[str, int]:
        return {
            "issues_added": len(self.issues.added),
            "issues_removed": len(self.issues.removed),
            "issues_changed": len(self.issues.changed),
            "milestone_changes": len(self.milestone.added)
            + len(self.milestone.removed)
            + len(self.milestone.changed),
            "project_changes": len(self.project.added)
            + len(self.project.removed)
            + len(self.project.changed),
        }


def diff_snapshots(before: NoteSnapshot, after: NoteSnapshot) -> NoteDiff:
    return NoteDiff(
        issues=diff_issues(before.issues, after.issues),
        milestone=diff_milestones(before.tracked_milestone, after.tracked_milestone),
        project=diff_projects(before.tracked_project, after.tracked_project),
    )


__all__ = [
    "Change",
    "Diff",
    "NoteDiff",
    "diff_collection",
    "diff_issues",
    "diff_milestones",
    "diff_projects",
    "diff_single",
    "diff_snapshots",
]
