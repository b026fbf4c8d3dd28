"""The remote tracker capability consumed by the reconciler.

Each tracker (GitHub today) implements :class:`IssueRepository` and is
registered under a tracker-kind name; ``build_repository`` picks one from
the configured (or per-note) ``tracker`` value. Ids are opaque strings:
only the repository knows how to order them (``compare_ids``).

``None`` in an update payload means "leave unchanged".
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from .errors import ConfigurationError
from .models import Issue, Milestone, Project, Status, StatusReason

if TYPE_CHECKING:
    from .context import SyncContext
    from .note import RepoRef


@dataclass(frozen=True)
class CreateIssue:
    title: str
    description: str | None = None
    status: Status | None = None
    status_reason: StatusReason | None = None
    milestone_id: str | None = None
    project_id: str | None = None

    @classmethod
    def from_issue(cls, issue: Issue) -> CreateIssue:
        return cls(
            title=issue.title,
            description=issue.description,
            status=issue.status,
            status_reason=issue.status_reason,
            milestone_id=issue.milestone_id,
            project_id=issue.project_id,
        )


@dataclass(frozen=True)
class UpdateIssue:
    id: str
    title: str | None = None
    description: str | None = None
    status: Status | None = None
    status_reason: StatusReason | None = None
    milestone_id: str | None = None
    project_id: str | None = None

    @classmethod
    def from_issue(cls, issue: Issue) -> UpdateIssue:
        if not issue.id:
            raise ValueError(f"issue {issue.title!r} has no id to update")
        return cls(
            id=issue.id,
            title=issue.title,
            description=issue.description or "",
            status=issue.status,
            status_reason=issue.status_reason,
            milestone_id=issue.milestone_id,
            project_id=issue.project_id,
        )


@dataclass(frozen=True)
class CreateMilestone:
    title: str
    description: str | None = None
    status: Status | None = None


@dataclass(frozen=True)
class UpdateMilestone:
    id: str
    title: str | None = None
    description: str | None = None
    status: Status | None = None


@dataclass(frozen=True)
class CreateProject:
    title: str
    description: str | None = None
    status: Status | None = None


@dataclass(frozen=True)
class UpdateProject:
    id: str
    title: str | None = None
    description: str | None = None
    status: Status | None = None


class IssueRepository(Protocol):
    # Issues
    async def fetch_issue_by_id(self, issue_id: str) -> Issue | None: ...
    async def fetch_issue_by_title(self, title: str) -> Issue | None: ...
    async def fetch_issues_in_milestone(self, milestone_id: str) -> list[Issue]: ...
    async def fetch_issues_in_project(self, project_id: str) -> list[Issue]: ...
    async def create_issue(self, props: CreateIssue) -> Issue: ...
    async def update_issue(self, props: UpdateIssue) -> Issue: ...
    async def hide_issue(self, issue_id: str) -> Issue: ...

    def compare_ids(self, a: str, b: str) -> int: ...

    # Milestones
    async def fetch_milestone_by_title(self, title: str) -> Milestone | None: ...
    async def fetch_milestones(self) -> list[Milestone]: ...
    async def create_milestone(self, props: CreateMilestone) -> Milestone: ...
    async def update_milestone(self, props: UpdateMilestone) -> Milestone: ...

    # Projects
    async def fetch_project_by_title(self, title: str) -> Project | None: ...
    async def fetch_projects(self) -> list[Project]: ...
    async def create_project(self, props: CreateProject) -> Project: ...
    async def update_project(self, props: UpdateProject) -> Project: ...


TrackerFactory = Callable[["RepoRef", str, str], IssueRepository]
RepositoryFactory = Callable[
    ["RepoRef", "SyncContext", "str | None", "str | None"], IssueRepository
]


def _github_factory(repo: RepoRef, token: str, base_url: str) -> IssueRepository:
    from .github_issues import GitHubIssueRepository  # noqa: PLC0415 - avoid import cycle

    return GitHubIssueRepository.connect(repo, token=token, base_url=base_url)


TRACKERS: dict[str, TrackerFactory] = {"github": _github_factory}


def build_repository(
    repo: RepoRef,
    context: SyncContext,
    tracker: str | None = None,
    host: str | None = None,
) -> IssueRepository:
    """Select the tracker implementation for ``repo``.

    ``tracker`` (usually the note's ``mission.tracker`` property) overrides
    the configured default. ``host`` (``mission.host``) likewise overrides the
    configured API base URL. Raises ``ConfigurationError`` for unknown
    trackers or when no access token is available.
    """
    kind = (tracker or context.tracker).lower()
    factory = TRACKERS.get(kind)
    if factory is None:
        raise ConfigurationError(
            f"Unsupported tracker '{kind}' (supported: {', '.join(sorted(TRACKERS))})"
        )
    return factory(repo, context.require_token(), host or context.base_url)


__all__ = [
    "CreateIssue",
    "CreateMilestone",
    "CreateProject",
    "IssueRepository",
    "RepositoryFactory",
    "TRACKERS",
    "UpdateIssue",
    "UpdateMilestone",
    "UpdateProject",
    "build_repository",
]
