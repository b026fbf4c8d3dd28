"""GitHub implementation of the issue repository capability.

Wraps the blocking :class:`~missionsync.github_rest.GitHubRestClient` so the
reconciler can await it: every call runs in the event loop's default
executor, keeping the loop free while ``requests`` waits on the network.

Mapping notes:
 - issue and milestone ids are their repository-scoped numbers (as strings)
 - project ids are Projects V2 node ids; ``number`` is kept alongside
 - hidden issues (closed as ``not_planned``) are left out of every listing
 - pull requests never show up as issues
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from typing import Any, TypeVar, cast

from .github_rest import DEFAULT_API_URL, GitHubRestClient
from .logging import get_logger
from .models import Issue, Milestone, Project, StatusReason, to_status
from .note import RepoRef
from .repository import (
    CreateIssue,
    CreateMilestone,
    CreateProject,
    UpdateIssue,
    UpdateMilestone,
    UpdateProject,
)

T = TypeVar("T")

HIDDEN_REASON = "not_planned"
_STATUS_REASONS = ("completed", "not_planned", "reopened")


def _status_reason(value: Any) -> StatusReason | None:
    if not isinstance(value, str):
        return None
    lowered = value.lower()
    return cast(StatusReason, lowered) if lowered in _STATUS_REASONS else None


def to_issue(data: dict[str, Any], project_id: str | None = None) -> Issue:
    """Map a REST issue (or a GraphQL ``Issue`` node) onto :class:`Issue`."""
    milestone = data.get("milestone")
    milestone_number = milestone.get("number") if isinstance(milestone, dict) else None
    state = data.get("state")
    return Issue(
        id=str(data["number"]),
        title=str(data.get("title") or ""),
        description=data.get("body") or None,
        status=to_status(state if isinstance(state, str) else None),
        status_reason=_status_reason(data.get("state_reason", data.get("stateReason"))),
        milestone_id=str(milestone_number) if milestone_number is not None else None,
        project_id=project_id,
    )


def to_milestone(data: dict[str, Any]) -> Milestone:
    state = data.get("state")
    return Milestone(
        id=str(data["number"]),
        title=str(data.get("title") or ""),
        description=data.get("description") or None,
        status=to_status(state if isinstance(state, str) else None),
    )


def to_project(data: dict[str, Any]) -> Project:
    number = data.get("number")
    return Project(
        id=str(data["id"]),
        number=int(number) if number is not None else None,
        title=data.get("title"),
        description=data.get("shortDescription") or None,
        status="closed" if data.get("closed") else "open",
    )


def is_hidden(issue: Issue) -> bool:
    return issue.status == "closed" and issue.status_reason == HIDDEN_REASON


def _issue_payload(props: CreateIssue | UpdateIssue) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if props.title is not None:
        payload["title"] = props.title
    if props.description is not None:
        payload["body"] = props.description
    if props.status is not None:
        payload["state"] = props.status
    if props.status_reason is not None:
        payload["state_reason"] = props.status_reason
    if props.milestone_id is not None:
        payload["milestone"] = int(props.milestone_id)
    return payload


def _milestone_payload(props: CreateMilestone | UpdateMilestone) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if props.title is not None:
        payload["title"] = props.title
    if props.description is not None:
        payload["description"] = props.description
    if props.status is not None:
        payload["state"] = props.status
    return payload


def _project_payload(props: CreateProject | UpdateProject) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if props.title is not None:
        payload["title"] = props.title
    if props.description is not None:
        payload["shortDescription"] = props.description
    if props.status is not None:
        payload["closed"] = props.status == "closed"
    return payload


class GitHubIssueRepository:
    """Async :class:`~missionsync.repository.IssueRepository` backed by GitHub."""

    def __init__(self, client: GitHubRestClient):
        self.client = client
        self.logger = get_logger()

    @classmethod
    def connect(
        cls, repo: RepoRef, *, token: str, base_url: str = DEFAULT_API_URL
    ) -> GitHubIssueRepository:
        client = GitHubRestClient(token=token, owner=repo.org, repo=repo.repo, base_url=base_url)
        return cls(client)

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    # ---- issues -----------------------------------------------------------
    async def fetch_issue_by_id(self, issue_id: str) -> Issue | None:
        if not issue_id.isdigit():
            return None
        data = await self._call(self.client.get_issue, int(issue_id))
        if data is None or "pull_request" in data:
            return None
        return to_issue(data)

    async def fetch_issue_by_title(self, title: str) -> Issue | None:
        entries = await self._call(self.client.list_issues, state="all")
        for entry in entries:
            if entry.get("title") == title:
                issue = to_issue(entry)
                if not is_hidden(issue):
                    return issue
        return None

    async def fetch_issues_in_milestone(self, milestone_id: str) -> list[Issue]:
        entries = await self._call(
            self.client.list_issues, state="all", milestone=int(milestone_id)
        )
        issues = (to_issue(entry) for entry in entries)
        return [issue for issue in issues if not is_hidden(issue)]

    async def fetch_issues_in_project(self, project_id: str) -> list[Issue]:
        entries = await self._call(self.client.list_project_issues, project_id)
        issues = (to_issue(entry, project_id=project_id) for entry in entries)
        return [issue for issue in issues if not is_hidden(issue)]

    async def _link_project(self, data: dict[str, Any], project_id: str | None) -> None:
        node_id = data.get("node_id")
        if not project_id or not node_id:
            return
        await self._call(self.client.add_to_project, project_id, str(node_id))

    async def create_issue(self, props: CreateIssue) -> Issue:
        data = await self._call(self.client.create_issue, _issue_payload(props))
        await self._link_project(data, props.project_id)
        issue = to_issue(data, project_id=props.project_id)
        self.logger.log_entity_action("create", "issue", issue.id, issue.title)
        return issue

    async def update_issue(self, props: UpdateIssue) -> Issue:
        data = await self._call(
            self.client.update_issue, int(props.id), _issue_payload(props)
        )
        # adding an item that is already on the board is a no-op upstream
        await self._link_project(data, props.project_id)
        issue = to_issue(data, project_id=props.project_id)
        self.logger.log_entity_action("update", "issue", issue.id, issue.title)
        return issue

    async def hide_issue(self, issue_id: str) -> Issue:
        data = await self._call(
            self.client.update_issue,
            int(issue_id),
            {"state": "closed", "state_reason": HIDDEN_REASON},
        )
        issue = to_issue(data)
        self.logger.log_entity_action("hide", "issue", issue.id, issue.title)
        return issue

    def compare_ids(self, a: str, b: str) -> int:
        if a.isdigit() and b.isdigit():
            left, right = int(a), int(b)
            return (left > right) - (left < right)
        return (a > b) - (a < b)

    # ---- milestones -------------------------------------------------------
    async def fetch_milestones(self) -> list[Milestone]:
        entries = await self._call(self.client.list_milestones, state="all")
        return [to_milestone(entry) for entry in entries]

    async def fetch_milestone_by_title(self, title: str) -> Milestone | None:
        milestones = await self.fetch_milestones()
        return next((m for m in milestones if m.title == title), None)

    async def create_milestone(self, props: CreateMilestone) -> Milestone:
        data = await self._call(self.client.create_milestone, _milestone_payload(props))
        milestone = to_milestone(data)
        self.logger.log_entity_action("create", "milestone", milestone.id, milestone.title)
        return milestone

    async def update_milestone(self, props: UpdateMilestone) -> Milestone:
        data = await self._call(
            self.client.update_milestone, int(props.id), _milestone_payload(props)
        )
        milestone = to_milestone(data)
        self.logger.log_entity_action("update", "milestone", milestone.id, milestone.title)
        return milestone

    # ---- projects ---------------------------------------------------------
    async def fetch_projects(self) -> list[Project]:
        entries = await self._call(self.client.list_projects)
        return [to_project(entry) for entry in entries]

    async def fetch_project_by_title(self, title: str) -> Project | None:
        projects = await self.fetch_projects()
        return next((p for p in projects if p.title == title), None)

    async def create_project(self, props: CreateProject) -> Project:
        # createProjectV2 only takes a title; the rest is applied as an update
        data = await self._call(self.client.create_project, {"title": props.title})
        project = to_project(data)
        extra = _project_payload(
            UpdateProject(id="", description=props.description, status=props.status)
        )
        if extra and project.id:
            data = await self._call(self.client.update_project, project.id, extra)
            project = to_project(data)
        self.logger.log_entity_action("create", "project", project.id, project.title or "")
        return project

    async def update_project(self, props: UpdateProject) -> Project:
        data = await self._call(self.client.update_project, props.id, _project_payload(props))
        project = to_project(data)
        self.logger.log_entity_action("update", "project", project.id, project.title or "")
        return project


__all__ = [
    "GitHubIssueRepository",
    "is_hidden",
    "to_issue",
    "to_milestone",
    "to_project",
]
