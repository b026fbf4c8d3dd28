"""Pytest configuration for missionsync tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`). Also provides
in-memory stand-ins for the note storage and the issue repository so the
reconciler can be exercised without a filesystem watcher or network.
"""

from __future__ import annotations

import os
import sys
import time
from collections.abc import AsyncIterator
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

_TEST_START_TIMES: dict[str, float] = {}
_TEST_DURATIONS: list[tuple[str, float]] = []

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    # Prepend so that 'python -m missionsync' finds local package first
    sys.path.insert(0, str(SRC))

py_path = os.environ.get("PYTHONPATH", "")
parts = [p for p in py_path.split(os.pathsep) if p]
if str(SRC) not in parts:
    parts.insert(0, str(SRC))
    os.environ["PYTHONPATH"] = os.pathsep.join(parts)

from missionsync.cache import ChangeCache  # noqa: E402
from missionsync.config import default_config  # noqa: E402
from missionsync.context import SyncContext  # noqa: E402
from missionsync.models import Issue, Milestone, Project  # noqa: E402
from missionsync.repository import (  # noqa: E402
    CreateIssue,
    CreateMilestone,
    CreateProject,
    UpdateIssue,
    UpdateMilestone,
    UpdateProject,
)


class MemoryStorage:
    """Note storage backed by a dict; records every write."""

    def __init__(self, files: dict[str, str] | None = None, events: list[str] | None = None):
        self.files = dict(files or {})
        self.writes: list[tuple[str, str]] = []
        self.events = list(events or [])

    async def read_text(self, path: str) -> str:
        return self.files[path]

    async def write_text(self, path: str, text: str) -> None:
        self.files[path] = text
        self.writes.append((path, text))

    async def changes(self) -> AsyncIterator[str]:
        for path in self.events:
            yield path


class FakeRepository:
    """In-memory issue repository that records every call."""

    def __init__(
        self,
        issues: list[Issue] | None = None,
        milestones: list[Milestone] | None = None,
        projects: list[Project] | None = None,
    ):
        self.issues: dict[str, Issue] = {i.id: i for i in issues or [] if i.id}
        self.milestones: dict[str, Milestone] = {m.id: m for m in milestones or [] if m.id}
        self.projects: dict[str, Project] = {p.id: p for p in projects or [] if p.id}
        self.calls: list[tuple[str, Any]] = []
        self._next_id = 100

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    async def fetch_issue_by_id(self, issue_id: str) -> Issue | None:
        self.calls.append(("fetch_issue_by_id", issue_id))
        return self.issues.get(issue_id)

    async def fetch_issue_by_title(self, title: str) -> Issue | None:
        self.calls.append(("fetch_issue_by_title", title))
        return next((i for i in self.issues.values() if i.title == title), None)

    async def fetch_issues_in_milestone(self, milestone_id: str) -> list[Issue]:
        self.calls.append(("fetch_issues_in_milestone", milestone_id))
        return [i for i in self.issues.values() if i.milestone_id == milestone_id]

    async def fetch_issues_in_project(self, project_id: str) -> list[Issue]:
        self.calls.append(("fetch_issues_in_project", project_id))
        return [i for i in self.issues.values() if i.project_id == project_id]

    async def create_issue(self, props: CreateIssue) -> Issue:
        self.calls.append(("create_issue", props))
        issue = Issue(
            id=self._new_id(),
            title=props.title,
            description=props.description,
            status=props.status or "open",
            milestone_id=props.milestone_id,
            project_id=props.project_id,
        )
        self.issues[str(issue.id)] = issue
        return issue

    async def update_issue(self, props: UpdateIssue) -> Issue:
        self.calls.append(("update_issue", props))
        current = self.issues[props.id]
        changes = {
            k: v
            for k, v in {
                "title": props.title,
                "description": props.description,
                "status": props.status,
                "milestone_id": props.milestone_id,
                "project_id": props.project_id,
            }.items()
            if v is not None
        }
        updated = replace(current, **changes)
        self.issues[props.id] = updated
        return updated

    async def hide_issue(self, issue_id: str) -> Issue:
        self.calls.append(("hide_issue", issue_id))
        hidden = replace(self.issues[issue_id], status="closed", status_reason="not_planned")
        self.issues[issue_id] = hidden
        return hidden

    def compare_ids(self, a: str, b: str) -> int:
        return (int(a) > int(b)) - (int(a) < int(b))

    async def fetch_milestone_by_title(self, title: str) -> Milestone | None:
        self.calls.append(("fetch_milestone_by_title", title))
        return next((m for m in self.milestones.values() if m.title == title), None)

    async def fetch_milestones(self) -> list[Milestone]:
        self.calls.append(("fetch_milestones", None))
        return list(self.milestones.values())

    async def create_milestone(self, props: CreateMilestone) -> Milestone:
        self.calls.append(("create_milestone", props))
        milestone = Milestone(
            id=self._new_id(), title=props.title, description=props.description, status="open"
        )
        self.milestones[str(milestone.id)] = milestone
        return milestone

    async def update_milestone(self, props: UpdateMilestone) -> Milestone:
        self.calls.append(("update_milestone", props))
        updated = replace(
            self.milestones[props.id],
            title=props.title or self.milestones[props.id].title,
            description=props.description,
        )
        self.milestones[props.id] = updated
        return updated

    async def fetch_project_by_title(self, title: str) -> Project | None:
        self.calls.append(("fetch_project_by_title", title))
        return next((p for p in self.projects.values() if p.title == title), None)

    async def fetch_projects(self) -> list[Project]:
        self.calls.append(("fetch_projects", None))
        return list(self.projects.values())

    async def create_project(self, props: CreateProject) -> Project:
        self.calls.append(("create_project", props))
        project = Project(
            id=f"PVT_{self._new_id()}",
            number=len(self.projects) + 1,
            title=props.title,
            description=props.description,
            status="open",
        )
        self.projects[str(project.id)] = project
        return project

    async def update_project(self, props: UpdateProject) -> Project:
        self.calls.append(("update_project", props))
        updated = replace(self.projects[props.id], title=props.title, description=props.description)
        self.projects[props.id] = updated
        return updated

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def sync_context(tmp_path: Path) -> SyncContext:
    cfg = default_config(tmp_path).with_token("test-token")
    cfg.cache_file = None
    return SyncContext(config=cfg, cache=ChangeCache(), notify=lambda message: None)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("GITHUB_TOKEN", "GH_TOKEN", "GITHUB_ACCESS_TOKEN", "GITHUB_PAT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("MISSIONSYNC_QUIET", raising=False)


# --- Timing utilities to help identify slow/stalling tests ---


def pytest_runtest_setup(item):  # type: ignore
    _TEST_START_TIMES[item.nodeid] = time.perf_counter()


def pytest_runtest_teardown(item):  # type: ignore
    start = _TEST_START_TIMES.pop(item.nodeid, None)
    if start is not None:
        _TEST_DURATIONS.append((item.nodeid, time.perf_counter() - start))


def pytest_sessionfinish(session, exitstatus):  # type: ignore
    if not _TEST_DURATIONS:
        return
    slow = sorted(_TEST_DURATIONS, key=lambda x: x[1], reverse=True)[:10]
    print("\n=== Slowest Tests (top 10) ===")
    for nodeid, secs in slow:
        print(f"{secs:0.3f}s  {nodeid}")
