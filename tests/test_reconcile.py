"""Reconciler behaviour against in-memory storage and repository fakes.

Each test drives the coroutines under test with ``asyncio.run``.
"""

from __future__ import annotations

import asyncio
import textwrap
from dataclasses import replace
from typing import Any

import pytest
from conftest import FakeRepository, MemoryStorage

from missionsync import repository as repository_module
from missionsync.context import SyncContext
from missionsync.errors import ConfigurationError, RemoteError
from missionsync.models import Issue, Milestone
from missionsync.note import NoteSnapshot, RepoRef
from missionsync.reconcile import Reconciler
from missionsync.repository import CreateIssue, UpdateIssue, build_repository

PATH = "Sprint 7.md"

MILESTONE_NOTE = textwrap.dedent(
    """\
    ---
    mission.type: milestone
    mission.id: 7
    mission.repo: acme/widgets
    ---
    Sprint goals

    ## Issues

    - [ ] New task
    """
)


def _reconciler(
    context: SyncContext, storage: MemoryStorage, repo: FakeRepository
) -> tuple[Reconciler, list[tuple[RepoRef, str | None]]]:
    seen: list[tuple[RepoRef, str | None]] = []

    def factory(
        ref: RepoRef, ctx: SyncContext, tracker: str | None, host: str | None = None
    ) -> Any:
        seen.append((ref, tracker))
        return repo

    return Reconciler(context, storage, repository_factory=factory), seen


def test_create_then_idempotent(sync_context: SyncContext) -> None:
    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    repo = FakeRepository()
    reconciler, seen = _reconciler(sync_context, storage, repo)

    async def _run() -> None:
        first = await reconciler.handle_change(PATH)
        assert first.outcome == "baseline"
        assert storage.writes == []

        second = await reconciler.handle_change(PATH)
        assert second.outcome == "applied"
        assert repo.call_names() == ["fetch_issue_by_title", "create_issue"]
        created = repo.calls[1][1]
        assert created == CreateIssue(title="New task", status="open", milestone_id="7")
        assert len(storage.writes) == 1
        assert "- [ ] New task (101)" in storage.files[PATH]
        assert seen == [(RepoRef("acme", "widgets"), None)]

        # notification caused by our own write re-baselines
        third = await reconciler.handle_change(PATH)
        assert third.outcome == "baseline"

        fourth = await reconciler.handle_change(PATH)
        assert fourth.outcome == "unchanged"

    asyncio.run(_run())
    assert len(storage.writes) == 1
    assert len(repo.calls) == 2
    (issue,) = NoteSnapshot.parse(PATH, storage.files[PATH]).issues
    assert (issue.id, issue.title, issue.milestone_id) == ("101", "New task", "7")
    assert sync_context.cache.issues.get("101") is not None
    assert reconciler._note_locks == {}


def test_existing_remote_issue_is_linked_and_moved(sync_context: SyncContext) -> None:
    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    repo = FakeRepository(issues=[Issue(id="55", title="New task", status="open")])
    reconciler, _ = _reconciler(sync_context, storage, repo)
    sync_context.cache.set_text(PATH, MILESTONE_NOTE)

    asyncio.run(reconciler.handle_change(PATH))

    assert repo.call_names() == ["fetch_issue_by_title", "update_issue"]
    assert repo.calls[1][1] == UpdateIssue(id="55", milestone_id="7")
    assert "- [ ] New task (55)" in storage.files[PATH]


def test_removed_issue_is_hidden_once(sync_context: SyncContext) -> None:
    before = MILESTONE_NOTE.replace("- [ ] New task", "- [ ] Fix (5)\n- [ ] Keep (6)")
    after = MILESTONE_NOTE.replace("- [ ] New task", "- [ ] Keep (6)")
    storage = MemoryStorage({PATH: after})
    repo = FakeRepository(
        issues=[
            Issue(id="5", title="Fix", status="open", milestone_id="7"),
            Issue(id="6", title="Keep", status="open", milestone_id="7"),
        ]
    )
    reconciler, _ = _reconciler(sync_context, storage, repo)
    sync_context.cache.set_text(PATH, before)
    sync_context.cache.issues.add(Issue(id="5", title="Fix"))

    result = asyncio.run(reconciler.handle_change(PATH))

    assert result.outcome == "applied"
    assert repo.calls == [("hide_issue", "5")]
    assert storage.writes == []
    assert sync_context.cache.get_text(PATH) == after
    assert sync_context.cache.issues.get("5") is None


def test_changed_issue_pushes_full_update(sync_context: SyncContext) -> None:
    before = MILESTONE_NOTE.replace("- [ ] New task", "- [ ] Keep (6)")
    after = MILESTONE_NOTE.replace("- [ ] New task", "- [x] Keep (6)\n  - done now")
    storage = MemoryStorage({PATH: after})
    repo = FakeRepository(issues=[Issue(id="6", title="Keep", status="open", milestone_id="7")])
    reconciler, _ = _reconciler(sync_context, storage, repo)
    sync_context.cache.set_text(PATH, before)

    asyncio.run(reconciler.handle_change(PATH))

    assert repo.call_names() == ["update_issue"]
    pushed = repo.calls[0][1]
    assert (pushed.id, pushed.status, pushed.description) == ("6", "closed", "done now")
    assert sync_context.cache.issues.get("6") == repo.issues["6"]


def test_first_observation_only_records_baseline(sync_context: SyncContext) -> None:
    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    repo = FakeRepository()
    reconciler, seen = _reconciler(sync_context, storage, repo)

    result = asyncio.run(reconciler.handle_change(PATH))

    assert result.outcome == "baseline"
    assert sync_context.cache.get_text(PATH) == MILESTONE_NOTE
    assert seen == []


def test_guards_skip_non_notes_and_vault_internals(sync_context: SyncContext) -> None:
    storage = MemoryStorage()
    reconciler, _ = _reconciler(sync_context, storage, FakeRepository())

    async def _run() -> list[str]:
        paths = ["image.png", ".obsidian/workspace.md", "sub/.git/HEAD.md"]
        return [(await reconciler.handle_change(p)).outcome for p in paths]

    assert asyncio.run(_run()) == ["ignored", "ignored", "ignored"]


def test_autosync_disabled_ignores_change_events(sync_context: SyncContext) -> None:
    sync_context.config.autosync = False
    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    reconciler, _ = _reconciler(sync_context, storage, FakeRepository())

    assert asyncio.run(reconciler.handle_change(PATH)).outcome == "ignored"
    # explicit passes still run
    assert asyncio.run(reconciler.reconcile_note(PATH)).outcome == "baseline"


def test_missing_repo_writes_placeholder_and_notifies(sync_context: SyncContext) -> None:
    notices: list[str] = []
    sync_context.notify = notices.append
    text = MILESTONE_NOTE.replace("mission.repo: acme/widgets\n", "")
    storage = MemoryStorage({PATH: text})
    repo = FakeRepository()
    reconciler, seen = _reconciler(sync_context, storage, repo)
    sync_context.cache.set_text(PATH, text)

    result = asyncio.run(reconciler.handle_change(PATH))

    assert result.outcome == "repo_missing"
    assert "mission.repo: org/repo" in storage.files[PATH]
    assert len(notices) == 1
    assert sync_context.cache.get_text(PATH) is None
    assert repo.calls == []
    assert seen == []


def test_missing_token_is_a_configuration_error(sync_context: SyncContext) -> None:
    context = replace(sync_context, config=sync_context.config.with_token(None))
    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    reconciler = Reconciler(context, storage)
    context.cache.set_text(PATH, MILESTONE_NOTE)

    with pytest.raises(ConfigurationError):
        asyncio.run(reconciler.handle_change(PATH))


def test_unknown_tracker_is_a_configuration_error(sync_context: SyncContext) -> None:
    text = MILESTONE_NOTE.replace("mission.repo:", "mission.tracker: jira\nmission.repo:")
    storage = MemoryStorage({PATH: text})
    reconciler = Reconciler(sync_context, storage)
    sync_context.cache.set_text(PATH, text)

    with pytest.raises(ConfigurationError, match="jira"):
        asyncio.run(reconciler.handle_change(PATH))


def test_remote_failure_propagates_after_siblings(sync_context: SyncContext) -> None:
    class _Failing(FakeRepository):
        async def hide_issue(self, issue_id: str) -> Issue:
            raise RemoteError("boom")

    before = MILESTONE_NOTE.replace("- [ ] New task", "- [ ] Gone (5)\n- [ ] Edited (6)")
    after = MILESTONE_NOTE.replace("- [ ] New task", "- [x] Edited (6)")
    storage = MemoryStorage({PATH: after})
    repo = _Failing(issues=[Issue(id="6", title="Edited", status="open")])
    reconciler, _ = _reconciler(sync_context, storage, repo)
    sync_context.cache.set_text(PATH, before)

    with pytest.raises(RemoteError):
        asyncio.run(reconciler.handle_change(PATH))
    assert repo.issues["6"].status == "closed"


def test_missing_issue_line_is_logged_not_fatal(sync_context: SyncContext) -> None:
    class _Renaming(MemoryStorage):
        reads = 0

        async def read_text(self, path: str) -> str:
            # the line is renamed while the remote call is in flight
            if self.reads == 1:
                self.files[path] = self.files[path].replace("- [ ] New task", "- [ ] Renamed")
            self.reads += 1
            return await super().read_text(path)

    storage = _Renaming({PATH: MILESTONE_NOTE})
    repo = FakeRepository()
    reconciler, _ = _reconciler(sync_context, storage, repo)
    sync_context.cache.set_text(PATH, MILESTONE_NOTE)

    result = asyncio.run(reconciler.handle_change(PATH))

    assert result.outcome == "applied"
    assert repo.call_names() == ["fetch_issue_by_title", "create_issue"]
    assert storage.writes == []


def test_concurrent_events_for_same_path_are_coalesced(sync_context: SyncContext) -> None:
    class _Gated(FakeRepository):
        def __init__(self) -> None:
            super().__init__()
            self.entered = asyncio.Event()
            self.release = asyncio.Event()

        async def create_issue(self, props: CreateIssue) -> Issue:
            self.entered.set()
            await self.release.wait()
            return await super().create_issue(props)

    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    sync_context.cache.set_text(PATH, MILESTONE_NOTE)

    async def _run() -> None:
        repo = _Gated()
        reconciler, _ = _reconciler(sync_context, storage, repo)
        first = asyncio.create_task(reconciler.handle_change(PATH))
        await repo.entered.wait()
        second = await reconciler.handle_change(PATH)
        third = await reconciler.handle_change(PATH)
        assert second.outcome == third.outcome == "queued"
        repo.release.set()
        result = await first
        # the coalesced re-run sees our own write and re-baselines
        assert result.outcome == "baseline"
        assert repo.call_names().count("create_issue") == 1

    asyncio.run(_run())
    assert len(storage.writes) == 1


def test_new_milestone_is_created_and_recorded(sync_context: SyncContext) -> None:
    before = "---\nmission.repo: acme/widgets\n---\nQuarter goals\n"
    after = "---\nmission.repo: acme/widgets\nmission.type: milestone\n---\nQuarter goals\n"
    storage = MemoryStorage({"Q3.md": after})
    repo = FakeRepository()
    reconciler, _ = _reconciler(sync_context, storage, repo)
    sync_context.cache.set_text("Q3.md", before)

    asyncio.run(reconciler.handle_change("Q3.md"))

    assert repo.call_names() == ["fetch_milestone_by_title", "create_milestone"]
    snapshot = NoteSnapshot.parse("Q3.md", storage.files["Q3.md"])
    assert snapshot.tracked_id == "101"
    assert snapshot.tracked_type == "milestone"
    assert snapshot.head == "Quarter goals"


def test_changed_milestone_is_pushed_and_removed_is_noop(sync_context: SyncContext) -> None:
    storage = MemoryStorage({PATH: MILESTONE_NOTE.replace("Sprint goals", "Better goals")})
    repo = FakeRepository(
        issues=[],
        milestones=[Milestone(id="7", title="Sprint 7", description="Sprint goals")],
    )
    reconciler, _ = _reconciler(sync_context, storage, repo)
    sync_context.cache.set_text(PATH, MILESTONE_NOTE.replace("- [ ] New task", ""))
    storage.files[PATH] = storage.files[PATH].replace("- [ ] New task", "")

    asyncio.run(reconciler.handle_change(PATH))
    assert repo.call_names() == ["update_milestone"]
    assert repo.milestones["7"].description == "Better goals"

    untracked = storage.files[PATH].replace("mission.type: milestone\n", "")
    storage.files[PATH] = untracked
    repo.calls.clear()
    result = asyncio.run(reconciler.handle_change(PATH))
    assert result.diff is not None
    assert len(result.diff.milestone.removed) == 1
    assert repo.calls == []


def test_fetch_issues_sorts_and_renders(sync_context: SyncContext) -> None:
    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    repo = FakeRepository(
        issues=[
            Issue(id="10", title="Ten", status="closed", milestone_id="7"),
            Issue(id="3", title="Three", status="open", milestone_id="7"),
            Issue(id="2", title="Two", status="open", milestone_id="7"),
            Issue(id="4", title="Elsewhere", status="open", milestone_id="8"),
        ]
    )
    reconciler, _ = _reconciler(sync_context, storage, repo)
    sync_context.cache.set_text(PATH, MILESTONE_NOTE)

    issues = asyncio.run(reconciler.fetch_issues(PATH))

    assert [i.id for i in issues] == ["2", "3", "10"]
    section = storage.files[PATH].split("## Issues", 1)[1].strip()
    assert section == "- [ ] Two (2)\n- [ ] Three (3)\n- [x] Ten (10)"
    assert sync_context.cache.get_text(PATH) is None


def test_fetch_issues_empty_list(sync_context: SyncContext) -> None:
    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    reconciler, _ = _reconciler(sync_context, storage, FakeRepository())

    asyncio.run(reconciler.fetch_issues(PATH))

    assert storage.files[PATH].rstrip().endswith("## Issues\n\nNo issues found.")


def test_fetch_issues_requires_tracked_entity(sync_context: SyncContext) -> None:
    storage = MemoryStorage({"plain.md": "---\nmission.repo: acme/widgets\n---\nbody\n"})
    reconciler, _ = _reconciler(sync_context, storage, FakeRepository())

    with pytest.raises(ConfigurationError):
        asyncio.run(reconciler.fetch_issues("plain.md"))


def test_fetch_issues_rejects_unsupported_type(sync_context: SyncContext) -> None:
    storage = MemoryStorage({"i.md": "---\nmission.type: issue\nmission.id: 3\n---\n"})
    reconciler, _ = _reconciler(sync_context, storage, FakeRepository())

    with pytest.raises(ConfigurationError, match="issue"):
        asyncio.run(reconciler.fetch_issues("i.md"))


def test_push_issues_updates_and_creates(sync_context: SyncContext) -> None:
    text = MILESTONE_NOTE.replace(
        "- [ ] New task", "- [x] Done (3)\n- [ ] Same (4)\n- [ ] Fresh"
    )
    storage = MemoryStorage({PATH: text})
    repo = FakeRepository(
        issues=[
            Issue(id="3", title="Done", status="open", milestone_id="7"),
            Issue(id="4", title="Same", status="open", milestone_id="7"),
        ]
    )
    reconciler, _ = _reconciler(sync_context, storage, repo)

    count = asyncio.run(reconciler.push_issues(PATH))

    assert count == 3
    names = repo.call_names()
    assert names.count("update_issue") == 1
    assert names.count("create_issue") == 1
    assert repo.issues["3"].status == "closed"
    assert "- [ ] Fresh (101)" in storage.files[PATH]


def test_create_tracked_project(sync_context: SyncContext) -> None:
    storage = MemoryStorage({"Roadmap.md": "---\nmission.repo: acme/widgets\n---\nBig plans\n"})
    repo = FakeRepository()
    reconciler, _ = _reconciler(sync_context, storage, repo)

    project = asyncio.run(reconciler.create_tracked("Roadmap.md", "project"))

    assert project.title == "Roadmap"
    snapshot = NoteSnapshot.parse("Roadmap.md", storage.files["Roadmap.md"])
    assert snapshot.tracked_type == "project"
    assert snapshot.tracked_id == project.id
    assert repo.projects[str(project.id)].description == "Big plans"


def test_create_tracked_refuses_already_tracked_note(sync_context: SyncContext) -> None:
    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    reconciler, _ = _reconciler(sync_context, storage, FakeRepository())

    with pytest.raises(ConfigurationError):
        asyncio.run(reconciler.create_tracked(PATH, "milestone"))


def test_watch_consumes_change_stream(sync_context: SyncContext) -> None:
    storage = MemoryStorage(
        {"a.md": "# A\n", "b.md": "# B\n"},
        events=["a.md", "notes.txt", ".obsidian/app.md", "b.md"],
    )
    reconciler, _ = _reconciler(sync_context, storage, FakeRepository())

    asyncio.run(reconciler.watch())

    assert sorted(sync_context.cache.notes) == ["a.md", "b.md"]


def test_cleared_description_is_pushed(sync_context: SyncContext) -> None:
    before = MILESTONE_NOTE.replace("- [ ] New task", "- [ ] Keep (6)\n  - old details")
    after = MILESTONE_NOTE.replace("- [ ] New task", "- [ ] Keep (6)")
    storage = MemoryStorage({PATH: after})
    repo = FakeRepository(
        issues=[
            Issue(id="6", title="Keep", description="old details", status="open", milestone_id="7")
        ]
    )
    reconciler, _ = _reconciler(sync_context, storage, repo)
    sync_context.cache.set_text(PATH, before)

    asyncio.run(reconciler.handle_change(PATH))

    assert repo.calls == [
        (
            "update_issue",
            UpdateIssue(id="6", title="Keep", description="", status="open", milestone_id="7"),
        )
    ]
    assert not repo.issues["6"].description

    # the cleared body now matches, so a full push has nothing to send
    repo.calls.clear()
    asyncio.run(reconciler.push_issues(PATH))
    assert repo.call_names() == ["fetch_issue_by_id"]


def test_note_host_selects_api_base_url(sync_context: SyncContext) -> None:
    text = MILESTONE_NOTE.replace(
        "mission.repo:", "mission.host: https://ghe.example.com/api/v3\nmission.repo:"
    )
    storage = MemoryStorage({PATH: text})
    hosts: list[str | None] = []

    def factory(ref: RepoRef, ctx: SyncContext, tracker: str | None, host: str | None) -> Any:
        hosts.append(host)
        return FakeRepository()

    reconciler = Reconciler(sync_context, storage, repository_factory=factory)
    sync_context.cache.set_text(PATH, text.replace("- [ ] New task", ""))
    asyncio.run(reconciler.handle_change(PATH))

    assert hosts == ["https://ghe.example.com/api/v3"]


def test_build_repository_prefers_note_host(
    sync_context: SyncContext, monkeypatch: pytest.MonkeyPatch
) -> None:
    base_urls: list[str] = []

    def fake_tracker(ref: RepoRef, token: str, base_url: str) -> Any:
        base_urls.append(base_url)
        return FakeRepository()

    monkeypatch.setitem(repository_module.TRACKERS, "github", fake_tracker)
    ref = RepoRef("acme", "widgets")
    build_repository(ref, sync_context)
    build_repository(ref, sync_context, host="https://ghe.example.com/api/v3")

    assert base_urls == ["https://api.github.com", "https://ghe.example.com/api/v3"]


def test_remote_issue_without_id_is_a_remote_error(sync_context: SyncContext) -> None:
    class _Anonymous(FakeRepository):
        async def create_issue(self, props: CreateIssue) -> Issue:
            return Issue(id=None, title=props.title)

    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    reconciler, _ = _reconciler(sync_context, storage, _Anonymous())
    sync_context.cache.set_text(PATH, MILESTONE_NOTE.replace("- [ ] New task", ""))

    with pytest.raises(RemoteError, match="without an id"):
        asyncio.run(reconciler.handle_change(PATH))
    assert storage.writes == []


def test_fetch_issues_keeps_baseline_when_section_is_current(
    sync_context: SyncContext,
) -> None:
    storage = MemoryStorage({PATH: MILESTONE_NOTE})
    repo = FakeRepository(issues=[Issue(id="2", title="Two", status="open", milestone_id="7")])
    reconciler, _ = _reconciler(sync_context, storage, repo)

    asyncio.run(reconciler.fetch_issues(PATH))
    rendered = storage.files[PATH]
    sync_context.cache.set_text(PATH, rendered)

    asyncio.run(reconciler.fetch_issues(PATH))

    assert len(storage.writes) == 1
    assert sync_context.cache.get_text(PATH) == rendered
