from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

Status = Literal["open", "closed"]
StatusReason = Literal["completed", "not_planned", "reopened"]


@dataclass(frozen=True)
class Issue:
    """A tracker issue as seen from a note or from the remote side.

    ``id`` is ``None`` while the issue only exists in the note; until then
    its title is what identifies it.
    """

    id: str | None
    title: str
    description: str | None = None
    status: Status | None = None
    status_reason: StatusReason | None = None
    milestone_id: str | None = None
    project_id: str | None = None

    def equals(self, other: Issue) -> bool:
        return (
            self.id == other.id
            and self.title == other.title
            and self.description == other.description
            and self.status == other.status
            and self.status_reason == other.status_reason
            and self.milestone_id == other.milestone_id
            and self.project_id == other.project_id
        )

    def with_id(self, issue_id: str) -> Issue:
        return replace(self, id=issue_id)


@dataclass(frozen=True)
class Milestone:
    id: str | None
    title: str
    description: str | None = None
    status: Status | None = None

    def equals(self, other: Milestone) -> bool:
        return (
            self.id == other.id
            and self.title == other.title
            and self.description == other.description
            and self.status == other.status
        )

    def with_id(self, milestone_id: str) -> Milestone:
        return replace(self, id=milestone_id)


@dataclass(frozen=True)
class Project:
    id: str | None
    number: int | None = None
    title: str | None = None
    description: str | None = None
    status: Status | None = None

    def equals(self, other: Project) -> bool:
        return (
            self.id == other.id
            and self.number == other.number
            and self.title == other.title
            and self.description == other.description
            and self.status == other.status
        )

    def with_id(self, project_id: str) -> Project:
        return replace(self, id=project_id)


def to_status(state: str | None) -> Status | None:
    if state is None:
        return None
    return "closed" if state.lower() == "closed" else "open"


__all__ = ["Issue", "Milestone", "Project", "Status", "StatusReason", "to_status"]
