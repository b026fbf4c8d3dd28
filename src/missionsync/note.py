"""Typed snapshot of a note and the grammar of its ``## Issues`` list.

An issue line looks like ``- [ ] Title (id)``: the checkbox encodes the
status (``[x]`` closed, ``[ ]`` or nothing open) and the trailing
parenthesised token, when present, is the remote id. An indented bullet
directly below carries the description; further indented or blank lines
continue it::

    ## Issues

    - [ ] Write the parser (12)
      - Handles checkboxes
        and trailing ids
    - [x] Ship it

Snapshots are built fresh from text and never mutated. The helpers that
change a note (``set_properties``, ``set_id_on_issue``, ``write_issues``)
take the *current* text and return the new text.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any

from . import markdown
from .errors import NotFoundError
from .models import Issue, Milestone, Project

PROPERTY_PREFIX = "mission."
HOST_PROPERTY = "mission.host"
TRACKER_PROPERTY = "mission.tracker"
REPO_PROPERTY = "mission.repo"
TYPE_PROPERTY = "mission.type"
ID_PROPERTY = "mission.id"
TITLE_PROPERTY = "mission.title"

PLACEHOLDER_REPO = "org/repo"
ISSUES_HEADING = "Issues"
NO_ISSUES_TEXT = "No issues found."
TRACKED_TYPES = ("milestone", "project", "issue", "repo")

_ISSUE_LINE_RE = re.compile(r"^- (\[(x| )\]\s*)?(.*)$")
_DESCRIPTION_LINE_RE = re.compile(r"^\s+- (\S.+)$")
_ID_SUFFIX_RE = re.compile(r"\s*\((\S+)\)$")
_REPO_RE = re.compile(r"^([^/]+)/(.+)$")


@dataclass(frozen=True)
class RepoRef:
    org: str
    repo: str

    @classmethod
    def parse(cls, value: str | None) -> RepoRef | None:
        if not value or value.strip() == PLACEHOLDER_REPO:
            return None
        match = _REPO_RE.match(value.strip())
        if not match:
            return None
        return cls(org=match.group(1), repo=match.group(2))

    def __str__(self) -> str:
        return f"{self.org}/{self.repo}"


class _LineState(Enum):
    OUTSIDE = "outside"
    IN_ISSUE = "in_issue"
    IN_DESCRIPTION = "in_description"


@dataclass
class _IssueDraft:
    id: str | None
    title: str
    closed: bool
    description: list[str] = field(default_factory=list)

    def build(self, milestone_id: str | None, project_id: str | None) -> Issue:
        description = "\n".join(self.description).strip() or None
        return Issue(
            id=self.id,
            title=self.title,
            description=description,
            status="closed" if self.closed else "open",
            milestone_id=milestone_id,
            project_id=project_id,
        )


def _split_title(raw: str) -> tuple[str, str | None]:
    text = raw.strip()
    match = _ID_SUFFIX_RE.search(text)
    if not match:
        return text, None
    return text[: match.start()].strip(), match.group(1)


def parse_issue_lines(
    lines: Iterable[str],
    milestone_id: str | None = None,
    project_id: str | None = None,
) -> list[Issue]:
    """Run the issue-list state machine over ``lines``."""
    drafts: list[_IssueDraft] = []
    current: _IssueDraft | None = None
    state = _LineState.OUTSIDE
    for line in lines:
        issue_match = _ISSUE_LINE_RE.match(line)
        if issue_match:
            title, issue_id = _split_title(issue_match.group(3))
            if not title:
                current, state = None, _LineState.OUTSIDE
                continue
            current = _IssueDraft(id=issue_id, title=title, closed=issue_match.group(2) == "x")
            drafts.append(current)
            state = _LineState.IN_ISSUE
            continue
        if state is _LineState.IN_ISSUE and current is not None:
            description_match = _DESCRIPTION_LINE_RE.match(line)
            if description_match:
                current.description = [description_match.group(1).strip()]
                state = _LineState.IN_DESCRIPTION
            else:
                state = _LineState.OUTSIDE
            continue
        if state is _LineState.IN_DESCRIPTION and current is not None:
            if not line.strip() or line[0].isspace():
                current.description.append(line.strip())
            else:
                state = _LineState.OUTSIDE
    return [draft.build(milestone_id, project_id) for draft in drafts]


def parse_issues(
    text: str, milestone_id: str | None = None, project_id: str | None = None
) -> list[Issue]:
    """Parse the issues listed under the note's ``Issues`` heading."""
    section = markdown.get_section(text, ISSUES_HEADING)
    if section is None:
        return []
    return parse_issue_lines(section.split("\n"), milestone_id, project_id)


def format_issue(issue: Issue) -> str:
    checkbox = "[x]" if issue.status == "closed" else "[ ]"
    line = f"- {checkbox} {issue.title}"
    if issue.id:
        line += f" ({issue.id})"
    if issue.description:
        first, *rest = issue.description.split("\n")
        line += f"\n  - {first}"
        for extra in rest:
            line += f"\n    {extra}" if extra.strip() else "\n"
    return line


def format_issues(issues: Iterable[Issue]) -> str:
    rendered = [format_issue(issue) for issue in issues]
    return "\n".join(rendered) if rendered else NO_ISSUES_TEXT


def _issues_bounds(text: str) -> tuple[int, int]:
    heading = re.search(rf"^#+ {re.escape(ISSUES_HEADING)}$", text, re.MULTILINE)
    if not heading:
        raise NotFoundError(f"Note has no '{ISSUES_HEADING}' heading")
    following = re.compile(r"^#+ ", re.MULTILINE).search(text, heading.end())
    return heading.end(), following.start() if following else len(text)


def set_id_on_issue(text: str, title: str, issue_id: str) -> str:
    """Record ``issue_id`` on the issue line titled ``title``.

    Any id already on that line is replaced. Raises ``NotFoundError`` when no
    line in the ``Issues`` section carries exactly that title.
    """
    start, end = _issues_bounds(text)
    pattern = re.compile(
        rf"^(- (?:\[(?:x| )\]\s*)?)({re.escape(title)})(?:\s*\(\S+\))?[ \t]*$"
    )
    escaped_id = issue_id.replace("\\", "\\\\")
    section = markdown.replace_line(text[start:end], pattern, rf"\g<1>\g<2> ({escaped_id})")
    return text[:start] + section + text[end:]


def write_issues(text: str, issues: Iterable[Issue]) -> str:
    return markdown.write_section(text, ISSUES_HEADING, format_issues(issues))


def set_properties(text: str, values: Mapping[str, Any]) -> str:
    """Write ``mission.*`` properties; ``values`` keys omit the prefix."""
    return markdown.write_properties(
        text, {f"{PROPERTY_PREFIX}{key}": value for key, value in values.items()}
    )


@dataclass(frozen=True)
class NoteSnapshot:
    """Point-in-time structured view of one note."""

    path: str
    properties: Mapping[str, str]
    head: str
    issues: tuple[Issue, ...]

    @classmethod
    def parse(cls, path: str, text: str) -> NoteSnapshot:
        properties = markdown.read_properties(text)
        tracked_type = properties.get(TYPE_PROPERTY) or None
        tracked_id = properties.get(ID_PROPERTY) or None
        issues = parse_issues(
            text,
            milestone_id=tracked_id if tracked_type == "milestone" else None,
            project_id=tracked_id if tracked_type == "project" else None,
        )
        return cls(
            path=path,
            properties=properties,
            head=markdown.get_head_section(text),
            issues=tuple(issues),
        )

    @property
    def tracked_type(self) -> str | None:
        value = self.properties.get(TYPE_PROPERTY)
        return value if value in TRACKED_TYPES else None

    @property
    def declared_type(self) -> str | None:
        return self.properties.get(TYPE_PROPERTY) or None

    @property
    def tracked_id(self) -> str | None:
        return self.properties.get(ID_PROPERTY) or None

    @property
    def tracked_name(self) -> str:
        return self.properties.get(TITLE_PROPERTY) or PurePosixPath(self.path).stem

    @property
    def tracker(self) -> str | None:
        return self.properties.get(TRACKER_PROPERTY) or None

    @property
    def host(self) -> str | None:
        return self.properties.get(HOST_PROPERTY) or None

    @property
    def repo(self) -> RepoRef | None:
        return RepoRef.parse(self.properties.get(REPO_PROPERTY))

    @property
    def has_placeholder_repo(self) -> bool:
        return (self.properties.get(REPO_PROPERTY) or "").strip() == PLACEHOLDER_REPO

    @property
    def tracked_milestone(self) -> Milestone | None:
        if self.tracked_type != "milestone":
            return None
        return Milestone(
            id=self.tracked_id,
            title=self.tracked_name,
            description=self.head or None,
        )

    @property
    def tracked_project(self) -> Project | None:
        if self.tracked_type != "project":
            return None
        return Project(
            id=self.tracked_id,
            title=self.tracked_name,
            description=self.head or None,
        )

    def find_issue(self, title: str) -> Issue | None:
        return next((issue for issue in self.issues if issue.title == title), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "tracked_type": self.tracked_type,
            "tracked_id": self.tracked_id,
            "tracked_name": self.tracked_name,
            "repo": str(self.repo) if self.repo else None,
            "issues": [
                {
                    "id": issue.id,
                    "title": issue.title,
                    "status": issue.status,
                    "description": issue.description,
                    "milestone_id": issue.milestone_id,
                    "project_id": issue.project_id,
                }
                for issue in self.issues
            ],
        }


__all__ = [
    "ISSUES_HEADING",
    "NoteSnapshot",
    "PLACEHOLDER_REPO",
    "RepoRef",
    "format_issue",
    "format_issues",
    "parse_issue_lines",
    "parse_issues",
    "set_id_on_issue",
    "set_properties",
    "write_issues",
]
