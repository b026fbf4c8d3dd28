"""Parsing and formatting primitives over raw note text.

Everything here is a pure function of a string: callers read a note,
pass its text through one of these helpers and write the result back.
A note is laid out as::

    ---
    mission.type: milestone      <- front matter (YAML)
    ---
    Free text                    <- head section
    ## Issues                    <- heading-delimited sections
    - [ ] Something (12)

Headings are matched line-anchored, so they must start at column 0, and
only the first of several identical headings is ever addressed.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

import yaml

from .errors import NotFoundError, ParseError

_FRONT_MATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(?P<yaml>.*?\n)??---[ \t]*(?:\r?\n|\Z)", re.DOTALL
)
_FRONT_MATTER_START_RE = re.compile(r"\A---[ \t]*\r?\n")
_ANY_HEADING_RE = re.compile(r"^#+ ", re.MULTILINE)
_HASH_LINE_RE = re.compile(r"^#", re.MULTILINE)


def _front_matter_end(text: str) -> int:
    match = _FRONT_MATTER_RE.match(text)
    return match.end() if match else 0


def _load_mapping(raw: str) -> dict[str, Any]:
    try:
        loaded = yaml.safe_load(raw) if raw.strip() else {}
    except yaml.YAMLError as exc:
        raise ParseError(f"Invalid front matter: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ParseError("Front matter must be a mapping")
    return {str(k): v for k, v in loaded.items()}


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, date, datetime)):
        return str(value)
    return str(yaml.safe_dump(value, default_flow_style=True)).strip()


# ---- front matter ----------------------------------------------------------
def read_properties(text: str) -> dict[str, str]:
    """Return the front-matter properties of ``text`` as strings.

    Missing (or unterminated) front matter yields an empty mapping; a block
    that is present but not valid YAML raises ``ParseError``.
    """
    match = _FRONT_MATTER_RE.match(text)
    if not match:
        return {}
    raw = _load_mapping(match.group("yaml") or "")
    return {key: _stringify(value) for key, value in raw.items()}


def write_properties(text: str, updates: dict[str, Any]) -> str:
    """Merge ``updates`` into the front matter of ``text``.

    Keys not named in ``updates`` keep their original YAML values and the
    body after the block is preserved unchanged.
    """
    match = _FRONT_MATTER_RE.match(text)
    if match:
        properties = _load_mapping(match.group("yaml") or "")
        body = text[match.end():]
    elif _FRONT_MATTER_START_RE.match(text):
        raise ParseError("Front matter is not terminated by a '---' line")
    else:
        properties = {}
        body = text
    properties.update(updates)
    dumped = (
        yaml.safe_dump(
            properties, sort_keys=False, default_flow_style=False, allow_unicode=True
        )
        if properties
        else ""
    )
    return f"---\n{dumped}---\n{body}"


# ---- sections ----------------------------------------------------------------
def get_section(text: str, heading: str) -> str | None:
    """Return the body beneath the first heading titled ``heading``."""
    match = re.search(rf"^#+ {re.escape(heading)}$", text, re.MULTILINE)
    if not match:
        return None
    start = match.end()
    following = _ANY_HEADING_RE.search(text, start)
    end = following.start() if following else len(text)
    return text[start:end].strip()


def write_section(text: str, heading: str, content: str) -> str:
    """Write ``content`` beneath ``## heading``, creating the heading if needed."""
    match = re.search(rf"^## {re.escape(heading)}$", text, re.MULTILINE)
    if match:
        start = match.end()
        following = _HASH_LINE_RE.search(text, start)
        tail = text[following.start():] if following else ""
        return f"{text[:start]}\n\n{content}\n\n{tail}"
    existing = text.rstrip("\n")
    if not existing:
        return f"## {heading}\n\n{content}"
    return f"{existing}\n\n## {heading}\n\n{content}"


def _head_bounds(text: str) -> tuple[int, int]:
    start = _front_matter_end(text)
    heading = _ANY_HEADING_RE.search(text, start)
    return start, heading.start() if heading else len(text)


def get_head_section(text: str) -> str:
    """Free text between the front matter and the first heading."""
    start, end = _head_bounds(text)
    return text[start:end].strip()


def set_head_section(text: str, content: str) -> str:
    start, end = _head_bounds(text)
    block = content.strip()
    rest = text[end:]
    if not block:
        return text[:start] + rest
    separator = "\n\n" if rest else "\n"
    return f"{text[:start]}{block}{separator}{rest}"


# ---- lines -------------------------------------------------------------------
def replace_line(text: str, matcher: str | re.Pattern[str], replacement: str) -> str:
    """Replace the first line matching ``matcher``.

    A plain string must equal the whole line. A compiled pattern is searched
    within each line and the matched part is substituted, so ``replacement``
    may use back-references such as ``\\1``.
    """
    lines = text.split("\n")
    for index, line in enumerate(lines):
        if isinstance(matcher, str):
            if line == matcher:
                lines[index] = replacement
                break
            continue
        found = matcher.search(line)
        if found:
            lines[index] = line[: found.start()] + found.expand(replacement) + line[found.end():]
            break
    else:
        pattern = matcher if isinstance(matcher, str) else matcher.pattern
        raise NotFoundError(f"No line matches {pattern!r}")
    return "\n".join(lines)


def prepend(text: str, content: str) -> str:
    return f"{content}\n{text}"


def append(text: str, content: str) -> str:
    return f"{text}\n{content}"


__all__ = [
    "append",
    "get_head_section",
    "get_section",
    "prepend",
    "read_properties",
    "replace_line",
    "set_head_section",
    "write_properties",
    "write_section",
]
