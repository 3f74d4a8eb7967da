"""Map raw records onto the row contract.

The mapper only normalizes: it picks fields through their aliases, splits
tags and applies per-kind defaults. Lenient sources (CSV, Markdown, Excel)
are also coerced, so free-text priorities and statuses fall back to sane
values. Strict sources keep what the file said and leave the verdict to
the validator.
"""

import re

from workhub.db.models import ProjectStatus, TaskStatus
from workhub.imports.parsers import RawRecord

DEFAULT_PRIORITY = 3
MIN_PRIORITY = 1
MAX_PRIORITY = 5

PROJECT_STATUSES = {status.value for status in ProjectStatus}
TASK_STATUSES = {status.value for status in TaskStatus}

# Field aliases, first non-empty value wins
FIELD_ALIASES: dict[str, list[str]] = {
    "name": ["name", "title"],
    "description": ["description", "desc"],
    "status": ["status"],
    "priority": ["priority"],
    "due_at": ["dueat", "due_at", "due"],
    "tags": ["tags", "tag", "labels"],
    "code": ["code", "project_code"],
    "project_ref": ["projectid", "project_id", "project"],
}

TAG_SEPARATORS_RE = re.compile(r"[;|,]")
LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def pick(raw: RawRecord, field: str) -> str:
    """Return the first non-empty value among a field's aliases.

    Args:
        raw: Raw record with lower-cased keys.
        field: Canonical field name from FIELD_ALIASES.

    Returns:
        str: Trimmed value, or an empty string when no alias is set.
    """
    for alias in FIELD_ALIASES[field]:
        value = raw.get(alias)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def resolve_kind(raw: RawRecord) -> str:
    """Resolve the row kind.

    Only an explicit ``type: project`` makes a project; a title-style row,
    an unknown type or no type at all is a task.
    """
    return "project" if raw.get("type", "").strip().lower() == "project" else "task"


def parse_tags(tags_string: str | None) -> list[str]:
    """Parse a tags string into a list of tag names.

    Examples:
        "backend, api" -> ["backend", "api"]
        "backend; api | urgent" -> ["backend", "api", "urgent"]

    Args:
        tags_string: Tags separated by ``;``, ``|`` or ``,``.

    Returns:
        list[str]: Cleaned tag names.
    """
    if not tags_string:
        return []
    return [tag.strip() for tag in TAG_SEPARATORS_RE.split(tags_string) if tag.strip()]


def coerce_priority(value: str) -> int:
    """Turn free-text priority into an integer in [1, 5].

    The leading integer is used, so "2.0" and "4 (low)" read as 2 and 4.
    Input without one falls back to the default; out-of-range numbers are
    clamped.
    """
    match = LEADING_INT_RE.match(value or "")
    if not match:
        return DEFAULT_PRIORITY
    priority = int(match.group(1))
    return max(MIN_PRIORITY, min(MAX_PRIORITY, priority))


def map_record(raw: RawRecord, lenient: bool) -> dict:
    """Map a raw record to a candidate row for the validator.

    Args:
        raw: Raw record from a parser.
        lenient: Coerce priority and status instead of passing them through.

    Returns:
        dict: Candidate row keyed by the row contract's field names.
    """
    kind = resolve_kind(raw)
    known_statuses = PROJECT_STATUSES if kind == "project" else TASK_STATUSES
    default_status = ProjectStatus.PLANNED.value if kind == "project" else TaskStatus.TODO.value

    candidate: dict = {
        "kind": kind,
        "name": pick(raw, "name") or None,
        "description": pick(raw, "description"),
        "tags": parse_tags(pick(raw, "tags")),
        "code": pick(raw, "code"),
        "project_ref": pick(raw, "project_ref") or None,
        "due_at": pick(raw, "due_at") or None,
    }

    status = pick(raw, "status").lower()
    if not status or (lenient and status not in known_statuses):
        status = default_status
    candidate["status"] = status

    priority = pick(raw, "priority")
    if lenient:
        candidate["priority"] = coerce_priority(priority) if priority else DEFAULT_PRIORITY
    elif priority:
        candidate["priority"] = priority

    return candidate
