"""Duplicate detection and resolution for imported rows.

Resolution runs in two passes:

1. In-payload: rows sharing a natural key within the same upload are
   collapsed (skip keeps the first, update keeps the last) or, under
   strict-fail, reject the import before the stores are touched.
2. Against the store: surviving rows matching a stored record are skipped,
   turned into updates, or rejected, depending on the strategy.
"""

from dataclasses import dataclass, field
from typing import Union

from workhub.imports.errors import ConfigurationError, DuplicateConflictError
from workhub.imports.persistence import PlannedWrite, RecordStore, ResolvedBatch
from workhub.imports.schemas import DuplicateStrategy, ProjectRow, TaskRow, task_scope

AnyRow = Union[ProjectRow, TaskRow]


def normalize_duplicate_strategy(
    raw: str | None, default: str = DuplicateStrategy.SKIP_DUPLICATES.value
) -> DuplicateStrategy:
    """Normalize a caller-supplied duplicate strategy.

    Args:
        raw: Strategy string from the request; None or blank uses the default.
        default: Strategy used when none is given.

    Returns:
        DuplicateStrategy: The normalized strategy.

    Raises:
        ConfigurationError: If the value is not a known strategy.
    """
    value = str(raw or default).strip().lower()
    try:
        return DuplicateStrategy(value)
    except ValueError as err:
        raise ConfigurationError(
            "Invalid duplicate_strategy. Use skip-duplicates, update-on-match or strict-fail."
        ) from err


def row_dedup_key(row: AnyRow, owner_email: str = "") -> str:
    """Build the duplicate-matching key of a row.

    Projects match on their code alone; tasks match on project scope and
    lower-cased title within one owner.

    Examples:
        ProjectRow(code="proj-1") -> "project:PROJ-1"
        TaskRow(name="Task A", project_ref="prj-1") -> "task:PRJ-1:task a:owner@corp.local"
    """
    if isinstance(row, ProjectRow):
        return f"project:{row.natural_key}"
    return f"task:{row.natural_key}:{owner_email}"


@dataclass
class PayloadDedup:
    """Rows left after the in-payload pass.

    Attributes:
        rows: Rows with unique keys, in first-seen order.
        duplicate_rows_in_payload: Rows that repeated an earlier key.
    """

    rows: list[AnyRow]
    duplicate_rows_in_payload: int = 0


def dedupe_payload(rows: list[AnyRow], strategy: DuplicateStrategy, owner_email: str) -> PayloadDedup:
    """Collapse rows sharing a natural key within one upload.

    Args:
        rows: Validated rows in file order.
        strategy: Selected duplicate strategy.
        owner_email: Importing user, part of the task key.

    Returns:
        PayloadDedup: Unique rows and the duplicate count.

    Raises:
        DuplicateConflictError: Under strict-fail, if any key repeats.
    """
    unique: dict[str, AnyRow] = {}
    duplicates = 0
    first_duplicate: str | None = None

    for row in rows:
        key = row_dedup_key(row, owner_email)
        if key in unique:
            duplicates += 1
            first_duplicate = first_duplicate or key
            if strategy == DuplicateStrategy.UPDATE_ON_MATCH:
                # Last writer wins, position of the first occurrence is kept.
                unique[key] = row
            continue
        unique[key] = row

    if duplicates and strategy == DuplicateStrategy.STRICT_FAIL:
        raise DuplicateConflictError(
            f'Duplicate row detected in payload for key "{first_duplicate}"',
            key=first_duplicate,
            duplicate_rows_in_payload=duplicates,
        )

    return PayloadDedup(rows=list(unique.values()), duplicate_rows_in_payload=duplicates)


@dataclass
class ExistingLookup:
    """Stored records indexed by duplicate-matching key.

    Attributes:
        project_ids: Map of project key to stored project id.
        task_ids: Map of task key to stored task id.
    """

    project_ids: dict[str, str] = field(default_factory=dict)
    task_ids: dict[str, str] = field(default_factory=dict)


def fetch_existing_lookup(
    rows: list[AnyRow],
    owner_email: str,
    project_store: RecordStore,
    task_store: RecordStore,
) -> ExistingLookup:
    """Load stored records sharing a natural key with the rows.

    Args:
        rows: Rows left after the in-payload pass.
        owner_email: Importing user; tasks are matched within this assignee.
        project_store: Project store.
        task_store: Task store.

    Returns:
        ExistingLookup: Stored ids by key.
    """
    codes = sorted({row.natural_key for row in rows if isinstance(row, ProjectRow)})
    titles = sorted({row.name for row in rows if isinstance(row, TaskRow)})

    lookup = ExistingLookup()
    if codes:
        for project in project_store.find(codes=codes):
            code = str(project.code or "").strip().upper()
            if code:
                lookup.project_ids[f"project:{code}"] = project.id
    if titles:
        for task in task_store.find(titles=titles, assignee_email=owner_email):
            scope = task_scope(task.project_ref)
            title = str(task.title or "").strip().lower()
            lookup.task_ids[f"task:{scope}:{title}:{owner_email}"] = task.id
    return lookup


def resolve_against_store(
    rows: list[AnyRow],
    strategy: DuplicateStrategy,
    lookup: ExistingLookup,
    owner_email: str,
) -> ResolvedBatch:
    """Decide, per row, between insert, update, skip and conflict.

    Args:
        rows: Rows left after the in-payload pass.
        strategy: Selected duplicate strategy.
        lookup: Stored records by key.
        owner_email: Importing user.

    Returns:
        ResolvedBatch: Project and task writes plus the skipped count.

    Raises:
        DuplicateConflictError: Under strict-fail, on the first stored match.
    """
    batch = ResolvedBatch()

    for row in rows:
        key = row_dedup_key(row, owner_email)
        is_project = isinstance(row, ProjectRow)
        existing_id = (lookup.project_ids if is_project else lookup.task_ids).get(key)
        target = batch.projects if is_project else batch.tasks

        if existing_id is None:
            target.append(PlannedWrite(row=row))
            continue

        if strategy == DuplicateStrategy.STRICT_FAIL:
            kind = "Project" if is_project else "Task"
            raise DuplicateConflictError(f'{kind} duplicate found for key "{key}"', key=key)
        if strategy == DuplicateStrategy.SKIP_DUPLICATES:
            batch.skipped += 1
            continue
        target.append(PlannedWrite(row=row, existing_id=existing_id))

    return batch
