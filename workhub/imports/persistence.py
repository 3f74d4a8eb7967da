"""Bulk persistence of resolved rows.

Stores expose two calls: ``find`` for duplicate lookups and ``bulk_write``
for a batch of insert/update operations. The engine builds one batch per
store and submits each with a single ``bulk_write`` call. Task rows may
reference a project created in the same import by its code, so the task
batch is built only after the project batch has been written.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, Union

from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.orm import Session

from workhub.db.models import Project, Task, generate_uuid
from workhub.imports.errors import StorageError
from workhub.imports.schemas import ProjectRow, TaskRow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsertOne:
    """Insert a new record."""

    document: dict


@dataclass(frozen=True)
class UpdateOne:
    """Overwrite fields of an existing record, keyed by its identifier."""

    record_id: str
    values: dict


Operation = Union[InsertOne, UpdateOne]


class RecordStore(Protocol):
    """Protocol for the project and task stores."""

    def find(self, **filters) -> list:
        """Return stored records matching the filters."""
        ...

    def bulk_write(self, operations: list[Operation]) -> None:
        """Apply a batch of operations in one call."""
        ...


class SqlProjectStore:
    """Project store backed by the ``projects`` table."""

    def __init__(self, db: Session):
        self.db = db

    def find(self, codes: list[str] | None = None, ids: list[str] | None = None) -> list[Project]:
        """Find projects by upper-case code and/or id.

        Args:
            codes: Project codes to match.
            ids: Project ids to match.

        Returns:
            list[Project]: Matching projects.
        """
        clauses = []
        if codes:
            clauses.append(Project.code.in_(codes))
        if ids:
            clauses.append(Project.id.in_(ids))
        if not clauses:
            return []
        return list(self.db.scalars(select(Project).where(or_(*clauses))).all())

    def bulk_write(self, operations: list[Operation]) -> None:
        _execute_bulk(self.db, Project, operations)


class SqlTaskStore:
    """Task store backed by the ``tasks`` table."""

    def __init__(self, db: Session):
        self.db = db

    def find(self, titles: list[str] | None = None, assignee_email: str | None = None) -> list[Task]:
        """Find an assignee's tasks by title, ignoring case.

        Args:
            titles: Task titles to match.
            assignee_email: Assignee the tasks belong to.

        Returns:
            list[Task]: Matching tasks.
        """
        if not titles:
            return []
        query = select(Task).where(func.lower(Task.title).in_([title.lower() for title in titles]))
        if assignee_email:
            query = query.where(Task.assignee_email == assignee_email)
        return list(self.db.scalars(query).all())

    def bulk_write(self, operations: list[Operation]) -> None:
        _execute_bulk(self.db, Task, operations)


def _execute_bulk(db: Session, model: type, operations: list[Operation]) -> None:
    """Run inserts as one executemany and updates as one bulk UPDATE by primary key."""
    inserts = [op.document for op in operations if isinstance(op, InsertOne)]
    updates = [{"id": op.record_id, **op.values} for op in operations if isinstance(op, UpdateOne)]
    if inserts:
        db.execute(insert(model), inserts)
    if updates:
        db.execute(update(model), updates)
    db.flush()


@dataclass
class PlannedWrite:
    """A resolved row and the stored record it updates, if any.

    Attributes:
        row: Validated row.
        existing_id: Identifier of the stored record to update; None inserts.
    """

    row: Union[ProjectRow, TaskRow]
    existing_id: str | None = None


@dataclass
class ResolvedBatch:
    """Rows left after duplicate resolution.

    Attributes:
        projects: Project writes.
        tasks: Task writes.
        skipped: Rows excluded because they matched stored records.
    """

    projects: list[PlannedWrite] = field(default_factory=list)
    tasks: list[PlannedWrite] = field(default_factory=list)
    skipped: int = 0


@dataclass
class PersistResult:
    """Counts of what the engine wrote."""

    projects: int = 0
    tasks: int = 0
    skipped: int = 0


def _common_values(row: Union[ProjectRow, TaskRow]) -> dict:
    return {
        "description": row.description or None,
        "status": row.status,
        "priority": row.priority,
        "due_at": row.due_at,
        "tags": row.tags or None,
    }


def build_project_operations(
    writes: list[PlannedWrite], owner_email: str, now: datetime
) -> list[Operation]:
    """Build insert/update operations for project writes."""
    operations: list[Operation] = []
    for write in writes:
        row = write.row
        values = {
            "name": row.name,
            "code": row.code,
            "owner_email": owner_email,
            "updated_at": now,
            **_common_values(row),
        }
        if write.existing_id:
            operations.append(UpdateOne(record_id=write.existing_id, values=values))
        else:
            operations.append(
                InsertOne(document={"id": generate_uuid(), "created_at": now, **values})
            )
    return operations


def build_task_operations(
    writes: list[PlannedWrite],
    owner_email: str,
    project_ids: dict[str, str],
    now: datetime,
) -> list[Operation]:
    """Build insert/update operations for task writes.

    Args:
        writes: Task writes.
        owner_email: Assignee of imported tasks.
        project_ids: Map of project reference (upper-case code or id) to project id.
        now: Timestamp for created_at/updated_at.

    Returns:
        list[Operation]: One operation per write.
    """
    operations: list[Operation] = []
    for write in writes:
        row = write.row
        ref = row.project_ref
        values = {
            "title": row.name,
            "assignee_email": owner_email,
            "project_ref": ref,
            "project_id": _lookup_project_id(ref, project_ids),
            "updated_at": now,
            **_common_values(row),
        }
        if write.existing_id:
            operations.append(UpdateOne(record_id=write.existing_id, values=values))
        else:
            operations.append(
                InsertOne(document={"id": generate_uuid(), "created_at": now, **values})
            )
    return operations


def _lookup_project_id(ref: str | None, project_ids: dict[str, str]) -> str | None:
    if not ref:
        return None
    return project_ids.get(ref) or project_ids.get(ref.upper())


class BulkPersistenceEngine:
    """Submit resolved rows to the project and task stores."""

    def __init__(self, project_store: RecordStore, task_store: RecordStore):
        """Initialize the engine.

        Args:
            project_store: Store receiving project operations.
            task_store: Store receiving task operations.
        """
        self.project_store = project_store
        self.task_store = task_store

    def resolve_project_refs(self, writes: list[PlannedWrite]) -> dict[str, str]:
        """Map the task batch's project references to stored project ids.

        Runs after the project batch has been written, so codes imported in
        the same file resolve too.
        """
        refs = {write.row.project_ref for write in writes if write.row.project_ref}
        if not refs:
            return {}

        projects = self.project_store.find(
            codes=sorted({ref.upper() for ref in refs}), ids=sorted(refs)
        )
        resolved: dict[str, str] = {}
        for project in projects:
            resolved[project.id] = project.id
            if project.code:
                resolved[project.code.upper()] = project.id
        return resolved

    def execute(self, batch: ResolvedBatch, owner_email: str) -> PersistResult:
        """Write a resolved batch.

        Args:
            batch: Rows left after duplicate resolution.
            owner_email: Owner of imported projects and assignee of tasks.

        Returns:
            PersistResult: Counts of written projects and tasks.

        Raises:
            StorageError: If a store call fails. The caller owns the
                transaction and must roll back.
        """
        now = datetime.now(timezone.utc)
        try:
            project_ops = build_project_operations(batch.projects, owner_email, now)
            if project_ops:
                self.project_store.bulk_write(project_ops)

            project_ids = self.resolve_project_refs(batch.tasks)
            task_ops = build_task_operations(batch.tasks, owner_email, project_ids, now)
            if task_ops:
                self.task_store.bulk_write(task_ops)
        except StorageError:
            raise
        except Exception as err:
            logger.error("Bulk write failed: %s", err)
            raise StorageError(f"Bulk write failed: {err}") from err

        return PersistResult(
            projects=len(project_ops),
            tasks=len(task_ops),
            skipped=batch.skipped,
        )
