"""SQLAlchemy database models."""

import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys.

    Returns:
        str: UUID as 36-character string.
    """
    return str(uuid4())


class ProjectStatus(str, enum.Enum):
    """Project status enumeration."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    PLANNED = "planned"
    BLOCKED = "blocked"
    DONE = "done"


class TaskStatus(str, enum.Enum):
    """Task status enumeration."""

    TODO = "todo"
    DOING = "doing"
    DONE = "done"
    BLOCKED = "blocked"


class IngestionRunStatus(str, enum.Enum):
    """Lifecycle of a content-addressed import attempt."""

    PROCESSING = "processing"  # Claimed by a running request
    COMPLETED = "completed"  # Finished, totals can be replayed
    FAILED = "failed"  # Finished with an error, may be retried


class Project(Base):
    """Project model.

    Attributes:
        id: Primary key UUID.
        code: Upper-case natural key used to match re-imported projects.
        name: Display name.
        description: Free text description.
        status: Project status.
        priority: Priority from 1 (highest) to 5.
        due_at: ISO-like due date as supplied by the importer.
        tags: List of tag names.
        owner_email: Email of the user who owns the project.
        created_at: Creation timestamp.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "projects"
    __table_args__ = (
        UniqueConstraint("code", name="uq_projects_code"),
        Index("ix_projects_owner_email", "owner_email"),
    )

    id: Mapped[str] = mapped_column(CHAR(36), primary_key=True, default=generate_uuid)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(180), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ProjectStatus] = mapped_column(
        Enum(ProjectStatus, values_callable=lambda x: [e.value for e in x]),
        default=ProjectStatus.PLANNED,
    )
    priority: Mapped[int] = mapped_column(Integer, default=3)
    due_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    owner_email: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    tasks: Mapped[list["Task"]] = relationship("Task", back_populates="project")


class Task(Base):
    """Task model.

    Attributes:
        id: Primary key UUID.
        title: Task title.
        description: Free text description.
        status: Task status.
        priority: Priority from 1 (highest) to 5.
        due_at: ISO-like due date as supplied by the importer.
        tags: List of tag names.
        project_ref: Project reference as supplied (a project code or id).
        project_id: Resolved foreign key to the referenced project, if found.
        assignee_email: Email of the user the task is assigned to.
        created_at: Creation timestamp.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_assignee_title", "assignee_email", "title"),
        Index("ix_tasks_project_id", "project_id"),
    )

    id: Mapped[str] = mapped_column(CHAR(36), primary_key=True, default=generate_uuid)
    title: Mapped[str] = mapped_column(String(180), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, values_callable=lambda x: [e.value for e in x]),
        default=TaskStatus.TODO,
    )
    priority: Mapped[int] = mapped_column(Integer, default=3)
    due_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    project_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    project_id: Mapped[str | None] = mapped_column(
        CHAR(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    assignee_email: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    project: Mapped[Project | None] = relationship("Project", back_populates="tasks")


class IngestionRun(Base):
    """One content-addressed import attempt.

    The ``key`` column carries a unique constraint so that two requests
    uploading the same content cannot both claim the run.

    Attributes:
        id: Primary key UUID.
        key: Fingerprint of owner, format, duplicate strategy and file hash.
        owner_email: Email of the importing user.
        format: Detected source format (csv, json, markdown, ...).
        duplicate_strategy: Duplicate strategy the import ran with.
        file_hash: SHA-256 of the uploaded bytes.
        file_name: Original file name, if any.
        mime_type: MIME type sent with the upload.
        status: processing, completed or failed.
        total_rows: Rows parsed from the file.
        projects: Projects inserted or updated.
        tasks: Tasks inserted or updated.
        skipped: Rows skipped because they matched existing records.
        duplicate_rows_in_payload: Rows repeating a natural key within the file.
        error: Error summary for failed runs.
        created_at: Creation timestamp.
        completed_at: When the run reached a terminal state successfully.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "ingestion_runs"
    __table_args__ = (
        UniqueConstraint("key", name="uq_ingestion_runs_key"),
        Index("ix_ingestion_runs_owner_email", "owner_email"),
        Index("ix_ingestion_runs_status", "status"),
    )

    id: Mapped[str] = mapped_column(CHAR(36), primary_key=True, default=generate_uuid)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_email: Mapped[str] = mapped_column(String(255), nullable=False)
    format: Mapped[str] = mapped_column(String(20), nullable=False)
    duplicate_strategy: Mapped[str] = mapped_column(String(20), nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[IngestionRunStatus] = mapped_column(
        Enum(IngestionRunStatus, values_callable=lambda x: [e.value for e in x]),
        default=IngestionRunStatus.PROCESSING,
    )
    total_rows: Mapped[int] = mapped_column(Integer, default=0)
    projects: Mapped[int] = mapped_column(Integer, default=0)
    tasks: Mapped[int] = mapped_column(Integer, default=0)
    skipped: Mapped[int] = mapped_column(Integer, default=0)
    duplicate_rows_in_payload: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )
