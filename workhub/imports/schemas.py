"""Pydantic schemas for the bulk import pipeline."""

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from workhub.db.models import IngestionRunStatus, ProjectStatus, TaskStatus

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}(?:[T ][\d:.+\-Z]*)?$")
NO_PROJECT_SCOPE = "__no_project__"
PROJECT_SLUG_LENGTH = 24


class DuplicateStrategy(str, Enum):
    """How rows colliding on a natural key are handled."""

    SKIP_DUPLICATES = "skip-duplicates"  # Keep the stored record, count the row as skipped
    UPDATE_ON_MATCH = "update-on-match"  # Overwrite the stored record (last writer wins)
    STRICT_FAIL = "strict-fail"  # Reject the whole import


class ImportFormat(str, Enum):
    """Source formats with a registered parser."""

    CSV = "csv"
    JSON = "json"
    MARKDOWN = "markdown"
    YAML = "yaml"
    XML = "xml"
    EXCEL = "excel"


# --- Row contract ---


def slugify_code(name: str) -> str:
    """Derive a project code from its name.

    Examples:
        "Website Relaunch 2025" -> "WEBSITE-RELAUNCH-2025"
    """
    slug = re.sub(r"\s+", "-", name.strip().lower())
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return slug[:PROJECT_SLUG_LENGTH].upper()


def task_scope(project_ref: str | None) -> str:
    """Scope part of a task key: the upper-cased project reference.

    Project codes are upper-case and references resolve ignoring case, so
    "prj-1" and "PRJ-1" name the same scope.
    """
    ref = (project_ref or "").strip()
    return ref.upper() if ref else NO_PROJECT_SCOPE


class _BaseRow(BaseModel):
    """Fields shared by project and task rows.

    Attributes:
        name: Project name or task title.
        description: Free text description.
        priority: Integer priority in [1, 5].
        due_at: ISO-like due date.
        tags: Tag names.
        code: Project code as supplied.
        project_ref: Project reference (code or id) a task belongs to.
        natural_key: Caller-meaningful identity used for duplicate matching.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=180)
    description: str = Field("", max_length=4000)
    priority: int = Field(3, ge=1, le=5)
    due_at: Optional[str] = None
    tags: list[Annotated[str, Field(min_length=1, max_length=64)]] = Field(
        default_factory=list, max_length=30
    )
    code: str = Field("", max_length=64)
    project_ref: Optional[str] = Field(None, max_length=128)
    natural_key: str = ""

    @field_validator("due_at")
    @classmethod
    def _check_due_at(cls, value: str | None) -> str | None:
        if not value:
            return None
        if not DATE_RE.match(value):
            raise ValueError("must be an ISO-like date")
        return value

    @field_validator("project_ref")
    @classmethod
    def _blank_ref_is_none(cls, value: str | None) -> str | None:
        return value or None


class ProjectRow(_BaseRow):
    """A project parsed from an import file."""

    kind: Literal["project"] = "project"
    status: ProjectStatus = ProjectStatus.PLANNED

    @model_validator(mode="after")
    def _derive_natural_key(self) -> "ProjectRow":
        self.code = self.code.upper() if self.code else slugify_code(self.name)
        if not self.code:
            raise ValueError("code is required when the name has no letters or digits")
        self.natural_key = self.code
        return self


class TaskRow(_BaseRow):
    """A task parsed from an import file."""

    kind: Literal["task"] = "task"
    status: TaskStatus = TaskStatus.TODO

    @model_validator(mode="after")
    def _derive_natural_key(self) -> "TaskRow":
        self.natural_key = f"{task_scope(self.project_ref)}:{self.name.lower()}"
        return self


Row = Annotated[Union[ProjectRow, TaskRow], Field(discriminator="kind")]


# --- Service and API schemas ---


class ImportOptions(BaseModel):
    """Caller options for a single import.

    Attributes:
        duplicate_strategy: One of the DuplicateStrategy values; None uses the default.
    """

    duplicate_strategy: Optional[str] = None


class ImportSummary(BaseModel):
    """Outcome of an import, fresh or replayed from the ledger.

    Attributes:
        projects: Projects inserted or updated.
        tasks: Tasks inserted or updated.
        skipped: Rows skipped because they matched stored records.
        total_rows: Rows parsed from the file.
        duplicate_rows_in_payload: Rows repeating a natural key within the file.
        idempotent: True when the result was replayed from a completed run.
        duplicate_strategy: Strategy the import ran with.
        import_key: Ledger fingerprint of the upload.
    """

    projects: int = 0
    tasks: int = 0
    skipped: int = 0
    total_rows: int = 0
    duplicate_rows_in_payload: int = 0
    idempotent: bool = False
    duplicate_strategy: DuplicateStrategy
    import_key: str


class ImportFileResponse(ImportSummary):
    """Response of the import endpoint."""

    ok: bool = True
    message: str


class IngestionRunResponse(BaseModel):
    """An ingestion run as exposed to its owner."""

    model_config = ConfigDict(from_attributes=True)

    key: str
    format: str
    duplicate_strategy: str
    file_hash: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    status: IngestionRunStatus
    total_rows: int = 0
    projects: int = 0
    tasks: int = 0
    skipped: int = 0
    duplicate_rows_in_payload: int = 0
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class IngestionRunListResponse(BaseModel):
    """List of ingestion runs."""

    items: list[IngestionRunResponse]
    total: int
