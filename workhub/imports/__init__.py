"""Imports module for bulk project/task ingestion."""

from workhub.imports.errors import (
    ConfigurationError,
    DuplicateConflictError,
    FormatError,
    ImportInProgressError,
    IngestionError,
    SchemaViolationError,
    StorageError,
)
from workhub.imports.parsers import (
    FORMAT_PARSERS,
    register_parser,
    resolve_format,
)
from workhub.imports.schemas import (
    DuplicateStrategy,
    ImportFileResponse,
    ImportFormat,
    ImportOptions,
    ImportSummary,
    ProjectRow,
    Row,
    TaskRow,
)
from workhub.imports.service import ImportService

__all__ = [
    "ImportService",
    "FORMAT_PARSERS",
    "register_parser",
    "resolve_format",
    "DuplicateStrategy",
    "ImportFormat",
    "ImportOptions",
    "ImportSummary",
    "ImportFileResponse",
    "Row",
    "ProjectRow",
    "TaskRow",
    # Errors
    "IngestionError",
    "FormatError",
    "ConfigurationError",
    "SchemaViolationError",
    "DuplicateConflictError",
    "ImportInProgressError",
    "StorageError",
]
