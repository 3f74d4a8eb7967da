"""Imports API routes."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from workhub.dependencies import CurrentOwnerEmail, DbSession
from workhub.imports.errors import (
    ConfigurationError,
    DuplicateConflictError,
    FormatError,
    IngestionError,
    SchemaViolationError,
    StorageError,
)
from workhub.imports.schemas import (
    ImportFileResponse,
    ImportOptions,
    IngestionRunListResponse,
    IngestionRunResponse,
)
from workhub.imports.service import ImportService

logger = logging.getLogger(__name__)

router = APIRouter()

_ERROR_STATUS: list[tuple[type[IngestionError], int]] = [
    (FormatError, status.HTTP_400_BAD_REQUEST),
    (SchemaViolationError, status.HTTP_400_BAD_REQUEST),
    (ConfigurationError, status.HTTP_400_BAD_REQUEST),
    (DuplicateConflictError, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def get_import_service(db: DbSession) -> ImportService:
    """Build the import service for a request."""
    return ImportService(db)


ImportServiceDep = Annotated[ImportService, Depends(get_import_service)]


def _to_http_exception(error: IngestionError) -> HTTPException:
    """Translate a pipeline error into an HTTP error with a structured detail."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.detail())
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.detail())


@router.post("")
async def import_file(
    file: Annotated[UploadFile, File(description="CSV, JSON, Markdown, YAML, XML or Excel file")],
    owner_email: CurrentOwnerEmail,
    service: ImportServiceDep,
    duplicate_strategy: Annotated[str | None, Form()] = None,
    duplicate_strategy_query: Annotated[str | None, Query(alias="duplicate_strategy")] = None,
) -> ImportFileResponse:
    """Import projects and tasks from an uploaded file.

    Re-uploading byte-identical content with the same strategy replays the
    recorded totals without touching the stores.

    Args:
        file: Uploaded file.
        owner_email: Email of the importing user.
        service: Import service.
        duplicate_strategy: skip-duplicates, update-on-match or strict-fail (form field).
        duplicate_strategy_query: Same, as a query parameter.

    Returns:
        ImportFileResponse: Import totals.

    Raises:
        HTTPException: 400 for unusable input, 409 for duplicate conflicts,
            500 when the bulk write fails.
    """
    content = await file.read()
    options = ImportOptions(duplicate_strategy=duplicate_strategy or duplicate_strategy_query)

    try:
        summary = service.import_file(
            content,
            file.content_type,
            owner_email,
            file.filename,
            options,
        )
    except IngestionError as err:
        if isinstance(err, StorageError):
            logger.error("Import of %s by %s failed in storage: %s", file.filename, owner_email, err)
        raise _to_http_exception(err) from err

    if summary.idempotent:
        message = (
            f"Import replayed from idempotency cache "
            f"({summary.projects} projects, {summary.tasks} tasks)."
        )
    else:
        message = f"Imported {summary.projects} projects and {summary.tasks} tasks"

    return ImportFileResponse(ok=True, message=message, **summary.model_dump())


@router.get("/runs")
async def list_runs(
    owner_email: CurrentOwnerEmail,
    service: ImportServiceDep,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> IngestionRunListResponse:
    """List the caller's ingestion runs, newest first."""
    runs, total = service.list_runs(owner_email, limit=limit)
    return IngestionRunListResponse(
        items=[IngestionRunResponse.model_validate(run) for run in runs],
        total=total,
    )


@router.get("/runs/{key}")
async def get_run(
    key: str,
    owner_email: CurrentOwnerEmail,
    service: ImportServiceDep,
) -> IngestionRunResponse:
    """Get one of the caller's ingestion runs by fingerprint.

    Raises:
        HTTPException: 404 if no such run belongs to the caller.
    """
    run = service.get_run(key, owner_email)
    if run is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Ingestion run not found",
        )
    return IngestionRunResponse.model_validate(run)
