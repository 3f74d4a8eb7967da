"""Telemetry port for the import pipeline.

The service reports progress through an ``ImportObserver`` instead of
logging inline, so callers can plug in metrics or capture events in tests.
"""

import logging
from typing import Protocol

from workhub.imports.schemas import ImportSummary

logger = logging.getLogger(__name__)


class ImportObserver(Protocol):
    """Receives import lifecycle events."""

    def import_started(self, import_key: str, owner_email: str, fmt: str, strategy: str) -> None:
        ...

    def import_replayed(self, summary: ImportSummary, owner_email: str) -> None:
        ...

    def import_completed(self, summary: ImportSummary, owner_email: str) -> None:
        ...

    def import_failed(self, import_key: str, owner_email: str, error: BaseException) -> None:
        ...


class LoggingImportObserver:
    """Observer writing import events to the standard logging tree."""

    def import_started(self, import_key: str, owner_email: str, fmt: str, strategy: str) -> None:
        logger.info(
            "Import %s started: format=%s strategy=%s owner=%s",
            import_key[:12],
            fmt,
            strategy,
            owner_email,
        )

    def import_replayed(self, summary: ImportSummary, owner_email: str) -> None:
        logger.info(
            "Import %s replayed from ledger for %s (%d projects, %d tasks)",
            summary.import_key[:12],
            owner_email,
            summary.projects,
            summary.tasks,
        )

    def import_completed(self, summary: ImportSummary, owner_email: str) -> None:
        logger.info(
            "Import complete: %d projects, %d tasks, %d skipped (%s) by %s",
            summary.projects,
            summary.tasks,
            summary.skipped,
            summary.duplicate_strategy.value,
            owner_email,
        )

    def import_failed(self, import_key: str, owner_email: str, error: BaseException) -> None:
        logger.warning("Import %s by %s failed: %s", import_key[:12], owner_email, error)
