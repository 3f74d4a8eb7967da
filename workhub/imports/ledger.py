"""Content-addressed ledger of import runs.

Every fresh import claims an ``IngestionRun`` keyed by a fingerprint of
the uploaded bytes, the duplicate strategy and the owner. A completed run
short-circuits any later upload with the same fingerprint. The key is a
unique constraint in the database, so two requests racing on the same
content cannot both claim it.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workhub.db.models import IngestionRun, IngestionRunStatus
from workhub.imports.errors import ImportInProgressError

logger = logging.getLogger(__name__)


class DuplicateRunKeyError(Exception):
    """Raised by a run store when the run key is already taken."""

    pass


def compute_file_hash(content: bytes) -> str:
    """Compute the SHA-256 hex digest of file content."""
    return hashlib.sha256(content).hexdigest()


def compute_import_key(owner_email: str, fmt: str, duplicate_strategy: str, file_hash: str) -> str:
    """Compute the ledger fingerprint of an upload.

    Args:
        owner_email: Normalized owner email.
        fmt: Resolved source format.
        duplicate_strategy: Normalized duplicate strategy.
        file_hash: SHA-256 of the uploaded bytes.

    Returns:
        str: Hex-encoded SHA-256 fingerprint.
    """
    material = f"{owner_email}|{fmt}|{duplicate_strategy}|{file_hash}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class IngestionRunStore(Protocol):
    """Protocol for ingestion run persistence."""

    def find_one(self, key: str) -> IngestionRun | None:
        """Return the run with this key, if any."""
        ...

    def create(self, run: IngestionRun) -> IngestionRun:
        """Durably insert a new run.

        Raises:
            DuplicateRunKeyError: If another run already holds the key.
        """
        ...

    def save(self, run: IngestionRun) -> IngestionRun:
        """Durably persist changes to a run."""
        ...

    def reopen(self, run: IngestionRun) -> bool:
        """Move a failed run back to processing; False if it was not failed."""
        ...


class SqlIngestionRunStore:
    """Run store backed by the ``ingestion_runs`` table.

    ``create``, ``save`` and ``reopen`` commit immediately so the run state
    is visible to concurrent requests.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_one(self, key: str) -> IngestionRun | None:
        return self.db.scalars(select(IngestionRun).where(IngestionRun.key == key)).first()

    def create(self, run: IngestionRun) -> IngestionRun:
        self.db.add(run)
        try:
            self.db.commit()
        except IntegrityError as err:
            self.db.rollback()
            raise DuplicateRunKeyError(run.key) from err
        self.db.refresh(run)
        return run

    def save(self, run: IngestionRun) -> IngestionRun:
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        return run

    def reopen(self, run: IngestionRun) -> bool:
        result = self.db.execute(
            update(IngestionRun)
            .where(
                IngestionRun.id == run.id,
                IngestionRun.status == IngestionRunStatus.FAILED,
            )
            .values(
                status=IngestionRunStatus.PROCESSING,
                error=None,
                completed_at=None,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(run)
        return result.rowcount == 1


@dataclass
class RunCounts:
    """Totals recorded on a finished run."""

    total_rows: int = 0
    projects: int = 0
    tasks: int = 0
    skipped: int = 0
    duplicate_rows_in_payload: int = 0


@dataclass
class LedgerClaim:
    """Outcome of claiming a fingerprint.

    Attributes:
        run: The run record.
        replay: True when the run is already completed and must be replayed.
    """

    run: IngestionRun
    replay: bool = False


class IngestionLedger:
    """Claim, replay and finalize ingestion runs."""

    def __init__(self, store: IngestionRunStore, error_max_length: int = 400):
        """Initialize the ledger.

        Args:
            store: Run store.
            error_max_length: Truncation length of error summaries.
        """
        self.store = store
        self.error_max_length = error_max_length

    def lookup(self, key: str) -> IngestionRun | None:
        """Return the run for a fingerprint, if any."""
        return self.store.find_one(key)

    def begin(
        self,
        key: str,
        owner_email: str,
        fmt: str,
        duplicate_strategy: str,
        file_hash: str,
        file_name: str | None,
        mime_type: str | None,
    ) -> LedgerClaim:
        """Claim a fingerprint for processing.

        A completed run is returned for replay. A failed run is reopened.
        A run held in processing by another request, or a lost race on the
        unique key, raises ``ImportInProgressError``.

        Returns:
            LedgerClaim: The claimed run, or a completed run to replay.

        Raises:
            ImportInProgressError: If another request holds the fingerprint.
        """
        existing = self.store.find_one(key)
        if existing is not None:
            return self._claim_existing(existing)

        now = datetime.now(timezone.utc)
        run = IngestionRun(
            key=key,
            owner_email=owner_email,
            format=fmt,
            duplicate_strategy=duplicate_strategy,
            file_hash=file_hash,
            file_name=file_name,
            mime_type=mime_type,
            status=IngestionRunStatus.PROCESSING,
            total_rows=0,
            projects=0,
            tasks=0,
            skipped=0,
            duplicate_rows_in_payload=0,
            created_at=now,
            updated_at=now,
        )
        try:
            return LedgerClaim(run=self.store.create(run))
        except DuplicateRunKeyError:
            # Lost the insert race: re-check once, replay if the winner finished.
            logger.info("Ingestion run %s claimed concurrently, re-checking", key[:12])
            winner = self.store.find_one(key)
            if winner is not None and winner.status == IngestionRunStatus.COMPLETED:
                return LedgerClaim(run=winner, replay=True)
            raise ImportInProgressError(
                "An import with the same payload is already processing.", key=key
            ) from None

    def _claim_existing(self, run: IngestionRun) -> LedgerClaim:
        if run.status == IngestionRunStatus.COMPLETED:
            return LedgerClaim(run=run, replay=True)
        if run.status == IngestionRunStatus.FAILED and self.store.reopen(run):
            logger.info("Retrying failed ingestion run %s", run.key[:12])
            return LedgerClaim(run=run)
        raise ImportInProgressError(
            "An import with the same payload is already processing.", key=run.key
        )

    def complete(self, run: IngestionRun, counts: RunCounts) -> IngestionRun:
        """Finalize a run as completed with its totals."""
        now = datetime.now(timezone.utc)
        self._apply_counts(run, counts)
        run.status = IngestionRunStatus.COMPLETED
        run.error = None
        run.completed_at = now
        run.updated_at = now
        return self.store.save(run)

    def fail(self, run: IngestionRun, error: BaseException, counts: RunCounts | None = None) -> IngestionRun:
        """Finalize a run as failed with an error summary."""
        if counts is not None:
            self._apply_counts(run, counts)
        message = str(error) or error.__class__.__name__
        run.status = IngestionRunStatus.FAILED
        run.error = message[: self.error_max_length]
        run.updated_at = datetime.now(timezone.utc)
        return self.store.save(run)

    @staticmethod
    def _apply_counts(run: IngestionRun, counts: RunCounts) -> None:
        run.total_rows = counts.total_rows
        run.projects = counts.projects
        run.tasks = counts.tasks
        run.skipped = counts.skipped
        run.duplicate_rows_in_payload = counts.duplicate_rows_in_payload
