"""Import service: the bulk ingestion pipeline end to end."""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from workhub.config import Settings, get_settings
from workhub.db.models import IngestionRun
from workhub.imports.duplicates import (
    dedupe_payload,
    fetch_existing_lookup,
    normalize_duplicate_strategy,
    resolve_against_store,
)
from workhub.imports.errors import (
    ConfigurationError,
    DuplicateConflictError,
    FormatError,
    IngestionError,
    StorageError,
)
from workhub.imports.ledger import (
    IngestionLedger,
    IngestionRunStore,
    RunCounts,
    SqlIngestionRunStore,
    compute_file_hash,
    compute_import_key,
)
from workhub.imports.mapper import map_record
from workhub.imports.observer import ImportObserver, LoggingImportObserver
from workhub.imports.parsers import get_parser, resolve_format
from workhub.imports.persistence import (
    BulkPersistenceEngine,
    RecordStore,
    SqlProjectStore,
    SqlTaskStore,
)
from workhub.imports.schemas import DuplicateStrategy, ImportOptions, ImportSummary
from workhub.imports.validation import validate_rows

logger = logging.getLogger(__name__)


class ImportService:
    """Service class for bulk project/task imports.

    One ``import_file`` call is one unit of work: the data writes and the
    run completion are committed together, and any failure rolls the data
    writes back before the run is marked failed.
    """

    def __init__(
        self,
        db: Session,
        project_store: RecordStore | None = None,
        task_store: RecordStore | None = None,
        run_store: IngestionRunStore | None = None,
        observer: ImportObserver | None = None,
        settings: Settings | None = None,
    ):
        """Initialize import service.

        Args:
            db: Database session owning the unit of work.
            project_store: Project store (defaults to the SQL store on ``db``).
            task_store: Task store (defaults to the SQL store on ``db``).
            run_store: Ingestion run store (defaults to the SQL store on ``db``).
            observer: Receiver of lifecycle events (defaults to logging).
            settings: Application settings.
        """
        self.db = db
        self.settings = settings or get_settings()
        self.project_store = project_store or SqlProjectStore(db)
        self.task_store = task_store or SqlTaskStore(db)
        self.ledger = IngestionLedger(
            run_store or SqlIngestionRunStore(db),
            error_max_length=self.settings.import_error_max_length,
        )
        self.engine = BulkPersistenceEngine(self.project_store, self.task_store)
        self.observer = observer or LoggingImportObserver()

    def import_file(
        self,
        content: bytes,
        mime_type: str | None,
        owner_email: str,
        file_name: str | None = None,
        options: ImportOptions | None = None,
    ) -> ImportSummary:
        """Import projects and tasks from an uploaded file.

        Args:
            content: Raw file bytes.
            mime_type: MIME type sent with the upload.
            owner_email: Email of the importing user.
            file_name: Original file name.
            options: Import options (duplicate strategy).

        Returns:
            ImportSummary: Totals of the import; ``idempotent`` is True when
                replayed from a completed run with the same fingerprint.

        Raises:
            ConfigurationError: Missing owner or unknown duplicate strategy.
            FormatError: Unsupported, oversized or unusable file.
            SchemaViolationError: A row violates the row contract.
            DuplicateConflictError: Strict-fail collision, or the same payload
                is already being processed.
            StorageError: The bulk write or final commit failed.
        """
        options = options or ImportOptions()
        owner = (owner_email or "").strip().lower()
        if not owner:
            raise ConfigurationError("Owner email is required")
        if len(content) > self.settings.import_max_file_bytes:
            raise FormatError(
                f"File too large: {len(content)} bytes "
                f"(limit {self.settings.import_max_file_bytes})"
            )

        fmt = resolve_format(mime_type, file_name, content)
        strategy = normalize_duplicate_strategy(
            options.duplicate_strategy, self.settings.import_default_duplicate_strategy
        )
        file_hash = compute_file_hash(content)
        import_key = compute_import_key(owner, fmt.value, strategy.value, file_hash)

        claim = self.ledger.begin(
            key=import_key,
            owner_email=owner,
            fmt=fmt.value,
            duplicate_strategy=strategy.value,
            file_hash=file_hash,
            file_name=file_name,
            mime_type=mime_type,
        )
        if claim.replay:
            summary = self._summary_from_run(claim.run, strategy, import_key)
            self.observer.import_replayed(summary, owner)
            return summary

        self.observer.import_started(import_key, owner, fmt.value, strategy.value)
        counts = RunCounts()
        try:
            parser = get_parser(fmt)
            raw_records = parser.parse(content)
            counts.total_rows = len(raw_records)

            rows = validate_rows([map_record(raw, parser.lenient) for raw in raw_records])
            deduped = dedupe_payload(rows, strategy, owner)
            counts.duplicate_rows_in_payload = deduped.duplicate_rows_in_payload

            lookup = fetch_existing_lookup(deduped.rows, owner, self.project_store, self.task_store)
            batch = resolve_against_store(deduped.rows, strategy, lookup, owner)
            # attempted counts, kept on the run if the write fails
            counts.projects = len(batch.projects)
            counts.tasks = len(batch.tasks)
            counts.skipped = batch.skipped

            persisted = self.engine.execute(batch, owner)
            counts.projects = persisted.projects
            counts.tasks = persisted.tasks
            counts.skipped = persisted.skipped

            run = self.ledger.complete(claim.run, counts)
        except IngestionError as err:
            if isinstance(err, DuplicateConflictError) and err.duplicate_rows_in_payload:
                counts.duplicate_rows_in_payload = err.duplicate_rows_in_payload
            self._record_failure(claim.run, import_key, owner, err, counts)
            raise
        except SQLAlchemyError as err:
            storage_error = StorageError(f"Import could not be committed: {err}")
            self._record_failure(claim.run, import_key, owner, storage_error, counts)
            raise storage_error from err
        except Exception as err:
            self._record_failure(claim.run, import_key, owner, err, counts)
            raise

        summary = self._summary_from_run(run, strategy, import_key, idempotent=False)
        self.observer.import_completed(summary, owner)
        return summary

    def _record_failure(
        self,
        run: IngestionRun,
        import_key: str,
        owner: str,
        error: BaseException,
        counts: RunCounts,
    ) -> None:
        """Discard uncommitted data writes and mark the run failed."""
        self.db.rollback()
        self.ledger.fail(run, error, counts)
        self.observer.import_failed(import_key, owner, error)

    @staticmethod
    def _summary_from_run(
        run: IngestionRun,
        strategy: DuplicateStrategy,
        import_key: str,
        idempotent: bool = True,
    ) -> ImportSummary:
        return ImportSummary(
            projects=int(run.projects or 0),
            tasks=int(run.tasks or 0),
            skipped=int(run.skipped or 0),
            total_rows=int(run.total_rows or 0),
            duplicate_rows_in_payload=int(run.duplicate_rows_in_payload or 0),
            idempotent=idempotent,
            duplicate_strategy=strategy,
            import_key=import_key,
        )

    def list_runs(self, owner_email: str, limit: int = 50) -> tuple[list[IngestionRun], int]:
        """List an owner's ingestion runs, newest first.

        Args:
            owner_email: Owner whose runs are listed.
            limit: Maximum number of runs returned.

        Returns:
            tuple: (runs, total number of runs for the owner).
        """
        owner = (owner_email or "").strip().lower()
        total = self.db.scalar(
            select(func.count()).select_from(IngestionRun).where(IngestionRun.owner_email == owner)
        )
        runs = self.db.scalars(
            select(IngestionRun)
            .where(IngestionRun.owner_email == owner)
            .order_by(IngestionRun.created_at.desc())
            .limit(limit)
        ).all()
        return list(runs), int(total or 0)

    def get_run(self, key: str, owner_email: str) -> IngestionRun | None:
        """Get one of an owner's ingestion runs by fingerprint."""
        owner = (owner_email or "").strip().lower()
        return self.db.scalars(
            select(IngestionRun).where(IngestionRun.key == key, IngestionRun.owner_email == owner)
        ).first()
