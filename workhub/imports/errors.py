"""Errors raised by the bulk import pipeline.

Every error is request-level: the router turns it into an HTTP response
and nothing is written to the project or task tables.
"""


class IngestionError(Exception):
    """Base class for import pipeline errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def detail(self) -> dict:
        """Structured payload for API responses."""
        return {"message": self.message}


class FormatError(IngestionError):
    """Unsupported MIME type, or a file with no usable content."""

    pass


class ConfigurationError(IngestionError):
    """Invalid import options (unknown duplicate strategy, missing owner)."""

    pass


class SchemaViolationError(IngestionError):
    """A row violates the row contract.

    Attributes:
        row_index: 1-based index of the offending row.
        field: Name of the offending field.
    """

    def __init__(self, row_index: int, field: str, reason: str):
        super().__init__(f"Row {row_index}: {field}: {reason}")
        self.row_index = row_index
        self.field = field
        self.reason = reason

    def detail(self) -> dict:
        return {
            "message": self.message,
            "row": self.row_index,
            "field": self.field,
            "reason": self.reason,
        }


class DuplicateConflictError(IngestionError):
    """Rows collide on a natural key under the strict-fail strategy.

    Attributes:
        key: The colliding natural key, if a single one is known.
        duplicate_rows_in_payload: Rows in the upload repeating an earlier key.
    """

    def __init__(self, message: str, key: str | None = None, duplicate_rows_in_payload: int = 0):
        super().__init__(message)
        self.key = key
        self.duplicate_rows_in_payload = duplicate_rows_in_payload

    def detail(self) -> dict:
        return {
            "message": self.message,
            "key": self.key,
            "duplicate_rows_in_payload": self.duplicate_rows_in_payload,
        }


class ImportInProgressError(DuplicateConflictError):
    """Another request is processing an upload with the same fingerprint."""

    pass


class StorageError(IngestionError):
    """A bulk write against the project or task store failed."""

    pass
