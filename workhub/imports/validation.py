"""Row contract enforcement.

Runs after mapping and before duplicate resolution. The first violation
aborts the whole import, so a batch is never committed partially.
"""

from pydantic import TypeAdapter, ValidationError

from workhub.imports.errors import SchemaViolationError
from workhub.imports.schemas import Row

_row_adapter: TypeAdapter = TypeAdapter(Row)


def _error_field(error: dict) -> str:
    """Name the field a pydantic error points at.

    With a discriminated union the location starts with the tag
    (``("task", "priority")``); list items add an index (``("task", "tags", 0)``).
    """
    names = [part for part in error.get("loc", ()) if isinstance(part, str)]
    if len(names) > 1:
        return names[1]
    # The only model-level check derives the project code.
    if names == ["project"]:
        return "code"
    if names and names[0] != "task":
        return names[0]
    return "row"


def validate_row(candidate: dict, row_index: int) -> Row:
    """Validate one mapped candidate.

    Args:
        candidate: Output of ``map_record``.
        row_index: 1-based index of the row in the file.

    Returns:
        Row: A ProjectRow or TaskRow.

    Raises:
        SchemaViolationError: If the candidate violates the row contract.
    """
    try:
        return _row_adapter.validate_python(candidate)
    except ValidationError as e:
        first = e.errors()[0]
        field = _error_field(first)
        if field == "name" and candidate.get("name") is None:
            raise SchemaViolationError(row_index, "name", "name is required") from e
        raise SchemaViolationError(row_index, field, first["msg"]) from e


def validate_rows(candidates: list[dict]) -> list[Row]:
    """Validate all candidates in file order.

    Args:
        candidates: Mapped candidate rows.

    Returns:
        list[Row]: Validated rows, same order.

    Raises:
        SchemaViolationError: On the first offending row.
    """
    return [validate_row(candidate, index) for index, candidate in enumerate(candidates, start=1)]
