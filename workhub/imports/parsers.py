"""Parsers turning uploaded files into raw records.

A raw record is a ``dict[str, str]`` whose keys pass through
``normalize_key`` (lower-cased, whitespace as ``_``), so field lookup
downstream ignores case and spacing. Parsers are pure functions over the
complete byte buffer and register themselves in ``FORMAT_PARSERS``; MIME
types and file extensions resolve to a format through lookup tables.
"""

import csv
import io
import json
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import dataclass

import pandas as pd
import yaml

from workhub.imports.errors import FormatError
from workhub.imports.schemas import ImportFormat

RawRecord = dict[str, str]
Parser = Callable[[bytes], list[RawRecord]]

# Keys under which JSON/YAML documents may wrap their record list
WRAPPER_KEYS = ("items", "rows", "data")

CSV_DELIMITERS = (",", ";", "\t")

MARKDOWN_SEPARATOR_RE = re.compile(r"^:?-{3,}:?$")
MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}\s+")
MARKDOWN_BULLET_RE = re.compile(r"^[-*]\s+")
KEY_VALUE_RE = re.compile(r"^([^:]+?)\s*:\s*(.+)$")
WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ParserSpec:
    """A registered parser.

    Attributes:
        parse: Callable turning bytes into raw records.
        lenient: Whether rows from this format are coerced (clamped priority,
            default status) instead of held to the strict row contract.
    """

    parse: Parser
    lenient: bool


FORMAT_PARSERS: dict[ImportFormat, ParserSpec] = {}

MIME_FORMATS: dict[str, ImportFormat] = {
    "text/csv": ImportFormat.CSV,
    "application/csv": ImportFormat.CSV,
    "application/vnd.ms-excel": ImportFormat.CSV,
    "application/json": ImportFormat.JSON,
    "text/json": ImportFormat.JSON,
    "text/markdown": ImportFormat.MARKDOWN,
    "text/x-markdown": ImportFormat.MARKDOWN,
    "application/x-yaml": ImportFormat.YAML,
    "application/yaml": ImportFormat.YAML,
    "text/yaml": ImportFormat.YAML,
    "application/xml": ImportFormat.XML,
    "text/xml": ImportFormat.XML,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ImportFormat.EXCEL,
}

EXTENSION_FORMATS: dict[str, ImportFormat] = {
    "csv": ImportFormat.CSV,
    "json": ImportFormat.JSON,
    "md": ImportFormat.MARKDOWN,
    "markdown": ImportFormat.MARKDOWN,
    "yml": ImportFormat.YAML,
    "yaml": ImportFormat.YAML,
    "xml": ImportFormat.XML,
    "xlsx": ImportFormat.EXCEL,
}

# MIME types browsers send when they don't know better
GENERIC_MIME_TYPES = {"", "text/plain", "application/octet-stream"}


def normalize_key(name: object) -> str:
    """Normalize a header cell or field name into a raw record key.

    Examples:
        "Project ID" -> "project_id"
        " Due  At " -> "due_at"
        "TITLE" -> "title"
    """
    return WHITESPACE_RE.sub("_", str(name or "").strip().lower())


def register_parser(fmt: ImportFormat, lenient: bool) -> Callable[[Parser], Parser]:
    """Register a parser for a format.

    Args:
        fmt: Format handled by the parser.
        lenient: Whether rows from this format are coerced by the mapper.

    Returns:
        Decorator registering the function unchanged.
    """

    def decorator(func: Parser) -> Parser:
        FORMAT_PARSERS[fmt] = ParserSpec(parse=func, lenient=lenient)
        return func

    return decorator


def get_parser(fmt: ImportFormat) -> ParserSpec:
    """Look up the registered parser for a format.

    Raises:
        FormatError: If no parser is registered.
    """
    spec = FORMAT_PARSERS.get(fmt)
    if spec is None:
        raise FormatError(f"No parser registered for format: {fmt.value}")
    return spec


def _normalize_mime(mime_type: str | None) -> str:
    return (mime_type or "").lower().split(";")[0].strip()


def _extension(file_name: str | None) -> str:
    name = (file_name or "").lower()
    return name.rsplit(".", 1)[1] if "." in name else ""


def looks_like_markdown(text: str) -> bool:
    """Guess whether plain text is a Markdown table or key:value blocks.

    A pipe table needs a separator row; key:value content needs every
    non-blank, non-heading line to be a ``key: value`` pair without commas
    in the key.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return False

    table_lines = [line for line in lines if "|" in line]
    if len(table_lines) >= 2:
        separator = _split_table_line(table_lines[1])
        if separator and all(MARKDOWN_SEPARATOR_RE.match(cell) for cell in separator):
            return True

    for line in lines:
        if MARKDOWN_HEADING_RE.match(line):
            continue
        match = KEY_VALUE_RE.match(MARKDOWN_BULLET_RE.sub("", line))
        if not match or "," in match.group(1):
            return False
    return True


def resolve_format(mime_type: str | None, file_name: str | None, content: bytes) -> ImportFormat:
    """Resolve the source format of an upload.

    The MIME type wins when it is specific. Generic MIME types fall back to
    the file extension, and ``text/plain`` without a known extension is
    sniffed by content shape.

    Args:
        mime_type: MIME type sent with the upload.
        file_name: Original file name.
        content: Raw file bytes.

    Returns:
        ImportFormat: The resolved format.

    Raises:
        FormatError: If the upload matches no registered format.
    """
    mime = _normalize_mime(mime_type)
    fmt = MIME_FORMATS.get(mime)
    if fmt is not None:
        return fmt

    if mime in GENERIC_MIME_TYPES:
        fmt = EXTENSION_FORMATS.get(_extension(file_name))
        if fmt is not None:
            return fmt
        if mime == "text/plain":
            text = content.decode("utf-8-sig", errors="replace")
            return ImportFormat.MARKDOWN if looks_like_markdown(text) else ImportFormat.CSV

    raise FormatError(
        f"Unsupported file type: {mime_type or 'unknown'}. "
        "Accepted: csv, json, md, yml, yaml, xml, xlsx"
    )


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as err:
        raise FormatError("File is not valid UTF-8 text") from err


# --- CSV ---


def detect_delimiter(line: str) -> str:
    """Pick the delimiter of a CSV header line.

    Semicolons win over commas when more frequent (spreadsheet exports in
    locales using decimal commas), tabs when they dominate both.
    """
    comma = line.count(",")
    semicolon = line.count(";")
    tab = line.count("\t")
    if semicolon > comma and semicolon >= tab:
        return ";"
    if tab > comma and tab > semicolon:
        return "\t"
    return ","


@register_parser(ImportFormat.CSV, lenient=True)
def parse_csv(content: bytes) -> list[RawRecord]:
    """Parse CSV content into raw records.

    The header row defines field names through ``normalize_key``. Rows
    are read one line at a time through ``csv.reader``, which keeps quoted
    delimiters inside their field. Blank lines are skipped.

    Args:
        content: Raw file bytes.

    Returns:
        list[RawRecord]: One record per data line.

    Raises:
        FormatError: If there is no header or no data row.
    """
    stream = io.TextIOWrapper(io.BytesIO(content), encoding="utf-8-sig", newline="")
    try:
        header_line = ""
        for line in stream:
            if line.strip():
                header_line = line
                break
        if not header_line:
            raise FormatError("CSV must have a header and at least one row")

        delimiter = detect_delimiter(header_line)
        headers = [normalize_key(cell) for cell in next(csv.reader([header_line], delimiter=delimiter))]

        records: list[RawRecord] = []
        for cells in csv.reader(stream, delimiter=delimiter):
            if not cells or all(not cell.strip() for cell in cells):
                continue
            records.append(
                {
                    key: (cells[index].strip() if index < len(cells) else "")
                    for index, key in enumerate(headers)
                    if key
                }
            )
    except UnicodeDecodeError as err:
        raise FormatError("File is not valid UTF-8 text") from err
    except csv.Error as err:
        raise FormatError(f"Malformed CSV: {err}") from err

    if not records:
        raise FormatError("CSV must contain at least one data row")
    return records


# --- JSON / YAML ---


def stringify_value(value: object) -> str:
    """Render a structured value as the string a raw record holds.

    Examples:
        2 -> "2"
        2.0 -> "2"
        ["a", " b "] -> "a, b"
        None -> ""
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return ", ".join(stringify_value(entry) for entry in value if stringify_value(entry))
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return str(value).strip()


def stringify_record(record: dict) -> RawRecord:
    """Lower-case keys and stringify values of a structured record."""
    result: RawRecord = {}
    for raw_key, raw_value in record.items():
        key = normalize_key(raw_key)
        if key:
            result[key] = stringify_value(raw_value)
    return result


def extract_records(document: object) -> list[dict]:
    """Pull the list of record objects out of a decoded document.

    Accepts a list of objects, an object wrapping such a list under one of
    ``WRAPPER_KEYS``, or a single object. Non-object entries are ignored.
    """
    if isinstance(document, list):
        return [entry for entry in document if isinstance(entry, dict)]
    if not isinstance(document, dict):
        return []
    for key in WRAPPER_KEYS:
        nested = document.get(key)
        if isinstance(nested, list):
            return [entry for entry in nested if isinstance(entry, dict)]
    return [document]


@register_parser(ImportFormat.JSON, lenient=False)
def parse_json(content: bytes) -> list[RawRecord]:
    """Parse a JSON array of objects into raw records.

    Raises:
        FormatError: If the payload is empty, invalid, or holds no objects.
    """
    text = _decode(content).strip()
    if not text:
        raise FormatError("Empty file")
    try:
        document = json.loads(text)
    except json.JSONDecodeError as err:
        raise FormatError("Invalid JSON payload") from err

    records = extract_records(document)
    if not records:
        raise FormatError("JSON must contain at least one record")
    return [stringify_record(record) for record in records]


@register_parser(ImportFormat.YAML, lenient=False)
def parse_yaml(content: bytes) -> list[RawRecord]:
    """Parse a YAML sequence of mappings into raw records.

    Raises:
        FormatError: If the payload is empty, invalid, or holds no mappings.
    """
    text = _decode(content).strip()
    if not text:
        raise FormatError("Empty file")
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as err:
        raise FormatError("Invalid YAML payload") from err

    records = extract_records(document)
    if not records:
        raise FormatError("YAML must contain at least one entry")
    return [stringify_record(record) for record in records]


# --- XML ---


def _local_name(tag: str) -> str:
    return normalize_key(tag.rsplit("}", 1)[-1])


@register_parser(ImportFormat.XML, lenient=False)
def parse_xml(content: bytes) -> list[RawRecord]:
    """Parse ``<item>`` elements into raw records.

    Each child element becomes a field; a ``type`` attribute on the item is
    used when no ``<type>`` child is present.

    Raises:
        FormatError: If the document is invalid or has no items.
    """
    if not content.strip():
        raise FormatError("Empty file")
    try:
        root = ET.fromstring(content)
    except ET.ParseError as err:
        raise FormatError(f"Invalid XML payload: {err}") from err

    records: list[RawRecord] = []
    for element in root.iter():
        if _local_name(element.tag) != "item":
            continue
        record: RawRecord = {}
        if element.get("type"):
            record["type"] = element.get("type", "").strip()
        for child in element:
            record[_local_name(child.tag)] = (child.text or "").strip()
        records.append(record)

    if not records:
        raise FormatError("XML must contain at least one <item> row")
    return records


# --- Markdown ---


def _split_table_line(line: str) -> list[str]:
    stripped = line.strip()
    if stripped.startswith("|"):
        stripped = stripped[1:]
    if stripped.endswith("|"):
        stripped = stripped[:-1]
    return [cell.strip() for cell in stripped.split("|")]


def parse_markdown_table(text: str) -> list[RawRecord]:
    """Parse the first pipe-delimited table in Markdown text.

    Returns:
        list[RawRecord]: Rows keyed by header cell, or an empty list if the
            text holds no table with a valid separator row.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    table_lines = [line for line in lines if "|" in line]
    if len(table_lines) < 3:
        return []

    header = [normalize_key(cell) for cell in _split_table_line(table_lines[0])]
    separator = _split_table_line(table_lines[1])
    if not header or not all(MARKDOWN_SEPARATOR_RE.match(cell) for cell in separator):
        return []

    rows: list[RawRecord] = []
    for line in table_lines[2:]:
        values = _split_table_line(line)
        if not any(values):
            continue
        rows.append(
            {
                field: (values[index] if index < len(values) else "")
                for index, field in enumerate(header)
                if field
            }
        )
    return rows


def parse_markdown_blocks(text: str) -> list[RawRecord]:
    """Parse blank-line separated ``key: value`` blocks.

    Headings also close a block. List bullets are stripped and keys are
    lower-cased with inner whitespace replaced by underscores.
    """
    blocks: list[RawRecord] = []
    current: RawRecord = {}

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or MARKDOWN_HEADING_RE.match(line):
            if current:
                blocks.append(current)
                current = {}
            continue
        match = KEY_VALUE_RE.match(MARKDOWN_BULLET_RE.sub("", line))
        if not match:
            continue
        key = normalize_key(match.group(1))
        value = match.group(2).strip()
        if key and value:
            current[key] = value

    if current:
        blocks.append(current)
    return blocks


@register_parser(ImportFormat.MARKDOWN, lenient=True)
def parse_markdown(content: bytes) -> list[RawRecord]:
    """Parse a Markdown table, falling back to key:value blocks.

    Raises:
        FormatError: If the text holds neither.
    """
    text = _decode(content).strip()
    if not text:
        raise FormatError("Empty file")

    rows = parse_markdown_table(text)
    if rows:
        return rows
    rows = parse_markdown_blocks(text)
    if rows:
        return rows
    raise FormatError("Markdown must contain a table or key:value blocks")


# --- Excel ---


@register_parser(ImportFormat.EXCEL, lenient=True)
def parse_excel(content: bytes) -> list[RawRecord]:
    """Parse the first sheet of an Excel workbook into raw records.

    Raises:
        FormatError: If the workbook cannot be read or has no data rows.
    """
    try:
        df = pd.read_excel(io.BytesIO(content), engine="openpyxl", dtype=str)
    except Exception as err:  # openpyxl raises a variety of errors for bad archives
        raise FormatError(f"Unreadable Excel file: {err}") from err

    columns = [normalize_key(c) for c in df.columns]

    # Convert to list of dicts, handling NaN values
    rows: list[RawRecord] = []
    for _, row in df.iterrows():
        record: RawRecord = {}
        for original, column in zip(df.columns, columns):
            value = row[original]
            record[column] = "" if pd.isna(value) else str(value).strip()
        if any(record.values()):
            rows.append(record)

    if not rows:
        raise FormatError("Spreadsheet must contain at least one data row")
    return rows
