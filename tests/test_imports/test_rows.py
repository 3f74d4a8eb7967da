"""Tests for record mapping and row validation."""

import pytest

from workhub.db.models import ProjectStatus, TaskStatus
from workhub.imports.errors import SchemaViolationError
from workhub.imports.mapper import coerce_priority, map_record, parse_tags, pick, resolve_kind
from workhub.imports.parsers import parse_json, parse_markdown
from workhub.imports.schemas import ProjectRow, TaskRow, slugify_code, task_scope
from workhub.imports.validation import validate_row, validate_rows


class TestMapper:
    """Tests for raw record mapping."""

    def test_pick_uses_aliases(self):
        """Test the first non-empty alias wins."""
        assert pick({"title": "A"}, "name") == "A"
        assert pick({"name": "  ", "title": "B"}, "name") == "B"
        assert pick({"project_id": "P-1"}, "project_ref") == "P-1"
        assert pick({}, "description") == ""

    def test_resolve_kind(self):
        """Test only an explicit project type makes a project."""
        assert resolve_kind({"type": " Project "}) == "project"
        assert resolve_kind({"type": "task"}) == "task"
        assert resolve_kind({"type": "epic"}) == "task"
        assert resolve_kind({}) == "task"

    def test_parse_tags(self):
        """Test tags split on semicolons, pipes and commas."""
        assert parse_tags("backend; api | urgent,  ops") == ["backend", "api", "urgent", "ops"]
        assert parse_tags("") == []
        assert parse_tags(None) == []

    def test_coerce_priority(self):
        """Test lenient priority coercion."""
        assert coerce_priority("2") == 2
        assert coerce_priority("99") == 5
        assert coerce_priority("0") == 1
        assert coerce_priority("high") == 3

    def test_coerce_priority_leading_integer(self):
        """Test a leading integer is read from decorated priority values."""
        assert coerce_priority("2.0") == 2
        assert coerce_priority("4 (low)") == 4
        assert coerce_priority(" 1 - urgent") == 1
        assert coerce_priority("") == 3
        assert coerce_priority(None) == 3

    def test_lenient_defaults(self):
        """Test lenient mapping falls back on unknown status and bad priority."""
        candidate = map_record({"title": "Task A", "status": "In Progress", "priority": "urgent"}, True)
        assert candidate["kind"] == "task"
        assert candidate["status"] == "todo"
        assert candidate["priority"] == 3

    def test_lenient_clamps_priority(self):
        """Test lenient mapping clamps out-of-range priorities."""
        candidate = map_record({"title": "Task A", "priority": "99"}, True)
        assert candidate["priority"] == 5

    def test_strict_passes_values_through(self):
        """Test strict mapping keeps priority and status as written."""
        candidate = map_record({"title": "Task A", "status": "Waiting", "priority": "99"}, False)
        assert candidate["status"] == "waiting"
        assert candidate["priority"] == "99"

    def test_strict_missing_priority_omitted(self):
        """Test strict mapping leaves priority to the row default."""
        candidate = map_record({"title": "Task A"}, False)
        assert "priority" not in candidate
        assert candidate["status"] == "todo"

    def test_project_defaults(self):
        """Test projects default to planned."""
        candidate = map_record({"type": "project", "name": "Apollo"}, True)
        assert candidate["kind"] == "project"
        assert candidate["status"] == "planned"

    def test_missing_name_is_none(self):
        """Test a record without name or title maps to a None name."""
        assert map_record({"description": "orphan"}, True)["name"] is None


class TestValidation:
    """Tests for the row contract."""

    def test_task_row(self):
        """Test a valid task candidate."""
        row = validate_row(
            {"kind": "task", "name": " Task A ", "status": "doing", "priority": "2", "tags": ["x"]},
            1,
        )
        assert isinstance(row, TaskRow)
        assert row.name == "Task A"
        assert row.status == TaskStatus.DOING
        assert row.priority == 2
        assert row.natural_key == "__no_project__:task a"

    def test_task_natural_key_scoped_by_project(self):
        """Test task keys include the project reference."""
        row = validate_row({"kind": "task", "name": "Task A", "project_ref": "prj-1"}, 1)
        assert row.natural_key == "PRJ-1:task a"

    def test_task_scope_ignores_reference_case(self):
        """Test project references differing only in case share a scope."""
        assert task_scope(" prj-1 ") == task_scope("PRJ-1") == "PRJ-1"
        assert task_scope("") == task_scope(None) == "__no_project__"
        lower = validate_row({"kind": "task", "name": "Task A", "project_ref": "prj-1"}, 1)
        upper = validate_row({"kind": "task", "name": "task a", "project_ref": "PRJ-1"}, 2)
        assert lower.natural_key == upper.natural_key
        assert upper.project_ref == "PRJ-1"

    def test_project_code_upper_cased(self):
        """Test explicit project codes are upper-cased."""
        row = validate_row({"kind": "project", "name": "Apollo", "code": "ap-1"}, 1)
        assert isinstance(row, ProjectRow)
        assert row.code == "AP-1"
        assert row.natural_key == "AP-1"
        assert row.status == ProjectStatus.PLANNED

    def test_project_code_derived_from_name(self):
        """Test a missing code is derived from the name."""
        row = validate_row({"kind": "project", "name": "Website Relaunch 2025"}, 1)
        assert row.code == "WEBSITE-RELAUNCH-2025"

    def test_slugify_code_truncates(self):
        """Test derived codes are capped at 24 characters."""
        assert slugify_code("A very long project name that keeps going") == "A-VERY-LONG-PROJECT-NAME"

    def test_project_code_underivable(self):
        """Test a project whose name has no slug characters is rejected."""
        with pytest.raises(SchemaViolationError) as exc_info:
            validate_row({"kind": "project", "name": "!!!"}, 4)
        assert exc_info.value.row_index == 4
        assert exc_info.value.field == "code"

    def test_missing_name(self):
        """Test a missing name is reported as required."""
        with pytest.raises(SchemaViolationError) as exc_info:
            validate_row({"kind": "task", "name": None}, 2)
        assert exc_info.value.field == "name"
        assert exc_info.value.reason == "name is required"
        assert exc_info.value.message == "Row 2: name: name is required"

    def test_priority_out_of_range(self):
        """Test priority 99 is rejected."""
        with pytest.raises(SchemaViolationError) as exc_info:
            validate_row({"kind": "task", "name": "Task A", "priority": "99"}, 1)
        assert exc_info.value.field == "priority"

    def test_unknown_status(self):
        """Test an unknown status is rejected."""
        with pytest.raises(SchemaViolationError) as exc_info:
            validate_row({"kind": "task", "name": "Task A", "status": "waiting"}, 1)
        assert exc_info.value.field == "status"

    def test_bad_due_date(self):
        """Test non ISO-like dates are rejected."""
        with pytest.raises(SchemaViolationError) as exc_info:
            validate_row({"kind": "task", "name": "Task A", "due_at": "next week"}, 1)
        assert exc_info.value.field == "due_at"

    def test_due_date_accepted(self):
        """Test ISO dates and datetimes are accepted."""
        assert validate_row({"kind": "task", "name": "A", "due_at": "2025-03-01"}, 1).due_at == "2025-03-01"
        assert validate_row(
            {"kind": "task", "name": "A", "due_at": "2025-03-01T10:00:00Z"}, 1
        ).due_at == "2025-03-01T10:00:00Z"

    def test_too_many_tags(self):
        """Test more than 30 tags are rejected."""
        with pytest.raises(SchemaViolationError) as exc_info:
            validate_row({"kind": "task", "name": "A", "tags": [f"t{i}" for i in range(31)]}, 1)
        assert exc_info.value.field == "tags"

    def test_tag_too_long(self):
        """Test tags longer than 64 characters are rejected."""
        with pytest.raises(SchemaViolationError) as exc_info:
            validate_row({"kind": "task", "name": "A", "tags": ["x" * 65]}, 1)
        assert exc_info.value.field == "tags"

    def test_validate_rows_reports_first_failure(self):
        """Test row indices are 1-based and the first violation aborts."""
        candidates = [
            {"kind": "task", "name": "A"},
            {"kind": "task", "name": "B", "priority": "0"},
            {"kind": "task", "name": None},
        ]
        with pytest.raises(SchemaViolationError) as exc_info:
            validate_rows(candidates)
        assert exc_info.value.row_index == 2

    def test_error_detail(self):
        """Test the structured error payload."""
        with pytest.raises(SchemaViolationError) as exc_info:
            validate_row({"kind": "task", "name": None}, 3)
        assert exc_info.value.detail() == {
            "message": "Row 3: name: name is required",
            "row": 3,
            "field": "name",
            "reason": "name is required",
        }


class TestFormatEquivalence:
    """The same rows written as JSON, Markdown table and key:value blocks."""

    JSON_CONTENT = (
        b'[{"type": "project", "name": "Website Relaunch", "code": "web-1",'
        b' "priority": 2, "tags": ["web", "launch"]},'
        b' {"title": "Draft copy", "project": "WEB-1", "status": "doing"}]'
    )

    TABLE_CONTENT = (
        b"| type | name | code | priority | tags | project | status |\n"
        b"|---|---|---|---|---|---|---|\n"
        b"| project | Website Relaunch | web-1 | 2 | web; launch | | |\n"
        b"| task | Draft copy | | | | WEB-1 | doing |\n"
    )

    BLOCK_CONTENT = (
        b"## Project\n"
        b"type: project\n"
        b"name: Website Relaunch\n"
        b"code: web-1\n"
        b"priority: 2\n"
        b"tags: web, launch\n"
        b"\n"
        b"## Task\n"
        b"title: Draft copy\n"
        b"project: WEB-1\n"
        b"status: doing\n"
    )

    @staticmethod
    def _rows(records, lenient):
        return [row.model_dump() for row in validate_rows([map_record(r, lenient) for r in records])]

    def test_same_rows_from_every_shape(self):
        """Test JSON, Markdown table and key:value blocks yield identical rows."""
        from_json = self._rows(parse_json(self.JSON_CONTENT), lenient=False)
        from_table = self._rows(parse_markdown(self.TABLE_CONTENT), lenient=True)
        from_blocks = self._rows(parse_markdown(self.BLOCK_CONTENT), lenient=True)

        assert from_json == from_table == from_blocks
        assert from_json[0]["code"] == "WEB-1"
        assert from_json[0]["tags"] == ["web", "launch"]
        assert from_json[1]["project_ref"] == "WEB-1"
        assert from_json[1]["priority"] == 3
