"""Initial database schema.

Revision ID: 001
Revises:
Create Date: 2026-10-18

Schema for the workhub bulk import service:
- Projects with unique upper-case codes
- Tasks with optional project reference
- Ingestion runs keyed by a unique content fingerprint
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mysql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    # Projects table
    op.create_table(
        "projects",
        sa.Column("id", mysql.CHAR(36), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(180), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("active", "archived", "planned", "blocked", "done", name="projectstatus"),
            default="planned",
        ),
        sa.Column("priority", sa.Integer(), default=3),
        sa.Column("due_at", sa.String(40), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("owner_email", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("code", name="uq_projects_code"),
    )
    op.create_index("ix_projects_owner_email", "projects", ["owner_email"])

    # Tasks table
    op.create_table(
        "tasks",
        sa.Column("id", mysql.CHAR(36), primary_key=True),
        sa.Column("title", sa.String(180), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("todo", "doing", "done", "blocked", name="taskstatus"),
            default="todo",
        ),
        sa.Column("priority", sa.Integer(), default=3),
        sa.Column("due_at", sa.String(40), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("project_ref", sa.String(128), nullable=True),
        sa.Column("project_id", mysql.CHAR(36), nullable=True),
        sa.Column("assignee_email", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_tasks_assignee_title", "tasks", ["assignee_email", "title"])
    op.create_index("ix_tasks_project_id", "tasks", ["project_id"])

    # Ingestion runs (idempotency ledger)
    op.create_table(
        "ingestion_runs",
        sa.Column("id", mysql.CHAR(36), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("owner_email", sa.String(255), nullable=False),
        sa.Column("format", sa.String(20), nullable=False),
        sa.Column("duplicate_strategy", sa.String(20), nullable=False),
        sa.Column("file_hash", sa.String(64), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("mime_type", sa.String(100), nullable=True),
        sa.Column(
            "status",
            sa.Enum("processing", "completed", "failed", name="ingestionrunstatus"),
            default="processing",
        ),
        sa.Column("total_rows", sa.Integer(), default=0),
        sa.Column("projects", sa.Integer(), default=0),
        sa.Column("tasks", sa.Integer(), default=0),
        sa.Column("skipped", sa.Integer(), default=0),
        sa.Column("duplicate_rows_in_payload", sa.Integer(), default=0),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("key", name="uq_ingestion_runs_key"),
    )
    op.create_index("ix_ingestion_runs_owner_email", "ingestion_runs", ["owner_email"])
    op.create_index("ix_ingestion_runs_status", "ingestion_runs", ["status"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("ingestion_runs")
    op.drop_table("tasks")
    op.drop_table("projects")
