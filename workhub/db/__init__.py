"""Database module."""

from workhub.db.database import SessionLocal, engine, init_db
from workhub.db.models import Base, IngestionRun, Project, Task

__all__ = [
    "SessionLocal",
    "engine",
    "init_db",
    "Base",
    "Project",
    "Task",
    "IngestionRun",
]
