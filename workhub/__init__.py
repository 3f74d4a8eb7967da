"""Bulk project/task ingestion service."""

__version__ = "0.1.0"
