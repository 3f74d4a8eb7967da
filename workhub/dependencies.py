"""Dependency injection for FastAPI."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from workhub.config import get_settings
from workhub.db.database import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """Get database session.

    Yields:
        Session: SQLAlchemy session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_owner_email(request: Request) -> str:
    """Get the authenticated user's email.

    Authentication happens upstream; the gateway forwards the verified
    email in a trusted header.

    Args:
        request: FastAPI request object.

    Returns:
        str: Lower-cased owner email.

    Raises:
        HTTPException: If the header is missing.
    """
    header = get_settings().owner_email_header
    email = (request.headers.get(header) or "").strip().lower()
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return email


# Type aliases for cleaner dependency injection
DbSession = Annotated[Session, Depends(get_db)]
CurrentOwnerEmail = Annotated[str, Depends(get_owner_email)]
