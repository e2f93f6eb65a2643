"""Team formation and membership coordination for event participants."""

from .database import Base, SessionLocal, get_db  # noqa: F401

__all__ = ["Base", "SessionLocal", "get_db"]
