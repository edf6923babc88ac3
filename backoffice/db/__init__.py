# backoffice/db/__init__.py
"""
Database package for SQLAlchemy setup, session management, and base models.
"""

from backoffice.db.base import Base, utcnow
from backoffice.db.session import get_session, get_sessionmaker

__all__ = [
    "Base",
    "utcnow",
    "get_session",
    "get_sessionmaker",
]
