"""Database layer for reviewgate.

Handles database connections, session management, ORM models and
session-level query functions.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    Base: SQLAlchemy declarative base for all models.
"""

from reviewgate.database.connection import get_engine, get_session_factory
from reviewgate.database.models import (
    Base,
    FeatureRecord,
    IterationRecord,
    TimestampMixin,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "Base",
    "TimestampMixin",
    "FeatureRecord",
    "IterationRecord",
]
