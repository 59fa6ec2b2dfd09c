"""SQLAlchemy ORM models for reviewgate.

Defines the features and review_iterations tables using SQLAlchemy 2.0
declarative style with Mapped[] type annotations.
"""

from reviewgate.database.models.base import Base, TimestampMixin
from reviewgate.database.models.feature import FeatureRecord
from reviewgate.database.models.iteration import IterationRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "FeatureRecord",
    "IterationRecord",
]
