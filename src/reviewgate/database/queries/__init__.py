"""Database query functions for reviewgate.

Async query functions for features and their review iterations.
"""

from reviewgate.database.queries.feature import (
    advance_iteration_counter,
    compare_and_swap_feature,
    create_feature,
    get_feature,
    insert_iteration,
    list_features,
)

__all__ = [
    "advance_iteration_counter",
    "compare_and_swap_feature",
    "create_feature",
    "get_feature",
    "insert_iteration",
    "list_features",
]
