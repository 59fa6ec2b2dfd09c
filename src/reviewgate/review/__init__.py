"""Review loop: domain models, errors, store and orchestration.

The orchestrator lives in ``reviewgate.review.cycle`` and is imported from
there; this package namespace only re-exports the leaf modules.
"""

from reviewgate.review.errors import (
    AgentTimeoutError,
    CommitError,
    ConcurrencyConflictError,
    ExternalCallFailureError,
    FeatureCancelledError,
    FeatureNotFoundError,
    IterationCapExceededError,
    NoChangesError,
    OutOfOrderIterationError,
    ProviderError,
    ReviewGateError,
    StoreIOError,
    UnparsableResponseError,
    VersionConflictError,
)
from reviewgate.review.models import (
    Feature,
    FeatureStatus,
    Finding,
    FindingCategory,
    FindingSeverity,
    Iteration,
    PendingReview,
    ReviewDecision,
    ReviewHistory,
    ReviewOutcome,
    ReviewSpec,
    ReviewStatus,
)

__all__ = [
    "AgentTimeoutError",
    "CommitError",
    "ConcurrencyConflictError",
    "ExternalCallFailureError",
    "Feature",
    "FeatureCancelledError",
    "FeatureNotFoundError",
    "FeatureStatus",
    "Finding",
    "FindingCategory",
    "FindingSeverity",
    "Iteration",
    "IterationCapExceededError",
    "NoChangesError",
    "OutOfOrderIterationError",
    "PendingReview",
    "ProviderError",
    "ReviewDecision",
    "ReviewGateError",
    "ReviewHistory",
    "ReviewOutcome",
    "ReviewSpec",
    "ReviewStatus",
    "StoreIOError",
    "UnparsableResponseError",
    "VersionConflictError",
]
