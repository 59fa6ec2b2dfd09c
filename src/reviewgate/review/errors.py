"""Error taxonomy for the review loop.

Every failure the orchestrator can observe maps onto one of these classes:

    ReviewGateError
    ├── ConcurrencyConflictError      reload and abort this attempt
    │   ├── VersionConflictError
    │   └── OutOfOrderIterationError
    ├── ExternalCallFailureError      agent or commit failure
    │   ├── CommitError
    │   │   └── NoChangesError
    │   ├── AgentTimeoutError
    │   ├── ProviderError
    │   └── UnparsableResponseError
    ├── IterationCapExceededError     terminal for automation
    ├── StoreIOError                  infrastructure fault, safe to retry
    ├── FeatureNotFoundError
    └── FeatureCancelledError
"""

from __future__ import annotations


class ReviewGateError(Exception):
    """Base class for all review loop errors."""


class ConcurrencyConflictError(ReviewGateError):
    """Another writer changed the feature since it was loaded."""


class VersionConflictError(ConcurrencyConflictError):
    """Raised when a compare-and-swap on the feature version fails.

    Attributes:
        feature_id: The feature being written.
        expected_version: The version the writer loaded.
        actual_version: The version found in the store, if known.
    """

    def __init__(
        self,
        feature_id: str,
        expected_version: int,
        actual_version: int | None = None,
    ) -> None:
        self.feature_id = feature_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = f"Version conflict for feature {feature_id}: expected {expected_version}"
        if actual_version is not None:
            msg += f", found {actual_version}"
        super().__init__(msg)


class OutOfOrderIterationError(ConcurrencyConflictError):
    """Raised when an iteration append does not extend the history by one.

    Attributes:
        feature_id: The feature being appended to.
        expected_iteration_number: The number the caller tried to append.
        current_iteration: The stored iteration count, if known.
    """

    def __init__(
        self,
        feature_id: str,
        expected_iteration_number: int,
        current_iteration: int | None = None,
    ) -> None:
        self.feature_id = feature_id
        self.expected_iteration_number = expected_iteration_number
        self.current_iteration = current_iteration
        msg = (
            f"Iteration {expected_iteration_number} cannot be appended to "
            f"feature {feature_id}"
        )
        if current_iteration is not None:
            msg += f" (current iteration is {current_iteration})"
        super().__init__(msg)


class ExternalCallFailureError(ReviewGateError):
    """An external collaborator (agent, commit provider) failed."""


class CommitError(ExternalCallFailureError):
    """The commit-and-diff call failed."""


class NoChangesError(CommitError):
    """The working tree had nothing to commit."""


class AgentTimeoutError(ExternalCallFailureError):
    """An agent invocation exceeded its time box.

    Attributes:
        operation: Which call timed out ("review", "implement", "commit").
        timeout_seconds: The time box that expired.
    """

    def __init__(self, operation: str, timeout_seconds: float | None = None) -> None:
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        msg = f"{operation} call timed out"
        if timeout_seconds is not None:
            msg += f" after {timeout_seconds:g}s"
        super().__init__(msg)


class ProviderError(ExternalCallFailureError):
    """The agent provider returned an error."""


class UnparsableResponseError(ExternalCallFailureError):
    """The reviewer response could not be parsed into a decision.

    Attributes:
        raw_excerpt: Leading portion of the raw response for diagnostics.
    """

    def __init__(self, message: str, raw_response: str = "") -> None:
        self.raw_excerpt = raw_response[:500]
        super().__init__(message)


class IterationCapExceededError(ReviewGateError):
    """Automation refused to start another review for a capped feature.

    Attributes:
        feature_id: The stalled feature.
        max_iterations: The cap that was reached.
    """

    def __init__(self, feature_id: str, max_iterations: int) -> None:
        self.feature_id = feature_id
        self.max_iterations = max_iterations
        super().__init__(
            f"Feature {feature_id} reached the review cap of {max_iterations} "
            "iterations; manual intervention required"
        )


class StoreIOError(ReviewGateError):
    """The store failed to read or write durable state."""


class FeatureNotFoundError(ReviewGateError):
    """Raised when a feature id does not exist in the store."""

    def __init__(self, feature_id: str) -> None:
        self.feature_id = feature_id
        super().__init__(f"Feature {feature_id} not found")


class FeatureCancelledError(ReviewGateError):
    """Raised at a phase boundary when the feature was cancelled."""

    def __init__(self, feature_id: str) -> None:
        self.feature_id = feature_id
        super().__init__(f"Processing of feature {feature_id} was cancelled")
