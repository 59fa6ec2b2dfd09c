"""Feature pipeline state machine for the review orchestrator.

Defines which feature status transitions the review core may perform.
``code_review`` is always interposed between ``in_progress`` and the next
forward status; custom ``pipeline_<id>`` statuses are valid forward targets
of an approved review.

Transitions out of ``waiting_approval``, ``verified`` and custom pipeline
steps belong to the wider pipeline and are not driven by this core; they are
listed so that the transition table covers every status.
"""

from __future__ import annotations

import structlog

from reviewgate.review.errors import ReviewGateError
from reviewgate.review.models import PIPELINE_STATUS_PREFIX, FeatureStatus, is_valid_status

logger = structlog.get_logger(__name__)


class InvalidTransitionError(ReviewGateError):
    """Raised when an invalid feature status transition is attempted.

    Attributes:
        current: The current feature status.
        target: The attempted target status.
        feature_id: The ID of the feature that failed to transition.
    """

    def __init__(self, current: str, target: str, feature_id: str | None = None):
        self.current = current
        self.target = target
        self.feature_id = feature_id
        msg = f"Invalid transition from {current} to {target}"
        if feature_id:
            msg += f" for feature {feature_id}"
        super().__init__(msg)


# Statuses an approved review may move a feature to, besides pipeline_* steps.
FORWARD_STATUSES: frozenset[FeatureStatus] = frozenset(
    {FeatureStatus.WAITING_APPROVAL, FeatureStatus.VERIFIED}
)

# Authoritative state machine definition
VALID_TRANSITIONS: dict[FeatureStatus, set[FeatureStatus]] = {
    FeatureStatus.BACKLOG: {FeatureStatus.IN_PROGRESS},
    FeatureStatus.IN_PROGRESS: {FeatureStatus.CODE_REVIEW},
    FeatureStatus.CODE_REVIEW: {FeatureStatus.IN_PROGRESS, *FORWARD_STATUSES},
    FeatureStatus.WAITING_APPROVAL: {FeatureStatus.VERIFIED, FeatureStatus.IN_PROGRESS},
    FeatureStatus.VERIFIED: {FeatureStatus.COMPLETED},
    FeatureStatus.COMPLETED: set(),  # Terminal state - no transitions allowed
}


def is_pipeline_status(status: str) -> bool:
    """Return True for custom ``pipeline_<id>`` statuses."""
    return status.startswith(PIPELINE_STATUS_PREFIX) and is_valid_status(status)


def validate_transition(current: str, target: str) -> bool:
    """Validate if a feature status transition is allowed.

    Args:
        current: Current feature status value.
        target: Target feature status value.

    Returns:
        True if the transition is valid according to VALID_TRANSITIONS, or if
        it moves a feature out of code review into a custom pipeline step.
    """
    if not is_valid_status(current) or not is_valid_status(target):
        return False
    if is_pipeline_status(target):
        return current == FeatureStatus.CODE_REVIEW.value
    if is_pipeline_status(current):
        # Custom steps are advanced by the wider pipeline.
        return False
    return FeatureStatus(target) in VALID_TRANSITIONS.get(FeatureStatus(current), set())


def require_transition(current: str, target: str, feature_id: str | None = None) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is allowed."""
    if not validate_transition(current, target):
        logger.warning(
            "invalid_feature_transition",
            feature_id=feature_id,
            from_status=current,
            to_status=target,
        )
        raise InvalidTransitionError(current, target, feature_id)


def is_forward_status(status: str) -> bool:
    """Return True if ``status`` is a legal destination for an approved review."""
    if is_pipeline_status(status):
        return True
    return status in {s.value for s in FORWARD_STATUSES}
