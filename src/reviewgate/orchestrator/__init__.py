"""Feature pipeline state machine used by the review orchestrator."""

from reviewgate.orchestrator.state_machine import (
    FORWARD_STATUSES,
    VALID_TRANSITIONS,
    InvalidTransitionError,
    is_forward_status,
    is_pipeline_status,
    require_transition,
    validate_transition,
)

__all__ = [
    "FORWARD_STATUSES",
    "VALID_TRANSITIONS",
    "InvalidTransitionError",
    "is_forward_status",
    "is_pipeline_status",
    "require_transition",
    "validate_transition",
]
