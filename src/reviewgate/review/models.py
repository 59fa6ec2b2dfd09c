"""Domain models for the review loop.

Features own an optional ReviewSpec, a ReviewSpec owns its ordered Iteration
history and each Iteration owns its Findings. All records are frozen: a
feature is changed by building a new instance with ``model_copy`` and writing
it back through the store's compare-and-swap, and the iteration history only
grows through ``ReviewSpec.with_iteration``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from reviewgate.config import DEFAULT_MAX_ITERATIONS

PIPELINE_STATUS_PREFIX = "pipeline_"


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FeatureStatus(str, Enum):
    """Pipeline statuses observed by the review core.

    Custom pipeline steps use ``pipeline_<step id>`` strings in addition to
    these values.
    """

    BACKLOG = "backlog"
    IN_PROGRESS = "in_progress"
    CODE_REVIEW = "code_review"
    WAITING_APPROVAL = "waiting_approval"
    VERIFIED = "verified"
    COMPLETED = "completed"


class ReviewStatus(str, Enum):
    """Overall status of a feature's review spec.

    States:
        PENDING: Waiting for the next implementation attempt.
        REVIEWING: A review is in flight.
        APPROVED: The last review approved the work.
        REJECTED: The last review rejected the work, attempts remain.
        FAILED: The iteration cap was reached; automation has stopped.
    """

    PENDING = "pending"
    REVIEWING = "reviewing"
    APPROVED = "approved"
    REJECTED = "rejected"
    FAILED = "failed"


class ReviewDecision(str, Enum):
    """Verdict recorded for one iteration."""

    APPROVED = "approved"
    REJECTED = "rejected"
    FAILED = "failed"


class FindingCategory(str, Enum):
    COMPLIANCE = "compliance"
    CODE = "code"
    TEST = "test"
    ARCHITECTURE = "architecture"
    PERFORMANCE = "performance"


class FindingSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# Errors first, then warnings, then informational notes.
SEVERITY_ORDER: dict[FindingSeverity, int] = {
    FindingSeverity.ERROR: 0,
    FindingSeverity.WARNING: 1,
    FindingSeverity.INFO: 2,
}


def is_valid_status(status: str) -> bool:
    """Return True for core statuses and ``pipeline_<id>`` step statuses."""
    if status.startswith(PIPELINE_STATUS_PREFIX):
        return len(status) > len(PIPELINE_STATUS_PREFIX)
    return status in {s.value for s in FeatureStatus}


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class Finding(BaseModel):
    """A single reviewer observation.

    Attributes:
        category: What kind of concern the finding raises.
        severity: How serious the finding is.
        title: Short summary.
        description: Full explanation.
        suggestion: Suggested fix, if the reviewer gave one.
        file_path: File the finding refers to, if any.
        line_number: Line in ``file_path``, if any.
    """

    model_config = ConfigDict(frozen=True)

    category: FindingCategory
    severity: FindingSeverity
    title: str
    description: str
    suggestion: str | None = None
    file_path: str | None = None
    line_number: int | None = Field(default=None, ge=1)

    @property
    def location(self) -> str | None:
        """``path:line`` style location, or None without a file path."""
        if self.file_path is None:
            return None
        if self.line_number is None:
            return self.file_path
        return f"{self.file_path}:{self.line_number}"


class Iteration(BaseModel):
    """One completed review pass.

    Attributes:
        iteration_number: 1-based position in the feature's history.
        completed_at: When the review finished.
        reviewer: Identity of the reviewing model/provider.
        decision: The verdict for this pass.
        commit_sha: The commit that was reviewed.
        diff: Full diff text that was reviewed.
        findings: Ordered reviewer findings.
        summary: Short summary of the review.
        rejection_reason: Rationale when the decision is not approved.
        detail_ref: Reference to the persisted long-form detail document.
    """

    model_config = ConfigDict(frozen=True)

    iteration_number: int = Field(..., ge=1)
    completed_at: datetime = Field(default_factory=utcnow)
    reviewer: str
    decision: ReviewDecision
    commit_sha: str
    diff: str
    findings: tuple[Finding, ...] = ()
    summary: str = ""
    rejection_reason: str | None = None
    detail_ref: str | None = None

    @property
    def error_count(self) -> int:
        return sum(1 for f in self.findings if f.severity is FindingSeverity.ERROR)


class PendingReview(BaseModel):
    """The reserved slot of a review that has started but not finished.

    Attributes:
        iteration_number: The number the finished iteration will receive.
        started_at: When the slot was claimed.
        commit_sha: Commit under review, once the commit call returned.
        diff: Diff under review, once the commit call returned.
    """

    model_config = ConfigDict(frozen=True)

    iteration_number: int = Field(..., ge=1)
    started_at: datetime = Field(default_factory=utcnow)
    commit_sha: str | None = None
    diff: str | None = None


class ReviewSpec(BaseModel):
    """Review state owned by exactly one feature.

    Invariants (validated on construction):
        - ``len(iterations) == current_iteration``
        - ``iterations[i].iteration_number == i + 1``
        - ``current_iteration <= max_iterations``
    """

    model_config = ConfigDict(frozen=True)

    status: ReviewStatus = ReviewStatus.PENDING
    current_iteration: int = Field(default=0, ge=0)
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    iterations: tuple[Iteration, ...] = ()
    pending: PendingReview | None = None

    @model_validator(mode="after")
    def _check_history(self) -> ReviewSpec:
        if len(self.iterations) != self.current_iteration:
            raise ValueError(
                f"current_iteration {self.current_iteration} does not match "
                f"{len(self.iterations)} recorded iterations"
            )
        for index, iteration in enumerate(self.iterations):
            if iteration.iteration_number != index + 1:
                raise ValueError(
                    f"Iteration at position {index} is numbered "
                    f"{iteration.iteration_number}"
                )
        if self.current_iteration > self.max_iterations:
            raise ValueError(
                f"current_iteration {self.current_iteration} exceeds "
                f"max_iterations {self.max_iterations}"
            )
        if self.pending is not None and (
            self.pending.iteration_number != self.current_iteration + 1
        ):
            raise ValueError("Pending review slot must be the next iteration")
        return self

    @property
    def latest(self) -> Iteration | None:
        return self.iterations[-1] if self.iterations else None

    @property
    def cap_reached(self) -> bool:
        return self.current_iteration >= self.max_iterations

    @property
    def remaining_attempts(self) -> int:
        return self.max_iterations - self.current_iteration

    @property
    def is_blocked(self) -> bool:
        """True when automation must not start another review."""
        return self.status is ReviewStatus.FAILED

    def with_iteration(self, iteration: Iteration, status: ReviewStatus) -> ReviewSpec:
        """Return a new spec with ``iteration`` appended and the slot cleared.

        Raises:
            ValueError: If the iteration is not the next number or the cap
                would be exceeded.
        """
        expected = self.current_iteration + 1
        if iteration.iteration_number != expected:
            raise ValueError(
                f"Expected iteration {expected}, got {iteration.iteration_number}"
            )
        return ReviewSpec(
            status=status,
            current_iteration=expected,
            max_iterations=self.max_iterations,
            iterations=(*self.iterations, iteration),
            pending=None,
        )


class Feature(BaseModel):
    """A unit of work moving through the pipeline.

    Attributes:
        id: Stable unique identifier.
        title: Short title.
        description: Feature spec text handed to agents.
        status: Core status value or ``pipeline_<id>``.
        workdir: Repository path the commit provider operates in.
        skip_tests: Pipeline policy input; see PipelineResolver.
        implementation_output: Output of the latest implementation attempt.
        review: Review state, absent until the first review.
        version: Concurrency token, incremented on every write.
        created_at: Intake time.
        updated_at: Time of the last write.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str
    description: str = ""
    status: str = FeatureStatus.BACKLOG.value
    workdir: str | None = None
    skip_tests: bool = False
    implementation_output: str | None = None
    review: ReviewSpec | None = None
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: object) -> str:
        """Accept FeatureStatus members and normalize them to their value."""
        if isinstance(v, FeatureStatus):
            return v.value
        if not isinstance(v, str) or not is_valid_status(v):
            raise ValueError(f"Invalid feature status: {v!r}")
        return v

    @property
    def iterations(self) -> tuple[Iteration, ...]:
        return self.review.iterations if self.review is not None else ()


class ReviewHistory(BaseModel):
    """Read-only projection of a feature's review state for display."""

    model_config = ConfigDict(frozen=True)

    feature_id: str
    feature_status: str
    review_status: ReviewStatus | None
    current_iteration: int
    max_iterations: int
    blocked: bool
    iterations: tuple[Iteration, ...]

    @classmethod
    def from_feature(cls, feature: Feature, max_iterations: int) -> ReviewHistory:
        spec = feature.review
        return cls(
            feature_id=feature.id,
            feature_status=feature.status,
            review_status=spec.status if spec else None,
            current_iteration=spec.current_iteration if spec else 0,
            max_iterations=spec.max_iterations if spec else max_iterations,
            blocked=spec.is_blocked if spec else False,
            iterations=feature.iterations,
        )


class ReviewOutcome(BaseModel):
    """Result of one ``on_implementation_complete`` phase.

    Attributes:
        feature_id: The reviewed feature.
        iteration_number: The iteration that was recorded.
        decision: The recorded decision.
        feature_status: Status after the transition.
        review_status: Review spec status after the transition.
        detail_persisted: False if the detail document could not be written.
    """

    model_config = ConfigDict(frozen=True)

    feature_id: str
    iteration_number: int
    decision: ReviewDecision
    feature_status: str
    review_status: ReviewStatus
    detail_persisted: bool = True

    @property
    def stalled(self) -> bool:
        return self.review_status is ReviewStatus.FAILED
