"""Review cycle orchestration for reviewgate.

Drives one feature through commit, AI review and bounded fix/re-review
iterations. Each phase follows the same shape:

    claim (in_progress -> code_review, CAS on version)
      -> commit and diff
      -> persist the commit on the pending slot
      -> build review context and invoke the reviewer (time-boxed)
      -> parse the decision
      -> persist the detail document
      -> record the iteration and the next status in one transaction
      -> publish events

The claim comes first so that of two concurrent calls for the same feature
exactly one proceeds; the other receives VersionConflictError before it has
committed or reviewed anything. No lock is held across an external call:
the orchestrator works on frozen snapshots and reconciles through the
store's compare-and-swap afterwards.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterator
from typing import Any

import structlog

from reviewgate.agents.invoker import AgentInvoker, AnthropicAgentInvoker
from reviewgate.config import ReviewGateConfig
from reviewgate.context.builder import ContextBuilder
from reviewgate.logging import bind_feature_context
from reviewgate.orchestrator.state_machine import (
    InvalidTransitionError,
    is_forward_status,
    require_transition,
)
from reviewgate.pipeline.git_ops import CommitProvider, CommitResult, GitCommitProvider
from reviewgate.pipeline.resolver import PipelineResolver, StatusResolver
from reviewgate.review.errors import (
    AgentTimeoutError,
    CommitError,
    ExternalCallFailureError,
    FeatureCancelledError,
    IterationCapExceededError,
    ReviewGateError,
    StoreIOError,
)
from reviewgate.review.events import EventNotifier, NullNotifier, ReviewEvent, ReviewEventType
from reviewgate.review.models import (
    Feature,
    FeatureStatus,
    Iteration,
    PendingReview,
    ReviewDecision,
    ReviewHistory,
    ReviewOutcome,
    ReviewSpec,
    ReviewStatus,
)
from reviewgate.review.parser import ReviewVerdict, parse_review_decision
from reviewgate.review.store import ReviewStore

logger = structlog.get_logger(__name__)

INTERRUPTED_REASON = "Review was interrupted before a decision was recorded"

_DECISION_EVENTS: dict[ReviewDecision, ReviewEventType] = {
    ReviewDecision.APPROVED: ReviewEventType.APPROVED,
    ReviewDecision.REJECTED: ReviewEventType.REJECTED,
    ReviewDecision.FAILED: ReviewEventType.FAILED,
}


def _idle_review_status(spec: ReviewSpec) -> ReviewStatus:
    """Spec status of a feature that is waiting for its next attempt."""
    latest = spec.latest
    if latest is not None and latest.decision is ReviewDecision.REJECTED:
        return ReviewStatus.REJECTED
    return ReviewStatus.PENDING


class ReviewOrchestrator:
    """Runs review phases for features and keeps their history consistent.

    Attributes:
        store: Durable source of truth for features and iterations.
        commit_provider: Commit-and-diff collaborator.
        agent: Reviewer and implementer collaborator.
        status_resolver: Maps an approved feature to its forward status.
        notifier: Receives lifecycle events; failures are logged and dropped.
        context_builder: Renders review, fix and detail documents.
        config: Full application configuration.
    """

    def __init__(
        self,
        store: ReviewStore,
        commit_provider: CommitProvider,
        agent: AgentInvoker,
        status_resolver: StatusResolver | None = None,
        notifier: EventNotifier | None = None,
        context_builder: ContextBuilder | None = None,
        config: ReviewGateConfig | None = None,
    ) -> None:
        self.config = config or ReviewGateConfig()
        self.store = store
        self.commit_provider = commit_provider
        self.agent = agent
        self.status_resolver = status_resolver or PipelineResolver(self.config.pipeline)
        self.notifier = notifier or NullNotifier()
        self.context_builder = context_builder or ContextBuilder(
            output_excerpt_chars=self.config.review.output_excerpt_chars
        )

        self._active: dict[str, int] = {}
        self._cancelled: set[str] = set()
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Intake and queries
    # ------------------------------------------------------------------

    async def create_feature(
        self,
        title: str,
        description: str = "",
        feature_id: str | None = None,
        workdir: str | None = None,
        skip_tests: bool = False,
    ) -> Feature:
        """Register a new feature in the backlog."""
        return await self.store.create_feature(
            title=title,
            description=description,
            feature_id=feature_id,
            workdir=workdir,
            skip_tests=skip_tests,
        )

    async def start_feature(self, feature_id: str) -> Feature:
        """Move a feature from the backlog into implementation.

        Raises:
            InvalidTransitionError: If the feature is not in the backlog.
            VersionConflictError: If the feature changed concurrently.
        """
        feature = await self.store.load_feature(feature_id)
        require_transition(feature.status, FeatureStatus.IN_PROGRESS.value, feature_id)
        started = await self.store.save_feature(
            feature.model_copy(update={"status": FeatureStatus.IN_PROGRESS.value}),
            expected_version=feature.version,
        )
        logger.info("feature_started", feature_id=feature_id, version=started.version)
        return started

    async def get_feature_status(self, feature_id: str) -> str:
        """Return the feature's current pipeline status."""
        feature = await self.store.load_feature(feature_id)
        return feature.status

    async def get_iteration_history(self, feature_id: str) -> ReviewHistory:
        """Return a read-only projection of the feature's review state."""
        feature = await self.store.load_feature(feature_id)
        return ReviewHistory.from_feature(feature, self.config.review.max_iterations)

    # ------------------------------------------------------------------
    # Review phase
    # ------------------------------------------------------------------

    async def on_implementation_complete(
        self,
        feature_id: str,
        implementation_output: str | None = None,
    ) -> ReviewOutcome:
        """Commit the implementation, review it and record the outcome.

        Args:
            feature_id: The feature whose implementation step finished.
            implementation_output: Output of the implementation run, kept on
                the feature and quoted in the next fix context.

        Returns:
            The recorded outcome of this review iteration.

        Raises:
            VersionConflictError: Another phase for this feature claimed it
                first; nothing was changed.
            IterationCapExceededError: The feature is stalled at its cap.
            InvalidTransitionError: The feature is not in ``in_progress``, or
                the resolver returned an invalid forward status.
            CommitError: The commit failed; the claim was released and no
                iteration was recorded.
            FeatureCancelledError: The feature was cancelled before the
                reviewer was called; the claim was released.
            StoreIOError: A durable write failed.
        """
        with self._tracking(feature_id):
            return await self._review_phase(
                feature_id,
                implementation_output,
                allow_auto_resume=True,
            )

    async def _review_phase(
        self,
        feature_id: str,
        implementation_output: str | None,
        allow_auto_resume: bool,
    ) -> ReviewOutcome:
        log = logger.bind(feature_id=feature_id)
        self._check_cancelled(feature_id)

        feature = await self.store.load_feature(feature_id)
        spec = feature.review or ReviewSpec(max_iterations=self.config.review.max_iterations)

        if spec.is_blocked:
            log.warning("review_blocked_at_cap", max_iterations=spec.max_iterations)
            raise IterationCapExceededError(feature_id, spec.max_iterations)
        if spec.cap_reached:
            if spec.status is not ReviewStatus.APPROVED:
                await self.on_max_iterations_reached(feature_id)
            raise IterationCapExceededError(feature_id, spec.max_iterations)

        require_transition(feature.status, FeatureStatus.CODE_REVIEW.value, feature_id)
        forward_status = self._resolve_forward_status(feature)
        iteration_number = spec.current_iteration + 1

        # Claim: the only step that can lose a race, and it mutates nothing on loss.
        updates: dict[str, Any] = {
            "status": FeatureStatus.CODE_REVIEW.value,
            "review": spec.model_copy(
                update={
                    "status": ReviewStatus.REVIEWING,
                    "pending": PendingReview(iteration_number=iteration_number),
                }
            ),
        }
        if implementation_output is not None:
            updates["implementation_output"] = implementation_output
        claimed = await self.store.save_feature(
            feature.model_copy(update=updates),
            expected_version=feature.version,
        )
        log = log.bind(iteration=iteration_number)
        log.info("review_claimed", version=claimed.version)
        await self._publish(
            ReviewEventType.STARTED,
            feature_id,
            iteration_number,
            {
                "max_iterations": spec.max_iterations,
                "remaining_attempts": spec.max_iterations - iteration_number,
            },
        )

        try:
            self._check_cancelled(feature_id)
            commit = await self._commit(claimed, iteration_number)
        except (ExternalCallFailureError, FeatureCancelledError) as e:
            log.warning("review_aborted_before_commit", error=str(e))
            await self._release_claim(claimed, reason=str(e))
            raise

        in_review = await self.store.save_feature(
            claimed.model_copy(
                update={
                    "review": claimed.review.model_copy(
                        update={
                            "pending": claimed.review.pending.model_copy(
                                update={"commit_sha": commit.commit_sha, "diff": commit.diff}
                            )
                        }
                    )
                }
            ),
            expected_version=claimed.version,
        )
        await self._publish(
            ReviewEventType.PROGRESS,
            feature_id,
            iteration_number,
            {"stage": "committed", "commit_sha": commit.commit_sha},
        )

        # The commit stays in git; the next attempt for this slot picks it up again.
        try:
            self._check_cancelled(feature_id)
        except FeatureCancelledError as e:
            log.warning("review_aborted_after_commit", commit_sha=commit.commit_sha)
            await self._release_claim(in_review, reason=str(e))
            raise

        verdict, failure = await self._invoke_reviewer(in_review, commit)
        if failure is not None:
            iteration = Iteration(
                iteration_number=iteration_number,
                reviewer=self.agent.name,
                decision=ReviewDecision.FAILED,
                commit_sha=commit.commit_sha,
                diff=commit.diff,
                summary=f"Review failed: {type(failure).__name__}",
                rejection_reason=str(failure),
            )
        else:
            iteration = Iteration(
                iteration_number=iteration_number,
                reviewer=self.agent.name,
                decision=verdict.decision,
                commit_sha=commit.commit_sha,
                diff=commit.diff,
                findings=verdict.findings,
                summary=verdict.summary,
                rejection_reason=verdict.rationale,
            )

        outcome = await self._finalize(in_review, iteration, forward_status)

        if (
            allow_auto_resume
            and self.config.review.auto_resume
            and outcome.decision is not ReviewDecision.APPROVED
            and not outcome.stalled
        ):
            self._schedule_fix_cycle(feature_id)

        return outcome

    async def _commit(self, feature: Feature, iteration_number: int) -> CommitResult:
        if not feature.workdir:
            raise CommitError(f"Feature {feature.id} has no working directory")

        message = self.config.git.commit_message_template.format(
            feature_id=feature.id,
            title=feature.title,
            iteration=iteration_number,
        )
        timeout = self.config.review.commit_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.commit_provider.commit_and_diff(feature.workdir, message),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise AgentTimeoutError("commit", timeout) from None

    async def _invoke_reviewer(
        self,
        feature: Feature,
        commit: CommitResult,
    ) -> tuple[ReviewVerdict | None, Exception | None]:
        """Run the reviewer and parse its answer.

        Returns ``(verdict, None)`` on success and ``(None, error)`` when the
        reviewer timed out, errored or answered unparsably.
        """
        log = logger.bind(feature_id=feature.id)
        context = self.context_builder.build_review_context(
            feature,
            commit.diff,
            commit_sha=commit.commit_sha,
        )
        iteration_number = feature.review.pending.iteration_number
        await self._publish(
            ReviewEventType.PROGRESS,
            feature.id,
            iteration_number,
            {"stage": "reviewing", "reviewer": self.agent.name},
        )

        timeout = self.config.review.review_timeout_seconds
        try:
            raw = await asyncio.wait_for(self.agent.review(context), timeout=timeout)
            return parse_review_decision(raw), None
        except asyncio.TimeoutError:
            log.warning("reviewer_timeout", iteration=iteration_number, timeout_seconds=timeout)
            return None, AgentTimeoutError("review", timeout)
        except ExternalCallFailureError as e:
            log.warning(
                "reviewer_failed",
                iteration=iteration_number,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None, e
        except Exception as e:
            log.exception("reviewer_unexpected_error", iteration=iteration_number)
            return None, e

    async def _finalize(
        self,
        in_review: Feature,
        iteration: Iteration,
        forward_status: str | None = None,
    ) -> ReviewOutcome:
        """Persist the detail document, then the iteration and next status.

        ``forward_status`` is required only for an approved iteration.
        """
        log = logger.bind(feature_id=in_review.id, iteration=iteration.iteration_number)
        spec = in_review.review

        detail_persisted = True
        try:
            document = self.context_builder.render_detail_document(in_review, iteration)
            ref = await self.store.persist_iteration_detail(
                in_review.id, iteration.iteration_number, document
            )
            iteration = iteration.model_copy(update={"detail_ref": ref})
        except StoreIOError as e:
            detail_persisted = False
            log.error("iteration_detail_not_persisted", error=str(e))
            await self._publish(
                ReviewEventType.PROGRESS,
                in_review.id,
                iteration.iteration_number,
                {"stage": "detail_persist_failed", "error": str(e)},
            )

        stalled = False
        if iteration.decision is ReviewDecision.APPROVED:
            if forward_status is None:
                raise ValueError("An approved iteration needs a forward status")
            next_status = forward_status
            review_status = ReviewStatus.APPROVED
        else:
            next_status = FeatureStatus.IN_PROGRESS.value
            if iteration.iteration_number >= spec.max_iterations:
                stalled = True
                review_status = ReviewStatus.FAILED
            elif iteration.decision is ReviewDecision.REJECTED:
                review_status = ReviewStatus.REJECTED
            else:
                review_status = ReviewStatus.PENDING
        require_transition(in_review.status, next_status, in_review.id)

        final = in_review.model_copy(
            update={
                "status": next_status,
                "review": spec.with_iteration(iteration, review_status),
            }
        )
        saved = await self.store.record_iteration(
            final, iteration, expected_version=in_review.version
        )

        log.info(
            "review_iteration_completed",
            decision=iteration.decision.value,
            status=saved.status,
            review_status=review_status.value,
            findings=len(iteration.findings),
            errors=iteration.error_count,
        )

        await self._publish(
            ReviewEventType.COMPLETED,
            saved.id,
            iteration.iteration_number,
            {
                "decision": iteration.decision.value,
                "feature_status": saved.status,
                "review_status": review_status.value,
                "commit_sha": iteration.commit_sha,
                "findings": len(iteration.findings),
                "detail_ref": iteration.detail_ref,
            },
        )
        await self._publish(
            _DECISION_EVENTS[iteration.decision],
            saved.id,
            iteration.iteration_number,
            {
                "summary": iteration.summary,
                "rationale": iteration.rejection_reason,
                "findings": [f.model_dump(mode="json") for f in iteration.findings],
                "feature_status": saved.status,
            },
        )
        if stalled:
            await self._publish_max_iterations(saved)

        return ReviewOutcome(
            feature_id=saved.id,
            iteration_number=iteration.iteration_number,
            decision=iteration.decision,
            feature_status=saved.status,
            review_status=review_status,
            detail_persisted=detail_persisted,
        )

    def _resolve_forward_status(self, feature: Feature) -> str:
        target = self.status_resolver(feature)
        if not is_forward_status(target):
            logger.error(
                "invalid_forward_status",
                feature_id=feature.id,
                resolved_status=target,
            )
            raise InvalidTransitionError(FeatureStatus.CODE_REVIEW.value, target, feature.id)
        return target

    async def _release_claim(self, claimed: Feature, reason: str) -> None:
        """Return a claimed feature to ``in_progress`` without an iteration."""
        spec = claimed.review
        released = claimed.model_copy(
            update={
                "status": FeatureStatus.IN_PROGRESS.value,
                "review": spec.model_copy(
                    update={"status": _idle_review_status(spec), "pending": None}
                ),
            }
        )
        pending_number = spec.pending.iteration_number if spec.pending else 0
        try:
            await self.store.save_feature(released, expected_version=claimed.version)
        except ReviewGateError as e:
            logger.error(
                "review_claim_release_failed",
                feature_id=claimed.id,
                error=str(e),
            )
            raise
        logger.info("review_claim_released", feature_id=claimed.id, reason=reason)
        await self._publish(
            ReviewEventType.PROGRESS,
            claimed.id,
            pending_number,
            {"stage": "aborted", "reason": reason},
        )

    # ------------------------------------------------------------------
    # Cap handling
    # ------------------------------------------------------------------

    async def on_max_iterations_reached(self, feature_id: str) -> Feature:
        """Stop automation for a feature that used up its review attempts.

        Marks the review spec ``failed``, returns the feature to
        ``in_progress`` without starting another review, and publishes
        ``max-iterations-reached``. Calling it again on a stalled feature is
        a no-op.

        Raises:
            ValueError: If the feature has not exhausted its attempts, or its
                last review approved it.
        """
        feature = await self.store.load_feature(feature_id)
        spec = feature.review
        if spec is None or not spec.cap_reached or spec.status is ReviewStatus.APPROVED:
            raise ValueError(f"Feature {feature_id} has not exhausted its review attempts")

        if spec.status is ReviewStatus.FAILED and feature.status == FeatureStatus.IN_PROGRESS.value:
            logger.debug("feature_already_stalled", feature_id=feature_id)
            return feature

        if feature.status != FeatureStatus.IN_PROGRESS.value:
            require_transition(feature.status, FeatureStatus.IN_PROGRESS.value, feature_id)

        stalled = await self.store.save_feature(
            feature.model_copy(
                update={
                    "status": FeatureStatus.IN_PROGRESS.value,
                    "review": spec.model_copy(
                        update={"status": ReviewStatus.FAILED, "pending": None}
                    ),
                }
            ),
            expected_version=feature.version,
        )
        logger.warning(
            "feature_stalled_at_cap",
            feature_id=feature_id,
            max_iterations=spec.max_iterations,
        )
        await self._publish_max_iterations(stalled)
        return stalled

    async def _publish_max_iterations(self, feature: Feature) -> None:
        spec = feature.review
        latest = spec.latest
        await self._publish(
            ReviewEventType.MAX_ITERATIONS_REACHED,
            feature.id,
            spec.current_iteration,
            {
                "manual_intervention_required": True,
                "max_iterations": spec.max_iterations,
                "feature_status": feature.status,
                "last_decision": latest.decision.value if latest else None,
                "last_rationale": latest.rejection_reason if latest else None,
                "message": (
                    f"Feature {feature.id} failed review {spec.max_iterations} times; "
                    "automation has stopped until the review is reset externally"
                ),
            },
        )

    # ------------------------------------------------------------------
    # Fix cycles
    # ------------------------------------------------------------------

    async def run_fix_cycle(self, feature_id: str) -> ReviewOutcome:
        """Let the implementer address the latest findings, then re-review.

        Raises:
            IterationCapExceededError: The feature is stalled at its cap.
            InvalidTransitionError: The feature is not waiting for a fix.
            AgentTimeoutError: The implementer exceeded its time box.
            ProviderError: The implementer failed.
        """
        with self._tracking(feature_id):
            return await self._fix_cycle(feature_id, allow_auto_resume=True)

    async def _fix_cycle(self, feature_id: str, allow_auto_resume: bool) -> ReviewOutcome:
        log = logger.bind(feature_id=feature_id)
        self._check_cancelled(feature_id)

        feature = await self.store.load_feature(feature_id)
        spec = feature.review
        if spec is not None and spec.is_blocked:
            raise IterationCapExceededError(feature_id, spec.max_iterations)
        if (
            spec is None
            or spec.latest is None
            or spec.status not in (ReviewStatus.REJECTED, ReviewStatus.PENDING)
            or feature.status != FeatureStatus.IN_PROGRESS.value
        ):
            raise InvalidTransitionError(feature.status, FeatureStatus.CODE_REVIEW.value, feature_id)

        context = self.context_builder.build_fix_context(feature)
        next_iteration = spec.current_iteration + 1
        await self._publish(
            ReviewEventType.PROGRESS,
            feature_id,
            next_iteration,
            {"stage": "implementing", "previous_decision": spec.latest.decision.value},
        )

        timeout = self.config.review.implement_timeout_seconds
        try:
            output = await asyncio.wait_for(self.agent.implement(context), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("implementer_timeout", timeout_seconds=timeout)
            await self._publish(
                ReviewEventType.PROGRESS,
                feature_id,
                next_iteration,
                {"stage": "implement_failed", "error": "timeout"},
            )
            raise AgentTimeoutError("implement", timeout) from None
        except ExternalCallFailureError as e:
            log.warning("implementer_failed", error=str(e))
            await self._publish(
                ReviewEventType.PROGRESS,
                feature_id,
                next_iteration,
                {"stage": "implement_failed", "error": str(e)},
            )
            raise

        log.info("fix_implemented", output_chars=len(output))
        return await self._review_phase(feature_id, output, allow_auto_resume)

    async def run_review_loop(self, feature_id: str) -> list[ReviewOutcome]:
        """Review, then fix and re-review until approved or stalled.

        Returns:
            The outcome of every iteration run by this call, in order.
        """
        outcomes: list[ReviewOutcome] = []
        with self._tracking(feature_id):
            outcome = await self._review_phase(feature_id, None, allow_auto_resume=False)
            outcomes.append(outcome)
            while outcome.decision is not ReviewDecision.APPROVED and not outcome.stalled:
                outcome = await self._fix_cycle(feature_id, allow_auto_resume=False)
                outcomes.append(outcome)
        logger.info(
            "review_loop_finished",
            feature_id=feature_id,
            iterations=len(outcomes),
            final_decision=outcomes[-1].decision.value,
            stalled=outcomes[-1].stalled,
        )
        return outcomes

    def _schedule_fix_cycle(self, feature_id: str) -> None:
        self._enter(feature_id)
        task = asyncio.create_task(self._background_fix_cycle(feature_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        logger.info("fix_cycle_scheduled", feature_id=feature_id)

    async def _background_fix_cycle(self, feature_id: str) -> None:
        bind_feature_context(feature_id)
        try:
            await self._fix_cycle(feature_id, allow_auto_resume=True)
        except FeatureCancelledError:
            logger.info("background_fix_cycle_cancelled", feature_id=feature_id)
        except ReviewGateError as e:
            logger.warning(
                "background_fix_cycle_failed",
                feature_id=feature_id,
                error_type=type(e).__name__,
                error=str(e),
            )
        except Exception:
            logger.exception("background_fix_cycle_crashed", feature_id=feature_id)
        finally:
            self._exit(feature_id)

    async def wait_idle(self) -> None:
        """Wait until all scheduled background fix cycles have finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def recover_interrupted_review(self, feature_id: str) -> ReviewOutcome | None:
        """Resolve a review left in flight by a crashed process.

        A claim without a commit is released. A claim whose commit was
        already made is recorded as a ``failed`` iteration, consuming the
        attempt, and the feature moves on as after any failed review.

        Returns:
            The recorded outcome, or None if nothing had to be recorded.
        """
        with self._tracking(feature_id):
            feature = await self.store.load_feature(feature_id)
            spec = feature.review
            if (
                feature.status != FeatureStatus.CODE_REVIEW.value
                or spec is None
                or spec.pending is None
            ):
                logger.info("no_interrupted_review", feature_id=feature_id, status=feature.status)
                return None

            pending = spec.pending
            if pending.commit_sha is None:
                await self._release_claim(feature, reason=INTERRUPTED_REASON)
                return None

            iteration = Iteration(
                iteration_number=pending.iteration_number,
                reviewer=self.agent.name,
                decision=ReviewDecision.FAILED,
                commit_sha=pending.commit_sha,
                diff=pending.diff or "",
                summary="Review failed: interrupted",
                rejection_reason=INTERRUPTED_REASON,
            )
            logger.warning(
                "interrupted_review_recovered",
                feature_id=feature_id,
                iteration=pending.iteration_number,
                started_at=pending.started_at.isoformat(),
            )
            return await self._finalize(feature, iteration)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, feature_id: str) -> bool:
        """Request cancellation of in-flight work for a feature.

        The request takes effect at the next phase boundary; an external
        call already under way is not interrupted.

        Returns:
            True if work for the feature was in flight.
        """
        if feature_id not in self._active:
            return False
        self._cancelled.add(feature_id)
        logger.info("feature_cancellation_requested", feature_id=feature_id)
        return True

    def _check_cancelled(self, feature_id: str) -> None:
        if feature_id in self._cancelled:
            raise FeatureCancelledError(feature_id)

    def _enter(self, feature_id: str) -> None:
        self._active[feature_id] = self._active.get(feature_id, 0) + 1

    def _exit(self, feature_id: str) -> None:
        remaining = self._active.get(feature_id, 1) - 1
        if remaining > 0:
            self._active[feature_id] = remaining
            return
        self._active.pop(feature_id, None)
        self._cancelled.discard(feature_id)

    @contextlib.contextmanager
    def _tracking(self, feature_id: str) -> Iterator[None]:
        self._enter(feature_id)
        try:
            yield
        finally:
            self._exit(feature_id)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _publish(
        self,
        event_type: ReviewEventType,
        feature_id: str,
        iteration: int,
        payload: dict[str, Any] | None = None,
    ) -> None:
        event = ReviewEvent(
            event_type=event_type,
            feature_id=feature_id,
            iteration=iteration,
            payload=payload or {},
        )
        try:
            await self.notifier.publish(event)
        except Exception as e:
            logger.warning(
                "notifier_publish_failed",
                feature_id=feature_id,
                event_type=event_type.value,
                error=str(e),
            )


def build_orchestrator(
    config: ReviewGateConfig,
    session_factory: Any,
    notifier: EventNotifier | None = None,
) -> ReviewOrchestrator:
    """Wire a ReviewOrchestrator with the production collaborators.

    Args:
        config: Application configuration.
        session_factory: async_sessionmaker bound to the application database.
        notifier: Event notifier; events are discarded when omitted.

    Returns:
        Orchestrator using GitPython for commits and Anthropic for agents.
    """
    store = ReviewStore(session_factory, config.review.detail_dir)
    return ReviewOrchestrator(
        store=store,
        commit_provider=GitCommitProvider(config.git),
        agent=AnthropicAgentInvoker(config.agent),
        status_resolver=PipelineResolver(config.pipeline),
        notifier=notifier,
        config=config,
    )
