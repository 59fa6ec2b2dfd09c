"""Integration tests for the durable review store.

Exercises ReviewStore against a real SQLite database:
- feature intake, loading and listing
- compare-and-swap on the version token
- append-only, gap-free, capped iteration history
- atomic recording of an iteration together with its feature transition
- detail document persistence
"""

from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import func, select

from reviewgate.database.models.iteration import IterationRecord
from reviewgate.review.errors import (
    FeatureNotFoundError,
    OutOfOrderIterationError,
    StoreIOError,
    VersionConflictError,
)
from reviewgate.review.models import (
    Feature,
    Finding,
    FindingCategory,
    FindingSeverity,
    Iteration,
    PendingReview,
    ReviewDecision,
    ReviewSpec,
    ReviewStatus,
)
from reviewgate.review.store import ReviewStore


def make_iteration(number: int, decision: ReviewDecision = ReviewDecision.REJECTED) -> Iteration:
    return Iteration(
        iteration_number=number,
        reviewer="test-reviewer",
        decision=decision,
        commit_sha=f"{number:040x}",
        diff=f"+ line {number}",
        findings=(
            Finding(
                category=FindingCategory.TEST,
                severity=FindingSeverity.WARNING,
                title="Edge case untested",
                description="Empty email is not covered.",
                file_path="tests/test_reset.py",
                line_number=3,
            ),
        ),
        summary=f"Review {number}",
        rejection_reason="Needs more tests" if decision is not ReviewDecision.APPROVED else None,
    )


async def with_spec(store: ReviewStore, feature: Feature, max_iterations: int = 3) -> Feature:
    return await store.save_feature(
        feature.model_copy(update={"review": ReviewSpec(max_iterations=max_iterations)}),
        expected_version=feature.version,
    )


async def count_iterations(store: ReviewStore) -> int:
    async with store.session_factory() as session:
        result = await session.execute(select(func.count()).select_from(IterationRecord))
        return result.scalar_one()


class TestFeatureIntake:
    """Test create, load and list."""

    @pytest.mark.asyncio
    async def test_create_feature(self, store: ReviewStore) -> None:
        feature = await store.create_feature(
            title="Login",
            description="Users log in with email and password.",
            workdir="/repo",
            skip_tests=True,
        )

        assert feature.id
        assert feature.status == "backlog"
        assert feature.version == 0
        assert feature.review is None
        assert feature.skip_tests is True
        assert feature.created_at.tzinfo is not None

        loaded = await store.load_feature(feature.id)
        assert loaded == feature

    @pytest.mark.asyncio
    async def test_explicit_id(self, store: ReviewStore) -> None:
        feature = await store.create_feature(title="Login", feature_id="F-1")
        assert feature.id == "F-1"

    @pytest.mark.asyncio
    async def test_duplicate_id(self, store: ReviewStore) -> None:
        await store.create_feature(title="Login", feature_id="F-1")
        with pytest.raises(StoreIOError):
            await store.create_feature(title="Login again", feature_id="F-1")

    @pytest.mark.asyncio
    async def test_load_missing(self, store: ReviewStore) -> None:
        with pytest.raises(FeatureNotFoundError):
            await store.load_feature("nope")

    @pytest.mark.asyncio
    async def test_list_with_status_filter(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        backlog = await store.create_feature(title="Later", feature_id="F-200")

        all_ids = {f.id for f in await store.list_features()}
        in_progress = await store.list_features("in_progress")
        in_backlog = await store.list_features("backlog")

        assert all_ids == {in_progress_feature.id, backlog.id}
        assert [f.id for f in in_progress] == [in_progress_feature.id]
        assert [f.id for f in in_backlog] == [backlog.id]


class TestSaveFeature:
    """Test compare-and-swap writes."""

    @pytest.mark.asyncio
    async def test_version_increments(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        assert in_progress_feature.version == 1
        saved = await store.save_feature(
            in_progress_feature.model_copy(update={"status": "code_review"}),
            expected_version=1,
        )
        assert saved.version == 2
        assert saved.status == "code_review"

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        await store.save_feature(in_progress_feature, expected_version=1)

        with pytest.raises(VersionConflictError) as exc_info:
            await store.save_feature(
                in_progress_feature.model_copy(update={"status": "code_review"}),
                expected_version=1,
            )

        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert (await store.load_feature(in_progress_feature.id)).status == "in_progress"

    @pytest.mark.asyncio
    async def test_missing_feature(self, store: ReviewStore) -> None:
        with pytest.raises(FeatureNotFoundError):
            await store.save_feature(Feature(id="ghost", title="Ghost"), expected_version=0)

    @pytest.mark.asyncio
    async def test_pending_slot_round_trip(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        spec = ReviewSpec(
            status=ReviewStatus.REVIEWING,
            max_iterations=2,
            pending=PendingReview(iteration_number=1, commit_sha="abc", diff="+ x"),
        )
        saved = await store.save_feature(
            in_progress_feature.model_copy(update={"status": "code_review", "review": spec}),
            expected_version=in_progress_feature.version,
        )

        loaded = await store.load_feature(saved.id)
        assert loaded.review.status is ReviewStatus.REVIEWING
        assert loaded.review.max_iterations == 2
        assert loaded.review.pending.iteration_number == 1
        assert loaded.review.pending.commit_sha == "abc"
        assert loaded.review.pending.started_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_save_does_not_touch_history(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        feature = await with_spec(store, in_progress_feature)
        pretend = feature.model_copy(
            update={
                "review": feature.review.with_iteration(
                    make_iteration(1), ReviewStatus.REJECTED
                )
            }
        )
        await store.save_feature(pretend, expected_version=feature.version)

        loaded = await store.load_feature(feature.id)
        assert loaded.review.current_iteration == 0
        assert await count_iterations(store) == 0


class TestAppendIteration:
    """Test the append-only iteration history."""

    @pytest.mark.asyncio
    async def test_append_in_order(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        feature = await with_spec(store, in_progress_feature)

        v1 = await store.append_iteration(feature.id, make_iteration(1), 1)
        v2 = await store.append_iteration(feature.id, make_iteration(2), 2)

        assert v1 == feature.version + 1
        assert v2 == v1 + 1
        loaded = await store.load_feature(feature.id)
        assert loaded.review.current_iteration == 2
        assert [i.iteration_number for i in loaded.review.iterations] == [1, 2]

    @pytest.mark.asyncio
    async def test_iteration_round_trip(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        feature = await with_spec(store, in_progress_feature)
        original = make_iteration(1)
        await store.append_iteration(feature.id, original, 1)

        stored = (await store.load_feature(feature.id)).review.latest
        assert stored == original

    @pytest.mark.asyncio
    async def test_earlier_iterations_unchanged_by_later_appends(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        feature = await with_spec(store, in_progress_feature)
        first = make_iteration(1)
        await store.append_iteration(feature.id, first, 1)
        before = (await store.load_feature(feature.id)).review.iterations[0]

        await store.append_iteration(feature.id, make_iteration(2), 2)
        await store.append_iteration(feature.id, make_iteration(3, ReviewDecision.APPROVED), 3)

        iterations = (await store.load_feature(feature.id)).review.iterations
        assert len(iterations) == 3
        assert iterations[0] == before == first
        assert iterations[0].model_dump() == first.model_dump()
        assert [i.decision for i in iterations] == [
            ReviewDecision.REJECTED,
            ReviewDecision.REJECTED,
            ReviewDecision.APPROVED,
        ]

    @pytest.mark.asyncio
    async def test_duplicate_rejected(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        feature = await with_spec(store, in_progress_feature)
        await store.append_iteration(feature.id, make_iteration(1), 1)

        with pytest.raises(OutOfOrderIterationError) as exc_info:
            await store.append_iteration(feature.id, make_iteration(1), 1)
        assert exc_info.value.current_iteration == 1

    @pytest.mark.asyncio
    async def test_gap_rejected(self, store: ReviewStore, in_progress_feature: Feature) -> None:
        feature = await with_spec(store, in_progress_feature)
        with pytest.raises(OutOfOrderIterationError):
            await store.append_iteration(feature.id, make_iteration(2), 2)
        assert await count_iterations(store) == 0

    @pytest.mark.asyncio
    async def test_expected_number_must_match_iteration(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        feature = await with_spec(store, in_progress_feature)
        with pytest.raises(OutOfOrderIterationError):
            await store.append_iteration(feature.id, make_iteration(2), 1)

    @pytest.mark.asyncio
    async def test_cap_enforced(self, store: ReviewStore, in_progress_feature: Feature) -> None:
        feature = await with_spec(store, in_progress_feature, max_iterations=1)
        await store.append_iteration(feature.id, make_iteration(1), 1)

        with pytest.raises(OutOfOrderIterationError):
            await store.append_iteration(feature.id, make_iteration(2), 2)

        loaded = await store.load_feature(feature.id)
        assert loaded.review.current_iteration == 1

    @pytest.mark.asyncio
    async def test_missing_feature(self, store: ReviewStore) -> None:
        with pytest.raises(FeatureNotFoundError):
            await store.append_iteration("ghost", make_iteration(1), 1)

    @pytest.mark.asyncio
    async def test_append_clears_pending_slot(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        spec = ReviewSpec(pending=PendingReview(iteration_number=1))
        feature = await store.save_feature(
            in_progress_feature.model_copy(update={"review": spec}),
            expected_version=in_progress_feature.version,
        )
        await store.append_iteration(feature.id, make_iteration(1), 1)

        assert (await store.load_feature(feature.id)).review.pending is None


class TestRecordIteration:
    """Test atomic iteration + transition writes."""

    @pytest.mark.asyncio
    async def test_records_iteration_and_transition(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        feature = await with_spec(store, in_progress_feature)
        iteration = make_iteration(1, ReviewDecision.APPROVED)
        final = feature.model_copy(
            update={
                "status": "verified",
                "review": feature.review.with_iteration(iteration, ReviewStatus.APPROVED),
            }
        )

        saved = await store.record_iteration(final, iteration, expected_version=feature.version)

        assert saved.version == feature.version + 1
        assert saved.status == "verified"
        assert saved.review.status is ReviewStatus.APPROVED
        assert saved.review.current_iteration == 1
        assert saved.review.latest == iteration
        assert await store.load_feature(feature.id) == saved

    @pytest.mark.asyncio
    async def test_stale_version_writes_nothing(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        feature = await with_spec(store, in_progress_feature)
        iteration = make_iteration(1)
        final = feature.model_copy(
            update={"review": feature.review.with_iteration(iteration, ReviewStatus.REJECTED)}
        )

        with pytest.raises(VersionConflictError):
            await store.record_iteration(final, iteration, expected_version=feature.version - 1)

        loaded = await store.load_feature(feature.id)
        assert loaded.version == feature.version
        assert loaded.review.current_iteration == 0
        assert await count_iterations(store) == 0

    @pytest.mark.asyncio
    async def test_second_writer_loses(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        feature = await with_spec(store, in_progress_feature)
        iteration = make_iteration(1)
        final = feature.model_copy(
            update={"review": feature.review.with_iteration(iteration, ReviewStatus.REJECTED)}
        )

        await store.record_iteration(final, iteration, expected_version=feature.version)
        with pytest.raises(VersionConflictError):
            await store.record_iteration(final, iteration, expected_version=feature.version)

        assert await count_iterations(store) == 1

    @pytest.mark.asyncio
    async def test_iteration_must_be_latest_in_feature(
        self, store: ReviewStore, in_progress_feature: Feature
    ) -> None:
        feature = await with_spec(store, in_progress_feature)
        with pytest.raises(OutOfOrderIterationError):
            await store.record_iteration(feature, make_iteration(1), feature.version)

    @pytest.mark.asyncio
    async def test_counter_guard(self, store: ReviewStore, in_progress_feature: Feature) -> None:
        feature = await with_spec(store, in_progress_feature)
        new_version = await store.append_iteration(feature.id, make_iteration(1), 1)

        # A snapshot that still believes the history is empty.
        iteration = make_iteration(1)
        stale = feature.model_copy(
            update={"review": feature.review.with_iteration(iteration, ReviewStatus.REJECTED)}
        )
        with pytest.raises(OutOfOrderIterationError):
            await store.record_iteration(stale, iteration, expected_version=new_version)


class TestDetailDocuments:
    """Test detail document persistence."""

    @pytest.mark.asyncio
    async def test_persist_and_load(self, store: ReviewStore, detail_dir: Path) -> None:
        ref = await store.persist_iteration_detail("F-1", 1, "# Review iteration 1\n")

        assert ref == "F-1/iteration-001.md"
        assert (detail_dir / ref).read_text(encoding="utf-8") == "# Review iteration 1\n"
        assert await store.load_iteration_detail(ref) == "# Review iteration 1\n"

    @pytest.mark.asyncio
    async def test_overwrite_is_atomic_replace(self, store: ReviewStore, detail_dir: Path) -> None:
        await store.persist_iteration_detail("F-1", 1, "first")
        ref = await store.persist_iteration_detail("F-1", 1, "second")

        assert await store.load_iteration_detail(ref) == "second"
        assert [p.name for p in (detail_dir / "F-1").iterdir()] == ["iteration-001.md"]

    @pytest.mark.asyncio
    async def test_unsafe_feature_id_is_sanitized(self, store: ReviewStore) -> None:
        ref = await store.persist_iteration_detail("../etc/passwd", 2, "x")
        assert ref == ".._etc_passwd/iteration-002.md"

    @pytest.mark.asyncio
    async def test_missing_document(self, store: ReviewStore) -> None:
        assert await store.load_iteration_detail("F-1/iteration-009.md") is None

    @pytest.mark.asyncio
    async def test_write_failure(self, session_factory, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("occupied")
        store = ReviewStore(session_factory, blocker)

        with pytest.raises(StoreIOError):
            await store.persist_iteration_detail("F-1", 1, "x")
