"""Feature REST API endpoints for reviewgate.

Intake, status and review-history queries, and the "implementation
complete" signal that starts a review phase. Every mutation goes through the
ReviewOrchestrator held in ``app.state.orchestrator``.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from reviewgate.orchestrator.state_machine import InvalidTransitionError
from reviewgate.review.cycle import ReviewOrchestrator
from reviewgate.review.errors import (
    ConcurrencyConflictError,
    FeatureNotFoundError,
    IterationCapExceededError,
    ReviewGateError,
    StoreIOError,
)
from reviewgate.review.models import (
    Feature,
    FeatureStatus,
    ReviewHistory,
    ReviewStatus,
    is_valid_status,
)

logger = structlog.get_logger(__name__)


# --- Pydantic Schemas ---


class FeatureCreate(BaseModel):
    """Request schema for registering a feature."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    id: str | None = Field(default=None, min_length=1, max_length=128)
    workdir: str | None = None
    skip_tests: bool = False


class ImplementationComplete(BaseModel):
    """Request schema for the implementation-complete signal."""

    implementation_output: str | None = None


class FeatureResponse(BaseModel):
    """Response schema for feature data."""

    id: str
    title: str
    description: str
    status: str
    workdir: str | None
    skip_tests: bool
    version: int
    review_status: ReviewStatus | None
    current_iteration: int
    max_iterations: int | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_feature(cls, feature: Feature) -> FeatureResponse:
        spec = feature.review
        return cls(
            id=feature.id,
            title=feature.title,
            description=feature.description,
            status=feature.status,
            workdir=feature.workdir,
            skip_tests=feature.skip_tests,
            version=feature.version,
            review_status=spec.status if spec else None,
            current_iteration=spec.current_iteration if spec else 0,
            max_iterations=spec.max_iterations if spec else None,
            created_at=feature.created_at,
            updated_at=feature.updated_at,
        )


class ReviewAccepted(BaseModel):
    feature_id: str
    status: str = "accepted"


# --- Dependency Injection ---


def get_orchestrator(request: Request) -> ReviewOrchestrator:
    """Extract the orchestrator from FastAPI app state.

    Raises:
        HTTPException: 503 if the application has no orchestrator yet.
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Review orchestrator not available")
    return orchestrator


async def _load_or_404(orchestrator: ReviewOrchestrator, feature_id: str) -> Feature:
    try:
        return await orchestrator.store.load_feature(feature_id)
    except FeatureNotFoundError:
        logger.warning("feature_not_found", feature_id=feature_id)
        raise HTTPException(status_code=404, detail="Feature not found")


async def _run_review(
    orchestrator: ReviewOrchestrator,
    feature_id: str,
    implementation_output: str | None,
) -> None:
    try:
        await orchestrator.on_implementation_complete(feature_id, implementation_output)
    except ReviewGateError as e:
        logger.warning(
            "background_review_failed",
            feature_id=feature_id,
            error_type=type(e).__name__,
            error=str(e),
        )
    except Exception:
        logger.exception("background_review_crashed", feature_id=feature_id)


# --- Router ---


def create_features_router() -> APIRouter:
    """Create the features router.

    Routes:
        POST /features/ - Register a feature in the backlog
        GET /features/ - List features, optionally by status
        GET /features/{feature_id} - Feature status
        GET /features/{feature_id}/reviews - Review iteration history
        POST /features/{feature_id}/start - Move a feature into implementation
        POST /features/{feature_id}/implementation-complete - Start a review
    """
    router = APIRouter(prefix="/features", tags=["features"])

    @router.post("/", response_model=FeatureResponse, status_code=201)
    async def create_feature_endpoint(
        data: FeatureCreate,
        orchestrator: ReviewOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> FeatureResponse:
        if data.id is not None:
            try:
                await orchestrator.store.load_feature(data.id)
            except FeatureNotFoundError:
                pass
            else:
                raise HTTPException(status_code=409, detail="Feature already exists")
        try:
            feature = await orchestrator.create_feature(
                title=data.title,
                description=data.description,
                feature_id=data.id,
                workdir=data.workdir,
                skip_tests=data.skip_tests,
            )
        except StoreIOError as e:
            logger.error("feature_create_failed", error=str(e))
            raise HTTPException(status_code=409, detail=str(e))
        return FeatureResponse.from_feature(feature)

    @router.get("/", response_model=list[FeatureResponse])
    async def list_features_endpoint(
        status: str | None = None,
        orchestrator: ReviewOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> list[FeatureResponse]:
        if status is not None and not is_valid_status(status):
            logger.warning("invalid_status_filter", status=status)
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}")
        features = await orchestrator.store.list_features(status)
        logger.info("features_listed", count=len(features), status=status)
        return [FeatureResponse.from_feature(f) for f in features]

    @router.get("/{feature_id}", response_model=FeatureResponse)
    async def get_feature_endpoint(
        feature_id: str,
        orchestrator: ReviewOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> FeatureResponse:
        feature = await _load_or_404(orchestrator, feature_id)
        return FeatureResponse.from_feature(feature)

    @router.get("/{feature_id}/reviews", response_model=ReviewHistory)
    async def get_reviews_endpoint(
        feature_id: str,
        orchestrator: ReviewOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> ReviewHistory:
        try:
            return await orchestrator.get_iteration_history(feature_id)
        except FeatureNotFoundError:
            raise HTTPException(status_code=404, detail="Feature not found")

    @router.post("/{feature_id}/start", response_model=FeatureResponse)
    async def start_feature_endpoint(
        feature_id: str,
        orchestrator: ReviewOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> FeatureResponse:
        try:
            feature = await orchestrator.start_feature(feature_id)
        except FeatureNotFoundError:
            raise HTTPException(status_code=404, detail="Feature not found")
        except (InvalidTransitionError, ConcurrencyConflictError) as e:
            raise HTTPException(status_code=409, detail=str(e))
        return FeatureResponse.from_feature(feature)

    @router.post(
        "/{feature_id}/implementation-complete",
        response_model=ReviewAccepted,
        status_code=202,
    )
    async def implementation_complete_endpoint(
        feature_id: str,
        background_tasks: BackgroundTasks,
        data: ImplementationComplete | None = None,
        orchestrator: ReviewOrchestrator = Depends(get_orchestrator),  # noqa: B008
    ) -> ReviewAccepted:
        feature = await _load_or_404(orchestrator, feature_id)
        if feature.review is not None and feature.review.is_blocked:
            error = IterationCapExceededError(feature_id, feature.review.max_iterations)
            raise HTTPException(status_code=409, detail=str(error))
        if feature.status != FeatureStatus.IN_PROGRESS.value:
            raise HTTPException(
                status_code=409,
                detail=f"Feature is {feature.status}, expected {FeatureStatus.IN_PROGRESS.value}",
            )

        output = data.implementation_output if data is not None else None
        background_tasks.add_task(_run_review, orchestrator, feature_id, output)
        logger.info("review_requested", feature_id=feature_id)
        return ReviewAccepted(feature_id=feature_id)

    return router
