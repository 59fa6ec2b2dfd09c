"""Integration tests for the feature REST API.

The app is created around an orchestrator backed by the SQLite store and
scripted commit/agent doubles. ASGITransport runs background tasks before
the response is returned, so a review requested through
``implementation-complete`` has finished when the request returns.
"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from reviewgate.config import ReviewGateConfig
from reviewgate.review.cycle import ReviewOrchestrator
from reviewgate.review.errors import NoChangesError
from reviewgate.review.models import ReviewSpec, ReviewStatus
from reviewgate.review.store import ReviewStore
from reviewgate.web.app import create_app


@pytest.fixture
def app(config: ReviewGateConfig, orchestrator: ReviewOrchestrator) -> FastAPI:
    return create_app(config, orchestrator=orchestrator)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def create_started(client: AsyncClient, feature_id: str = "F-1") -> dict:
    response = await client.post(
        "/features/",
        json={"title": "Password reset", "id": feature_id, "workdir": "/repo"},
    )
    assert response.status_code == 201
    response = await client.post(f"/features/{feature_id}/start")
    assert response.status_code == 200
    return response.json()


class TestFeatureIntake:
    """Test POST/GET /features."""

    @pytest.mark.asyncio
    async def test_create_feature(self, client: AsyncClient) -> None:
        response = await client.post(
            "/features/",
            json={
                "title": "Password reset",
                "description": "Users reset passwords by email.",
                "workdir": "/repo",
                "skip_tests": True,
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["id"]
        assert data["title"] == "Password reset"
        assert data["status"] == "backlog"
        assert data["skip_tests"] is True
        assert data["version"] == 0
        assert data["review_status"] is None
        assert data["current_iteration"] == 0
        assert data["max_iterations"] is None

    @pytest.mark.asyncio
    async def test_create_requires_title(self, client: AsyncClient) -> None:
        response = await client.post("/features/", json={"title": ""})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_id_conflicts(self, client: AsyncClient) -> None:
        await client.post("/features/", json={"title": "A", "id": "F-1"})
        response = await client.post("/features/", json={"title": "B", "id": "F-1"})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_get_feature(self, client: AsyncClient) -> None:
        await client.post("/features/", json={"title": "A", "id": "F-1"})

        response = await client.get("/features/F-1")

        assert response.status_code == 200
        assert response.json()["title"] == "A"

    @pytest.mark.asyncio
    async def test_get_missing_feature(self, client: AsyncClient) -> None:
        response = await client.get("/features/missing")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_and_filter(self, client: AsyncClient) -> None:
        await client.post("/features/", json={"title": "A", "id": "F-1"})
        await create_started(client, "F-2")

        everything = await client.get("/features/")
        in_progress = await client.get("/features/", params={"status": "in_progress"})

        assert {f["id"] for f in everything.json()} == {"F-1", "F-2"}
        assert [f["id"] for f in in_progress.json()] == ["F-2"]

    @pytest.mark.asyncio
    async def test_list_invalid_status(self, client: AsyncClient) -> None:
        response = await client.get("/features/", params={"status": "nonsense"})
        assert response.status_code == 400


class TestStartFeature:
    """Test POST /features/{id}/start."""

    @pytest.mark.asyncio
    async def test_start_moves_to_in_progress(self, client: AsyncClient) -> None:
        data = await create_started(client)
        assert data["status"] == "in_progress"
        assert data["version"] == 1

    @pytest.mark.asyncio
    async def test_start_twice_conflicts(self, client: AsyncClient) -> None:
        await create_started(client)
        response = await client.post("/features/F-1/start")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_start_missing(self, client: AsyncClient) -> None:
        response = await client.post("/features/missing/start")
        assert response.status_code == 404


class TestImplementationComplete:
    """Test the review trigger and the resulting history."""

    @pytest.mark.asyncio
    async def test_approval_advances_feature(self, client: AsyncClient, agent) -> None:
        await create_started(client)

        response = await client.post(
            "/features/F-1/implementation-complete",
            json={"implementation_output": "Added reset flow."},
        )

        assert response.status_code == 202
        assert response.json() == {"feature_id": "F-1", "status": "accepted"}
        assert len(agent.review_contexts) == 1

        feature = (await client.get("/features/F-1")).json()
        assert feature["status"] == "verified"
        assert feature["review_status"] == "approved"
        assert feature["current_iteration"] == 1

    @pytest.mark.asyncio
    async def test_output_is_kept_on_feature(
        self, client: AsyncClient, store: ReviewStore
    ) -> None:
        await create_started(client)
        await client.post(
            "/features/F-1/implementation-complete",
            json={"implementation_output": "Added reset flow."},
        )

        feature = await store.load_feature("F-1")
        assert feature.implementation_output == "Added reset flow."

    @pytest.mark.asyncio
    async def test_body_is_optional(self, client: AsyncClient) -> None:
        await create_started(client)
        response = await client.post("/features/F-1/implementation-complete")
        assert response.status_code == 202

    @pytest.mark.asyncio
    async def test_rejection_history(
        self, client: AsyncClient, agent, reject_response: str
    ) -> None:
        agent.script_reviews(reject_response)
        await create_started(client)

        await client.post("/features/F-1/implementation-complete")
        response = await client.get("/features/F-1/reviews")

        assert response.status_code == 200
        history = response.json()
        assert history["feature_status"] == "in_progress"
        assert history["review_status"] == "rejected"
        assert history["current_iteration"] == 1
        assert history["max_iterations"] == 3
        assert history["blocked"] is False
        [iteration] = history["iterations"]
        assert iteration["iteration_number"] == 1
        assert iteration["decision"] == "rejected"
        assert iteration["reviewer"] == "scripted-reviewer"
        assert iteration["rejection_reason"] == "Email input is not validated"
        assert iteration["findings"][0]["title"] == "No email validation"
        assert iteration["detail_ref"] == "F-1/iteration-001.md"

    @pytest.mark.asyncio
    async def test_history_before_review(self, client: AsyncClient) -> None:
        await create_started(client)

        history = (await client.get("/features/F-1/reviews")).json()

        assert history["review_status"] is None
        assert history["current_iteration"] == 0
        assert history["max_iterations"] == 3
        assert history["iterations"] == []

    @pytest.mark.asyncio
    async def test_history_missing_feature(self, client: AsyncClient) -> None:
        response = await client.get("/features/missing/reviews")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_feature_not_in_progress(self, client: AsyncClient, agent) -> None:
        await client.post("/features/", json={"title": "A", "id": "F-1", "workdir": "/repo"})

        response = await client.post("/features/F-1/implementation-complete")

        assert response.status_code == 409
        assert agent.review_contexts == []

    @pytest.mark.asyncio
    async def test_missing_feature(self, client: AsyncClient) -> None:
        response = await client.post("/features/missing/implementation-complete")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_stalled_feature_is_refused(
        self, client: AsyncClient, store: ReviewStore, commit_provider
    ) -> None:
        await create_started(client)
        feature = await store.load_feature("F-1")
        await store.save_feature(
            feature.model_copy(
                update={"review": ReviewSpec(status=ReviewStatus.FAILED, max_iterations=3)}
            ),
            expected_version=feature.version,
        )

        response = await client.post("/features/F-1/implementation-complete")

        assert response.status_code == 409
        assert "manual intervention" in response.json()["detail"]
        assert commit_provider.calls == []

    @pytest.mark.asyncio
    async def test_commit_failure_leaves_feature_in_progress(
        self, client: AsyncClient, commit_provider
    ) -> None:
        commit_provider.failures.append(NoChangesError("nothing to commit"))
        await create_started(client)

        response = await client.post("/features/F-1/implementation-complete")

        assert response.status_code == 202
        feature = (await client.get("/features/F-1")).json()
        assert feature["status"] == "in_progress"
        assert feature["current_iteration"] == 0
