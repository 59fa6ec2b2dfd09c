"""Review lifecycle events and the notifier contract.

Notifiers are injected into the ReviewOrchestrator at construction. Delivery
is best-effort: the orchestrator logs and drops any exception a notifier
raises, and observers that miss an event can always re-query the store.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from reviewgate.review.models import utcnow

logger = structlog.get_logger(__name__)


class ReviewEventType(str, Enum):
    """Named lifecycle events published by the orchestrator."""

    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    REJECTED = "rejected"
    FAILED = "failed"
    MAX_ITERATIONS_REACHED = "max-iterations-reached"


class ReviewEvent(BaseModel):
    """One published lifecycle event.

    Attributes:
        event_type: Which phase boundary the event marks.
        feature_id: The feature the event concerns.
        iteration: Iteration number the event refers to (0 before the first).
        payload: Phase-specific details.
        timestamp: When the event was created.
    """

    model_config = ConfigDict(frozen=True)

    event_type: ReviewEventType
    feature_id: str
    iteration: int = Field(default=0, ge=0)
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible representation used by transports."""
        return self.model_dump(mode="json")


@runtime_checkable
class EventNotifier(Protocol):
    """Publish channel for review lifecycle events."""

    async def publish(self, event: ReviewEvent) -> None: ...


class NullNotifier:
    """Notifier that discards every event."""

    async def publish(self, event: ReviewEvent) -> None:
        return None


class RecordingNotifier:
    """Notifier that keeps every published event in memory.

    Useful for tests and for embedding the orchestrator in scripts that want
    to inspect what happened after a run.
    """

    def __init__(self) -> None:
        self.events: list[ReviewEvent] = []
        self._lock = asyncio.Lock()

    async def publish(self, event: ReviewEvent) -> None:
        async with self._lock:
            self.events.append(event)

    def of_type(self, event_type: ReviewEventType) -> list[ReviewEvent]:
        return [e for e in self.events if e.event_type is event_type]

    @property
    def types(self) -> list[ReviewEventType]:
        return [e.event_type for e in self.events]


class FanOutNotifier:
    """Publishes each event to several notifiers.

    A failing notifier does not prevent delivery to the others; failures are
    logged per target.
    """

    def __init__(self, *notifiers: EventNotifier) -> None:
        self.notifiers: tuple[EventNotifier, ...] = notifiers

    async def publish(self, event: ReviewEvent) -> None:
        for notifier in self.notifiers:
            try:
                await notifier.publish(event)
            except Exception as e:
                logger.warning(
                    "notifier_target_failed",
                    notifier=type(notifier).__name__,
                    event_type=event.event_type.value,
                    feature_id=event.feature_id,
                    error=str(e),
                )
