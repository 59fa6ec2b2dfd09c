"""Server-Sent Events (SSE) endpoint for review lifecycle events.

``EventBroadcaster`` implements the EventNotifier contract: the orchestrator
publishes ReviewEvents to it and every connected client receives them as
SSE messages. The broadcaster is owned by the application (``app.state``)
and injected into the orchestrator; there is no module-level instance.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from reviewgate.logging import get_logger
from reviewgate.review.events import ReviewEvent

logger = get_logger(__name__)


@dataclass
class SSEEvent:
    """Server-Sent Event data structure."""

    event: str
    data: dict[str, Any]
    id: str | None = None
    retry: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary format for SSE transmission."""
        result: dict[str, Any] = {
            "event": self.event,
            "data": json.dumps(self.data),
        }
        if self.id is not None:
            result["id"] = self.id
        if self.retry is not None:
            result["retry"] = self.retry
        return result


class EventBroadcaster:
    """Fans review events out to connected SSE clients.

    Each subscriber owns an unbounded queue; publishing never blocks on a
    slow client.
    """

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue[SSEEvent | None]] = []
        self._lock = asyncio.Lock()
        self._sequence = 0
        self.logger = get_logger(__name__)

    @property
    def client_count(self) -> int:
        return len(self._queues)

    async def subscribe(self) -> AsyncIterator[SSEEvent]:
        """Subscribe to events, yielding them as they arrive.

        The iterator ends when the broadcaster is closed.
        """
        queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue()
        async with self._lock:
            self._queues.append(queue)
        self.logger.info("sse_client_connected", total_clients=len(self._queues))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            async with self._lock:
                self._queues.remove(queue)
            self.logger.info("sse_client_disconnected", total_clients=len(self._queues))

    async def broadcast(self, event: SSEEvent) -> None:
        """Deliver an event to every connected client."""
        async with self._lock:
            for queue in self._queues:
                queue.put_nowait(event)
        self.logger.debug(
            "sse_event_broadcast",
            event_type=event.event,
            client_count=len(self._queues),
        )

    async def publish(self, event: ReviewEvent) -> None:
        """EventNotifier entry point used by the orchestrator."""
        self._sequence += 1
        await self.broadcast(
            SSEEvent(
                event=event.event_type.value,
                data=event.to_dict(),
                id=str(self._sequence),
            )
        )

    async def close(self) -> None:
        """Signal every subscriber to finish its stream."""
        async with self._lock:
            for queue in self._queues:
                queue.put_nowait(None)


def create_events_router() -> APIRouter:
    """Create the events router with the SSE streaming endpoint.

    Routes:
        GET /events/stream - Stream review lifecycle events
    """
    router = APIRouter(prefix="/events", tags=["events"])

    @router.get("/stream")
    async def stream_events(request: Request) -> EventSourceResponse:
        broadcaster: EventBroadcaster = request.app.state.broadcaster

        async def event_generator() -> AsyncIterator[dict[str, Any]]:
            async for event in broadcaster.subscribe():
                if await request.is_disconnected():
                    break
                yield event.to_dict()

        return EventSourceResponse(event_generator())

    return router
