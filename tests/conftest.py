"""Shared test doubles for reviewgate tests.

The orchestrator talks to two external collaborators: a commit provider and
an agent. Tests replace both with in-process doubles whose behavior is
scripted per test, so no git repository or model API is needed.
"""

from __future__ import annotations

import asyncio
import json
from collections import deque
from typing import Any

import pytest

from reviewgate.pipeline.git_ops import CommitResult


def verdict(decision: str, summary: str = "", rationale: str = "", findings: list | None = None) -> str:
    """A reviewer response in the JSON format the parser expects."""
    return json.dumps(
        {
            "decision": decision,
            "summary": summary or f"Review {decision}",
            "rationale": rationale,
            "findings": findings or [],
        }
    )


APPROVE = verdict("approved", summary="Looks good")
REJECT = verdict(
    "rejected",
    summary="Missing validation",
    rationale="Email input is not validated",
    findings=[
        {
            "category": "code",
            "severity": "error",
            "title": "No email validation",
            "description": "reset() accepts any string.",
            "file_path": "reset.py",
            "line_number": 1,
        }
    ],
)


class FakeCommitProvider:
    """Commit provider double producing deterministic commits.

    Attributes:
        calls: ``(workdir, message)`` for every call, in order.
        failures: Exceptions raised by the next calls, consumed in order.
        gate: When set, calls wait on it before committing.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.failures: deque[Exception] = deque()
        self.gate: asyncio.Event | None = None

    async def commit_and_diff(self, workdir: str, message: str) -> CommitResult:
        self.calls.append((workdir, message))
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.popleft()
        n = len(self.calls)
        return CommitResult(
            commit_sha=f"{n:040x}",
            diff=f"diff --git a/reset.py b/reset.py\n+# change {n}\n",
        )


class ScriptedAgent:
    """Agent double answering from queued scripts.

    Review script entries are either a response string, an exception to
    raise, or a coroutine function awaited in place of answering.

    Attributes:
        review_contexts: Context passed to every review call.
        implement_contexts: Context passed to every implement call.
    """

    name = "scripted-reviewer"

    def __init__(self) -> None:
        self.reviews: deque[Any] = deque()
        self.implementations: deque[Any] = deque()
        self.review_contexts: list[str] = []
        self.implement_contexts: list[str] = []

    def script_reviews(self, *entries: Any) -> None:
        self.reviews.extend(entries)

    def script_implementations(self, *entries: Any) -> None:
        self.implementations.extend(entries)

    async def review(self, context: str) -> str:
        self.review_contexts.append(context)
        return await self._answer(self.reviews, APPROVE)

    async def implement(self, context: str) -> str:
        self.implement_contexts.append(context)
        return await self._answer(self.implementations, "Applied the requested fixes.")

    async def _answer(self, queue: deque[Any], default: str) -> str:
        entry = queue.popleft() if queue else default
        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            return await entry()
        return entry


@pytest.fixture
def commit_provider() -> FakeCommitProvider:
    return FakeCommitProvider()


@pytest.fixture
def agent() -> ScriptedAgent:
    return ScriptedAgent()


@pytest.fixture
def approve_response() -> str:
    return APPROVE


@pytest.fixture
def reject_response() -> str:
    return REJECT
