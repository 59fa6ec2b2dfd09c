"""Agent invocation behind a narrow text-in, text-out contract.

The orchestrator only sees the ``AgentInvoker`` protocol. The default
implementation talks to the Anthropic Messages API; tests substitute scripted
fakes.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import anthropic
from anthropic import AsyncAnthropic
from anthropic.types import TextBlock

from reviewgate.agents.prompts import IMPLEMENTER_SYSTEM_PROMPT, REVIEWER_SYSTEM_PROMPT
from reviewgate.config import AgentConfig
from reviewgate.logging import get_logger
from reviewgate.review.errors import AgentTimeoutError, ProviderError

logger = get_logger(__name__)


@runtime_checkable
class AgentInvoker(Protocol):
    """Contract for the agent collaborator.

    Attributes:
        name: Identity of the model/provider, recorded on each iteration.
    """

    name: str

    async def review(self, context: str) -> str:
        """Review a commit and return the raw response text."""
        ...

    async def implement(self, context: str) -> str:
        """Apply fixes to the working tree and return the agent's output."""
        ...


class AnthropicAgentInvoker:
    """AgentInvoker backed by the Anthropic Messages API.

    Attributes:
        config: Model, token and temperature settings.
        client: Async Anthropic client.
        name: ``anthropic:<model>``.
    """

    def __init__(
        self,
        config: AgentConfig | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self.config = config or AgentConfig()
        self._client = client
        self.name = f"anthropic:{self.config.model}"

    @property
    def client(self) -> AsyncAnthropic:
        """The API client, created on first use so that no key is needed until then."""
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.config.api_key)
        return self._client

    async def review(self, context: str) -> str:
        return await self._complete(REVIEWER_SYSTEM_PROMPT, context, operation="review")

    async def implement(self, context: str) -> str:
        return await self._complete(IMPLEMENTER_SYSTEM_PROMPT, context, operation="implement")

    async def _complete(self, system_prompt: str, user_prompt: str, operation: str) -> str:
        logger.info(
            "agent_request_started",
            operation=operation,
            model=self.config.model,
            prompt_chars=len(user_prompt),
        )
        try:
            response = await self.client.messages.create(
                model=self.config.model,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except anthropic.APITimeoutError as e:
            logger.error("agent_request_timeout", operation=operation, error=str(e))
            raise AgentTimeoutError(operation) from e
        except anthropic.AnthropicError as e:
            logger.error("agent_request_failed", operation=operation, error=str(e))
            raise ProviderError(f"Anthropic {operation} request failed: {e}") from e

        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        text = "".join(text_blocks).strip()

        logger.info(
            "agent_request_completed",
            operation=operation,
            model=self.config.model,
            response_chars=len(text),
            stop_reason=getattr(response, "stop_reason", None),
        )
        return text
