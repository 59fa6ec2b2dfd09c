"""Unit tests for the Anthropic-backed agent invoker.

The AsyncAnthropic client is replaced with a mock; no request leaves the
process.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest
from anthropic import AsyncAnthropic
from anthropic.types import TextBlock

from reviewgate.agents.invoker import AgentInvoker, AnthropicAgentInvoker
from reviewgate.agents.prompts import IMPLEMENTER_SYSTEM_PROMPT, REVIEWER_SYSTEM_PROMPT
from reviewgate.config import AgentConfig
from reviewgate.review.errors import AgentTimeoutError, ProviderError

API_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def make_client(*blocks: object, side_effect: Exception | None = None) -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(
        return_value=SimpleNamespace(content=list(blocks), stop_reason="end_turn"),
        side_effect=side_effect,
    )
    return client


@pytest.fixture
def config() -> AgentConfig:
    return AgentConfig(model="claude-test", max_tokens=1024, temperature=0.0)


class TestAnthropicAgentInvoker:
    """Test request shaping and response handling."""

    def test_name_includes_model(self, config: AgentConfig) -> None:
        invoker = AnthropicAgentInvoker(config, client=make_client())
        assert invoker.name == "anthropic:claude-test"

    def test_satisfies_protocol(self, config: AgentConfig) -> None:
        assert isinstance(AnthropicAgentInvoker(config, client=make_client()), AgentInvoker)

    def test_client_created_lazily(self) -> None:
        invoker = AnthropicAgentInvoker(AgentConfig(api_key="sk-test"))
        assert invoker._client is None
        assert isinstance(invoker.client, AsyncAnthropic)
        assert invoker.client is invoker.client

    @pytest.mark.asyncio
    async def test_review_request(self, config: AgentConfig) -> None:
        client = make_client(TextBlock(type="text", text='{"decision": "approved"}'))
        invoker = AnthropicAgentInvoker(config, client=client)

        result = await invoker.review("review this diff")

        assert result == '{"decision": "approved"}'
        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == REVIEWER_SYSTEM_PROMPT
        assert kwargs["messages"] == [{"role": "user", "content": "review this diff"}]
        assert kwargs["max_tokens"] == 1024
        assert kwargs["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_implement_uses_implementer_prompt(self, config: AgentConfig) -> None:
        client = make_client(TextBlock(type="text", text="Fixed the bug."))
        invoker = AnthropicAgentInvoker(config, client=client)

        assert await invoker.implement("fix it") == "Fixed the bug."
        assert client.messages.create.await_args.kwargs["system"] == IMPLEMENTER_SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_text_blocks_joined_and_other_blocks_ignored(
        self, config: AgentConfig
    ) -> None:
        client = make_client(
            TextBlock(type="text", text="  first "),
            SimpleNamespace(type="tool_use", name="edit"),
            TextBlock(type="text", text="second  "),
        )
        invoker = AnthropicAgentInvoker(config, client=client)

        assert await invoker.review("ctx") == "first second"

    @pytest.mark.asyncio
    async def test_timeout_maps_to_agent_timeout(self, config: AgentConfig) -> None:
        client = make_client(side_effect=anthropic.APITimeoutError(request=API_REQUEST))
        invoker = AnthropicAgentInvoker(config, client=client)

        with pytest.raises(AgentTimeoutError) as exc_info:
            await invoker.review("ctx")
        assert exc_info.value.operation == "review"

    @pytest.mark.asyncio
    async def test_api_error_maps_to_provider_error(self, config: AgentConfig) -> None:
        client = make_client(side_effect=anthropic.APIConnectionError(request=API_REQUEST))
        invoker = AnthropicAgentInvoker(config, client=client)

        with pytest.raises(ProviderError, match="implement"):
            await invoker.implement("ctx")
