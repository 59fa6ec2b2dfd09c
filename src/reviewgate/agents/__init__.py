"""Agent collaborators for review and implementation."""

from reviewgate.agents.invoker import AgentInvoker, AnthropicAgentInvoker

__all__ = ["AgentInvoker", "AnthropicAgentInvoker"]
