"""Agent factory helpers."""

import logging
from typing import Any

from agent_framework.anthropic import AnthropicClient

from src.config.settings import Settings

logger = logging.getLogger(__name__)


def create_anthropic_agent(
    settings: Settings,
    name: str,
    instructions: str,
    tools: Any | None = None,
    model: str | None = None,
    max_tokens: int = 2048,
):
    """
    Create an Anthropic (Claude) agent.

    Usage:
        agent = create_anthropic_agent(settings, "Planner", prompt)
        response = await run_single_agent(agent, input)

    Args:
        settings: Application settings
        name: Agent name
        instructions: System prompt/instructions
        tools: Optional tools
        model: Optional model name (defaults to settings.planner_agent_model)
        max_tokens: Maximum tokens for response
    """
    final_model = model or settings.planner_agent_model

    logger.debug(f"Creating Anthropic agent '{name}' with model: {final_model}")

    client = AnthropicClient(
        model_id=final_model,
        api_key=settings.anthropic_api_key,
    )
    return client.create_agent(
        name=name,
        instructions=instructions,
        tools=tools,
        max_tokens=max_tokens,
        temperature=0.0,
    )
