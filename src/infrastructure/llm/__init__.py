"""LLM infrastructure module."""

from src.infrastructure.llm.executor import run_single_agent
from src.infrastructure.llm.factory import create_anthropic_agent

__all__ = [
    "run_single_agent",
    "create_anthropic_agent",
]
