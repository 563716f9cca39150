"""System prompts for the planning agent and the chart run."""

from src.config.prompts.assistant import CHART_ASSISTANT_INSTRUCTIONS, build_chart_instructions
from src.config.prompts.planner import build_plan_system_prompt

__all__ = [
    "CHART_ASSISTANT_INSTRUCTIONS",
    "build_chart_instructions",
    "build_plan_system_prompt",
]
