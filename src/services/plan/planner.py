"""Plan generator service (LLM planning collaborator)."""

import logging

from src.config.policy import QueryPolicy
from src.config.prompts.planner import build_plan_system_prompt
from src.config.settings import Settings
from src.infrastructure.llm.executor import run_single_agent
from src.infrastructure.llm.factory import create_anthropic_agent
from src.services.errors import PlanningError

logger = logging.getLogger(__name__)


class PlanGenerator:
    """Asks the planning agent for a chart plan and returns its raw text."""

    def __init__(self, settings: Settings, policy: QueryPolicy):
        """Initialize plan generator.

        Args:
            settings: Application settings
            policy: Query policy described to the model
        """
        self.settings = settings
        self.policy = policy
        logger.info(f"PlanGenerator initialized with model: {settings.planner_agent_model}")

    async def get_plan(self, prompt: str) -> str:
        """
        Get a raw plan JSON string for the user's request.

        The response is returned untouched; parsing and validation happen
        downstream and never repair it.

        Raises:
            PlanningError: if the agent call itself fails
        """
        system_prompt = build_plan_system_prompt(self.policy, self.settings.allowed_objects)
        try:
            agent = create_anthropic_agent(
                settings=self.settings,
                name="ChartPlanner",
                instructions=system_prompt,
                model=self.settings.planner_agent_model,
                max_tokens=self.settings.planner_max_tokens,
            )
            raw = await run_single_agent(agent, prompt)
        except Exception as e:
            logger.error(f"Plan generation error: {e}", exc_info=True)
            raise PlanningError(f"Could not generate a plan: {e}") from e

        logger.info(f"Planner returned {len(raw)} characters")
        return raw
