"""Validator and pipeline executor for conformance runs."""

import logging
from typing import Any

from evaluation.loader import Case
from src.config.policy import QueryPolicy
from src.config.settings import Settings, get_settings
from src.services.errors import ChartRunError
from src.services.plan.validator import PlanValidator
from src.services.runs.service import ChartRunService
from src.services.runs.store import RunStore

logger = logging.getLogger(__name__)


class Executor:
    """Checks corpus queries against the validator and optionally runs prompts end to end."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.validator = PlanValidator(QueryPolicy.from_settings(self.settings))

    def check_case(self, case: Case) -> dict[str, Any]:
        """Validate one query and compare the verdict and rewrite with expectations."""
        result = self.validator.inspect_query(case.query, f"case_{case.id}")
        accepted = result.is_valid

        mismatches: list[str] = []
        if accepted != case.should_accept:
            mismatches.append(
                f"expected {case.expected}, got {'accept' if accepted else 'reject'}"
            )
        if accepted and case.expected_rewrite and result.rewritten != case.expected_rewrite:
            mismatches.append(f"rewrite differs: {result.rewritten!r}")
        if (
            not accepted
            and case.error_contains
            and case.error_contains.lower() not in (result.error or "").lower()
        ):
            mismatches.append(f"error does not mention '{case.error_contains}': {result.error}")

        return {
            "id": case.id,
            "category": case.category,
            "query": case.query,
            "expected": case.expected,
            "accepted": accepted,
            "rewritten": result.rewritten,
            "error": result.error,
            "passed": not mismatches,
            "mismatches": mismatches,
        }

    async def run_prompt(self, prompt: str) -> dict[str, Any]:
        """Run one prompt through the whole pipeline against the configured services."""
        async with ChartRunService.from_settings(self.settings, RunStore()) as service:
            try:
                result = await service.run_to_completion(prompt)
            except ChartRunError as e:
                logger.error(f"Prompt failed: {e.message}")
                return {"prompt": prompt, **e.to_detail()}

        return {
            "prompt": prompt,
            "job_id": result.job_id,
            **result.outcome.to_dict(),
            "steps": [step.to_dict() for step in result.steps],
        }
