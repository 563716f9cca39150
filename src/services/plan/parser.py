"""Strict plan parsing: untrusted JSON in, typed Plan out."""

import logging

from pydantic import ValidationError

from src.services.errors import MalformedPlan
from src.services.plan.models import Plan

logger = logging.getLogger(__name__)


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "plan"
    return f"{location}: {first.get('msg', 'invalid value')}"


def parse_plan(raw: str) -> Plan:
    """
    Parse the planner's raw response into a Plan.

    The response is never repaired: code fences, trailing prose, unknown
    fields or wrong types all fail.

    Raises:
        MalformedPlan: on the first structural deviation
    """
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedPlan("Planner returned an empty response")
    try:
        return Plan.model_validate_json(raw)
    except ValidationError as e:
        detail = _describe(e)
        logger.warning(f"Plan rejected as malformed: {detail}")
        raise MalformedPlan(f"Malformed plan - {detail}") from e
