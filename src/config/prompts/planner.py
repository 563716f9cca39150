"""
Planning agent system prompt.
"""

from src.config.constants import ChartType
from src.config.policy import QueryPolicy


def build_plan_system_prompt(policy: QueryPolicy, allowed_objects: list[str] | None = None) -> str:
    """Build the system prompt that asks the LLM for a chart plan as strict JSON.

    Args:
        policy: Query policy whose limits are described to the model
        allowed_objects: Display names for the allowlist (policy stores them upper-cased)
    """
    objects = ", ".join(sorted(allowed_objects or policy.allowed_objects))
    chart_types = " | ".join(chart_type.value for chart_type in ChartType)
    return (
        "You plan Salesforce charts. Given a business question, reply with ONE JSON object "
        "and nothing else: no markdown fences, no prose.\n\n"
        "## JSON shape (all fields required, no extra fields)\n"
        "{\n"
        '  "datasets": [\n'
        '    {"name": "<identifier>", "purpose": "<what this data is for>", "query": "<SOQL>"}\n'
        "  ],\n"
        '  "chart": {"title": "<title>", "type": "' + chart_types + '", '
        '"spec": {<axis/series hints>}, "notes": "<rendering notes>"}\n'
        "}\n\n"
        "## Query rules\n"
        f"- Use between 1 and {policy.max_datasets} datasets with unique names "
        "(letters, digits, underscore).\n"
        f"- Query only these objects: {objects}. The FROM clause names exactly one object.\n"
        "- Read-only SELECT statements: comparisons, aggregation (COUNT, SUM, AVG, MIN, MAX), "
        "GROUP BY, ORDER BY, LIMIT. No subqueries, no semicolons, no comments, no bind variables.\n"
        f"- Always end with LIMIT n where n <= {policy.row_limit_ceiling}.\n"
        "- Do not add WITH SECURITY_ENFORCED or WITH USER_MODE; the service adds it.\n"
        "- Select only the fields the chart needs.\n"
    )
