"""
Code Interpreter run instructions.
"""

import json
from collections.abc import Sequence

from src.services.plan.models import ChartSpec


def build_chart_instructions(chart: ChartSpec, datasets: Sequence[tuple[str, str, str]]) -> str:
    """Build the user message for the chart run.

    Args:
        chart: Chart intent from the validated plan
        datasets: (file_name, dataset_name, purpose) per attached CSV, in order
    """
    dataset_lines = "\n".join(
        f"- {file_name}: dataset '{name}' - {purpose or 'no description'}"
        for file_name, name, purpose in datasets
    )
    return (
        "You are a data visualization assistant with a Python code interpreter.\n\n"
        "## Attached datasets (CSV, header row first)\n"
        f"{dataset_lines}\n\n"
        "## Chart request\n"
        f"- Title: {chart.title}\n"
        f"- Type: {chart.type.value}\n"
        f"- Spec: {json.dumps(chart.spec, ensure_ascii=False, sort_keys=True)}\n"
        f"- Notes: {chart.notes or 'none'}\n\n"
        "## Output contract\n"
        "1. Load the CSV files with pandas and build the requested chart with matplotlib.\n"
        "2. Produce EXACTLY ONE image file: a PNG of the chart. Do not output any other file.\n"
        "3. Optionally reply with ONE short text summary (at most three sentences) of what the chart shows.\n"
        "4. Do not echo the input files back and do not ask follow-up questions.\n"
    )


# Assistant-level instructions; each run's chart request travels in its thread message
CHART_ASSISTANT_INSTRUCTIONS = (
    "You are a data visualization assistant with a Python code interpreter. "
    "Each request attaches CSV datasets and describes one chart. Follow the "
    "output contract in the request exactly: produce one PNG chart image and "
    "at most a short text summary."
)
