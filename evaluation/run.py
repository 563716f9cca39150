"""Conformance script - validates the query corpus and writes JSON results."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).parent.parent))

from evaluation.config import EvalConfig
from evaluation.executor import Executor
from evaluation.loader import filter_cases, load_cases

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def run_conformance(executor: Executor, config: EvalConfig, category: str | None = None) -> dict[str, Any]:
    """Check every corpus case and summarize mismatches."""
    cases = filter_cases(load_cases(config.data_path), category)
    results = [executor.check_case(case) for case in cases]
    failed = [r for r in results if not r["passed"]]

    for result in failed:
        logger.warning(f"[{result['id']}] {result['query'][:60]}: {'; '.join(result['mismatches'])}")

    return {
        "metadata": {
            "timestamp": datetime.now().isoformat(),
            "total_cases": len(results),
            "failed": len(failed),
            "dataset": config.data_path.name,
        },
        "results": results,
    }


async def run_prompts(executor: Executor, prompts: list[str], delay: float) -> list[dict[str, Any]]:
    """Run prompts end to end, one at a time."""
    outputs = []
    for i, prompt in enumerate(prompts):
        logger.info(f"[{i + 1}/{len(prompts)}] {prompt[:60]}")
        outputs.append(await executor.run_prompt(prompt))
        if i < len(prompts) - 1:
            await asyncio.sleep(delay)
    return outputs


async def main() -> int:
    parser = argparse.ArgumentParser(description="Run query policy conformance checks")
    parser.add_argument("--data", type=str, help="Corpus CSV path")
    parser.add_argument("--category", type=str, help="Only check one category")
    parser.add_argument("--prompt", action="append", default=[], help="Also run this prompt end to end")
    parser.add_argument("--delay", type=float, default=2.0, help="Delay between prompts")
    parser.add_argument("--output", type=str, help="Output JSON path")
    args = parser.parse_args()

    config = EvalConfig(delay_between_prompts=args.delay)
    if args.data:
        config.data_path = Path(args.data)

    executor = Executor()
    output = run_conformance(executor, config, category=args.category)
    if args.prompt:
        output["prompts"] = await run_prompts(executor, args.prompt, config.delay_between_prompts)

    output_path = Path(args.output) if args.output else config.output_path
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(output, f, indent=2, ensure_ascii=False, default=str)

    logger.info(f"Results saved to {output_path}")
    return 1 if output["metadata"]["failed"] else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
