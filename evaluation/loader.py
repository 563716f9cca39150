"""Corpus loader for query conformance cases."""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class Case:
    """A single query shape with its expected verdict."""

    id: int
    query: str
    expected: str
    expected_rewrite: str
    error_contains: str
    category: str

    @property
    def should_accept(self) -> bool:
        return self.expected == "accept"


def load_cases(path: Path) -> list[Case]:
    """Load conformance cases from a CSV file."""
    if not path.exists():
        raise FileNotFoundError(f"Corpus not found: {path}")

    cases = []

    with open(path, encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)

        for idx, row in enumerate(reader):
            case = Case(
                id=idx,
                query=row.get("query", "").strip(),
                expected=row.get("expected", "").strip().lower(),
                expected_rewrite=row.get("expected_rewrite", "").strip(),
                error_contains=row.get("error_contains", "").strip(),
                category=row.get("category", "").strip().lower(),
            )

            if not case.query:
                continue
            if case.expected not in ("accept", "reject"):
                logger.warning(f"Case {idx}: unknown expectation '{case.expected}', skipped")
                continue
            cases.append(case)

    logger.info(f"Loaded {len(cases)} cases from {path}")
    return cases


def filter_cases(cases: list[Case], category: str | None = None) -> list[Case]:
    """Keep only the cases of one category."""
    if not category:
        return cases
    return [c for c in cases if c.category == category.lower()]
