"""Plan validation service."""

import logging

from src.config.policy import QueryPolicy
from src.config.validation import find_blocked_pattern, is_soql_safe
from src.services.errors import BudgetExceeded, PolicyViolation
from src.services.plan.models import Plan
from src.services.soql.models import ValidatedQuery
from src.services.soql.rewriter import (
    RewriteError,
    aggregate_column_labels,
    enforce_row_limit,
    field_tokens,
    find_main_object,
    insert_access_clause,
)
from src.services.soql.tokenizer import TokenizeError, tokenize

logger = logging.getLogger(__name__)


class PlanValidator:
    """Validates plan queries against a QueryPolicy and rewrites them to be safe."""

    def __init__(self, policy: QueryPolicy):
        self.policy = policy

    def validate(self, plan: Plan) -> list[ValidatedQuery]:
        """
        Validate every dataset query in the plan.

        All-or-nothing: the first failing query aborts the whole plan.

        Args:
            plan: Structurally valid plan (see parse_plan)

        Returns:
            Validated queries in dataset order

        Raises:
            BudgetExceeded: if the plan requests more datasets than allowed
            PolicyViolation: if any query breaks the denylist, allowlist or PII rules
        """
        self.check_budget(plan)
        validated = [self.check_query(dataset.query, dataset.name) for dataset in plan.datasets]
        logger.info(f"Plan validation passed for {len(validated)} dataset(s)")
        return validated

    def inspect(self, plan: Plan) -> list[ValidatedQuery]:
        """
        Report on every query without stopping at the first failure.

        Raises:
            BudgetExceeded: the dataset budget still applies to the whole plan
        """
        self.check_budget(plan)
        return [self.inspect_query(dataset.query, dataset.name) for dataset in plan.datasets]

    def check_budget(self, plan: Plan) -> None:
        if len(plan.datasets) > self.policy.max_datasets:
            raise BudgetExceeded(
                f"Plan requests {len(plan.datasets)} datasets; "
                f"at most {self.policy.max_datasets} are allowed"
            )

    def check_query(self, query: str, dataset_name: str = "dataset") -> ValidatedQuery:
        """
        Validate and rewrite a single query.

        Raises:
            PolicyViolation: with a diagnostic naming the dataset and the rule broken
        """
        text = query.strip()

        pattern = find_blocked_pattern(text)
        if pattern:
            raise self._violation(dataset_name, f"Comments are not allowed (found {pattern!r})")

        try:
            tokens = tokenize(text)
        except TokenizeError as e:
            raise self._violation(dataset_name, f"{e} at position {e.position}") from e

        is_safe, error = is_soql_safe(tokens)
        if not is_safe:
            raise self._violation(dataset_name, error or "Security validation failed")

        try:
            main_object, _alias = find_main_object(tokens)
        except RewriteError as e:
            raise self._violation(dataset_name, str(e)) from e

        if not self.policy.allows_object(main_object.text):
            raise self._violation(dataset_name, f"Object not allowed: {main_object.text}")

        warnings: list[str] = []
        if self.policy.pii_guard_mode != "off":
            sensitive = [t.text for t in field_tokens(tokens) if self.policy.is_sensitive(t.text)]
            if sensitive and self.policy.pii_guard_mode == "reject":
                raise self._violation(dataset_name, f"Sensitive field not allowed: {sensitive[0]}")
            warnings.extend(f"Sensitive field referenced: {name}" for name in sensitive)

        try:
            limited, row_limit = enforce_row_limit(text, self.policy.row_limit_ceiling)
            rewritten = insert_access_clause(limited, self.policy.access_clause)
        except RewriteError as e:
            raise self._violation(dataset_name, str(e)) from e

        if warnings:
            logger.warning(f"Dataset '{dataset_name}': {'; '.join(warnings)}")
        logger.debug(f"Dataset '{dataset_name}' rewritten: {rewritten}")

        return ValidatedQuery(
            dataset_name=dataset_name,
            original=query,
            main_object=main_object.text,
            rewritten=rewritten,
            row_limit=row_limit,
            warnings=tuple(warnings),
            column_labels=aggregate_column_labels(tokens),
        )

    def inspect_query(self, query: str, dataset_name: str = "dataset") -> ValidatedQuery:
        """Non-raising variant of check_query for dry runs and conformance checks."""
        try:
            return self.check_query(query, dataset_name)
        except PolicyViolation as e:
            return ValidatedQuery(
                dataset_name=dataset_name,
                original=query,
                main_object=None,
                rewritten=None,
                is_valid=False,
                error=e.message,
            )

    @staticmethod
    def _violation(dataset_name: str, reason: str) -> PolicyViolation:
        logger.warning(f"Dataset '{dataset_name}' rejected: {reason}")
        return PolicyViolation(f"Dataset '{dataset_name}': {reason}")


def validate_plan(plan: Plan, policy: QueryPolicy) -> list[ValidatedQuery]:
    """Validate a plan against a policy."""
    return PlanValidator(policy).validate(plan)
