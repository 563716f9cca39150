"""Tests for plan validation and query rewriting."""

import pytest

from src.config.policy import QueryPolicy
from src.services.errors import BudgetExceeded, PolicyViolation
from src.services.plan.parser import parse_plan
from src.services.plan.validator import PlanValidator, validate_plan
from src.services.soql.tokenizer import tokenize
from tests.fakes import STAGE_QUERY, make_plan


@pytest.fixture
def validator(policy):
    return PlanValidator(policy)


# ==========================================
#  REWRITES
# ==========================================


@pytest.mark.parametrize(
    "query,expected",
    [
        ("SELECT Id FROM Lead", "SELECT Id FROM Lead WITH SECURITY_ENFORCED LIMIT 2000"),
        (
            "SELECT Name FROM Account WHERE Industry = 'Technology' LIMIT 50",
            "SELECT Name FROM Account WHERE Industry = 'Technology' WITH SECURITY_ENFORCED LIMIT 50",
        ),
        (
            "SELECT Id FROM Case ORDER BY CreatedDate DESC OFFSET 10",
            "SELECT Id FROM Case WITH SECURITY_ENFORCED ORDER BY CreatedDate DESC LIMIT 2000 OFFSET 10",
        ),
        (
            "SELECT Id FROM Contact c WHERE c.LastName != null",
            "SELECT Id FROM Contact c WHERE c.LastName != null WITH SECURITY_ENFORCED LIMIT 2000",
        ),
    ],
)
def test_rewrite_positions_access_clause_and_limit(validator, query, expected):
    assert validator.check_query(query).rewritten == expected


def test_stage_query_rewrite(validator):
    result = validator.check_query(STAGE_QUERY, "by_stage")
    assert result.rewritten == (
        "SELECT StageName, SUM(Amount) total FROM Opportunity WHERE CloseDate = LAST_N_DAYS:90 "
        "WITH SECURITY_ENFORCED GROUP BY StageName LIMIT 2000"
    )
    assert result.main_object == "Opportunity"
    assert result.row_limit == 2000
    assert result.dataset_name == "by_stage"
    assert result.original == STAGE_QUERY


def test_limit_above_ceiling_is_clamped(validator):
    result = validator.check_query("SELECT Id FROM Account LIMIT 5000")
    assert result.rewritten.endswith("LIMIT 2000")
    assert result.row_limit == 2000


def test_limit_at_or_below_ceiling_is_kept(validator):
    result = validator.check_query("SELECT Id FROM Account LIMIT 2000")
    assert result.row_limit == 2000
    assert result.rewritten == "SELECT Id FROM Account WITH SECURITY_ENFORCED LIMIT 2000"


@pytest.mark.parametrize(
    "query",
    [
        "SELECT Id FROM Account",
        "SELECT Id FROM Account WITH SECURITY_ENFORCED",
        "SELECT Id FROM Account WITH USER_MODE LIMIT 10",
        "select Id from Account with security_enforced order by Name",
        "SELECT Name, COUNT(Id) FROM Account GROUP BY Name ORDER BY COUNT(Id) DESC",
    ],
)
def test_exactly_one_access_clause(validator, query):
    rewritten = validator.check_query(query).rewritten
    words = [t.upper for t in tokenize(rewritten)]
    pairs = [
        (a, b) for a, b in zip(words, words[1:]) if a == "WITH" and b in {"SECURITY_ENFORCED", "USER_MODE"}
    ]
    assert pairs == [("WITH", "SECURITY_ENFORCED")]
    assert words.count("LIMIT") == 1


def test_user_mode_policy(settings):
    settings.access_clause = "WITH USER_MODE"
    validator = PlanValidator(QueryPolicy.from_settings(settings))
    result = validator.check_query("SELECT Id FROM Account WITH SECURITY_ENFORCED")
    assert result.rewritten == "SELECT Id FROM Account WITH USER_MODE LIMIT 2000"


def test_aggregate_column_labels(validator):
    result = validator.check_query(
        "SELECT StageName, COUNT(Id), SUM(Amount) total, MAX(Amount) FROM Opportunity GROUP BY StageName"
    )
    assert result.labels == {"expr0": "Id_Count", "expr1": "Amount_Max"}


def test_count_without_field_label(validator):
    result = validator.check_query("SELECT COUNT() FROM Lead")
    assert result.labels == {"expr0": "Count"}


# ==========================================
#  ALLOWLIST
# ==========================================


@pytest.mark.parametrize(
    "obj",
    ["OpportunityHistory", "Acc", "AccountShare", "User", "Opportunity__c"],
)
def test_allowlist_is_exact_match(validator, obj):
    with pytest.raises(PolicyViolation, match=f"Object not allowed: {obj}"):
        validator.check_query(f"SELECT Id FROM {obj}")


def test_allowlist_is_case_insensitive(validator):
    result = validator.check_query("SELECT Id FROM opportunity")
    assert result.main_object == "opportunity"


def test_custom_policy_allowlist():
    policy = QueryPolicy(allowed_objects=frozenset({"Invoice__c"}))
    validator = PlanValidator(policy)
    assert validator.check_query("SELECT Id FROM Invoice__c").is_valid
    with pytest.raises(PolicyViolation):
        validator.check_query("SELECT Id FROM Account")


def test_multiple_objects_rejected(validator):
    with pytest.raises(PolicyViolation, match="single object"):
        validator.check_query("SELECT Id FROM Account, Contact")


# ==========================================
#  DENYLIST
# ==========================================


@pytest.mark.parametrize(
    "query,reason",
    [
        ("DELETE FROM Account", "must start with SELECT"),
        ("SELECT Id FROM Account WHERE Name = 'x'; DELETE FROM Account", "Unexpected character"),
        ("SELECT Id, (SELECT Id FROM Contacts) FROM Account", "Subqueries"),
        ("SELECT Id FROM Account -- everything", "Comments"),
        ("SELECT Id FROM Account /* hint */", "Comments"),
        ("SELECT Id FROM Account WHERE Name = :name", "Unexpected character"),
        ("SELECT FIELDS(ALL) FROM Account", "Function not allowed"),
        ("SELECT Id FROM Account WITH SYSTEM_MODE", "WITH may only introduce"),
        ("SELECT Id FROM Account FOR UPDATE", "Blocked keyword: FOR"),
        ("SELECT Id FROM Account ALL ROWS", "Blocked keyword: ALL"),
        ("SELECT Id FROM Account LIMIT 10 LIMIT 20", "only one LIMIT"),
        ("SELECT Id FROM Account LIMIT Name", "non-negative integer"),
        ("SELECT Id FROM Account WHERE (Name = 'x'", "Unbalanced parentheses"),
        ("SELECT Id", "exactly one FROM"),
        ("", "Query is empty"),
    ],
)
def test_denylist(validator, query, reason):
    with pytest.raises(PolicyViolation) as exc_info:
        validator.check_query(query, "ds")
    assert reason in exc_info.value.message
    assert exc_info.value.message.startswith("Dataset 'ds':")


def test_comment_markers_inside_strings_are_allowed(validator):
    result = validator.check_query("SELECT Id FROM Account WHERE Website = 'http://x.com'")
    assert result.is_valid


# ==========================================
#  PII GUARD
# ==========================================


def test_sensitive_field_rejected(validator):
    with pytest.raises(PolicyViolation, match="Sensitive field not allowed: SSN__c"):
        validator.check_query("SELECT Name, SSN__c FROM Contact")


def test_sensitive_relationship_field_rejected(validator):
    with pytest.raises(PolicyViolation, match="Birthdate"):
        validator.check_query("SELECT Id FROM Case WHERE Contact.Birthdate > 1990-01-01")


def test_sensitive_field_flagged(settings):
    settings.pii_guard_mode = "flag"
    validator = PlanValidator(QueryPolicy.from_settings(settings))
    result = validator.check_query("SELECT Name, SSN__c FROM Contact")
    assert result.is_valid
    assert result.warnings == ("Sensitive field referenced: SSN__c",)


def test_sensitive_field_guard_off(settings):
    settings.pii_guard_mode = "off"
    validator = PlanValidator(QueryPolicy.from_settings(settings))
    result = validator.check_query("SELECT Name, SSN__c FROM Contact")
    assert result.warnings == ()


# ==========================================
#  PLANS
# ==========================================


def test_validate_plan_keeps_dataset_order(policy):
    plan = parse_plan(make_plan("SELECT Id FROM Lead", "SELECT Id FROM Case"))
    queries = validate_plan(plan, policy)
    assert [q.dataset_name for q in queries] == ["dataset_1", "dataset_2"]
    assert [q.main_object for q in queries] == ["Lead", "Case"]


def test_budget_exceeded(validator):
    plan = parse_plan(make_plan(*["SELECT Id FROM Lead"] * 4))
    with pytest.raises(BudgetExceeded, match="4 datasets"):
        validator.validate(plan)


def test_plan_is_all_or_nothing(validator):
    plan = parse_plan(make_plan("SELECT Id FROM Lead", "SELECT Id FROM OpportunityHistory"))
    with pytest.raises(PolicyViolation, match="dataset_2"):
        validator.validate(plan)


def test_inspect_reports_every_query(validator):
    plan = parse_plan(make_plan("SELECT Id FROM Lead", "SELECT Id FROM OpportunityHistory"))
    results = validator.inspect(plan)
    assert [r.is_valid for r in results] == [True, False]
    assert results[1].rewritten is None
    assert "Object not allowed" in results[1].error


def test_inspect_still_enforces_budget(validator):
    plan = parse_plan(make_plan(*["SELECT Id FROM Lead"] * 5))
    with pytest.raises(BudgetExceeded):
        validator.inspect(plan)
