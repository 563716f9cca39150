"""
SOQL validation rules and token-level security checks.
"""

from typing import Sequence

from src.services.soql.tokenizer import Token, TokenKind

# =============================================================================
# Denied tokens (Security - write, administrative and search operations)
# =============================================================================

BLOCKED_KEYWORDS: frozenset[str] = frozenset(
    {
        # DML / write
        "INSERT",
        "UPDATE",
        "DELETE",
        "UPSERT",
        "MERGE",
        "UNDELETE",
        "CONVERTLEAD",
        "EMPTYRECYCLEBIN",
        # Administrative
        "GRANT",
        "REVOKE",
        "EXEC",
        "EXECUTE",
        "SYSTEM_MODE",
        # Full-text search (SOSL)
        "FIND",
        "SEARCH",
        "RETURNING",
        "SNIPPET",
        "HIGHLIGHT",
        "SPELL_CORRECTION",
        "METADATA",
        "DIVISION",
        "NETWORK",
        # Outside the accepted grammar subset
        "TYPEOF",
        "WHEN",
        "THEN",
        "ELSE",
        "END",
        "USING",
        "SCOPE",
        "ALL",
        "ROWS",
        "FOR",
        "VIEW",
        "REFERENCE",
        "TRACKING",
        "VIEWSTAT",
        "GEOLOCATION",
        "DISTANCE",
    }
)

BLOCKED_PATTERNS: frozenset[str] = frozenset(
    {
        "--",
        "/*",
        "*/",
        "//",
    }
)

SAFE_KEYWORDS: frozenset[str] = frozenset(
    {
        "SELECT",
        "FROM",
        "WHERE",
        "AND",
        "OR",
        "NOT",
        "IN",
        "LIKE",
        "INCLUDES",
        "EXCLUDES",
        "GROUP",
        "BY",
        "ROLLUP",
        "CUBE",
        "HAVING",
        "ORDER",
        "ASC",
        "DESC",
        "NULLS",
        "FIRST",
        "LAST",
        "LIMIT",
        "OFFSET",
        "WITH",
        "SECURITY_ENFORCED",
        "USER_MODE",
        "NULL",
        "TRUE",
        "FALSE",
    }
)

AGGREGATE_FUNCTIONS: frozenset[str] = frozenset(
    {"COUNT", "COUNT_DISTINCT", "SUM", "AVG", "MIN", "MAX"}
)

DATE_FUNCTIONS: frozenset[str] = frozenset(
    {
        "CALENDAR_MONTH",
        "CALENDAR_QUARTER",
        "CALENDAR_YEAR",
        "DAY_IN_MONTH",
        "DAY_IN_WEEK",
        "DAY_IN_YEAR",
        "DAY_ONLY",
        "FISCAL_MONTH",
        "FISCAL_QUARTER",
        "FISCAL_YEAR",
        "HOUR_IN_DAY",
        "WEEK_IN_MONTH",
        "WEEK_IN_YEAR",
        "GROUPING",
    }
)

# Formatting functions keep the field's own column name in results
FORMAT_FUNCTIONS: frozenset[str] = frozenset({"TOLABEL", "CONVERTCURRENCY", "FORMAT"})

ALLOWED_FUNCTIONS: frozenset[str] = AGGREGATE_FUNCTIONS | DATE_FUNCTIONS | FORMAT_FUNCTIONS

ACCESS_CLAUSE_MODES: frozenset[str] = frozenset({"SECURITY_ENFORCED", "USER_MODE"})

CLAUSE_BOUNDARY_KEYWORDS: frozenset[str] = frozenset({"GROUP", "ORDER", "LIMIT", "OFFSET"})

RESERVED_WORDS: frozenset[str] = BLOCKED_KEYWORDS | SAFE_KEYWORDS | ALLOWED_FUNCTIONS


# =============================================================================
# Token-level safety validation
# =============================================================================


def find_blocked_pattern(text: str) -> str | None:
    """Return the first comment marker found outside string literals, if any."""
    in_string = False
    escaped = False
    for idx, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == "'":
                in_string = False
            continue
        if char == "'":
            in_string = True
            continue
        pair = text[idx : idx + 2]
        if pair in BLOCKED_PATTERNS:
            return pair
    return None


def is_soql_safe(tokens: Sequence[Token]) -> tuple[bool, str | None]:
    """
    Security validation for a tokenized SOQL query.

    This is the PRIMARY validation that MUST pass before rewriting.

    Returns:
        Tuple of (is_safe, error_message)
    """
    if not tokens:
        return False, "Query is empty"

    first = tokens[0]
    if first.kind is not TokenKind.IDENT or first.upper != "SELECT":
        return False, "Query must start with SELECT"

    depth = 0
    from_count = 0
    for idx, token in enumerate(tokens):
        nxt = tokens[idx + 1] if idx + 1 < len(tokens) else None

        if token.kind is TokenKind.LPAREN:
            depth += 1
            if nxt is not None and nxt.kind is TokenKind.IDENT and nxt.upper == "SELECT":
                return False, "Subqueries are not allowed"
            continue
        if token.kind is TokenKind.RPAREN:
            depth -= 1
            if depth < 0:
                return False, "Unbalanced parentheses"
            continue
        if token.kind is not TokenKind.IDENT:
            continue

        word = token.upper
        if word in BLOCKED_KEYWORDS:
            return False, f"Blocked keyword: {word}"
        if idx > 0 and word == "SELECT":
            return False, "Only a single SELECT statement is allowed"
        if word == "FROM":
            from_count += 1

        if nxt is not None and nxt.kind is TokenKind.LPAREN:
            if word not in ALLOWED_FUNCTIONS and word not in SAFE_KEYWORDS:
                return False, f"Function not allowed: {token.text}"
        if word == "WITH":
            if nxt is None or nxt.kind is not TokenKind.IDENT or nxt.upper not in ACCESS_CLAUSE_MODES:
                return False, "WITH may only introduce SECURITY_ENFORCED or USER_MODE"
            if depth != 0:
                return False, "WITH clause must be at the top level"

    if depth != 0:
        return False, "Unbalanced parentheses"
    if from_count != 1:
        return False, "Query must contain exactly one FROM clause"

    return True, None
