"""Clause-position finder and rewrites for validated SOQL queries."""

from collections.abc import Iterator, Sequence

from src.config.validation import (
    ACCESS_CLAUSE_MODES,
    AGGREGATE_FUNCTIONS,
    CLAUSE_BOUNDARY_KEYWORDS,
    DATE_FUNCTIONS,
    RESERVED_WORDS,
)
from src.services.soql.tokenizer import Token, TokenKind, tokenize

_FROM_FOLLOWERS = frozenset({"WHERE", "WITH", "GROUP", "ORDER", "LIMIT", "OFFSET"})


class RewriteError(ValueError):
    """Raised when a query cannot be rewritten safely."""


def _top_level(tokens: Sequence[Token]) -> Iterator[tuple[int, Token]]:
    """Yield (index, token) for tokens outside any parentheses."""
    depth = 0
    for idx, token in enumerate(tokens):
        if token.kind is TokenKind.LPAREN:
            depth += 1
        elif token.kind is TokenKind.RPAREN:
            depth -= 1
        elif depth == 0:
            yield idx, token


def _splice(text: str, start: int, end: int, replacement: str = "") -> str:
    """Replace text[start:end], normalizing the surrounding whitespace to single spaces."""
    parts = [text[:start].rstrip(), replacement.strip(), text[end:].lstrip()]
    return " ".join(part for part in parts if part)


def _from_index(tokens: Sequence[Token]) -> int:
    for idx, token in _top_level(tokens):
        if token.is_word("FROM"):
            return idx
    raise RewriteError("Query has no top-level FROM clause")


def find_main_object(tokens: Sequence[Token]) -> tuple[Token, Token | None]:
    """
    Return the main object token (first identifier after FROM) and its alias, if any.

    Raises:
        RewriteError: if the FROM clause is not a single plain object name
    """
    from_idx = _from_index(tokens)
    if from_idx + 1 >= len(tokens):
        raise RewriteError("FROM must be followed by an object name")

    obj = tokens[from_idx + 1]
    if obj.kind is not TokenKind.IDENT or obj.upper in RESERVED_WORDS:
        raise RewriteError("FROM must be followed by an object name")
    if "." in obj.text:
        raise RewriteError(f"Main object must be a plain object name, got {obj.text}")

    alias: Token | None = None
    cursor = from_idx + 2
    if cursor < len(tokens):
        nxt = tokens[cursor]
        if nxt.kind is TokenKind.IDENT and nxt.upper not in _FROM_FOLLOWERS:
            if nxt.upper in RESERVED_WORDS or "." in nxt.text:
                raise RewriteError(f"Unexpected token after object name: {nxt.text}")
            alias = nxt
            cursor += 1
    if cursor < len(tokens) and tokens[cursor].kind is TokenKind.COMMA:
        raise RewriteError("Only a single object may be queried")

    return obj, alias


def strip_access_clauses(text: str) -> str:
    """Remove every top-level WITH SECURITY_ENFORCED / WITH USER_MODE clause."""
    tokens = tokenize(text)
    spans: list[tuple[int, int]] = []
    for idx, token in _top_level(tokens):
        if token.is_word("WITH") and idx + 1 < len(tokens):
            mode = tokens[idx + 1]
            if mode.is_word(*ACCESS_CLAUSE_MODES):
                spans.append((token.start, mode.end))

    for start, end in reversed(spans):
        text = _splice(text, start, end)
    return text


def access_clause_position(tokens: Sequence[Token], text_length: int) -> int:
    """
    Character offset where the access-control clause belongs.

    That is after the FROM <Object> [alias] [WHERE ...] block and before the
    first top-level GROUP BY, ORDER BY, LIMIT or OFFSET, or the end of the query.
    """
    from_idx = _from_index(tokens)
    for idx, token in _top_level(tokens):
        if idx <= from_idx or not token.is_word(*CLAUSE_BOUNDARY_KEYWORDS):
            continue
        if token.is_word("GROUP", "ORDER"):
            if idx + 1 < len(tokens) and tokens[idx + 1].is_word("BY"):
                return token.start
            continue
        return token.start
    return text_length


def insert_access_clause(text: str, clause: str) -> str:
    """Insert exactly one access-control clause at its syntactic position."""
    text = strip_access_clauses(text)
    tokens = tokenize(text)
    position = access_clause_position(tokens, len(text))
    return _splice(text, position, position, clause)


def enforce_row_limit(text: str, ceiling: int) -> tuple[str, int]:
    """
    Ensure the query has a LIMIT no greater than `ceiling`.

    Returns:
        Tuple of (rewritten_text, effective_limit)
    """
    tokens = tokenize(text)
    limits = [idx for idx, token in _top_level(tokens) if token.is_word("LIMIT")]
    if len(limits) > 1:
        raise RewriteError("Query may contain only one LIMIT clause")

    if not limits:
        offset = next((t for _, t in _top_level(tokens) if t.is_word("OFFSET")), None)
        limit_clause = f"LIMIT {ceiling}"
        if offset is not None:
            return _splice(text, offset.start, offset.start, limit_clause), ceiling
        return _splice(text, len(text), len(text), limit_clause), ceiling

    idx = limits[0]
    value = tokens[idx + 1] if idx + 1 < len(tokens) else None
    if value is None or value.kind is not TokenKind.NUMBER or not value.text.isdigit():
        raise RewriteError("LIMIT must be followed by a non-negative integer literal")

    requested = int(value.text)
    if requested > ceiling:
        return _splice(text, value.start, value.end, str(ceiling)), ceiling
    return text, requested


def field_tokens(tokens: Sequence[Token]) -> list[Token]:
    """Identifier tokens that name fields (not keywords, functions, the object or its alias)."""
    obj, alias = find_main_object(tokens)
    excluded = {id(obj)}
    if alias is not None:
        excluded.add(id(alias))
    return [
        token
        for token in tokens
        if token.kind is TokenKind.IDENT
        and token.upper not in RESERVED_WORDS
        and id(token) not in excluded
    ]


def _function_title(name: str) -> str:
    return "_".join(part.capitalize() for part in name.split("_"))


def _select_items(tokens: Sequence[Token]) -> list[list[Token]]:
    """Split the SELECT list into items at top-level commas."""
    from_idx = _from_index(tokens)
    items: list[list[Token]] = [[]]
    depth = 0
    for token in tokens[1:from_idx]:
        if token.kind is TokenKind.LPAREN:
            depth += 1
        elif token.kind is TokenKind.RPAREN:
            depth -= 1
        if token.kind is TokenKind.COMMA and depth == 0:
            items.append([])
            continue
        items[-1].append(token)
    return [item for item in items if item]


def aggregate_column_labels(tokens: Sequence[Token]) -> tuple[tuple[str, str], ...]:
    """
    Stable names for unaliased aggregate columns.

    The record store returns unaliased aggregate and date-function columns as
    expr0, expr1, ... in SELECT order. COUNT(Id) becomes Id_Count, COUNT()
    becomes Count. A label that collides with another selected name keeps
    its positional key.
    """
    items = _select_items(tokens)
    taken = {
        item[0].text.split(".")[-1]
        for item in items
        if len(item) == 1 and item[0].kind is TokenKind.IDENT
    }
    taken.update(
        item[-1].text for item in items if len(item) > 1 and item[-1].kind is TokenKind.IDENT
    )

    labels: list[tuple[str, str]] = []
    expr_index = 0
    for item in items:
        head = item[0]
        is_function = (
            len(item) >= 3
            and head.is_word(*(AGGREGATE_FUNCTIONS | DATE_FUNCTIONS))
            and item[1].kind is TokenKind.LPAREN
        )
        if not is_function:
            continue
        close = max(i for i, t in enumerate(item) if t.kind is TokenKind.RPAREN)
        if close < len(item) - 1:
            # Aliased: the store already uses the alias as the key
            continue

        key = f"expr{expr_index}"
        expr_index += 1
        inner = item[2:close]
        if not inner:
            label = _function_title(head.upper)
        elif len(inner) == 1 and inner[0].kind is TokenKind.IDENT:
            label = f"{inner[0].text.split('.')[-1]}_{_function_title(head.upper)}"
        else:
            continue
        if label in taken:
            continue
        taken.add(label)
        labels.append((key, label))
    return tuple(labels)
