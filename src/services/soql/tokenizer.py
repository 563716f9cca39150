"""Minimal SOQL tokenizer for the accepted read-only grammar subset."""

import re
from dataclasses import dataclass
from enum import Enum


class TokenKind(str, Enum):
    """Lexical token categories."""

    IDENT = "ident"
    NUMBER = "number"
    STRING = "string"
    DATE = "date"
    DATE_LITERAL_N = "date_literal_n"
    OPERATOR = "operator"
    LPAREN = "lparen"
    RPAREN = "rparen"
    COMMA = "comma"


class TokenizeError(ValueError):
    """Raised when a query contains characters outside the accepted grammar."""

    def __init__(self, message: str, position: int):
        super().__init__(message)
        self.position = position


@dataclass(frozen=True)
class Token:
    """A lexical token with its character span in the source text."""

    kind: TokenKind
    text: str
    start: int
    end: int

    @property
    def upper(self) -> str:
        return self.text.upper()

    def is_word(self, *words: str) -> bool:
        """True if this is an identifier matching any of `words` (case-insensitive)."""
        return self.kind is TokenKind.IDENT and self.upper in words


_IDENT = r"[A-Za-z_][A-Za-z0-9_]*"

_TOKEN_SPEC: list[tuple[str, str]] = [
    ("WS", r"\s+"),
    ("STRING", r"'(?:\\.|[^'\\])*'"),
    ("DATE", r"\d{4}-\d{2}-\d{2}(?:T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2}))?"),
    ("DATE_LITERAL_N", rf"{_IDENT}:\d+"),
    ("NUMBER", r"-?\d+(?:\.\d+)?"),
    ("IDENT", rf"{_IDENT}(?:\.{_IDENT})*"),
    ("OPERATOR", r"!=|<>|<=|>=|=|<|>"),
    ("LPAREN", r"\("),
    ("RPAREN", r"\)"),
    ("COMMA", r","),
    ("MISMATCH", r"."),
]

_TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_SPEC), re.DOTALL)


def tokenize(text: str) -> list[Token]:
    """
    Split a SOQL query into tokens.

    Whitespace is insignificant and keyword case is preserved in `text`
    (compare with `Token.upper`). Any character outside the accepted grammar
    (statement separators, bind variables, wildcards, non-ASCII letters)
    raises TokenizeError.
    """
    tokens: list[Token] = []
    for match in _TOKEN_RE.finditer(text):
        kind = match.lastgroup
        value = match.group()
        if kind == "WS":
            continue
        if kind == "MISMATCH":
            if value == "'":
                raise TokenizeError("Unterminated string literal", match.start())
            raise TokenizeError(f"Unexpected character {value!r}", match.start())
        tokens.append(Token(TokenKind[kind], value, match.start(), match.end()))
    return tokens
