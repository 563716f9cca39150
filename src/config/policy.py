"""Query policy: the read-only limits every plan is validated against."""

from dataclasses import dataclass
from typing import Literal

from src.config.settings import Settings

PiiGuardMode = Literal["reject", "flag", "off"]


@dataclass(frozen=True)
class QueryPolicy:
    """
    Immutable query policy.

    Built once from settings at startup and passed explicitly to the
    validator and builder, so tests can substitute their own allowlists
    and budgets.
    """

    allowed_objects: frozenset[str]
    row_limit_ceiling: int = 2000
    max_datasets: int = 3
    max_csv_bytes: int = 2_000_000
    access_clause: str = "WITH SECURITY_ENFORCED"
    sensitive_fields: frozenset[str] = frozenset()
    pii_guard_mode: PiiGuardMode = "reject"

    def __post_init__(self) -> None:
        # Normalized once so lookups are case-insensitive
        object.__setattr__(
            self, "allowed_objects", frozenset(name.upper() for name in self.allowed_objects)
        )
        object.__setattr__(
            self, "sensitive_fields", frozenset(name.upper() for name in self.sensitive_fields)
        )

    def allows_object(self, name: str) -> bool:
        """Exact, case-insensitive allowlist match."""
        return name.upper() in self.allowed_objects

    def is_sensitive(self, field_name: str) -> bool:
        """True if the field or its last relationship segment is on the sensitive list."""
        upper = field_name.upper()
        return upper in self.sensitive_fields or upper.split(".")[-1] in self.sensitive_fields

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueryPolicy":
        return cls(
            allowed_objects=frozenset(settings.allowed_objects),
            row_limit_ceiling=settings.row_limit_ceiling,
            max_datasets=settings.max_datasets,
            max_csv_bytes=settings.max_csv_bytes,
            access_clause=settings.access_clause,
            sensitive_fields=frozenset(settings.sensitive_fields),
            pii_guard_mode=settings.pii_guard_mode,
        )
