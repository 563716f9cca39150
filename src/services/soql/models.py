"""SOQL service models."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ValidatedQuery:
    """A plan query after safety checks and access-control/row-limit rewriting."""

    dataset_name: str
    original: str
    main_object: str | None
    rewritten: str | None
    row_limit: int | None = None
    is_valid: bool = True
    error: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)
    column_labels: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def labels(self) -> dict[str, str]:
        """Positional aggregate key -> stable column name."""
        return dict(self.column_labels)
