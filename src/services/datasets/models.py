"""Dataset service models."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DatasetArtifact:
    """Tabular serialization of one validated query's results."""

    name: str
    rows: tuple[dict[str, Any], ...]
    columns: tuple[str, ...]
    content: bytes = field(repr=False)
    byte_size: int

    @property
    def row_count(self) -> int:
        return len(self.rows)
