"""Dataset builder: executes validated queries and serializes byte-budgeted CSVs."""

import csv
import io
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from src.config.policy import QueryPolicy
from src.infrastructure.salesforce.client import RecordStoreError
from src.services.datasets.models import DatasetArtifact
from src.services.errors import DatasetTooLarge, ExecutionError
from src.services.soql.models import ValidatedQuery

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    async def query(self, soql: str) -> list[dict[str, Any]]: ...


def flatten_record(record: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested relationship objects into dotted keys (Account.Name)."""
    flat: dict[str, Any] = {}
    for key, value in record.items():
        if key == "attributes":
            continue
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(flatten_record(value, f"{name}."))
        else:
            flat[name] = value
    return flat


def collect_columns(rows: Iterable[Mapping[str, Any]]) -> tuple[str, ...]:
    """Sorted union of fields holding a non-null value in at least one row."""
    populated: set[str] = set()
    for row in rows:
        populated.update(key for key, value in row.items() if value is not None)
    return tuple(sorted(populated))


def _format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def serialize_csv(rows: Iterable[Mapping[str, Any]], columns: tuple[str, ...]) -> bytes:
    """Serialize rows to UTF-8 CSV; missing cells are empty, never dropped columns."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_format_cell(row.get(column)) for column in columns])
    return buffer.getvalue().encode("utf-8")


class DatasetBuilder:
    """Builds dataset artifacts from validated queries."""

    def __init__(self, record_store: RecordStore, policy: QueryPolicy):
        self.record_store = record_store
        self.policy = policy

    async def build(self, query: ValidatedQuery) -> DatasetArtifact:
        """
        Execute the rewritten query and serialize the result.

        Raises:
            ExecutionError: if the record store rejects or fails the query
            DatasetTooLarge: if the CSV exceeds the policy byte budget
        """
        if not query.is_valid or not query.rewritten:
            raise ExecutionError(f"Dataset '{query.dataset_name}' has no executable query")

        try:
            records = await self.record_store.query(query.rewritten)
        except RecordStoreError as e:
            raise ExecutionError(f"Dataset '{query.dataset_name}': {e.message}") from e

        return self.serialize(query, records)

    def serialize(self, query: ValidatedQuery, records: list[dict[str, Any]]) -> DatasetArtifact:
        """Turn raw records into a deterministic, budget-checked artifact."""
        labels = query.labels
        rows = tuple(
            {labels.get(key, key): value for key, value in flatten_record(record).items()}
            for record in records
        )
        columns = collect_columns(rows)
        content = serialize_csv(rows, columns)
        byte_size = len(content)

        if byte_size > self.policy.max_csv_bytes:
            logger.warning(
                f"Dataset '{query.dataset_name}' is {byte_size} bytes "
                f"(budget {self.policy.max_csv_bytes})"
            )
            raise DatasetTooLarge(
                f"Dataset '{query.dataset_name}' is {byte_size} bytes, "
                f"over the {self.policy.max_csv_bytes} byte budget"
            )

        logger.info(
            f"Dataset '{query.dataset_name}' built: {len(rows)} rows, "
            f"{len(columns)} columns, {byte_size} bytes"
        )
        return DatasetArtifact(
            name=query.dataset_name,
            rows=rows,
            columns=columns,
            content=content,
            byte_size=byte_size,
        )
