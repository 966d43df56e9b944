"""Infers a SourceSchema from a sample of source rows.

Used when a flow has no mapping yet: the run then reports column types,
null/unique counts, ranges and example values instead of importing.
"""

import json
import logging
from collections import Counter
from typing import Any, Iterable

from inflow.core.mapping import ColumnMetadata, SourceSchema
from inflow.core.transforms import parse_datetime, to_number
from inflow.core.validation import EMAIL_RE

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 1000
MAX_EXAMPLES = 5
MAX_TRACKED_UNIQUE = 1000

BOOL_STRINGS = {"true", "false", "yes", "no"}


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def classify(value: Any) -> str:
    """Best-guess type of a single non-empty value."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "float"
    if isinstance(value, (list, dict)):
        return "json"
    text = str(value).strip()
    if text.lower() in BOOL_STRINGS:
        return "boolean"
    number = to_number(text)
    if number is not None:
        return "integer" if isinstance(number, int) else "float"
    if EMAIL_RE.match(text):
        return "email"
    if text.startswith(("{", "[")):
        try:
            json.loads(text)
            return "json"
        except json.JSONDecodeError:
            pass
    if parse_datetime(text) is not None:
        return "date"
    return "string"


def _dominant_type(types: Counter) -> str:
    if not types:
        return "string"
    if set(types) <= {"integer", "float"}:
        return "float" if "float" in types else "integer"
    return types.most_common(1)[0][0]


def _comparable(value: Any, column_type: str) -> Any:
    if column_type in ("integer", "float"):
        return to_number(value)
    if isinstance(value, (list, dict)):
        return None
    return str(value)


def profile(rows: Iterable[dict[str, Any]], sample_size: int = SAMPLE_SIZE) -> SourceSchema:
    """Profile up to sample_size rows."""
    values: dict[str, list[Any]] = {}
    total = 0
    for row in rows:
        total += 1
        for name, value in row.items():
            values.setdefault(str(name), []).append(value)
        if total >= sample_size:
            break

    columns = {}
    for name, column_values in values.items():
        filled = [v for v in column_values if not _is_empty(v)]
        types = Counter(classify(v) for v in filled)
        column_type = _dominant_type(types)

        comparable = [c for c in (_comparable(v, column_type) for v in filled) if c is not None]
        hashable = [json.dumps(v, sort_keys=True, default=str) if isinstance(v, (list, dict)) else v for v in filled]
        examples: list[Any] = []
        for v in filled:
            if v not in examples:
                examples.append(v)
            if len(examples) >= MAX_EXAMPLES:
                break

        columns[name] = ColumnMetadata(
            name=name,
            type=column_type,
            null_count=len(column_values) - len(filled) + (total - len(column_values)),
            unique_count=min(len(set(hashable)), MAX_TRACKED_UNIQUE),
            min=min(comparable) if comparable else None,
            max=max(comparable) if comparable else None,
            examples=examples,
        )

    logger.info(f"Profiled {total} rows, {len(columns)} columns")
    return SourceSchema(columns=columns, total_rows=total)
