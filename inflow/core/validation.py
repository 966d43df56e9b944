"""Row validation: transform mapped values, then check validation rules.

Rules use a pipe-separated expression per field, e.g.
``required|email|max:255`` or ``nullable|integer|min:1``. A mapping's own
rule wins over the rule declared for the field in the entity store.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

from inflow.core.entity_store import EntityStore
from inflow.core.mapping import ColumnMapping, EntityMapping, Row
from inflow.core.models import DuplicateStrategy
from inflow.core.transform_engine import TransformEngine
from inflow.core.transforms import is_number, parse_datetime, to_number

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
INTEGER_RE = re.compile(r"^[+-]?\d+$")
BOOLEAN_VALUES = {True, False, 0, 1, "0", "1", "true", "false"}


@dataclass
class ValidationResult:
    passes: bool
    errors: dict[str, list[str]] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)


def is_item_column(column: ColumnMapping) -> bool:
    """Columns addressing fields inside collection items (``rel.*.field``)."""
    parts = column.parse_path()
    return len(parts) >= 3 and parts[1] == "*"


def parse_rules(expression: str | list[str] | None) -> list[tuple[str, Optional[str]]]:
    """Split a rule expression into (name, parameter) pairs.

    ``regex:`` swallows the rest of the expression, so it must come last.
    """
    if not expression:
        return []
    if isinstance(expression, list):
        parts = expression
    else:
        head, sep, pattern = expression.partition("regex:")
        parts = [p for p in head.split("|") if p.strip()]
        if sep:
            parts.append(f"regex:{pattern}")

    rules = []
    for part in parts:
        name, _, param = part.strip().partition(":")
        rules.append((name.strip(), param if param != "" else None))
    return rules


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return not value
    return False


def _regex_from_literal(pattern: str) -> re.Pattern:
    if len(pattern) >= 2 and pattern.startswith("/") and pattern.rfind("/") > 0:
        end = pattern.rfind("/")
        flags = re.IGNORECASE if "i" in pattern[end + 1:] else 0
        return re.compile(pattern[1:end], flags)
    return re.compile(pattern)


class RuleChecker:
    """Evaluates parsed rules against one value."""

    def __init__(self, store: Optional[EntityStore] = None):
        self.store = store

    def check(
        self,
        attribute: str,
        value: Any,
        expression: str | list[str] | None,
        ignore_id: Any = None,
    ) -> list[str]:
        rules = parse_rules(expression)
        names = {name for name, _ in rules}
        errors: list[str] = []

        if _is_blank(value):
            if "required" in names:
                errors.append(f"The {attribute} field is required.")
            return errors

        for name, param in rules:
            if name in ("required", "nullable", "sometimes"):
                continue
            message = self._check_one(attribute, value, name, param, ignore_id, names)
            if message:
                errors.append(message)
        return errors

    def _check_one(self, attribute, value, name, param, ignore_id, names) -> Optional[str]:
        if name == "string":
            return None if isinstance(value, str) else f"The {attribute} field must be a string."
        if name == "integer":
            ok = (isinstance(value, int) and not isinstance(value, bool)) or (
                isinstance(value, str) and INTEGER_RE.match(value.strip())
            )
            return None if ok else f"The {attribute} field must be an integer."
        if name == "numeric":
            return None if to_number(value) is not None else f"The {attribute} field must be a number."
        if name == "boolean":
            candidate = value.strip().lower() if isinstance(value, str) else value
            return None if candidate in BOOLEAN_VALUES else f"The {attribute} field must be true or false."
        if name == "email":
            ok = isinstance(value, str) and EMAIL_RE.match(value.strip())
            return None if ok else f"The {attribute} field must be a valid email address."
        if name == "url":
            parsed = urlparse(str(value))
            ok = parsed.scheme in ("http", "https", "ftp") and bool(parsed.netloc)
            return None if ok else f"The {attribute} field must be a valid URL."
        if name == "date":
            return None if parse_datetime(value) is not None else f"The {attribute} field must be a valid date."
        if name in ("min", "max"):
            return self._check_size(attribute, value, name, param, names)
        if name == "in":
            options = [o.strip() for o in (param or "").split(",")]
            return None if str(value) in options else f"The selected {attribute} is invalid."
        if name == "regex":
            ok = isinstance(value, (str, int, float)) and _regex_from_literal(param or "").search(str(value))
            return None if ok else f"The {attribute} field format is invalid."
        if name == "unique":
            return self._check_unique(attribute, value, param, ignore_id)
        raise ValueError(f"Unknown validation rule: {name}")

    def _check_size(self, attribute, value, name, param, names) -> Optional[str]:
        limit = float(param or 0)
        if ("numeric" in names or "integer" in names) and to_number(value) is not None:
            size = float(to_number(value))
        elif isinstance(value, (str, list, dict)):
            size = float(len(value))
        elif is_number(value):
            size = float(value)
        else:
            return None
        if name == "min" and size < limit:
            return f"The {attribute} field must be at least {param}."
        if name == "max" and size > limit:
            return f"The {attribute} field must not be greater than {param}."
        return None

    def _check_unique(self, attribute, value, param, ignore_id) -> Optional[str]:
        if self.store is None or not param:
            return None
        entity, _, column = param.partition(",")
        existing = self.store.find_by(entity.strip(), (column or attribute).strip(), value)
        if existing is None:
            return None
        primary_key = self.store.describe(entity.strip()).primary_key
        if ignore_id is not None and existing.get(primary_key) == ignore_id:
            return None
        return f"The {attribute} has already been taken."


class MappingValidator:
    def __init__(self, engine: TransformEngine, store: Optional[EntityStore] = None):
        self.engine = engine
        self.store = store
        self.rules = RuleChecker(store)

    def source_value(self, row: Row, column: ColumnMapping) -> Any:
        """Raw value for a column, falling back to the column default."""
        value = None if column.is_virtual else row.get(column.source)
        if value is None or value == "":
            value = column.default
        return value

    def transform_values(self, row: Row, mapping: EntityMapping) -> dict[str, Any]:
        """Transformed value per target path; item columns keep raw arrays."""
        context = {"row": row.to_dict()}
        values: dict[str, Any] = {}
        for column in mapping.columns:
            value = self.source_value(row, column)
            if not is_item_column(column):
                value = self.engine.apply(value, column.transforms, context)
            values[column.target] = value
        return values

    def _rule_for(self, mapping: EntityMapping, column: ColumnMapping) -> Optional[str]:
        if column.validation_rule:
            return column.validation_rule
        if self.store is None or column.is_nested:
            return None
        field_def = self.store.describe(mapping.entity).fields.get(column.target)
        return field_def.rules if field_def else None

    def _existing_id(self, mapping: EntityMapping, values: dict[str, Any]) -> Any:
        """Id of the record an update-strategy row will overwrite, if any."""
        if self.store is None or mapping.duplicate_strategy is not DuplicateStrategy.UPDATE:
            return None
        keys = mapping.unique_key
        if not keys:
            return None
        keys = [keys] if isinstance(keys, str) else list(keys)
        criteria = {k: values.get(k) for k in keys}
        if any(v is None for v in criteria.values()):
            return None
        existing = self.store.find_where(mapping.entity, criteria)
        if existing is None:
            return None
        return existing.get(self.store.describe(mapping.entity).primary_key)

    def validate_row(self, row: Row, mapping: EntityMapping) -> ValidationResult:
        values = self.transform_values(row, mapping)
        ignore_id = self._existing_id(mapping, values)

        errors: dict[str, list[str]] = {}
        for column in mapping.columns:
            if is_item_column(column):
                continue
            rule = self._rule_for(mapping, column)
            if not rule:
                continue
            messages = self.rules.check(column.target, values.get(column.target), rule, ignore_id)
            if messages:
                errors.setdefault(column.target, []).extend(messages)

        return ValidationResult(passes=not errors, errors=errors, values=values)
