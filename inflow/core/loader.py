"""Entity Loader — writes one validated row into the entity store.

Steps per row and entity mapping:
1. Group transformed values into plain attributes and relation payloads
2. Truncate over-long strings to the declared field length (optional)
3. Resolve belongs-to parents and set the owner's foreign keys
4. Create or update the owner, honoring unique_key + duplicate_strategy
5. Sync every other relation through its strategy
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from inflow.core.entity_store import EntityStore
from inflow.core.errors import DuplicateRecordError
from inflow.core.mapping import ColumnMapping, EntityMapping, Row
from inflow.core.models import DuplicateStrategy, RelationKind
from inflow.core.relation_sync import (
    Lookup,
    RelationPayload,
    SyncContext,
    strategy_for,
)
from inflow.core.transform_engine import TransformEngine

logger = logging.getLogger(__name__)


@dataclass
class GroupedAttributes:
    attributes: dict[str, Any] = field(default_factory=dict)
    relations: dict[str, RelationPayload] = field(default_factory=dict)


@dataclass
class LoadResult:
    action: str  # "created" | "updated" | "skipped"
    record: Optional[dict[str, Any]] = None
    truncated: list[dict[str, Any]] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.action == "skipped"


# ---------------------------------------------------------------------------
# Attribute grouping
# ---------------------------------------------------------------------------


def configure_lookup(
    payload: RelationPayload,
    column: ColumnMapping,
    field_name: str,
    store: EntityStore,
) -> None:
    """Explicit relation_lookup wins; otherwise derive one from the relation kind."""
    if column.relation_lookup is not None:
        payload.lookup = Lookup(
            field=column.relation_lookup.field or field_name,
            create_if_missing=column.relation_lookup.create_if_missing,
            delimiter=column.relation_lookup.delimiter,
        )
        return
    if payload.lookup is not None:
        return

    rel = payload.relation
    related_pk = store.describe(rel.related).primary_key
    if field_name == related_pk:
        return
    if rel.kind in (RelationKind.BELONGS_TO, RelationKind.BELONGS_TO_MANY):
        payload.lookup = Lookup(field=field_name, create_if_missing=False)
    elif rel.kind is RelationKind.HAS_MANY and store.describe(rel.related).is_unique(field_name):
        payload.lookup = Lookup(field=field_name, create_if_missing=True)


def group_attributes(
    mapping: EntityMapping,
    values: dict[str, Any],
    store: EntityStore,
) -> GroupedAttributes:
    """Split target-path values into owner attributes and relation payloads.

    Paths: ``field``, ``rel.field``, ``rel.?field`` (skipped when null),
    ``rel.*`` (whole collection), ``rel.*.field`` and ``rel.pivot.field``.
    """
    grouped = GroupedAttributes()
    for column in mapping.columns:
        value = values.get(column.target)
        parts = column.parse_path()
        if len(parts) == 1:
            grouped.attributes[column.target] = value
            continue

        relation_name = parts[0]
        rel = store.relation(mapping.entity, relation_name)
        if rel is None:
            logger.warning(f"{mapping.entity} has no relation '{relation_name}'; ignoring '{column.target}'")
            continue
        payload = grouped.relations.setdefault(relation_name, RelationPayload(relation=rel))

        if parts[1] == "*":
            if not rel.kind.is_array:
                logger.warning(f"'{column.target}' targets to-one relation {mapping.entity}.{relation_name}")
                continue
            if value is not None and not isinstance(value, list):
                value = [value]
            payload.array_data = value or []
            if len(parts) >= 3:
                payload.item_fields[parts[2]] = column
                configure_lookup(payload, column, parts[2], store)
            continue

        if parts[1] == "pivot" and len(parts) >= 3:
            if value is not None:
                payload.pivot[parts[2]] = value
            continue

        field_name = parts[1]
        if field_name.startswith("?"):
            field_name = field_name[1:]
            if value is None:
                continue
        payload.data[field_name] = value
        payload.columns[field_name] = column
        configure_lookup(payload, column, field_name, store)
    return grouped


def truncate_long_fields(entity: str, attributes: dict[str, Any], store: EntityStore) -> list[dict[str, Any]]:
    """Cut strings longer than their field's max_length, in place."""
    definition = store.describe(entity)
    truncated = []
    for name, value in attributes.items():
        field_def = definition.fields.get(name)
        if field_def is None or field_def.max_length is None or not isinstance(value, str):
            continue
        if len(value) > field_def.max_length:
            attributes[name] = value[:field_def.max_length]
            truncated.append({
                "entity": entity,
                "field": name,
                "original_length": len(value),
                "max_length": field_def.max_length,
            })
    return truncated


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _unique_criteria(mapping: EntityMapping, attributes: dict[str, Any]) -> Optional[dict[str, Any]]:
    keys = mapping.unique_key
    if not keys:
        return None
    keys = [keys] if isinstance(keys, str) else list(keys)
    criteria = {k: attributes.get(k) for k in keys}
    if any(v is None for v in criteria.values()):
        return None
    return criteria


def persist_entity(
    store: EntityStore,
    mapping: EntityMapping,
    attributes: dict[str, Any],
) -> tuple[str, Optional[dict[str, Any]]]:
    """Create or update the owner record; returns (action, record)."""
    criteria = _unique_criteria(mapping, attributes)
    if criteria is None:
        return "created", store.create(mapping.entity, attributes)

    existing = store.find_where(mapping.entity, criteria)
    if existing is None:
        return "created", store.create(mapping.entity, attributes)

    strategy = mapping.duplicate_strategy
    if strategy is DuplicateStrategy.SKIP:
        return "skipped", None
    if strategy is DuplicateStrategy.UPDATE:
        pk = store.describe(mapping.entity).primary_key
        return "updated", store.update(mapping.entity, existing[pk], attributes)
    key_text = ", ".join(f"{k}={v}" for k, v in criteria.items())
    raise DuplicateRecordError(f"Duplicate record found for unique key: {key_text}")


class EntityLoader:
    def __init__(self, store: EntityStore, engine: TransformEngine, truncate: bool = True):
        self.store = store
        self.engine = engine
        self.truncate = truncate

    def load(self, row: Row, mapping: EntityMapping, values: dict[str, Any]) -> LoadResult:
        grouped = group_attributes(mapping, values, self.store)
        attributes = grouped.attributes
        truncated = truncate_long_fields(mapping.entity, attributes, self.store) if self.truncate else []
        for payload in grouped.relations.values():
            if self.truncate and payload.relation.kind is not RelationKind.BELONGS_TO_MANY:
                truncated.extend(truncate_long_fields(payload.relation.related, payload.data, self.store))

        ctx = SyncContext(
            row=row.to_dict(),
            duplicate_strategy=mapping.duplicate_strategy,
            link_strategy=mapping.link_strategy,
        )

        # Parents first so the owner is written with its foreign keys
        deferred = []
        for payload in grouped.relations.values():
            if payload.relation.kind is RelationKind.BELONGS_TO:
                parent_id = strategy_for(RelationKind.BELONGS_TO, self.store, self.engine).resolve(payload, ctx)
                if parent_id is not None:
                    attributes[payload.relation.foreign_key] = parent_id
            else:
                deferred.append(payload)

        action, record = persist_entity(self.store, mapping, attributes)
        if record is None:
            logger.debug(f"Row {row.line_number}: {mapping.entity} duplicate skipped")
            return LoadResult(action=action, truncated=truncated)

        for payload in deferred:
            strategy_for(payload.relation.kind, self.store, self.engine).sync(
                mapping.entity, record, payload, ctx
            )
        return LoadResult(action=action, record=record, truncated=truncated)


# ---------------------------------------------------------------------------
# Pivot sync mappings
# ---------------------------------------------------------------------------


class PivotSyncLoader:
    """Links an existing parent and related record for ``pivot_sync`` mappings.

    Column targets: ``pivot_<attr>`` for link attributes, ``parent.<field>``
    (or the lowercase parent entity name) to find the parent, anything else
    ``<prefix>.<field>`` to find the related record.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def _find(self, entity: str, field_name: str, value: Any, column: ColumnMapping) -> Optional[dict]:
        if value is None or value == "":
            return None
        record = self.store.find_by(entity, field_name, value)
        if record is None and column.relation_lookup and column.relation_lookup.create_if_missing:
            record = self.store.create(entity, {field_name: value})
        return record

    def sync(self, mapping: EntityMapping, values: dict[str, Any]) -> bool:
        """Returns True when a link was written."""
        if not mapping.is_pivot_sync or not mapping.relation_path:
            return False
        parts = mapping.relation_path.split(".")
        if len(parts) != 2:
            return False
        parent_entity, relation_name = parts
        rel = self.store.relation(parent_entity, relation_name)
        if rel is None or rel.kind is not RelationKind.BELONGS_TO_MANY:
            logger.warning(f"{mapping.relation_path} is not a many-to-many relation")
            return False

        parent_prefixes = {"parent", parent_entity.lower()}
        parent_lookup = related_lookup = None
        pivot: dict[str, Any] = {}
        for column in mapping.columns:
            value = values.get(column.target)
            if column.target.startswith("pivot_"):
                if value is not None and value != "":
                    pivot[column.target[len("pivot_"):]] = value
                continue
            if "." not in column.target:
                continue
            prefix, field_name = column.target.split(".", 1)
            if prefix in parent_prefixes:
                parent_lookup = parent_lookup or (field_name, value, column)
            else:
                related_lookup = related_lookup or (field_name, value, column)

        if parent_lookup is None or related_lookup is None:
            return False
        parent = self._find(parent_entity, *parent_lookup)
        related = self._find(rel.related, *related_lookup)
        if parent is None or related is None:
            return False

        parent_pk = self.store.describe(parent_entity).primary_key
        related_pk = self.store.describe(rel.related).primary_key
        self.store.reconcile_links(
            parent_entity, parent[parent_pk], relation_name, {related[related_pk]: pivot}, "add"
        )
        return True
