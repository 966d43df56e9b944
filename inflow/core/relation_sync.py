"""Per-kind strategies that link related entities to an owner record.

Strategies resolve or create related entities from a row's relation payload
and link them to the owner record. A lookup that finds nothing, with
``create_if_missing`` off, skips only that link and never fails the row.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from inflow.core.entity_store import EntityStore, RelationDef
from inflow.core.mapping import ColumnMapping
from inflow.core.models import DuplicateStrategy, LinkStrategy, RelationKind
from inflow.core.transform_engine import TransformEngine

logger = logging.getLogger(__name__)


@dataclass
class Lookup:
    field: str
    create_if_missing: bool = False
    delimiter: Optional[str] = None


@dataclass
class RelationPayload:
    """Everything one row maps onto a single relation of the owner."""
    relation: RelationDef
    data: dict[str, Any] = field(default_factory=dict)
    columns: dict[str, ColumnMapping] = field(default_factory=dict)
    array_data: Optional[list[Any]] = None
    item_fields: dict[str, ColumnMapping] = field(default_factory=dict)
    pivot: dict[str, Any] = field(default_factory=dict)
    lookup: Optional[Lookup] = None


@dataclass
class SyncContext:
    row: dict[str, Any]
    duplicate_strategy: DuplicateStrategy = DuplicateStrategy.ERROR
    link_strategy: LinkStrategy = LinkStrategy.SYNC


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _camel(name: str) -> str:
    words = [w for w in re.split(r"[_\s\-]+", name) if w]
    if not words:
        return name
    return words[0][:1].lower() + words[0][1:] + "".join(w[:1].upper() + w[1:] for w in words[1:])


def _normalized(name: str) -> str:
    return re.sub(r"[_\s\-]", "", name).lower()


def field_variants(name: str) -> list[str]:
    camel = _camel(name)
    variants = [name, camel, camel[:1].upper() + camel[1:], name.replace("_", "")]
    return list(dict.fromkeys(variants))


def extract_field(item: dict[str, Any], name: str) -> Any:
    """Value of ``name`` in item, trying common key spellings in order."""
    for variant in field_variants(name):
        if variant in item:
            return item[variant]
    wanted = _normalized(name)
    for key, value in item.items():
        if isinstance(key, str) and _normalized(key) == wanted:
            return value
    return None


def is_empty_relation_data(data: Any) -> bool:
    """True when a payload carries no real field values."""
    if data is None:
        return True
    if not isinstance(data, dict):
        return data == "" or data == []
    for value in data.values():
        if value is None:
            continue
        if isinstance(value, str) and value.strip() == "":
            continue
        return False
    return True


class RelationSyncStrategy:
    kind: RelationKind

    def __init__(self, store: EntityStore, engine: TransformEngine):
        self.store = store
        self.engine = engine

    def _pk(self, entity: str) -> str:
        return self.store.describe(entity).primary_key

    def build_items(self, payload: RelationPayload, ctx: SyncContext) -> list[dict[str, Any]]:
        """Normalize array data into item dicts, transforming mapped item fields."""
        items = []
        for raw in payload.array_data or []:
            if payload.item_fields:
                if isinstance(raw, dict):
                    item = {name: extract_field(raw, name) for name in payload.item_fields}
                else:
                    item = {next(iter(payload.item_fields)): raw}
                for name, column in payload.item_fields.items():
                    item[name] = self.engine.apply(item[name], column.transforms, {"row": ctx.row})
            elif isinstance(raw, dict):
                item = dict(raw)
            else:
                continue
            if not is_empty_relation_data(item):
                items.append(item)
        return items

    def sync(self, owner_entity: str, owner: dict[str, Any], payload: RelationPayload, ctx: SyncContext) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# To-one
# ---------------------------------------------------------------------------


class HasOneStrategy(RelationSyncStrategy):
    kind = RelationKind.HAS_ONE

    def sync(self, owner_entity, owner, payload, ctx) -> None:
        rel = payload.relation
        data = payload.data
        if is_empty_relation_data(data):
            return
        owner_key = owner[rel.local_key]
        attributes = {**data, rel.foreign_key: owner_key}

        if payload.lookup is None:
            existing = self.store.find_where(rel.related, {rel.foreign_key: owner_key})
            if existing:
                self.store.update(rel.related, existing[self._pk(rel.related)], data)
            else:
                self.store.create(rel.related, attributes)
            return

        value = data.get(payload.lookup.field)
        if value is None:
            return
        found = self.store.find_by(rel.related, payload.lookup.field, value)
        if found is None:
            if payload.lookup.create_if_missing:
                self.store.create(rel.related, attributes)
            else:
                logger.info(f"{rel.related} with {payload.lookup.field}={value!r} not found; link skipped")
            return
        self.store.update(rel.related, found[self._pk(rel.related)], attributes)


class BelongsToStrategy(RelationSyncStrategy):
    """Resolves the parent before the owner is written; returns its key."""

    kind = RelationKind.BELONGS_TO

    def resolve(self, payload: RelationPayload, ctx: SyncContext) -> Optional[Any]:
        rel = payload.relation
        data = payload.data
        if is_empty_relation_data(data):
            return None
        pk = self._pk(rel.related)

        if payload.lookup is None:
            return data.get(pk)

        value = data.get(payload.lookup.field)
        if value is None:
            return None
        found = self.store.find_by(rel.related, payload.lookup.field, value)
        if found is None:
            if not payload.lookup.create_if_missing:
                logger.info(f"{rel.related} with {payload.lookup.field}={value!r} not found; link skipped")
                return None
            found = self.store.create(rel.related, dict(data))
        return found[rel.local_key]


# ---------------------------------------------------------------------------
# To-many
# ---------------------------------------------------------------------------


class HasManyStrategy(RelationSyncStrategy):
    kind = RelationKind.HAS_MANY

    def sync(self, owner_entity, owner, payload, ctx) -> None:
        rel = payload.relation
        owner_key = owner[rel.local_key]
        if payload.array_data is not None:
            items = self.build_items(payload, ctx)
        else:
            items = [] if is_empty_relation_data(payload.data) else [dict(payload.data)]
        if not items:
            return

        if payload.lookup is None:
            for item in items:
                self.store.create(rel.related, {**item, rel.foreign_key: owner_key})
            return

        lookup_field = payload.lookup.field
        values = [item.get(lookup_field) for item in items if item.get(lookup_field) is not None]
        existing = {
            str(r.get(lookup_field)): r
            for r in self.store.find_many(rel.related, lookup_field, values)
        }
        pk = self._pk(rel.related)

        for item in items:
            value = item.get(lookup_field)
            if value is None:
                continue
            record = existing.get(str(value))
            attributes = {**item, rel.foreign_key: owner_key}
            if record is None:
                if payload.lookup.create_if_missing:
                    existing[str(value)] = self.store.create(rel.related, attributes)
                continue
            if ctx.duplicate_strategy is DuplicateStrategy.SKIP:
                continue
            self.store.update(rel.related, record[pk], attributes)


class BelongsToManyStrategy(RelationSyncStrategy):
    kind = RelationKind.BELONGS_TO_MANY

    def _resolve_values(self, payload: RelationPayload, values: list[Any], extra: dict[str, Any]) -> list[Any]:
        """Ids for lookup values: one batched query, then optional creates."""
        rel = payload.relation
        lookup = payload.lookup
        pk = self._pk(rel.related)
        found = {
            str(r.get(lookup.field)): r[pk]
            for r in self.store.find_many(rel.related, lookup.field, values)
        }
        ids = []
        for value in values:
            related_id = found.get(str(value))
            if related_id is None:
                if not lookup.create_if_missing:
                    logger.info(f"{rel.related} with {lookup.field}={value!r} not found; link skipped")
                    continue
                attributes = {**extra.get(str(value), {}), lookup.field: value}
                related_id = self.store.create(rel.related, attributes)[pk]
                found[str(value)] = related_id
            if related_id not in ids:
                ids.append(related_id)
        return ids

    def _single_ids(self, payload: RelationPayload) -> list[Any]:
        data = payload.data
        pk = self._pk(payload.relation.related)
        if data.get(pk) is not None:
            return [data[pk]]
        if payload.lookup is None:
            return []
        value = data.get(payload.lookup.field)
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return []

        delimiter = payload.lookup.delimiter
        if delimiter and isinstance(value, str) and delimiter in value:
            values = [v.strip() for v in value.split(delimiter) if v.strip()]
        elif isinstance(value, list):
            values = [v for v in value if v is not None and str(v).strip() != ""]
        else:
            values = [value]

        extra = {k: v for k, v in data.items() if k != payload.lookup.field and v is not None}
        return self._resolve_values(payload, values, {str(v): extra for v in values})

    def _array_ids(self, payload: RelationPayload, ctx: SyncContext) -> list[Any]:
        pk = self._pk(payload.relation.related)
        ids = []
        lookup_values = []
        extra: dict[str, dict[str, Any]] = {}
        for item in self.build_items(payload, ctx):
            if item.get(pk) is not None:
                ids.append(item[pk])
            elif payload.lookup is not None and item.get(payload.lookup.field) is not None:
                value = item[payload.lookup.field]
                lookup_values.append(value)
                extra[str(value)] = {k: v for k, v in item.items() if v is not None}
        if lookup_values:
            ids.extend(i for i in self._resolve_values(payload, lookup_values, extra) if i not in ids)
        return ids

    def sync(self, owner_entity, owner, payload, ctx) -> None:
        rel = payload.relation
        if payload.array_data is not None:
            ids = self._array_ids(payload, ctx)
        else:
            ids = self._single_ids(payload)

        mode = ctx.link_strategy.reconcile_mode
        if not ids and mode != "remove":
            return
        links = {related_id: dict(payload.pivot) for related_id in ids}
        result = self.store.reconcile_links(
            owner_entity, owner[self._pk(owner_entity)], rel.name, links, mode
        )
        logger.debug(f"Synced {owner_entity}.{rel.name}: {result}")


STRATEGIES: dict[RelationKind, type[RelationSyncStrategy]] = {
    RelationKind.HAS_ONE: HasOneStrategy,
    RelationKind.BELONGS_TO: BelongsToStrategy,
    RelationKind.HAS_MANY: HasManyStrategy,
    RelationKind.BELONGS_TO_MANY: BelongsToManyStrategy,
}


def strategy_for(kind: RelationKind, store: EntityStore, engine: TransformEngine) -> RelationSyncStrategy:
    return STRATEGIES[kind](store, engine)
