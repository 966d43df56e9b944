"""Entity Store — persistence boundary for imported entities.

The engine only talks to the ``EntityStore`` protocol. Relation metadata is
declarative (``EntityDef``/``RelationDef``) and supplied up front, never
introspected while a flow runs. ``InMemoryEntityStore`` is the reference
implementation used by the CLI, the API and the test suite.
"""

import copy
import logging
import re
from typing import Any, Optional, Protocol

from pydantic import BaseModel

from inflow.core.errors import EntityNotFoundError, UniqueConstraintError
from inflow.core.models import RelationKind

logger = logging.getLogger(__name__)

RECONCILE_MODES = ("replace", "add", "remove")


def snake_case(name: str) -> str:
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name).lower()


class FieldDef(BaseModel):
    name: str
    type: str = "string"
    max_length: Optional[int] = None
    unique: bool = False
    rules: Optional[str] = None
    system: bool = False


class RelationDef(BaseModel):
    name: str
    kind: RelationKind
    related: str
    foreign_key: Optional[str] = None
    local_key: str = "id"


class EntityDef(BaseModel):
    name: str
    primary_key: str = "id"
    fields: dict[str, FieldDef] = {}
    relations: dict[str, RelationDef] = {}
    unique_keys: list[str] = []

    def model_post_init(self, __context: Any) -> None:
        for rel in self.relations.values():
            if rel.foreign_key is None:
                rel.foreign_key = self.default_foreign_key(rel)

    def default_foreign_key(self, rel: RelationDef) -> Optional[str]:
        if rel.kind is RelationKind.BELONGS_TO:
            return f"{snake_case(rel.name)}_id"
        if rel.kind in (RelationKind.HAS_ONE, RelationKind.HAS_MANY):
            return f"{snake_case(self.name)}_id"
        return None

    def is_unique(self, field_name: str) -> bool:
        if field_name == self.primary_key or field_name in self.unique_keys:
            return True
        field_def = self.fields.get(field_name)
        return bool(field_def and field_def.unique)


class EntityStore(Protocol):
    def describe(self, entity: str) -> EntityDef: ...

    def fields(self, entity: str) -> list[FieldDef]: ...

    def relations(self, entity: str) -> list[RelationDef]: ...

    def relation(self, entity: str, name: str) -> Optional[RelationDef]: ...

    def create(self, entity: str, attributes: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, entity: str, record_id: Any, attributes: dict[str, Any]) -> dict[str, Any]: ...

    def find(self, entity: str, record_id: Any) -> Optional[dict[str, Any]]: ...

    def find_by(self, entity: str, field: str, value: Any) -> Optional[dict[str, Any]]: ...

    def find_where(self, entity: str, criteria: dict[str, Any]) -> Optional[dict[str, Any]]: ...

    def find_many(self, entity: str, field: str, values: list[Any]) -> list[dict[str, Any]]: ...

    def links(self, entity: str, record_id: Any, relation: str) -> dict[Any, dict[str, Any]]: ...

    def reconcile_links(
        self,
        entity: str,
        record_id: Any,
        relation: str,
        links: dict[Any, dict[str, Any]],
        mode: str = "replace",
    ) -> dict[str, list[Any]]: ...


def _same(a: Any, b: Any) -> bool:
    """Loose equality so "42" from a file matches a stored 42."""
    if a == b:
        return True
    if a is None or b is None:
        return False
    return str(a) == str(b)


class InMemoryEntityStore:
    """Dict-backed EntityStore with auto-increment ids and link tables."""

    def __init__(self, definitions: list[EntityDef]):
        self._defs: dict[str, EntityDef] = {d.name: d for d in definitions}
        self._records: dict[str, dict[int, dict[str, Any]]] = {d.name: {} for d in definitions}
        self._next_id: dict[str, int] = {d.name: 1 for d in definitions}
        # (entity, relation) -> owner id -> related id -> pivot attributes
        self._links: dict[tuple[str, str], dict[Any, dict[Any, dict[str, Any]]]] = {}

    # Metadata

    def describe(self, entity: str) -> EntityDef:
        try:
            return self._defs[entity]
        except KeyError:
            raise EntityNotFoundError(entity)

    def fields(self, entity: str) -> list[FieldDef]:
        return [f for f in self.describe(entity).fields.values() if not f.system]

    def relations(self, entity: str) -> list[RelationDef]:
        return list(self.describe(entity).relations.values())

    def relation(self, entity: str, name: str) -> Optional[RelationDef]:
        return self.describe(entity).relations.get(name)

    # Records

    def _check_unique(self, entity: str, attributes: dict[str, Any], record_id: Any = None) -> None:
        definition = self.describe(entity)
        for name, value in attributes.items():
            if value is None or name == definition.primary_key or not definition.is_unique(name):
                continue
            for rid, record in self._records[entity].items():
                if rid != record_id and _same(record.get(name), value):
                    raise UniqueConstraintError(
                        f"Unique constraint violated on {entity}.{name}: {value!r}"
                    )

    def create(self, entity: str, attributes: dict[str, Any]) -> dict[str, Any]:
        definition = self.describe(entity)
        self._check_unique(entity, attributes)
        record_id = self._next_id[entity]
        self._next_id[entity] += 1
        record = {**attributes, definition.primary_key: record_id}
        self._records[entity][record_id] = record
        logger.debug(f"Created {entity}#{record_id}")
        return copy.deepcopy(record)

    def update(self, entity: str, record_id: Any, attributes: dict[str, Any]) -> dict[str, Any]:
        definition = self.describe(entity)
        record = self._records[entity].get(record_id)
        if record is None:
            raise KeyError(f"{entity}#{record_id} does not exist")
        changes = {k: v for k, v in attributes.items() if k != definition.primary_key}
        self._check_unique(entity, changes, record_id)
        record.update(changes)
        return copy.deepcopy(record)

    def find(self, entity: str, record_id: Any) -> Optional[dict[str, Any]]:
        for rid, record in self._records[self.describe(entity).name].items():
            if _same(rid, record_id):
                return copy.deepcopy(record)
        return None

    def find_by(self, entity: str, field: str, value: Any) -> Optional[dict[str, Any]]:
        return self.find_where(entity, {field: value})

    def find_where(self, entity: str, criteria: dict[str, Any]) -> Optional[dict[str, Any]]:
        self.describe(entity)
        for record in self._records[entity].values():
            if all(_same(record.get(k), v) for k, v in criteria.items()):
                return copy.deepcopy(record)
        return None

    def find_many(self, entity: str, field: str, values: list[Any]) -> list[dict[str, Any]]:
        self.describe(entity)
        wanted = {str(v) for v in values if v is not None}
        return [
            copy.deepcopy(r)
            for r in self._records[entity].values()
            if r.get(field) is not None and str(r.get(field)) in wanted
        ]

    def all(self, entity: str) -> list[dict[str, Any]]:
        self.describe(entity)
        return [copy.deepcopy(r) for r in self._records[entity].values()]

    def count(self, entity: str) -> int:
        return len(self._records[self.describe(entity).name])

    # Many-to-many links

    def links(self, entity: str, record_id: Any, relation: str) -> dict[Any, dict[str, Any]]:
        table = self._links.get((entity, relation), {})
        return copy.deepcopy(table.get(record_id, {}))

    def reconcile_links(
        self,
        entity: str,
        record_id: Any,
        relation: str,
        links: dict[Any, dict[str, Any]],
        mode: str = "replace",
    ) -> dict[str, list[Any]]:
        """Reconcile an owner's link set.

        replace: the owner ends up linked to exactly ``links``.
        add: missing links are attached, existing ones keep or update pivots.
        remove: listed links are detached; an empty set detaches everything.
        """
        if mode not in RECONCILE_MODES:
            raise ValueError(f"Unknown reconcile mode: {mode}")
        rel = self.relation(entity, relation)
        if rel is None or rel.kind is not RelationKind.BELONGS_TO_MANY:
            raise ValueError(f"{entity}.{relation} is not a many-to-many relation")

        current = self._links.setdefault((entity, relation), {}).setdefault(record_id, {})
        result: dict[str, list[Any]] = {"attached": [], "detached": [], "updated": []}

        if mode == "remove":
            targets = list(current) if not links else [rid for rid in links if rid in current]
            for rid in targets:
                del current[rid]
                result["detached"].append(rid)
            return result

        for rid, pivot in links.items():
            if rid not in current:
                current[rid] = dict(pivot or {})
                result["attached"].append(rid)
            elif pivot and current[rid] != {**current[rid], **pivot}:
                current[rid].update(pivot)
                result["updated"].append(rid)

        if mode == "replace":
            for rid in [rid for rid in current if rid not in links]:
                del current[rid]
                result["detached"].append(rid)
        return result
