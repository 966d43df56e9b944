"""Declarative source -> target entity mappings.

A MappingDefinition holds one EntityMapping per target entity type. Each
EntityMapping lists ColumnMappings whose dotted target paths address plain
fields (``email``), related entity fields (``author.name``), collections
(``books.*.title``) or pivot attributes (``tags.pivot.weight``).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from inflow.core.models import DuplicateStrategy, LinkStrategy, MappingType

logger = logging.getLogger(__name__)

VIRTUAL_SOURCE_PREFIXES = ("__default_", "__skip_", "__random_")


class RelationLookup(BaseModel):
    field: Optional[str] = None
    create_if_missing: bool = False
    delimiter: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"field": self.field, "create_if_missing": self.create_if_missing}
        if self.delimiter is not None:
            data["delimiter"] = self.delimiter
        return data


class ColumnMapping(BaseModel):
    source: str
    target: str
    transforms: list[str] = []
    default: Any = None
    validation_rule: Optional[str] = None
    relation_lookup: Optional[RelationLookup] = None

    @property
    def is_nested(self) -> bool:
        return "." in self.target

    @property
    def is_virtual(self) -> bool:
        return self.source.startswith(VIRTUAL_SOURCE_PREFIXES)

    def parse_path(self) -> list[str]:
        return self.target.split(".")

    @property
    def relation_name(self) -> Optional[str]:
        return self.parse_path()[0] if self.is_nested else None

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "target": self.target,
            "transforms": list(self.transforms),
            "default": self.default,
            "validation_rule": self.validation_rule,
            "relation_lookup": self.relation_lookup.to_dict() if self.relation_lookup else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ColumnMapping":
        return cls(
            source=data["source"],
            target=data["target"],
            transforms=data.get("transforms") or [],
            default=data.get("default"),
            validation_rule=data.get("validation_rule"),
            relation_lookup=data.get("relation_lookup"),
        )


class EntityMapping(BaseModel):
    """All column mappings targeting one entity type."""

    model_config = ConfigDict(populate_by_name=True)

    entity: str = Field(alias="model")
    columns: list[ColumnMapping] = []
    options: dict[str, Any] = {}
    execution_order: int = 1
    type: MappingType = MappingType.ENTITY
    relation_path: Optional[str] = None

    @property
    def is_pivot_sync(self) -> bool:
        return self.type is MappingType.PIVOT_SYNC

    @property
    def unique_key(self) -> Optional[str | list[str]]:
        return self.options.get("unique_key")

    @property
    def duplicate_strategy(self) -> DuplicateStrategy:
        return DuplicateStrategy(self.options.get("duplicate_strategy") or DuplicateStrategy.ERROR.value)

    @property
    def link_strategy(self) -> LinkStrategy:
        return LinkStrategy(self.options.get("belongs_to_many_strategy") or LinkStrategy.SYNC.value)

    def get_column_by_source(self, source: str) -> Optional[ColumnMapping]:
        return next((c for c in self.columns if c.source == source), None)

    def get_column_by_target(self, target: str) -> Optional[ColumnMapping]:
        return next((c for c in self.columns if c.target == target), None)

    def to_dict(self) -> dict:
        data = {
            "model": self.entity,
            "execution_order": self.execution_order,
            "columns": [c.to_dict() for c in self.columns],
            "options": dict(self.options),
        }
        if self.type is not MappingType.ENTITY:
            data["type"] = self.type.value
        if self.relation_path is not None:
            data["relation_path"] = self.relation_path
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EntityMapping":
        return cls(
            entity=data["model"],
            columns=[ColumnMapping.from_dict(c) for c in data.get("columns", [])],
            options=data.get("options") or {},
            execution_order=data.get("execution_order", 1),
            type=data.get("type") or MappingType.ENTITY,
            relation_path=data.get("relation_path"),
        )


class ColumnMetadata(BaseModel):
    name: str
    type: str = "string"
    null_count: int = 0
    unique_count: int = 0
    min: Any = None
    max: Any = None
    examples: list[Any] = []


class SourceSchema(BaseModel):
    columns: dict[str, ColumnMetadata] = {}
    total_rows: int = 0

    def column_names(self) -> list[str]:
        return list(self.columns)

    def to_dict(self) -> dict:
        return {
            "columns": {name: c.model_dump() for name, c in self.columns.items()},
            "total_rows": self.total_rows,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SourceSchema":
        columns = {
            name: ColumnMetadata(**({"name": name} | meta))
            for name, meta in (data.get("columns") or {}).items()
        }
        return cls(columns=columns, total_rows=data.get("total_rows", 0))


class MappingDefinition(BaseModel):
    name: str
    description: Optional[str] = None
    source_schema: Optional[SourceSchema] = None
    mappings: list[EntityMapping] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def get_entity_mapping(self, entity: str) -> Optional[EntityMapping]:
        return next(
            (m for m in self.mappings if m.entity == entity and not m.is_pivot_sync),
            None,
        )

    def ordered_mappings(self) -> list[EntityMapping]:
        """Mappings by ascending execution_order; ties keep input order."""
        return sorted(self.mappings, key=lambda m: m.execution_order)

    def validate_structure(self) -> list[str]:
        """Structural errors: duplicate entity mappings, bad pivot_sync paths."""
        errors = []
        seen: set[str] = set()
        for m in self.mappings:
            if m.is_pivot_sync:
                if not m.relation_path or len(m.relation_path.split(".")) != 2:
                    errors.append(
                        f"pivot_sync mapping for '{m.entity}' needs relation_path 'Entity.relation'"
                    )
                continue
            if m.entity in seen:
                errors.append(f"Duplicate mapping for entity '{m.entity}'")
            seen.add(m.entity)
        return errors

    def validate_source_columns(self, columns: list[str]) -> list[str]:
        """Source columns referenced by mappings but missing from the source."""
        available = set(columns)
        missing = []
        for m in self.mappings:
            for c in m.columns:
                if c.is_virtual or c.source in available or c.source in missing:
                    continue
                missing.append(c.source)
        return missing

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "description": self.description,
            "source_schema": self.source_schema.to_dict() if self.source_schema else None,
            "mappings": [m.to_dict() for m in self.mappings],
        }
        if self.created_at:
            data["created_at"] = self.created_at
        if self.updated_at:
            data["updated_at"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MappingDefinition":
        schema = data.get("source_schema")
        return cls(
            name=data.get("name") or "Unnamed Mapping",
            description=data.get("description"),
            source_schema=SourceSchema.from_dict(schema) if schema else None,
            mappings=[EntityMapping.from_dict(m) for m in data.get("mappings", [])],
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Row:
    """One source record with its 1-based line number."""
    data: dict[str, Any]
    line_number: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def get(self, column: str, default: Any = None) -> Any:
        return self.data.get(column, default)

    def has(self, column: str) -> bool:
        return column in self.data

    def is_empty(self) -> bool:
        for value in self.data.values():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() == "":
                continue
            if isinstance(value, (list, dict)) and not value:
                continue
            return False
        return True

    def to_dict(self) -> dict:
        return dict(self.data)
