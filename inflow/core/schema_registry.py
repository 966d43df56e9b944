"""Entity Schema Registry — loads declarative entity schemas from YAML.

A schema lists the target entity types of an import: their fields (type,
max length, uniqueness, validation rules) and relations (kind, related
entity, keys). The registry validates schemas and builds entity stores
from them, so relation metadata is fixed before any flow runs.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel

from inflow.core.config import settings
from inflow.core.entity_store import EntityDef, FieldDef, InMemoryEntityStore, RelationDef
from inflow.core.models import RelationKind

logger = logging.getLogger(__name__)


VALID_FIELD_TYPES = {"string", "text", "integer", "float", "boolean", "date", "datetime", "json"}


class EntitySchema(BaseModel):
    name: str
    version: str = "1.0"
    entities: dict[str, EntityDef] = {}


def _parse_entity(name: str, raw: dict) -> EntityDef:
    """Parse one entity block; fields may be given as a name -> spec mapping."""
    raw = raw or {}
    fields = {
        fname: FieldDef(name=fname, **(fdef or {}))
        for fname, fdef in (raw.get("fields") or {}).items()
    }
    relations = {}
    for rname, rdef in (raw.get("relations") or {}).items():
        rdef = dict(rdef or {})
        kind = rdef.pop("kind", rdef.pop("type", None))
        relations[rname] = RelationDef(name=rname, kind=kind, **rdef)
    return EntityDef(
        name=name,
        primary_key=raw.get("primary_key", "id"),
        fields=fields,
        relations=relations,
        unique_keys=raw.get("unique_keys") or [],
    )


class SchemaRegistry:
    """Loads, validates and caches entity schemas by name."""

    def __init__(self, schemas_dir: Optional[str] = None):
        self._schemas: dict[str, EntitySchema] = {}
        self._schemas_dir = settings.resolve_dir(schemas_dir or settings.schemas_dir)

    def load_schema_from_yaml(self, yaml_content: str) -> EntitySchema:
        """Parse an entity schema from a YAML string."""
        raw = yaml.safe_load(yaml_content)
        if not isinstance(raw, dict):
            raise ValueError("Schema YAML must be a mapping")
        if not raw.get("name"):
            raise ValueError("Schema YAML must define a name")

        entities = {
            name: _parse_entity(name, edef)
            for name, edef in (raw.get("entities") or {}).items()
        }
        return EntitySchema(name=raw["name"], version=str(raw.get("version", "1.0")), entities=entities)

    def load_schema_file(self, path: Path) -> EntitySchema:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Schema file not found: {path}")
        schema = self.load_schema_from_yaml(path.read_text())
        self.register_schema(schema)
        logger.info(f"Loaded schema '{schema.name}' from {path}")
        return schema

    def load_schema(self, name: str) -> EntitySchema:
        """Load the schema with the given name from the schemas directory."""
        for path in self._candidates():
            try:
                raw = yaml.safe_load(path.read_text())
            except yaml.YAMLError:
                logger.warning(f"Skipping unreadable schema file {path}")
                continue
            if isinstance(raw, dict) and raw.get("name") == name:
                return self.load_schema_file(path)

        raise FileNotFoundError(f"No schema file found for '{name}' in {self._schemas_dir}")

    def get_schema(self, name: str) -> EntitySchema:
        """Get cached schema or load it from disk."""
        if name not in self._schemas:
            return self.load_schema(name)
        return self._schemas[name]

    def register_schema(self, schema: EntitySchema) -> None:
        errors = self.validate_schema(schema)
        if errors:
            raise ValueError(f"Schema validation errors for '{schema.name}': {errors}")
        self._schemas[schema.name] = schema

    def validate_schema(self, schema: EntitySchema) -> list[str]:
        """Validate schema integrity. Returns list of error messages (empty = valid)."""
        errors: list[str] = []
        entity_names = set(schema.entities)

        for ename, entity in schema.entities.items():
            for fname, fdef in entity.fields.items():
                if fdef.type not in VALID_FIELD_TYPES:
                    errors.append(
                        f"Entity '{ename}'.{fname}: invalid type '{fdef.type}'. "
                        f"Must be one of {sorted(VALID_FIELD_TYPES)}"
                    )
                if fdef.max_length is not None and fdef.max_length < 1:
                    errors.append(f"Entity '{ename}'.{fname}: max_length must be positive")
            for key in entity.unique_keys:
                if key not in entity.fields and key != entity.primary_key:
                    errors.append(f"Entity '{ename}': unique key '{key}' not found in fields")
            for rname, rel in entity.relations.items():
                if rel.related not in entity_names:
                    errors.append(
                        f"Entity '{ename}'.{rname}: related entity '{rel.related}' "
                        f"not found in entities"
                    )
                if rel.kind is not RelationKind.BELONGS_TO_MANY and not rel.foreign_key:
                    errors.append(f"Entity '{ename}'.{rname}: foreign_key is required")
        return errors

    def list_schemas(self) -> list[str]:
        """Names of schemas available in memory or on disk."""
        names = list(self._schemas)
        for path in self._candidates():
            try:
                raw = yaml.safe_load(path.read_text())
            except yaml.YAMLError:
                continue
            if isinstance(raw, dict) and raw.get("name") and raw["name"] not in names:
                names.append(raw["name"])
        return names

    def build_store(self, name: str) -> InMemoryEntityStore:
        """Create an empty in-memory store for the named schema."""
        schema = self.get_schema(name)
        return InMemoryEntityStore(list(schema.entities.values()))

    def _candidates(self) -> list[Path]:
        if not self._schemas_dir.exists():
            return []
        paths = sorted(self._schemas_dir.glob("*.yaml")) + sorted(self._schemas_dir.glob("*.yml"))
        return [p for p in paths if not p.name.startswith("_")]
