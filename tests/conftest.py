"""Shared test helpers for the inflow test suite."""

import tempfile
from pathlib import Path
from typing import Optional

import openpyxl

from inflow.core.entity_store import InMemoryEntityStore
from inflow.core.flow import Flow, FlowOptions
from inflow.core.mapping import ColumnMapping, EntityMapping, MappingDefinition
from inflow.core.schema_registry import SchemaRegistry

LIBRARY_SCHEMA_YAML = """
name: library
version: "1.0"
entities:
  User:
    fields:
      name: {type: string, max_length: 10}
      email: {type: string, unique: true, rules: "required|email"}
      age: {type: integer, rules: "nullable|integer|min:0"}
  Author:
    fields:
      name: {type: string, unique: true}
      country: {type: string}
    relations:
      books: {kind: has_many, related: Book}
      profile: {kind: has_one, related: Profile}
  Profile:
    fields:
      bio: {type: text}
      author_id: {type: integer, system: true}
  Book:
    fields:
      title: {type: string, max_length: 20}
      isbn: {type: string, unique: true}
      author_id: {type: integer, system: true}
    relations:
      author: {kind: belongs_to, related: Author}
      tags: {kind: belongs_to_many, related: Tag}
  Tag:
    fields:
      name: {type: string, unique: true}
"""


def make_store(yaml_content: str = LIBRARY_SCHEMA_YAML) -> InMemoryEntityStore:
    """Empty in-memory store for the library test schema."""
    schema = SchemaRegistry().load_schema_from_yaml(yaml_content)
    return InMemoryEntityStore(list(schema.entities.values()))


def make_mapping(
    entity: str,
    columns: list[dict],
    options: Optional[dict] = None,
    execution_order: int = 1,
) -> EntityMapping:
    return EntityMapping(
        entity=entity,
        columns=[ColumnMapping(**c) for c in columns],
        options=options or {},
        execution_order=execution_order,
    )


def make_definition(*mappings: EntityMapping, name: str = "test_mapping") -> MappingDefinition:
    return MappingDefinition(name=name, mappings=list(mappings))


def user_mapping(options: Optional[dict] = None) -> EntityMapping:
    """name/email/age columns onto User."""
    return make_mapping(
        "User",
        [
            {"source": "name", "target": "name", "transforms": ["trim"]},
            {"source": "email", "target": "email", "transforms": ["trim", "lower"]},
            {"source": "age", "target": "age", "transforms": ["cast:int"]},
        ],
        options=options,
    )


def write_text(content: str, suffix: str = ".csv", encoding: str = "utf-8") -> Path:
    """Write a temporary text file and return its path."""
    path = Path(tempfile.mktemp(suffix=suffix))
    path.write_bytes(content.encode(encoding))
    return path


def write_bytes(data: bytes, suffix: str = ".csv") -> Path:
    path = Path(tempfile.mktemp(suffix=suffix))
    path.write_bytes(data)
    return path


def create_workbook(rows: list[list], sheet_name: str = "Sheet1") -> Path:
    """Create a test Excel file with given rows."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_name
    for row in rows:
        ws.append(row)
    path = Path(tempfile.mktemp(suffix=".xlsx"))
    wb.save(path)
    wb.close()
    return path


def make_flow(
    path: Path,
    definition: Optional[MappingDefinition] = None,
    **options,
) -> Flow:
    """Flow over one file with sanitizer defaults and the given option overrides."""
    return Flow(
        name="test_flow",
        source_config={"type": "file", "path": str(path)},
        sanitizer_config={"enabled": True},
        mapping=definition,
        options=FlowOptions(**options),
    )
