"""Tests for the entity schema registry."""

import tempfile
from pathlib import Path

import pytest

from inflow.core.models import RelationKind
from inflow.core.schema_registry import SchemaRegistry
from tests.conftest import LIBRARY_SCHEMA_YAML

INVALID_SCHEMA_YAML = """
name: broken
entities:
  Book:
    fields:
      title: {type: varchar}
      pages: {type: integer, max_length: 0}
    unique_keys: [isbn]
    relations:
      author: {kind: belongs_to, related: Writer}
"""


class TestLoadSchema:
    def test_load_from_yaml(self):
        schema = SchemaRegistry().load_schema_from_yaml(LIBRARY_SCHEMA_YAML)
        assert schema.name == "library"
        assert schema.version == "1.0"
        assert set(schema.entities) == {"User", "Author", "Profile", "Book", "Tag"}

    def test_fields_and_relations_parsed(self):
        schema = SchemaRegistry().load_schema_from_yaml(LIBRARY_SCHEMA_YAML)
        book = schema.entities["Book"]
        assert book.fields["title"].max_length == 20
        assert book.fields["isbn"].unique is True
        assert book.relations["author"].kind is RelationKind.BELONGS_TO
        assert book.relations["author"].foreign_key == "author_id"
        assert schema.entities["Author"].relations["books"].foreign_key == "author_id"
        assert schema.entities["User"].fields["email"].rules == "required|email"

    def test_relation_type_alias(self):
        yaml_content = """
name: alias
entities:
  Post:
    relations:
      tags: {type: belongs_to_many, related: Tag}
  Tag: {}
"""
        schema = SchemaRegistry().load_schema_from_yaml(yaml_content)
        assert schema.entities["Post"].relations["tags"].kind is RelationKind.BELONGS_TO_MANY

    def test_name_required(self):
        with pytest.raises(ValueError, match="must define a name"):
            SchemaRegistry().load_schema_from_yaml("entities: {}")

    def test_not_a_mapping(self):
        with pytest.raises(ValueError, match="must be a mapping"):
            SchemaRegistry().load_schema_from_yaml("- a\n- b\n")


class TestValidateSchema:
    def test_valid_schema(self):
        registry = SchemaRegistry()
        assert registry.validate_schema(registry.load_schema_from_yaml(LIBRARY_SCHEMA_YAML)) == []

    def test_invalid_schema_errors(self):
        registry = SchemaRegistry()
        errors = registry.validate_schema(registry.load_schema_from_yaml(INVALID_SCHEMA_YAML))
        assert len(errors) == 4
        assert any("invalid type 'varchar'" in e for e in errors)
        assert any("max_length must be positive" in e for e in errors)
        assert any("unique key 'isbn'" in e for e in errors)
        assert any("related entity 'Writer'" in e for e in errors)

    def test_register_rejects_invalid(self):
        registry = SchemaRegistry()
        with pytest.raises(ValueError, match="Schema validation errors"):
            registry.register_schema(registry.load_schema_from_yaml(INVALID_SCHEMA_YAML))


class TestSchemaFiles:
    def _schemas_dir(self) -> Path:
        directory = Path(tempfile.mkdtemp())
        (directory / "library.yaml").write_text(LIBRARY_SCHEMA_YAML)
        (directory / "_draft.yaml").write_text("name: draft\nentities: {}\n")
        return directory

    def test_load_by_name(self):
        registry = SchemaRegistry(str(self._schemas_dir()))
        schema = registry.get_schema("library")
        assert "Book" in schema.entities
        assert registry.get_schema("library") is schema

    def test_missing_schema(self):
        registry = SchemaRegistry(str(self._schemas_dir()))
        with pytest.raises(FileNotFoundError):
            registry.load_schema("nope")

    def test_list_skips_underscore_files(self):
        registry = SchemaRegistry(str(self._schemas_dir()))
        assert registry.list_schemas() == ["library"]

    def test_load_schema_file_missing(self):
        with pytest.raises(FileNotFoundError):
            SchemaRegistry().load_schema_file(Path("/nonexistent/schema.yaml"))

    def test_build_store(self):
        registry = SchemaRegistry(str(self._schemas_dir()))
        store = registry.build_store("library")
        store.create("Tag", {"name": "php"})
        assert store.count("Tag") == 1
