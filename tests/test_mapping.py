"""Tests for the mapping model."""

from inflow.core.mapping import ColumnMapping, EntityMapping, MappingDefinition, Row, SourceSchema
from inflow.core.models import DuplicateStrategy, LinkStrategy, MappingType
from tests.conftest import make_definition, make_mapping

MAPPING_DICT = {
    "name": "books",
    "description": "Books with authors and tags",
    "mappings": [
        {
            "model": "Book",
            "execution_order": 2,
            "columns": [
                {"source": "Title", "target": "title", "transforms": ["trim"]},
                {
                    "source": "Author",
                    "target": "author.name",
                    "relation_lookup": {"field": "name", "create_if_missing": True},
                },
                {
                    "source": "Tags",
                    "target": "tags.name",
                    "relation_lookup": {"field": "name", "create_if_missing": True, "delimiter": ","},
                },
            ],
            "options": {"unique_key": "isbn", "duplicate_strategy": "update"},
        },
        {
            "model": "Author",
            "execution_order": 1,
            "columns": [{"source": "Author", "target": "name"}],
        },
    ],
}


class TestColumnMapping:
    def test_paths(self):
        column = ColumnMapping(source="Tags", target="tags.*.name")
        assert column.is_nested
        assert column.parse_path() == ["tags", "*", "name"]
        assert column.relation_name == "tags"

    def test_plain_target(self):
        column = ColumnMapping(source="Title", target="title")
        assert not column.is_nested
        assert column.relation_name is None

    def test_virtual_sources(self):
        assert ColumnMapping(source="__default_status", target="status").is_virtual
        assert not ColumnMapping(source="status", target="status").is_virtual


class TestEntityMapping:
    def test_default_options(self):
        mapping = make_mapping("Book", [])
        assert mapping.duplicate_strategy is DuplicateStrategy.ERROR
        assert mapping.link_strategy is LinkStrategy.SYNC
        assert mapping.unique_key is None
        assert mapping.type is MappingType.ENTITY

    def test_options(self):
        mapping = make_mapping(
            "Book",
            [],
            options={"unique_key": ["isbn"], "duplicate_strategy": "skip", "belongs_to_many_strategy": "attach"},
        )
        assert mapping.unique_key == ["isbn"]
        assert mapping.duplicate_strategy is DuplicateStrategy.SKIP
        assert mapping.link_strategy.reconcile_mode == "add"

    def test_column_lookup(self):
        mapping = make_mapping("Book", [{"source": "Title", "target": "title"}])
        assert mapping.get_column_by_source("Title").target == "title"
        assert mapping.get_column_by_target("title").source == "Title"
        assert mapping.get_column_by_source("Missing") is None

    def test_model_alias(self):
        mapping = EntityMapping.model_validate({"model": "Book"})
        assert mapping.entity == "Book"


class TestMappingDefinition:
    def test_from_dict(self):
        definition = MappingDefinition.from_dict(MAPPING_DICT)
        book = definition.get_entity_mapping("Book")
        assert book.columns[1].relation_lookup.create_if_missing is True
        assert book.columns[2].relation_lookup.delimiter == ","
        assert book.duplicate_strategy is DuplicateStrategy.UPDATE

    def test_round_trip(self):
        definition = MappingDefinition.from_dict(MAPPING_DICT)
        assert MappingDefinition.from_dict(definition.to_dict()) == definition

    def test_entity_type_omitted_from_dict(self):
        data = MappingDefinition.from_dict(MAPPING_DICT).to_dict()
        assert "type" not in data["mappings"][0]

    def test_ordered_mappings(self):
        definition = MappingDefinition.from_dict(MAPPING_DICT)
        assert [m.entity for m in definition.ordered_mappings()] == ["Author", "Book"]

    def test_ordered_mappings_stable_for_ties(self):
        definition = make_definition(make_mapping("B", []), make_mapping("A", []))
        assert [m.entity for m in definition.ordered_mappings()] == ["B", "A"]

    def test_duplicate_entity_mapping_reported(self):
        definition = make_definition(make_mapping("Book", []), make_mapping("Book", []))
        assert definition.validate_structure() == ["Duplicate mapping for entity 'Book'"]

    def test_pivot_sync_requires_relation_path(self):
        pivot = EntityMapping(entity="BookTag", type=MappingType.PIVOT_SYNC)
        errors = make_definition(pivot).validate_structure()
        assert len(errors) == 1
        assert "relation_path" in errors[0]

    def test_missing_source_columns(self):
        definition = MappingDefinition.from_dict(MAPPING_DICT)
        assert definition.validate_source_columns(["Title", "Author"]) == ["Tags"]

    def test_source_schema(self):
        schema = SourceSchema.from_dict({"columns": {"age": {"type": "integer", "null_count": 1}}, "total_rows": 3})
        assert schema.columns["age"].name == "age"
        assert schema.column_names() == ["age"]
        assert SourceSchema.from_dict(schema.to_dict()) == schema


class TestRow:
    def test_empty_detection(self):
        assert Row(data={"a": None, "b": "  ", "c": []}, line_number=1).is_empty()
        assert not Row(data={"a": 0}, line_number=1).is_empty()

    def test_accessors(self):
        row = Row(data={"a": 1}, line_number=4)
        assert row.get("a") == 1
        assert row.get("b", "x") == "x"
        assert row.has("a")
        assert row.to_dict() == {"a": 1}
