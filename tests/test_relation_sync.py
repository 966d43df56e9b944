"""Tests for the per-relation sync strategies."""

from unittest.mock import patch

from inflow.core.mapping import ColumnMapping
from inflow.core.models import DuplicateStrategy, LinkStrategy
from inflow.core.relation_sync import (
    BelongsToManyStrategy,
    BelongsToStrategy,
    HasManyStrategy,
    HasOneStrategy,
    Lookup,
    RelationPayload,
    SyncContext,
    extract_field,
    field_variants,
    is_empty_relation_data,
)
from inflow.core.transform_engine import TransformEngine
from tests.conftest import make_store


def _payload(store, entity, relation, **kwargs) -> RelationPayload:
    return RelationPayload(relation=store.relation(entity, relation), **kwargs)


class TestHelpers:
    def test_field_variants(self):
        assert field_variants("first_name") == ["first_name", "firstName", "FirstName", "firstname"]

    def test_extract_field_spellings(self):
        assert extract_field({"firstName": "Ada"}, "first_name") == "Ada"
        assert extract_field({"First-Name": "Ada"}, "first_name") == "Ada"
        assert extract_field({"other": 1}, "first_name") is None

    def test_empty_relation_data(self):
        assert is_empty_relation_data({"name": "  ", "bio": None})
        assert is_empty_relation_data([])
        assert is_empty_relation_data(None)
        assert not is_empty_relation_data({"name": "x"})


class TestBelongsToMany:
    def test_delimited_values_created_once(self):
        store = make_store()
        book = store.create("Book", {"title": "A", "isbn": "1"})
        strategy = BelongsToManyStrategy(store, TransformEngine())
        payload = _payload(
            store, "Book", "tags",
            data={"name": "php, python"},
            lookup=Lookup(field="name", create_if_missing=True, delimiter=","),
        )

        with patch.object(store, "find_many", wraps=store.find_many) as find_many:
            strategy.sync("Book", book, payload, SyncContext(row={}))
            strategy.sync("Book", book, payload, SyncContext(row={}))

        assert store.count("Tag") == 2
        assert find_many.call_count == 2
        assert set(store.links("Book", 1, "tags")) == {1, 2}

    def test_missing_without_create_skips_link(self):
        store = make_store()
        book = store.create("Book", {"title": "A", "isbn": "1"})
        store.create("Tag", {"name": "php"})
        payload = _payload(
            store, "Book", "tags",
            data={"name": "php|go"},
            lookup=Lookup(field="name", delimiter="|"),
        )
        BelongsToManyStrategy(store, TransformEngine()).sync("Book", book, payload, SyncContext(row={}))
        assert store.count("Tag") == 1
        assert set(store.links("Book", 1, "tags")) == {1}

    def test_array_items_with_pivot(self):
        store = make_store()
        book = store.create("Book", {"title": "A", "isbn": "1"})
        payload = _payload(
            store, "Book", "tags",
            array_data=[{"Name": "php"}, {"name": "go"}, {"name": ""}],
            item_fields={"name": ColumnMapping(source="Tags", target="tags.*.name", transforms=["upper"])},
            pivot={"weight": 5},
            lookup=Lookup(field="name", create_if_missing=True),
        )
        BelongsToManyStrategy(store, TransformEngine()).sync("Book", book, payload, SyncContext(row={}))
        assert [t["name"] for t in store.all("Tag")] == ["PHP", "GO"]
        assert store.links("Book", 1, "tags") == {1: {"weight": 5}, 2: {"weight": 5}}

    def test_attach_strategy_keeps_existing_links(self):
        store = make_store()
        book = store.create("Book", {"title": "A", "isbn": "1"})
        store.reconcile_links("Book", 1, "tags", {7: {}})
        payload = _payload(store, "Book", "tags", data={"id": 3})
        ctx = SyncContext(row={}, link_strategy=LinkStrategy.ATTACH)
        BelongsToManyStrategy(store, TransformEngine()).sync("Book", book, payload, ctx)
        assert set(store.links("Book", 1, "tags")) == {3, 7}


class TestHasMany:
    def test_items_created_with_foreign_key(self):
        store = make_store()
        author = store.create("Author", {"name": "Ada"})
        payload = _payload(
            store, "Author", "books",
            array_data=[{"title": "One"}, {"title": "Two"}],
            item_fields={"title": ColumnMapping(source="Books", target="books.*.title")},
        )
        HasManyStrategy(store, TransformEngine()).sync("Author", author, payload, SyncContext(row={}))
        assert [(b["title"], b["author_id"]) for b in store.all("Book")] == [("One", 1), ("Two", 1)]

    def test_lookup_updates_existing_in_one_query(self):
        store = make_store()
        author = store.create("Author", {"name": "Ada"})
        store.create("Book", {"title": "Old", "isbn": "111"})
        payload = _payload(
            store, "Author", "books",
            array_data=[{"isbn": "111", "title": "New"}, {"isbn": "222", "title": "Other"}],
            lookup=Lookup(field="isbn", create_if_missing=True),
        )
        with patch.object(store, "find_many", wraps=store.find_many) as find_many:
            HasManyStrategy(store, TransformEngine()).sync("Author", author, payload, SyncContext(row={}))
        find_many.assert_called_once_with("Book", "isbn", ["111", "222"])
        assert store.find("Book", 1) == {"title": "New", "isbn": "111", "author_id": 1, "id": 1}
        assert store.find("Book", 2)["author_id"] == 1

    def test_skip_strategy_leaves_existing(self):
        store = make_store()
        author = store.create("Author", {"name": "Ada"})
        store.create("Book", {"title": "Old", "isbn": "111"})
        payload = _payload(
            store, "Author", "books",
            array_data=[{"isbn": "111", "title": "New"}],
            lookup=Lookup(field="isbn", create_if_missing=True),
        )
        ctx = SyncContext(row={}, duplicate_strategy=DuplicateStrategy.SKIP)
        HasManyStrategy(store, TransformEngine()).sync("Author", author, payload, ctx)
        assert store.find("Book", 1)["title"] == "Old"


class TestToOne:
    def test_has_one_creates_then_updates(self):
        store = make_store()
        author = store.create("Author", {"name": "Ada"})
        strategy = HasOneStrategy(store, TransformEngine())
        strategy.sync("Author", author, _payload(store, "Author", "profile", data={"bio": "v1"}), SyncContext(row={}))
        strategy.sync("Author", author, _payload(store, "Author", "profile", data={"bio": "v2"}), SyncContext(row={}))
        assert store.all("Profile") == [{"bio": "v2", "author_id": 1, "id": 1}]

    def test_has_one_ignores_empty_data(self):
        store = make_store()
        author = store.create("Author", {"name": "Ada"})
        payload = _payload(store, "Author", "profile", data={"bio": None})
        HasOneStrategy(store, TransformEngine()).sync("Author", author, payload, SyncContext(row={}))
        assert store.count("Profile") == 0

    def test_belongs_to_resolves_by_lookup(self):
        store = make_store()
        store.create("Author", {"name": "Ada"})
        payload = _payload(store, "Book", "author", data={"name": "Ada"}, lookup=Lookup(field="name"))
        assert BelongsToStrategy(store, TransformEngine()).resolve(payload, SyncContext(row={})) == 1

    def test_belongs_to_creates_when_allowed(self):
        store = make_store()
        payload = _payload(
            store, "Book", "author",
            data={"name": "Bob", "country": "NO"},
            lookup=Lookup(field="name", create_if_missing=True),
        )
        assert BelongsToStrategy(store, TransformEngine()).resolve(payload, SyncContext(row={})) == 1
        assert store.find("Author", 1) == {"name": "Bob", "country": "NO", "id": 1}

    def test_belongs_to_missing_is_skipped(self):
        store = make_store()
        payload = _payload(store, "Book", "author", data={"name": "Nobody"}, lookup=Lookup(field="name"))
        assert BelongsToStrategy(store, TransformEngine()).resolve(payload, SyncContext(row={})) is None
