"""Tests for built-in transforms and the transform engine."""

import hashlib
from datetime import datetime

import pytest

from inflow.core.transform_engine import (
    TransformEngine,
    TransformRegistry,
    UnknownTransformError,
    load_custom_transforms,
    spec_name,
)
from inflow.core.transforms import (
    ConcatTransform,
    HashTransform,
    RegexReplaceTransform,
    format_php_date,
    parse_datetime,
    php_to_strftime,
    pwd_context,
    split_arguments,
)


def _apply(value, *specs, context=None):
    return TransformEngine().apply(value, list(specs), context)


class Reverse:
    """Custom transform used through the registry."""

    def apply(self, value, context=None):
        return value[::-1] if isinstance(value, str) else value


class Repeat:
    def __init__(self, times: int = 2):
        self.times = times

    @classmethod
    def from_string(cls, spec: str):
        return cls(int(spec.split(":", 1)[1]))

    def apply(self, value, context=None):
        return value * self.times


# ---------------------------------------------------------------------------
# Simple transforms
# ---------------------------------------------------------------------------


class TestSimpleTransforms:
    def test_string_cases(self):
        assert _apply("  Hello  ", "trim") == "Hello"
        assert _apply("hello", "upper") == "HELLO"
        assert _apply("HeLLo", "lower") == "hello"
        assert _apply("hELLO wORLD", "capitalize") == "Hello world"
        assert _apply("hELLO wORLD", "title") == "Hello World"

    def test_slug_and_case_styles(self):
        assert _apply("Héllo, World!", "slugify") == "hello-world"
        assert _apply("firstName Here", "snake_case") == "first_name_here"
        assert _apply("first_name here", "camel_case") == "firstNameHere"

    def test_text_cleanup(self):
        assert _apply("<b>bold</b> text", "strip_tags") == "bold text"
        assert _apply("  a \t b\n c ", "clean_whitespace") == "a b c"
        assert _apply("a  b\r\n\r\n\r\n\r\nc", "normalize_multiline") == "a b\n\nc"

    def test_null_if_empty(self):
        assert _apply("   ", "null_if_empty") is None
        assert _apply("x", "null_if_empty") == "x"

    def test_numeric(self):
        assert _apply("4.2", "floor") == 4
        assert _apply(4.2, "ceil") == 5
        assert _apply("19.99", "to_cents") == 1999
        assert _apply(1999, "from_cents") == 19.99

    def test_non_strings_pass_through(self):
        assert _apply(42, "upper") == 42
        assert _apply(None, "trim") is None
        assert _apply("abc", "floor") == "abc"

    def test_timestamp(self):
        assert _apply("2024-01-01 00:00:00", "timestamp") == 1704067200

    def test_json_decode(self):
        assert _apply('{"a": [1, 2]}', "json_decode") == {"a": [1, 2]}
        assert _apply("{broken", "json_decode") == "{broken"


# ---------------------------------------------------------------------------
# Parameterized transforms
# ---------------------------------------------------------------------------


class TestCast:
    def test_int_and_float(self):
        assert _apply("42", "cast:int") == 42
        assert _apply("42.9", "cast:int") == 42
        assert _apply("3", "cast:float") == 3.0

    def test_int_passes_non_numeric_through(self):
        assert _apply("abc", "cast:int") == "abc"

    def test_blank_becomes_none(self):
        assert _apply("", "cast:int") is None

    def test_bool(self):
        assert _apply("yes", "cast:bool") is True
        assert _apply("off", "cast:boolean") is False

    def test_date_normalized(self):
        assert _apply("2024-03-05", "cast:date") == "2024-03-05 00:00:00"
        assert _apply(0.5e9, "cast:date") == "1985-11-05 00:53:20"

    def test_date_bare_year(self):
        assert _apply("2024", "cast:date") == "2024-01-01 00:00:00"

    def test_date_rejects_unparseable_with_warning(self):
        engine = TransformEngine()
        assert engine.apply("not a date", ["cast:date"]) is None
        assert engine.apply(-5, ["cast:date"]) is None
        warnings = engine.pop_warnings()
        assert len(warnings) == 2
        assert engine.pop_warnings() == []

    def test_missing_type_raises(self):
        with pytest.raises(ValueError, match="requires a type"):
            _apply("1", "cast")


class TestParameterized:
    def test_default_and_coalesce(self):
        assert _apply("", "default:n/a") == "n/a"
        assert _apply("x", "default:n/a") == "x"
        assert _apply("  ", "coalesce:none") == "none"

    def test_truncate(self):
        assert _apply("abcdefgh", "truncate:5") == "abcde..."
        assert _apply("abcdefgh", "truncate:5:") == "abcde"
        assert _apply("abc", "truncate:5") == "abc"

    def test_prefix_suffix(self):
        assert _apply("42", "prefix:ID-") == "ID-42"
        assert _apply(42, "suffix: kg") == "42 kg"

    def test_round_half_up(self):
        assert _apply("2.5", "round") == 3.0
        assert _apply(1.005, "round:2") == 1.01

    def test_multiply_divide(self):
        assert _apply("2", "multiply:1.5") == 3.0
        assert _apply(10, "divide:4") == 2.5
        assert _apply(10, "divide:0") == 10

    def test_date_format_and_parse_date(self):
        assert _apply("2024-03-05 14:07:00", "date_format:d/m/Y H:i") == "05/03/2024 14:07"
        assert _apply("2024-03-05", "date_format:j M Y") == "5 Mar 2024"
        assert _apply("05/03/2024", "parse_date:d/m/Y") == "2024-03-05 00:00:00"
        assert _apply("garbage", "parse_date:d/m/Y") == "garbage"

    def test_split(self):
        assert _apply("a; b ;c", "split:;") == ["a", "b", "c"]

    def test_concat_from_row(self):
        row = {"first": "Ada", "middle": "", "last": "Lovelace"}
        assert _apply(None, 'concat(first, middle, last)', context={"row": row}) == "Ada Lovelace"
        assert _apply(None, 'concat(last, ", ", first)', context={"row": row}) == "Lovelace, Ada"

    def test_regex_replace(self):
        assert _apply("a1b22c", "regex_replace(/\\d+/, -)") == "a-b-c"
        assert _apply("ABC", "regex_replace(/b/i, x)") == "AxC"
        assert _apply("John Smith", "regex_replace(/(\\w+) (\\w+)/, $2 $1)") == "Smith John"

    def test_hash_digests(self):
        assert _apply("secret", "hash:md5") == hashlib.md5(b"secret").hexdigest()
        assert _apply("secret", "hash:sha256") == hashlib.sha256(b"secret").hexdigest()

    def test_password_hash_is_salted(self):
        first = HashTransform().apply("secret")
        second = HashTransform().apply("secret")
        assert first.startswith("$2b$")
        assert first != second
        assert pwd_context.verify("secret", first)

    def test_unknown_hash_algorithm(self):
        with pytest.raises(ValueError, match="Unsupported hash algorithm"):
            HashTransform("crc32")

    def test_pipeline_runs_left_to_right(self):
        assert _apply("  Ada  ", "trim", "upper", "prefix:Dr.") == "Dr.ADA"


class TestHelpers:
    def test_spec_name(self):
        assert spec_name("truncate:10") == "truncate"
        assert spec_name("concat(a, b)") == "concat"
        assert spec_name("trim") == "trim"

    def test_split_arguments_respects_quotes(self):
        assert split_arguments('a, ", ", b') == ["a", '", "', "b"]

    def test_php_to_strftime(self):
        assert php_to_strftime("Y-m-d H:i:s") == "%Y-%m-%d %H:%M:%S"

    def test_format_php_date_unpadded(self):
        assert format_php_date(datetime(2024, 3, 5, 9, 0), "n/j G") == "3/5 9"

    def test_parse_datetime_formats(self):
        assert parse_datetime("05.03.2024") == datetime(2024, 3, 5)
        assert parse_datetime("20240305") == datetime(2024, 3, 5)
        assert parse_datetime("March 5, 2024") == datetime(2024, 3, 5)
        assert parse_datetime("nope") is None

    def test_concat_separator_parsing(self):
        t = ConcatTransform.from_string('concat(a, "-", b)')
        assert t.fields == ["a", "b"]
        assert t.separator == "-"

    def test_regex_literal_unterminated(self):
        with pytest.raises(ValueError, match="Unterminated"):
            RegexReplaceTransform.from_string("regex_replace(/abc, x)")


# ---------------------------------------------------------------------------
# Engine resolution
# ---------------------------------------------------------------------------


class TestTransformEngine:
    def test_unknown_transform(self):
        with pytest.raises(UnknownTransformError, match="Unknown transform: nope"):
            _apply("x", "nope")

    def test_empty_specs_skipped(self):
        assert _apply("x", "", "  ") == "x"

    def test_registered_instance_wins(self):
        registry = TransformRegistry()
        registry.register("upper", Reverse())
        assert TransformEngine(registry).apply("abc", ["upper"]) == "cba"

    def test_registered_class_by_exact_name(self):
        registry = TransformRegistry()
        registry.register("reverse", Reverse)
        assert TransformEngine(registry).apply("abc", ["reverse"]) == "cba"

    def test_registered_class_with_parameters(self):
        registry = TransformRegistry()
        registry.register("repeat", Repeat)
        assert TransformEngine(registry).apply("ab", ["repeat:3"]) == "ababab"

    def test_parameters_ignored_without_from_string(self):
        registry = TransformRegistry()
        registry.register("reverse", Reverse)
        assert TransformEngine(registry).apply("abc", ["reverse:1"]) == "cba"

    def test_register_rejects_objects_without_apply(self):
        with pytest.raises(TypeError):
            TransformRegistry().register("bad", object())

    def test_resolution_is_cached(self):
        engine = TransformEngine()
        assert engine.resolve("truncate:3") is engine.resolve("truncate:3")

    def test_load_custom_transforms(self):
        registry = load_custom_transforms({"reverse": "tests.test_transforms:Reverse"})
        assert "reverse" in registry
        assert registry.names() == ["reverse"]

    def test_load_custom_transforms_bad_path(self):
        with pytest.raises(ValueError, match="expected module:Class"):
            load_custom_transforms({"reverse": "tests.test_transforms"})
