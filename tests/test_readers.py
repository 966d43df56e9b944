"""Tests for the source readers."""

import xml.etree.ElementTree as ET

import pytest

from inflow.core.format_detector import DetectedFormat
from inflow.core.models import FileType
from inflow.core.readers import (
    CsvReader,
    ExcelReader,
    JsonLinesReader,
    XmlReader,
    create_reader,
    expand_record,
    flatten_element,
    parse_delimited_line,
)
from tests.conftest import create_workbook, write_text

CSV = DetectedFormat(type=FileType.CSV)
JSON = DetectedFormat(type=FileType.JSON, delimiter=None, quote_char=None, has_header=False)
XML = DetectedFormat(type=FileType.XML, delimiter=None, quote_char=None, has_header=False)


def _read_all(reader) -> list[dict]:
    with reader:
        return list(reader)


class TestParseDelimitedLine:
    def test_simple(self):
        assert parse_delimited_line("a, b ,c", ",") == ["a", "b", "c"]

    def test_quoted_delimiter(self):
        assert parse_delimited_line('"Doe, John",42', ",") == ["Doe, John", "42"]

    def test_doubled_quote_is_literal(self):
        assert parse_delimited_line('"say ""hi""",x', ",") == ['say "hi"', "x"]

    def test_trailing_empty_field(self):
        assert parse_delimited_line("a,b,", ",") == ["a", "b", ""]


class TestCsvReader:
    def test_rows_keyed_by_header(self):
        path = write_text("name,age\nAda,36\nBob,41\n")
        try:
            rows = _read_all(CsvReader(path, CSV))
        finally:
            path.unlink()
        assert rows == [{"name": "Ada", "age": "36"}, {"name": "Bob", "age": "41"}]

    def test_headerless_rows_keyed_by_index(self):
        path = write_text("1,Ada\n2,Bob\n")
        try:
            rows = _read_all(CsvReader(path, DetectedFormat(type=FileType.CSV, has_header=False)))
        finally:
            path.unlink()
        assert rows[0] == {"0": "1", "1": "Ada"}

    def test_multiline_quoted_field(self):
        path = write_text('name,bio\nAda,"line one\nline two"\nBob,short\n')
        try:
            rows = _read_all(CsvReader(path, CSV))
        finally:
            path.unlink()
        assert len(rows) == 2
        assert rows[0]["bio"] == "line one\nline two"

    def test_blank_lines_skipped(self):
        path = write_text("name\n\nAda\n\n\nBob\n")
        try:
            rows = _read_all(CsvReader(path, CSV))
        finally:
            path.unlink()
        assert [r["name"] for r in rows] == ["Ada", "Bob"]

    def test_short_row_padded_with_none(self):
        path = write_text("a,b,c\n1,2\n")
        try:
            rows = _read_all(CsvReader(path, CSV))
        finally:
            path.unlink()
        assert rows == [{"a": "1", "b": "2", "c": None}]

    def test_extra_values_keyed_by_position(self):
        path = write_text("a\n1,2\n")
        try:
            rows = _read_all(CsvReader(path, CSV))
        finally:
            path.unlink()
        assert rows == [{"a": "1", "1": "2"}]


class TestCursorApi:
    def test_cursor_walk_and_rewind(self):
        path = write_text("n\n1\n2\n")
        reader = CsvReader(path, CSV)
        try:
            reader.rewind()
            assert reader.valid()
            assert reader.key() == 0
            assert reader.current() == {"n": "1"}
            reader.next()
            assert reader.key() == 1
            reader.next()
            assert not reader.valid()

            reader.rewind()
            assert reader.current() == {"n": "1"}
        finally:
            reader.close()
            path.unlink()

    def test_count_rows_leaves_reader_rewound(self):
        path = write_text("n\n1\n2\n3\n")
        reader = CsvReader(path, CSV)
        try:
            assert reader.count_rows() == 3
            assert reader.current() == {"n": "1"}
        finally:
            reader.close()
            path.unlink()


class TestExcelReader:
    def test_header_and_values(self):
        path = create_workbook([["Name", "Age"], ["Ada", 36], [None, None], ["Bob", 41]])
        fmt = DetectedFormat(type=FileType.XLSX, delimiter=None, quote_char=None, has_header=False)
        try:
            rows = _read_all(ExcelReader(path, fmt))
        finally:
            path.unlink()
        assert rows == [{"Name": "Ada", "Age": 36}, {"Name": "Bob", "Age": 41}]

    def test_numeric_first_row_without_header(self):
        path = create_workbook([[1, 2], [3, 4]])
        fmt = DetectedFormat(type=FileType.XLSX, delimiter=None, quote_char=None, has_header=False)
        try:
            rows = _read_all(ExcelReader(path, fmt))
        finally:
            path.unlink()
        assert rows == [{"0": 1, "1": 2}, {"0": 3, "1": 4}]


class TestJsonLinesReader:
    def test_json_array(self):
        path = write_text('[{"id": 1}, {"id": 2}, "skip me"]', suffix=".json")
        try:
            rows = _read_all(JsonLinesReader(path, JSON))
        finally:
            path.unlink()
        assert rows == [{"id": 1}, {"id": 2}]

    def test_json_lines_with_multiline_object(self):
        content = '{"id": 1}\n{\n  "id": 2,\n  "tags": ["a", "b"]\n}\nnot json\n{"id": 3}\n'
        path = write_text(content, suffix=".jsonl")
        try:
            rows = _read_all(JsonLinesReader(path, JSON))
        finally:
            path.unlink()
        assert [r["id"] for r in rows] == [1, 2, 3]
        assert rows[1]["tags"] == ["a", "b"]

    def test_braces_inside_strings(self):
        path = write_text('{"text": "a { b"}\n{"text": "}"}\n', suffix=".jsonl")
        try:
            rows = _read_all(JsonLinesReader(path, JSON))
        finally:
            path.unlink()
        assert rows == [{"text": "a { b"}, {"text": "}"}]

    def test_unbalanced_quote_line_skipped(self):
        path = write_text('{"name":"a"}\n"oops\n{"name":"b"}\n{"name":"c"}\n', suffix=".jsonl")
        try:
            rows = _read_all(JsonLinesReader(path, JSON))
        finally:
            path.unlink()
        assert [r["name"] for r in rows] == ["a", "b", "c"]


class TestXml:
    def test_flatten_attributes_and_children(self):
        elem = ET.fromstring('<user id="7"><name>Ada</name><address><city>Oslo</city></address></user>')
        assert flatten_element(elem) == {"id": "7", "name": "Ada", "address.city": "Oslo"}

    def test_repeated_leaf_children_become_list(self):
        elem = ET.fromstring("<user><tag>a</tag><tag>b</tag></user>")
        assert flatten_element(elem) == {"tag": ["a", "b"]}

    def test_repeated_complex_children_expand_rows(self):
        elem = ET.fromstring(
            "<order><ref>1</ref><item><sku>A</sku></item><item><sku>B</sku></item></order>"
        )
        assert expand_record(elem) == [
            {"ref": "1", "item.sku": "A"},
            {"ref": "1", "item.sku": "B"},
        ]

    def test_reader_uses_repeating_element(self):
        path = write_text("<users><user><name>Ada</name></user><user><name>Bob</name></user></users>", suffix=".xml")
        try:
            rows = _read_all(XmlReader(path, XML))
        finally:
            path.unlink()
        assert rows == [{"name": "Ada"}, {"name": "Bob"}]

    def test_no_repeating_element_raises(self):
        path = write_text("<users><user><name>Ada</name></user></users>", suffix=".xml")
        try:
            with pytest.raises(ValueError, match="Could not detect repeating element"):
                _read_all(XmlReader(path, XML))
        finally:
            path.unlink()


class TestCreateReader:
    def test_picks_reader_by_type(self):
        assert isinstance(create_reader("x.csv", CSV), CsvReader)
        assert isinstance(create_reader("x.json", JSON), JsonLinesReader)
        assert isinstance(create_reader("x.xml", XML), XmlReader)
