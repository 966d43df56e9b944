"""Restartable, forward-only row cursors, one per file format.

Every reader yields rows as ``{column_name: value}`` dicts and supports both
the Python iterator protocol and an explicit cursor API
(``valid()/current()/key()/next()/rewind()``). Rows are produced lazily from
a generator so only one row is held in memory at a time, except for JSON
array documents which must be parsed whole.
"""

import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Iterator, Optional

import openpyxl

from inflow.core.format_detector import DetectedFormat
from inflow.core.models import FileType

logger = logging.getLogger(__name__)

CODECS = {
    "UTF-8": "utf-8-sig",
    "ASCII": "utf-8-sig",
    "ISO-8859-1": "iso-8859-1",
    "Windows-1252": "cp1252",
}


def _codec(encoding: Optional[str]) -> str:
    return CODECS.get(encoding or "UTF-8", encoding or "utf-8-sig")


class BaseReader:
    """Cursor over the rows of one source file."""

    def __init__(self, file_path: Path, detected_format: DetectedFormat):
        self.file_path = Path(file_path)
        self.format = detected_format
        self._rows_iter: Optional[Iterator[dict]] = None
        self._current: Optional[dict] = None
        self._key = -1
        self._started = False

    def _rows(self) -> Iterator[dict]:
        raise NotImplementedError

    # Cursor API

    def rewind(self) -> None:
        self.close()
        self._rows_iter = self._rows()
        self._key = -1
        self._current = None
        self._started = True
        self.next()

    def next(self) -> None:
        if not self._started:
            self.rewind()
            return
        row = next(self._rows_iter, None) if self._rows_iter is not None else None
        self._current = row
        if row is not None:
            self._key += 1

    def valid(self) -> bool:
        if not self._started:
            self.rewind()
        return self._current is not None

    def current(self) -> Optional[dict]:
        if not self._started:
            self.rewind()
        return self._current

    def key(self) -> int:
        return self._key

    def close(self) -> None:
        if self._rows_iter is not None:
            self._rows_iter.close()
            self._rows_iter = None

    # Python protocols

    def __iter__(self) -> Iterator[dict]:
        self.rewind()
        while self.valid():
            yield self._current
            self.next()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def count_rows(self) -> int:
        """Count rows with a full pass; the cursor is left rewound."""
        total = sum(1 for _ in self)
        self.rewind()
        return total


# ---------------------------------------------------------------------------
# Delimited text (CSV / TXT / TSV)
# ---------------------------------------------------------------------------


def parse_delimited_line(line: str, delimiter: str, quote_char: str = '"') -> list[str]:
    """Parse one logical line into trimmed fields.

    Quotes group delimiters, a doubled quote inside quotes is a literal quote.
    """
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        ch = line[i]
        if quote_char and ch == quote_char:
            if in_quotes and i + 1 < len(line) and line[i + 1] == quote_char:
                current.append(quote_char)
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == delimiter and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current).strip())
    return fields


def _has_open_quote(text: str, quote_char: str) -> bool:
    return bool(quote_char) and text.count(quote_char) % 2 == 1


class CsvReader(BaseReader):
    def _logical_lines(self, f) -> Iterator[str]:
        """Join physical lines while a quoted field spans a line break."""
        quote = self.format.quote_char or '"'
        buffer = ""
        for physical in f:
            buffer += physical
            # Multi-line fields are only recognised inside double quotes
            if quote == '"' and _has_open_quote(buffer, quote):
                continue
            yield buffer.rstrip("\r\n")
            buffer = ""
        if buffer:
            yield buffer.rstrip("\r\n")

    def _rows(self) -> Iterator[dict]:
        delimiter = self.format.delimiter or ","
        quote = self.format.quote_char or '"'
        headers: Optional[list[str]] = None

        with open(self.file_path, encoding=_codec(self.format.encoding), errors="replace", newline="") as f:
            for line in self._logical_lines(f):
                if line.strip() == "":
                    continue
                fields = parse_delimited_line(line, delimiter, quote)
                if len(fields) == 1 and fields[0] == "":
                    continue

                if self.format.has_header and headers is None:
                    headers = fields
                    continue

                yield _keyed_row(headers, fields)


def _keyed_row(headers: Optional[list[str]], values: list[Any]) -> dict:
    if headers is None:
        return {str(i): v for i, v in enumerate(values)}
    row = {}
    for i, header in enumerate(headers):
        row[header if header else str(i)] = values[i] if i < len(values) else None
    for i in range(len(headers), len(values)):
        row[str(i)] = values[i]
    return row


# ---------------------------------------------------------------------------
# Spreadsheet (XLSX / XLS)
# ---------------------------------------------------------------------------


def _looks_like_header(values: tuple) -> bool:
    """A row is a header when most of its non-empty cells are text."""
    filled = [v for v in values if v is not None and str(v).strip() != ""]
    if not filled:
        return False
    textual = 0
    for v in filled:
        if isinstance(v, (int, float)):
            continue
        try:
            float(str(v))
        except ValueError:
            textual += 1
    return textual / len(filled) > 0.5


class ExcelReader(BaseReader):
    def _rows(self) -> Iterator[dict]:
        wb = openpyxl.load_workbook(self.file_path, read_only=True, data_only=True)
        try:
            ws = wb.active
            headers: Optional[list[str]] = None
            first = True
            for values in ws.iter_rows(values_only=True):
                if all(v is None or (isinstance(v, str) and v.strip() == "") for v in values):
                    continue
                values = tuple(v.strip() if isinstance(v, str) else v for v in values)

                if first:
                    first = False
                    if self.format.has_header or _looks_like_header(values):
                        headers = [str(v).strip() if v is not None else "" for v in values]
                        continue

                yield _keyed_row(headers, list(values))
        finally:
            wb.close()


# ---------------------------------------------------------------------------
# JSON array / JSON Lines
# ---------------------------------------------------------------------------


class JsonLinesReader(BaseReader):
    def _peek_first_char(self) -> str:
        with open(self.file_path, encoding=_codec(self.format.encoding), errors="replace") as f:
            for line in f:
                stripped = line.lstrip()
                if stripped:
                    return stripped[0]
        return ""

    def _rows(self) -> Iterator[dict]:
        if self._peek_first_char() == "[":
            yield from self._array_rows()
        else:
            yield from self._line_rows()

    def _array_rows(self) -> Iterator[dict]:
        with open(self.file_path, encoding=_codec(self.format.encoding), errors="replace") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid JSON array in {self.file_path.name}: {e}")
                return

        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            return
        for i, item in enumerate(data):
            if isinstance(item, dict):
                yield item
            else:
                logger.warning(f"Skipping non-object element {i} in {self.file_path.name}")

    def _line_rows(self) -> Iterator[dict]:
        buffer: list[str] = []
        depth = 0
        in_string = False
        escaped = False

        with open(self.file_path, encoding=_codec(self.format.encoding), errors="replace") as f:
            for line_no, line in enumerate(f, start=1):
                if not buffer and line.strip() == "":
                    continue
                buffer.append(line)
                for ch in line:
                    if escaped:
                        escaped = False
                    elif ch == "\\" and in_string:
                        escaped = True
                    elif ch == '"':
                        in_string = not in_string
                    elif not in_string:
                        if ch == "{":
                            depth += 1
                        elif ch == "}":
                            depth -= 1

                if depth > 0:
                    continue

                block = "".join(buffer).strip()
                buffer = []
                depth = 0
                in_string = False
                escaped = False
                row = self._parse_block(block, line_no)
                if row is not None:
                    yield row

        if buffer:
            logger.warning(f"Unterminated JSON object at end of {self.file_path.name}")

    def _parse_block(self, block: str, line_no: int) -> Optional[dict]:
        try:
            value = json.loads(block)
        except json.JSONDecodeError:
            logger.warning(f"Skipping malformed JSON near line {line_no} of {self.file_path.name}")
            return None
        if not isinstance(value, dict):
            logger.warning(f"Skipping non-object JSON near line {line_no} of {self.file_path.name}")
            return None
        return value


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def _is_leaf(elem: ET.Element) -> bool:
    return len(elem) == 0 and not elem.attrib


def _text(elem: ET.Element) -> Optional[str]:
    return elem.text.strip() if elem.text is not None else None


def _group_children(elem: ET.Element) -> dict[str, list[ET.Element]]:
    groups: dict[str, list[ET.Element]] = {}
    for child in elem:
        groups.setdefault(_local_name(child.tag), []).append(child)
    return groups


def flatten_element(elem: ET.Element, prefix: str = "") -> dict[str, Any]:
    """Flatten an element into dotted keys.

    Attributes become ``prefix.attr``, repeated leaf children become lists of
    their text and repeated complex children become lists of flattened dicts.
    """
    data: dict[str, Any] = {}
    for attr, value in elem.attrib.items():
        data[_join(prefix, _local_name(attr))] = value

    for name, children in _group_children(elem).items():
        key = _join(prefix, name)
        if len(children) == 1:
            child = children[0]
            if _is_leaf(child):
                data[key] = _text(child)
            else:
                data.update(flatten_element(child, key))
                text = _text(child)
                if len(child) == 0 and text:
                    data[key] = text
        elif all(_is_leaf(c) for c in children):
            data[key] = [_text(c) for c in children]
        else:
            data[key] = [flatten_element(c) for c in children]
    return data


def expand_record(elem: ET.Element) -> list[dict[str, Any]]:
    """Turn one record element into rows.

    A record with a repeating complex child yields one row per repetition,
    each merged with the record's other fields.
    """
    flat = flatten_element(elem)
    for name, children in _group_children(elem).items():
        if len(children) > 1 and not all(_is_leaf(c) for c in children):
            base = {k: v for k, v in flat.items() if k != name}
            rows = []
            for item in flat[name]:
                row = dict(base)
                row.update({_join(name, k): v for k, v in item.items()})
                rows.append(row)
            return rows
    return [flat]


class XmlReader(BaseReader):
    def _record_tag(self, root: ET.Element) -> str:
        children = list(root)
        if children:
            tag = children[0].tag
            if sum(1 for c in children if c.tag == tag) > 1:
                return tag
        raise ValueError("Could not detect repeating element in XML")

    def _rows(self) -> Iterator[dict]:
        root = ET.parse(self.file_path).getroot()
        tag = self._record_tag(root)
        for record in root:
            if record.tag != tag:
                continue
            yield from expand_record(record)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


READERS: dict[FileType, type[BaseReader]] = {
    FileType.CSV: CsvReader,
    FileType.TXT: CsvReader,
    FileType.XLSX: ExcelReader,
    FileType.XLS: ExcelReader,
    FileType.JSON: JsonLinesReader,
    FileType.XML: XmlReader,
}


def create_reader(file_path: Path, detected_format: DetectedFormat) -> BaseReader:
    """Build the reader matching the detected file type."""
    reader_cls = READERS.get(detected_format.type)
    if reader_cls is None:
        raise ValueError(f"Unsupported file type: {detected_format.type}")
    return reader_cls(file_path, detected_format)
