"""Infers file type, delimiter, quote, header and encoding of a source file.

Works on a small sample of the source (first lines only) so detection cost
does not grow with file size.
"""

import logging
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Optional

import chardet

from inflow.core.models import FileType

logger = logging.getLogger(__name__)

SAMPLE_LINES = 10
CANDIDATE_DELIMITERS = [",", ";", "\t", "|", ":"]
CANDIDATE_QUOTES = ['"', "'"]
HEADER_NUMERIC_THRESHOLD = 0.3
CONSISTENCY_THRESHOLD = 0.5

CHARDET_ENCODINGS = {
    "ascii": "ASCII",
    "utf-8": "UTF-8",
    "utf-8-sig": "UTF-8",
    "iso-8859-1": "ISO-8859-1",
    "latin-1": "ISO-8859-1",
    "windows-1252": "Windows-1252",
}

EXTENSION_TYPES = {
    "xls": FileType.XLS,
    "xlsx": FileType.XLSX,
    "txt": FileType.TXT,
    "tsv": FileType.TXT,
    "json": FileType.JSON,
    "jsonl": FileType.JSON,
    "ndjson": FileType.JSON,
    "xml": FileType.XML,
}


class FormatDetectionError(OSError):
    """Raised when no content sample can be read from the source."""


@dataclass(frozen=True)
class DetectedFormat:
    type: FileType
    delimiter: Optional[str] = ","
    quote_char: Optional[str] = '"'
    has_header: bool = True
    encoding: str = "UTF-8"

    def is_valid(self) -> bool:
        if self.type.is_delimited:
            return bool(self.delimiter)
        return True

    def with_overrides(self, overrides: Optional[dict[str, Any]]) -> "DetectedFormat":
        """Return a copy with any non-null keys of a flow's format_config applied."""
        if not overrides:
            return self
        changes: dict[str, Any] = {}
        for key in ("delimiter", "quote_char", "has_header", "encoding"):
            if overrides.get(key) is not None:
                changes[key] = overrides[key]
        if overrides.get("type"):
            changes["type"] = FileType(overrides["type"])
        return replace(self, **changes)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "DetectedFormat":
        return cls(
            type=FileType(data["type"]),
            delimiter=data.get("delimiter", ","),
            quote_char=data.get("quote_char", '"'),
            has_header=data.get("has_header", True),
            encoding=data.get("encoding", "UTF-8"),
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_sample(path: Path) -> tuple[list[bytes], str]:
    """Read up to SAMPLE_LINES raw lines plus the detected encoding."""
    raw_lines: list[bytes] = []
    with open(path, "rb") as f:
        for _ in range(SAMPLE_LINES):
            line = f.readline()
            if not line:
                break
            raw_lines.append(line)
    return raw_lines, _detect_encoding(b"".join(raw_lines))


def _detect_encoding(sample: bytes) -> str:
    """Detected encoding among UTF-8, ASCII, ISO-8859-1 and Windows-1252."""
    if not sample:
        return "UTF-8"
    result = chardet.detect(sample)
    detected = (result.get("encoding") or "").lower()
    encoding = CHARDET_ENCODINGS.get(detected)
    if encoding is not None:
        logger.debug(f"chardet detected encoding: {detected} (confidence {result.get('confidence', 0.0):.2f})")
        return encoding
    return _fallback_encoding(sample, detected)


def _fallback_encoding(sample: bytes, detected: str) -> str:
    if detected:
        logger.debug(f"Unsupported encoding {detected} detected, trying common encodings")
    for codec, encoding in (("utf-8", "UTF-8"), ("cp1252", "Windows-1252")):
        try:
            sample.decode(codec)
            return encoding
        except UnicodeDecodeError:
            continue
    return "ISO-8859-1"


def _detect_type(path: Path, first_line: str) -> FileType:
    stripped = first_line.lstrip()
    if stripped.startswith("<?xml") or stripped.startswith("<"):
        return FileType.XML
    return EXTENSION_TYPES.get(path.suffix.lower().lstrip("."), FileType.CSV)


def _is_consistent(counts: list[int]) -> bool:
    if not counts:
        return False
    first = counts[0]
    consistent = sum(1 for c in counts if abs(c - first) <= 1)
    return consistent / len(counts) >= CONSISTENCY_THRESHOLD


def _detect_delimiter(lines: list[str]) -> str:
    best = ","
    best_count = 0
    for delimiter in CANDIDATE_DELIMITERS:
        counts = [line.count(delimiter) for line in lines]
        total = sum(counts)
        if total > best_count and _is_consistent(counts):
            best = delimiter
            best_count = total
    return best


def _detect_quote_char(lines: list[str]) -> str:
    sample = "\n".join(lines)
    best = '"'
    best_count = 0
    for quote in CANDIDATE_QUOTES:
        count = sample.count(quote)
        if count > best_count:
            best = quote
            best_count = count
    return best


def split_line(line: str, delimiter: str, quote_char: str) -> list[str]:
    """Split a line on delimiter, ignoring delimiters inside quotes."""
    fields: list[str] = []
    current = []
    in_quotes = False
    for ch in line:
        if ch == quote_char:
            in_quotes = not in_quotes
            current.append(ch)
        elif ch == delimiter and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
    fields.append("".join(current))
    return fields


def _is_numeric(value: str) -> bool:
    try:
        float(value)
        return True
    except ValueError:
        return False


def _detect_header(lines: list[str], delimiter: str, quote_char: str) -> bool:
    if len(lines) < 2:
        return False

    first = split_line(lines[0], delimiter, quote_char)
    second = split_line(lines[1], delimiter, quote_char)
    if len(first) != len(second):
        return False

    numeric = sum(1 for f in first if _is_numeric(f.strip().strip(quote_char).strip()))
    return numeric / len(first) < HEADER_NUMERIC_THRESHOLD


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def detect_format(file_path: Path) -> DetectedFormat:
    """Detect the format of a source file from its first lines."""
    path = Path(file_path)
    ext_type = EXTENSION_TYPES.get(path.suffix.lower().lstrip("."))
    if ext_type is not None and ext_type.is_excel:
        # Binary workbook: nothing to sniff in the text sample
        if not path.exists() or path.stat().st_size == 0:
            raise FormatDetectionError("Unable to read file content for format detection")
        return DetectedFormat(type=ext_type, delimiter=None, quote_char=None, has_header=True)

    raw_lines, encoding = _read_sample(path)
    codec = "utf-8-sig" if encoding in ("UTF-8", "ASCII") else encoding
    lines = [line.decode(codec, errors="replace").rstrip("\r\n") for line in raw_lines]
    if not "".join(lines).strip():
        raise FormatDetectionError("Unable to read file content for format detection")

    file_type = _detect_type(path, lines[0])
    if file_type.is_xml:
        return DetectedFormat(type=file_type, delimiter=None, quote_char=None, has_header=False, encoding=encoding)
    if file_type.is_json:
        return DetectedFormat(type=file_type, delimiter=None, quote_char=None, has_header=False, encoding=encoding)

    delimiter = _detect_delimiter(lines)
    quote_char = _detect_quote_char(lines)
    has_header = _detect_header(lines, delimiter, quote_char)

    detected = DetectedFormat(
        type=file_type,
        delimiter=delimiter,
        quote_char=quote_char,
        has_header=has_header,
        encoding=encoding,
    )
    logger.info(f"Detected format for {path.name}: {detected.to_dict()}")
    return detected
