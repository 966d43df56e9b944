"""Text-level cleanup of source content before parsing.

Removes byte-order marks, normalizes newlines, strips control characters and
repairs a missing trailing newline. Every change is recorded in a
SanitizationReport so callers can surface what was altered.
"""

import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from inflow.core.models import BomType, NewlineFormat

logger = logging.getLogger(__name__)

# Everything below 0x20 except TAB, LF and CR, plus DEL
CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

DECODED_UTF8_BOM = "\ufeff"
MAX_AFFECTED_EXAMPLES = 5


class SanitizerConfig(BaseModel):
    remove_bom: bool = True
    normalize_newlines: bool = True
    newline_format: str = "lf"
    remove_control_chars: bool = True
    handle_truncated_eof: bool = True

    @classmethod
    def from_settings(cls, s) -> "SanitizerConfig":
        return cls(
            remove_bom=s.sanitizer_remove_bom,
            normalize_newlines=s.sanitizer_normalize_newlines,
            newline_format=s.sanitizer_newline_format,
            remove_control_chars=s.sanitizer_remove_control_chars,
            handle_truncated_eof=s.sanitizer_handle_truncated_eof,
        )

    @property
    def newline(self) -> str:
        return NewlineFormat.parse(self.newline_format).sequence


@dataclass
class SanitizationReport:
    """Statistics, decisions and affected-input examples of one sanitize pass."""
    statistics: dict[str, int] = field(default_factory=dict)
    decisions: list[str] = field(default_factory=list)
    affected_rows: dict[str, list[Any]] = field(default_factory=dict)

    def increment(self, key: str, amount: int = 1) -> None:
        self.statistics[key] = self.statistics.get(key, 0) + amount

    def add_example(self, key: str, example: Any) -> None:
        examples = self.affected_rows.setdefault(key, [])
        if len(examples) < MAX_AFFECTED_EXAMPLES:
            examples.append(example)

    @property
    def has_changes(self) -> bool:
        return bool(self.decisions)

    def to_dict(self) -> dict:
        return {
            "statistics": dict(self.statistics),
            "decisions": list(self.decisions),
            "affected_rows": {k: list(v) for k, v in self.affected_rows.items()},
        }


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def _remove_bom(content: str, report: SanitizationReport) -> str:
    bom = BomType.detect(content)
    if bom is not None:
        report.increment("bom_removed")
        report.increment("bom_bytes_removed", bom.length)
        report.decisions.append(f"Removed {bom.label} BOM ({bom.length} bytes)")
        return content[bom.length:]
    if content.startswith(DECODED_UTF8_BOM):
        report.increment("bom_removed")
        report.increment("bom_bytes_removed", BomType.UTF8.length)
        report.decisions.append(f"Removed {BomType.UTF8.label} BOM ({BomType.UTF8.length} bytes)")
        return content[1:]
    return content


def _normalize_newlines(content: str, newline: str, report: SanitizationReport) -> str:
    normalized = content.replace("\r\n", "\n").replace("\r", "\n")
    if newline != "\n":
        normalized = normalized.replace("\n", newline)
    if normalized != content:
        report.increment("newlines_normalized")
        report.decisions.append(f"Normalized newlines to {newline!r}")
    return normalized


def _remove_control_chars(content: str, report: SanitizationReport) -> str:
    matches = CONTROL_CHARS_RE.findall(content)
    if not matches:
        return content

    for line_no, line in enumerate(content.splitlines(), start=1):
        if CONTROL_CHARS_RE.search(line):
            report.add_example("control_chars", line_no)
            if len(report.affected_rows["control_chars"]) >= MAX_AFFECTED_EXAMPLES:
                break

    report.increment("control_chars_removed", len(matches))
    report.decisions.append(f"Removed {len(matches)} control character(s)")
    return CONTROL_CHARS_RE.sub("", content)


def _fix_truncated_eof(content: str, newline: str, report: SanitizationReport) -> str:
    if content == "" or content.endswith(("\n", "\r", newline)):
        return content
    report.increment("eof_fixed")
    report.decisions.append("Appended missing trailing newline")
    return content + newline


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def sanitize(content: str, config: SanitizerConfig | None = None) -> tuple[str, SanitizationReport]:
    """Clean raw text content according to config.

    Pure function: returns the cleaned content and a report, which is empty
    when nothing had to change.
    """
    config = config or SanitizerConfig()
    report = SanitizationReport()
    newline = config.newline

    if config.remove_bom:
        content = _remove_bom(content, report)
    if config.normalize_newlines:
        content = _normalize_newlines(content, newline, report)
    if config.remove_control_chars:
        content = _remove_control_chars(content, report)
    if config.handle_truncated_eof:
        content = _fix_truncated_eof(content, newline, report)

    for decision in report.decisions:
        logger.info(f"Sanitizer: {decision}")
    return content, report


def decode_content(raw: bytes) -> str:
    """Decode raw bytes, keeping any byte-order mark visible to sanitize().

    UTF-16 content is decoded with its own codec; the marker is re-attached
    as code points so the report names the original BOM.
    """
    if raw.startswith(b"\xff\xfe"):
        return BomType.UTF16_LE.value + raw[2:].decode("utf-16-le", errors="replace")
    if raw.startswith(b"\xfe\xff"):
        return BomType.UTF16_BE.value + raw[2:].decode("utf-16-be", errors="replace")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def sanitize_file(path: Path, config: SanitizerConfig | None = None) -> tuple[Path, SanitizationReport]:
    """Sanitize a file into a temporary UTF-8 copy with the same suffix.

    The caller owns the returned path and must delete it.
    """
    raw = Path(path).read_bytes()
    content, report = sanitize(decode_content(raw), config)

    fd, tmp_name = tempfile.mkstemp(prefix="inflow_", suffix=Path(path).suffix)
    with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    logger.info(f"Sanitized {Path(path).name} -> {tmp_name}")
    return Path(tmp_name), report
