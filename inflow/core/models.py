"""Enumerations shared across the engine and API response schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class FileType(str, Enum):
    CSV = "csv"
    TXT = "txt"
    XLS = "xls"
    XLSX = "xlsx"
    JSON = "json"
    XML = "xml"

    @property
    def is_excel(self) -> bool:
        return self in (FileType.XLS, FileType.XLSX)

    @property
    def is_delimited(self) -> bool:
        return self in (FileType.CSV, FileType.TXT)

    @property
    def is_json(self) -> bool:
        return self is FileType.JSON

    @property
    def is_xml(self) -> bool:
        return self is FileType.XML


class BomType(str, Enum):
    UTF8 = "\xef\xbb\xbf"
    UTF16_LE = "\xff\xfe"
    UTF16_BE = "\xfe\xff"

    @property
    def label(self) -> str:
        return {
            BomType.UTF8: "UTF-8",
            BomType.UTF16_LE: "UTF-16 LE",
            BomType.UTF16_BE: "UTF-16 BE",
        }[self]

    @property
    def length(self) -> int:
        return len(self.value)

    @classmethod
    def detect(cls, content: str) -> Optional["BomType"]:
        # UTF-8 first: its marker is longer and never a prefix of the UTF-16 ones
        for bom in (cls.UTF8, cls.UTF16_LE, cls.UTF16_BE):
            if content.startswith(bom.value):
                return bom
        return None


class NewlineFormat(str, Enum):
    LF = "lf"
    CRLF = "crlf"
    CR = "cr"

    @property
    def sequence(self) -> str:
        return {NewlineFormat.LF: "\n", NewlineFormat.CRLF: "\r\n", NewlineFormat.CR: "\r"}[self]

    @classmethod
    def parse(cls, value: str) -> "NewlineFormat":
        """Accept either the format name or the literal newline sequence."""
        literal = {"\n": cls.LF, "\r\n": cls.CRLF, "\r": cls.CR}
        if value in literal:
            return literal[value]
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Unknown newline format: {value!r}")


class ErrorPolicy(str, Enum):
    STOP = "stop"
    CONTINUE = "continue"


class DuplicateStrategy(str, Enum):
    ERROR = "error"
    SKIP = "skip"
    UPDATE = "update"


class FlowRunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_COMPLETED = "partially_completed"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


class RelationKind(str, Enum):
    HAS_ONE = "has_one"
    BELONGS_TO = "belongs_to"
    HAS_MANY = "has_many"
    BELONGS_TO_MANY = "belongs_to_many"

    @property
    def is_array(self) -> bool:
        return self in (RelationKind.HAS_MANY, RelationKind.BELONGS_TO_MANY)


class LinkStrategy(str, Enum):
    """How a many-to-many link set is reconciled against the current links."""
    SYNC = "sync"
    ATTACH = "attach"
    SYNC_WITHOUT_DETACHING = "sync_without_detaching"
    DETACH = "detach"

    @property
    def reconcile_mode(self) -> str:
        if self is LinkStrategy.SYNC:
            return "replace"
        if self is LinkStrategy.DETACH:
            return "remove"
        return "add"


class MappingType(str, Enum):
    ENTITY = "entity"
    PIVOT_SYNC = "pivot_sync"


# ---------------------------------------------------------------------------
# API request/response models
# ---------------------------------------------------------------------------


class ProcessResponse(BaseModel):
    run_id: str
    status: FlowRunStatus
    message: str
    total_rows: int = 0
    imported_rows: int = 0
    skipped_rows: int = 0
    error_count: int = 0


class FlowRunResponse(BaseModel):
    run_id: str
    status: FlowRunStatus
    source_file: Optional[str] = None
    total_rows: int
    imported_rows: int
    skipped_rows: int
    error_count: int
    progress: float
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    errors: list[dict[str, Any]] = []
    warnings: list[dict[str, Any]] = []
    metadata: dict[str, Any] = {}
