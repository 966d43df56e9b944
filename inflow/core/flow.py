"""Flow and FlowRun value objects.

A Flow is the immutable configuration of an import. A FlowRun is the
execution record: every state change returns a new FlowRun, so the executor
holds exactly one current reference and callbacks receive snapshots.
"""

import traceback
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from inflow.core.config import settings
from inflow.core.id_gen import generate_id
from inflow.core.mapping import MappingDefinition
from inflow.core.models import ErrorPolicy, FlowRunStatus
from inflow.core.sanitizer import SanitizerConfig

MIN_CHUNK_SIZE = 1
MAX_CHUNK_SIZE = 100000


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FlowOptions:
    chunk_size: int = 1000
    error_policy: str = ErrorPolicy.CONTINUE.value
    skip_empty_rows: bool = True
    truncate_long_fields: bool = True

    @classmethod
    def from_settings(cls, s) -> "FlowOptions":
        return cls(
            chunk_size=s.chunk_size,
            error_policy=s.error_policy,
            skip_empty_rows=s.skip_empty_rows,
            truncate_long_fields=s.truncate_long_fields,
        )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "FlowOptions":
        data = data or {}
        defaults = cls()
        return cls(
            chunk_size=data.get("chunk_size", defaults.chunk_size),
            error_policy=data.get("error_policy", defaults.error_policy),
            skip_empty_rows=data.get("skip_empty_rows", defaults.skip_empty_rows),
            truncate_long_fields=data.get("truncate_long_fields", defaults.truncate_long_fields),
        )

    def to_dict(self) -> dict:
        return {
            "chunk_size": self.chunk_size,
            "error_policy": self.error_policy,
            "skip_empty_rows": self.skip_empty_rows,
            "truncate_long_fields": self.truncate_long_fields,
        }

    @property
    def stops_on_error(self) -> bool:
        return self.error_policy == ErrorPolicy.STOP.value


@dataclass(frozen=True)
class Flow:
    name: str
    source_config: dict[str, Any]
    sanitizer_config: dict[str, Any]
    mapping: Optional[MappingDefinition] = None
    format_config: Optional[dict[str, Any]] = None
    options: FlowOptions = field(default_factory=FlowOptions)
    description: Optional[str] = None

    @property
    def source_path(self) -> Optional[Path]:
        path = self.source_config.get("path") or self.source_config.get("file")
        return Path(path) if path else None

    @property
    def sanitizer_enabled(self) -> bool:
        return bool(self.sanitizer_config.get("enabled", True))

    def validate(self) -> list[str]:
        """Configuration errors; an executable flow has none."""
        errors = []
        if not self.name or not self.name.strip():
            errors.append("Flow name is required")
        if not self.source_config:
            errors.append("Source configuration is required")
        if not self.sanitizer_config:
            errors.append("Sanitizer configuration is required")
        chunk_size = self.options.chunk_size
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or not (
            MIN_CHUNK_SIZE <= chunk_size <= MAX_CHUNK_SIZE
        ):
            errors.append(f"Chunk size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE}")
        if self.options.error_policy not in {p.value for p in ErrorPolicy}:
            errors.append('Error policy must be either "stop" or "continue"')
        if self.mapping is not None:
            errors.extend(self.mapping.validate_structure())
        return errors

    def with_options(self, **changes) -> "Flow":
        return replace(self, options=replace(self.options, **changes))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "source_config": dict(self.source_config),
            "sanitizer_config": dict(self.sanitizer_config),
            "format_config": dict(self.format_config) if self.format_config else None,
            "mapping": self.mapping.to_dict() if self.mapping else None,
            "options": self.options.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Flow":
        mapping = data.get("mapping")
        return cls(
            name=data.get("name") or "Unnamed Flow",
            description=data.get("description"),
            source_config=data.get("source_config") or {},
            sanitizer_config=data.get("sanitizer_config") or {},
            format_config=data.get("format_config"),
            mapping=MappingDefinition.from_dict(mapping) if mapping else None,
            options=FlowOptions.from_dict(data.get("options")),
        )

    @classmethod
    def for_source(
        cls,
        path: Path,
        mapping: Optional[MappingDefinition] = None,
        options: Optional[FlowOptions] = None,
        name: Optional[str] = None,
    ) -> "Flow":
        """Ad-hoc flow for one file with the configured sanitizer and options."""
        sanitizer = SanitizerConfig.from_settings(settings).model_dump()
        return cls(
            name=name or (mapping.name if mapping else Path(path).stem),
            source_config={"type": "file", "path": str(path)},
            sanitizer_config={"enabled": settings.sanitizer_enabled, **sanitizer},
            mapping=mapping,
            options=options or FlowOptions.from_settings(settings),
        )


@dataclass(frozen=True)
class FlowRun:
    """Immutable snapshot of one flow execution."""
    run_id: str
    status: FlowRunStatus = FlowRunStatus.PENDING
    source_file: Optional[str] = None
    total_rows: int = 0
    imported_rows: int = 0
    skipped_rows: int = 0
    failed_rows: int = 0
    error_count: int = 0
    errors: tuple[dict, ...] = ()
    warnings: tuple[dict, ...] = ()
    progress: float = 0.0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, source_file: Optional[str] = None, total_rows: int = 0) -> "FlowRun":
        return cls(
            run_id=generate_id("run_"),
            source_file=source_file,
            total_rows=total_rows,
            start_time=_now(),
        )

    # Transitions

    def start(self) -> "FlowRun":
        return replace(self, status=FlowRunStatus.RUNNING, start_time=self.start_time or _now())

    def with_total_rows(self, total_rows: int) -> "FlowRun":
        return replace(self, total_rows=total_rows)

    def update_progress(self, imported: int, skipped: int, failed: int = 0) -> "FlowRun":
        """Set row counters; failed counts rows that errored without being skipped."""
        processed = imported + skipped + failed
        progress = min(100.0, processed / self.total_rows * 100) if self.total_rows > 0 else 0.0
        return replace(
            self,
            imported_rows=imported,
            skipped_rows=skipped,
            failed_rows=failed,
            progress=round(progress, 2),
        )

    def add_error(self, message: str, row: Optional[int] = None, context: Optional[dict] = None) -> "FlowRun":
        entry = {
            "message": message,
            "row": row,
            "context": context or {},
            "timestamp": _now().isoformat(),
        }
        errors = (*self.errors, entry)
        return replace(self, errors=errors, error_count=len(errors))

    def add_warning(self, message: str, context: Optional[dict] = None) -> "FlowRun":
        entry = {"message": message, "context": context or {}, "timestamp": _now().isoformat()}
        return replace(self, warnings=(*self.warnings, entry))

    def complete(self) -> "FlowRun":
        if self.error_count > 0 and self.imported_rows > 0:
            status = FlowRunStatus.PARTIALLY_COMPLETED
        else:
            status = FlowRunStatus.COMPLETED
        return replace(self, status=status, progress=100.0, end_time=_now())

    def fail(self, message: str, exc: Optional[BaseException] = None) -> "FlowRun":
        entry = {
            "message": message,
            "row": None,
            "context": {
                "exception": type(exc).__name__,
                "trace": "".join(traceback.format_exception(exc)),
            } if exc else {},
            "timestamp": _now().isoformat(),
        }
        errors = (*self.errors, entry)
        return replace(
            self,
            status=FlowRunStatus.FAILED,
            errors=errors,
            error_count=len(errors),
            end_time=_now(),
        )

    def with_metadata(self, **values: Any) -> "FlowRun":
        return replace(self, metadata={**self.metadata, **values})

    def with_format(self, detected_format: dict) -> "FlowRun":
        return self.with_metadata(format=detected_format)

    def with_schema(self, source_schema: dict) -> "FlowRun":
        return self.with_metadata(source_schema=source_schema)

    # Derived values

    @property
    def duration(self) -> Optional[float]:
        if self.start_time is None or self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success_rate(self) -> float:
        if self.total_rows == 0:
            return 0.0
        return round(self.imported_rows / self.total_rows * 100, 2)

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "source_file": self.source_file,
            "total_rows": self.total_rows,
            "imported_rows": self.imported_rows,
            "skipped_rows": self.skipped_rows,
            "failed_rows": self.failed_rows,
            "error_count": self.error_count,
            "errors": [dict(e) for e in self.errors],
            "warnings": [dict(w) for w in self.warnings],
            "progress": self.progress,
            "started_at": self.start_time.isoformat() if self.start_time else None,
            "completed_at": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "success_rate": self.success_rate,
            "metadata": dict(self.metadata),
        }
