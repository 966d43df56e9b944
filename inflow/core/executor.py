"""Flow Executor — runs a Flow end to end and returns its FlowRun.

Pipeline:
1. Validate the flow (configuration errors fail the run before any row)
2. Sanitize the source into a temporary copy (text formats only)
3. Detect the format, apply format_config overrides, open the reader
4. Stream rows in chunks; per chunk, process entity mappings in execution
   order, validating and loading each row
5. Update progress after every chunk and notify the progress callback
6. Complete the run, or fail it on a stop-policy error

Row-level problems (RowError) are recorded against the row and handled by the
error policy. Any other exception fails the run; it never reaches the caller.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Optional

from inflow.core.entity_store import EntityStore
from inflow.core.errors import RowError, RowValidationError
from inflow.core.execution_order import validate_execution_order
from inflow.core.flow import Flow, FlowRun
from inflow.core.format_detector import detect_format
from inflow.core.loader import EntityLoader, PivotSyncLoader
from inflow.core.mapping import EntityMapping, Row
from inflow.core.models import FlowRunStatus
from inflow.core.profiler import profile
from inflow.core.readers import BaseReader, create_reader
from inflow.core.sanitizer import SanitizerConfig, sanitize_file
from inflow.core.transform_engine import TransformEngine, TransformRegistry
from inflow.core.validation import MappingValidator

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[FlowRun], None]
# (run, row_number, message) -> "continue" | "stop" | "stop_on_error"
ErrorDecisionCallback = Callable[[FlowRun, int, str], str]

SPREADSHEET_SUFFIXES = (".xls", ".xlsx")
ROW_ID_COLUMNS = ["id", "ID", "Id", "row_id", "rowId", "external_id", "externalId"]
MAX_LISTED_ROWS = 10


@dataclass
class _RunState:
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    empty_rows: list[tuple[int, Optional[str]]] = field(default_factory=list)
    truncated: list[dict] = field(default_factory=list)
    stop_on_next_error: bool = False


def _row_identifier(row: Row) -> Optional[str]:
    for column in ROW_ID_COLUMNS:
        value = row.get(column)
        if value is not None and str(value).strip() != "":
            return str(value)
    return None


def _chunks(reader: BaseReader, size: int) -> Iterator[list[Row]]:
    chunk: list[Row] = []
    for index, data in enumerate(reader):
        chunk.append(Row(data=data, line_number=index + 1))
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


class FlowExecutor:
    def __init__(
        self,
        store: EntityStore,
        registry: Optional[TransformRegistry] = None,
        progress_callback: Optional[ProgressCallback] = None,
        error_decision_callback: Optional[ErrorDecisionCallback] = None,
        run_sink: Optional[Callable[[FlowRun], None]] = None,
    ):
        self.store = store
        self.engine = TransformEngine(registry)
        self.validator = MappingValidator(self.engine, store)
        self.pivot_loader = PivotSyncLoader(store)
        self.progress_callback = progress_callback
        self.error_decision_callback = error_decision_callback
        self.run_sink = run_sink

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def execute(self, flow: Flow) -> FlowRun:
        source = str(flow.source_path) if flow.source_path else None
        errors = flow.validate()
        if errors:
            run = FlowRun.create(source).fail("Flow validation failed: " + ", ".join(errors))
            logger.error(f"Flow '{flow.name}' is invalid: {errors}")
            return self._finish(run)

        run = FlowRun.create(source).start()
        logger.info(f"Flow '{flow.name}' started as {run.run_id}")
        temp_path: Optional[Path] = None
        reader: Optional[BaseReader] = None
        try:
            path, temp_path, run = self._prepare_source(flow, run)
            detected = detect_format(path).with_overrides(flow.format_config)
            reader = create_reader(path, detected)
            run = run.with_total_rows(reader.count_rows()).with_format(detected.to_dict())
            self._notify(run)

            if flow.mapping is None:
                run = run.with_schema(profile(reader).to_dict())
            else:
                run = self._load(reader, flow, run)

            if run.status is not FlowRunStatus.FAILED:
                run = run.complete()
        except Exception as e:
            logger.error(f"Flow '{flow.name}' failed: {e}", exc_info=True)
            run = run.fail(str(e), e)
        finally:
            if reader is not None:
                reader.close()
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)

        logger.info(
            f"Flow '{flow.name}' finished: {run.status.value}, "
            f"{run.imported_rows}/{run.total_rows} imported, {run.skipped_rows} skipped, "
            f"{run.error_count} errors"
        )
        return self._finish(run)

    def _finish(self, run: FlowRun) -> FlowRun:
        self._notify(run)
        if self.run_sink is not None:
            self.run_sink(run)
        return run

    def _notify(self, run: FlowRun) -> None:
        if self.progress_callback is not None:
            self.progress_callback(run)

    # ------------------------------------------------------------------
    # Source preparation
    # ------------------------------------------------------------------

    def _prepare_source(self, flow: Flow, run: FlowRun) -> tuple[Path, Optional[Path], FlowRun]:
        path = flow.source_path
        if path is None:
            raise ValueError("Source configuration has no file path")
        if not path.exists():
            raise FileNotFoundError(f"Source file not found: {path}")
        if not flow.sanitizer_enabled or path.suffix.lower() in SPREADSHEET_SUFFIXES:
            return path, None, run

        config = SanitizerConfig(**{
            k: v for k, v in flow.sanitizer_config.items() if k in SanitizerConfig.model_fields
        })
        temp_path, report = sanitize_file(path, config)
        run = run.with_metadata(sanitization=report.to_dict())
        return temp_path, temp_path, run

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _check_mapping(self, flow: Flow, reader: BaseReader, run: FlowRun) -> FlowRun:
        mapping = flow.mapping
        for entity_mapping in mapping.mappings:
            if not entity_mapping.is_pivot_sync:
                self.store.describe(entity_mapping.entity)
        for message in validate_execution_order(mapping, self.store):
            run = run.add_warning(message)

        first = reader.current()
        if first is not None:
            missing = mapping.validate_source_columns([str(c) for c in first])
            if missing:
                run = run.add_warning(
                    f"Source is missing mapped column(s): {', '.join(missing)}",
                    {"missing_columns": missing},
                )
        return run

    def _load(self, reader: BaseReader, flow: Flow, run: FlowRun) -> FlowRun:
        reader.rewind()
        run = self._check_mapping(flow, reader, run)
        loader = EntityLoader(self.store, self.engine, truncate=flow.options.truncate_long_fields)
        mappings = flow.mapping.ordered_mappings()
        state = _RunState()

        for chunk in _chunks(reader, flow.options.chunk_size):
            run, stopped = self._process_chunk(chunk, mappings, flow, loader, run, state)
            run = run.update_progress(state.imported, state.skipped, state.failed)
            if stopped:
                return self._add_summary_warnings(run, state)
            self._notify(run)

        return self._add_summary_warnings(run, state)

    def _process_chunk(
        self,
        chunk: list[Row],
        mappings: list[EntityMapping],
        flow: Flow,
        loader: EntityLoader,
        run: FlowRun,
        state: _RunState,
    ) -> tuple[FlowRun, bool]:
        """Process one chunk entity by entity; returns (run, stopped)."""
        outcome: dict[int, str] = {}
        wrote: set[int] = set()

        for row in chunk:
            if flow.options.skip_empty_rows and row.is_empty():
                outcome[row.line_number] = "skipped"
                state.empty_rows.append((row.line_number, _row_identifier(row)))

        stopped = False
        for mapping in mappings:
            for row in chunk:
                n = row.line_number
                if n in outcome:
                    continue
                try:
                    if self._process_row(row, mapping, loader, state):
                        wrote.add(n)
                except RowValidationError as e:
                    outcome[n] = "skipped"
                    run = run.add_error(
                        f"Validation failed for row {n}",
                        n,
                        {"entity": mapping.entity, "errors": e.errors, "data": row.to_dict()},
                    )
                    if self._should_stop(run, flow, n, f"Validation failed for row {n}", state):
                        run = run.fail(f"Stopped on validation error at row {n}")
                        stopped = True
                except RowError as e:
                    outcome[n] = "failed"
                    run = run.add_error(str(e), n, {"entity": mapping.entity, "data": row.to_dict()})
                    if self._should_stop(run, flow, n, str(e), state):
                        run = run.fail(f"Stopped on error at row {n}: {e}")
                        stopped = True
                for warning in self.engine.pop_warnings():
                    run = run.add_warning(f"Row {n}: {warning}", {"row": n})
                if stopped:
                    break
            if stopped:
                break

        for row in chunk:
            n = row.line_number
            result = outcome.get(n)
            if result == "failed":
                state.failed += 1
            elif result == "skipped":
                state.skipped += 1
            elif n in wrote:
                state.imported += 1
            elif not stopped:
                state.skipped += 1
        return run, stopped

    def _process_row(self, row: Row, mapping: EntityMapping, loader: EntityLoader, state: _RunState) -> bool:
        """Validate and load one row for one mapping; True when something was written."""
        if mapping.is_pivot_sync:
            values = self.validator.transform_values(row, mapping)
            return self.pivot_loader.sync(mapping, values)

        result = self.validator.validate_row(row, mapping)
        if not result.passes:
            raise RowValidationError(result.errors)
        loaded = loader.load(row, mapping, result.values)
        for item in loaded.truncated:
            state.truncated.append({**item, "row": row.line_number})
        return not loaded.skipped

    def _should_stop(self, run: FlowRun, flow: Flow, row_number: int, message: str, state: _RunState) -> bool:
        if state.stop_on_next_error:
            return True
        if self.error_decision_callback is not None:
            decision = self.error_decision_callback(run, row_number, message)
            if decision == "stop":
                return True
            if decision == "stop_on_error":
                state.stop_on_next_error = True
        return flow.options.stops_on_error

    # ------------------------------------------------------------------
    # Warnings
    # ------------------------------------------------------------------

    def _add_summary_warnings(self, run: FlowRun, state: _RunState) -> FlowRun:
        if state.empty_rows:
            listed = [
                f"Row {n} (ID: {ident})" if ident else f"Row {n}"
                for n, ident in state.empty_rows[:MAX_LISTED_ROWS]
            ]
            message = (
                f"{len(state.empty_rows)} empty row(s) were skipped during import: "
                + ", ".join(listed)
            )
            remaining = len(state.empty_rows) - MAX_LISTED_ROWS
            if remaining > 0:
                message += f" and {remaining} more"
            run = run.add_warning(message, {"rows": [n for n, _ in state.empty_rows]})

        if state.truncated:
            run = run.add_warning(
                f"{len(state.truncated)} field value(s) were truncated to fit the maximum length",
                {"fields": state.truncated[:MAX_LISTED_ROWS]},
            )
        return run
