"""
inflow - command line entry point

Commands:
- inflow process <file> --mapping <name|path> --schema <schema.yaml>
- inflow detect <file>
- inflow mappings
- inflow serve

``process`` exits with 0 only when the run finished without any recorded
error; validation failures and row errors produce exit code 1.
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from inflow.core.config import settings
from inflow.core.entity_store import InMemoryEntityStore
from inflow.core.executor import FlowExecutor
from inflow.core.flow import Flow, FlowOptions, FlowRun
from inflow.core.format_detector import FormatDetectionError, detect_format
from inflow.core.models import FlowRunStatus
from inflow.core.readers import create_reader
from inflow.core.schema_registry import SchemaRegistry
from inflow.core.storage import list_mappings, load_mapping, save_run
from inflow.core.transform_engine import load_custom_transforms

app = typer.Typer(
    help="Import CSV, Excel, JSON and XML files into entity stores",
    no_args_is_help=True,
)
console = Console()
logger = logging.getLogger(__name__)

MAX_LISTED = 10


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _build_store(schema: Optional[Path]) -> InMemoryEntityStore:
    if schema is None:
        return InMemoryEntityStore([])
    registry = SchemaRegistry()
    loaded = registry.load_schema_file(schema)
    return registry.build_store(loaded.name)


def _print_run(run: FlowRun) -> None:
    color = {
        FlowRunStatus.COMPLETED: "green",
        FlowRunStatus.PARTIALLY_COMPLETED: "yellow",
        FlowRunStatus.FAILED: "red",
    }.get(run.status, "white")

    table = Table(title=f"Run {run.run_id}", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Status", f"[{color}]{run.status.label}[/{color}]")
    table.add_row("Total rows", str(run.total_rows))
    table.add_row("Imported", str(run.imported_rows))
    table.add_row("Skipped", str(run.skipped_rows))
    table.add_row("Failed", str(run.failed_rows))
    table.add_row("Errors", str(run.error_count))
    if run.duration is not None:
        table.add_row("Duration", f"{run.duration:.2f}s")
    console.print(table)

    for error in run.errors[:MAX_LISTED]:
        prefix = f"Row {error['row']}: " if error.get("row") else ""
        console.print(f"[red]✗[/red] {prefix}{error['message']}")
        for attribute, messages in (error.get("context") or {}).get("errors", {}).items():
            console.print(f"    {attribute}: {'; '.join(messages)}")
    if run.error_count > MAX_LISTED:
        console.print(f"  ... and {run.error_count - MAX_LISTED} more errors")

    for warning in run.warnings[:MAX_LISTED]:
        console.print(f"[yellow]![/yellow] {warning['message']}")

    schema = run.metadata.get("source_schema")
    if schema:
        columns = Table(title="Source columns")
        columns.add_column("Column", style="cyan")
        columns.add_column("Type")
        columns.add_column("Nulls")
        columns.add_column("Unique")
        columns.add_column("Examples")
        for name, meta in schema["columns"].items():
            columns.add_row(
                name,
                meta["type"],
                str(meta["null_count"]),
                str(meta["unique_count"]),
                ", ".join(str(s) for s in meta["examples"][:3]),
            )
        console.print(columns)


@app.command()
def process(
    file: Path = typer.Argument(
        ...,
        help="Source file (CSV, TXT, XLSX, JSON, JSONL or XML)",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    mapping: Optional[str] = typer.Option(
        None,
        "--mapping", "-m",
        help="Mapping name (mappings dir) or path; omit to profile the file",
    ),
    schema: Optional[Path] = typer.Option(
        None,
        "--schema", "-s",
        help="Entity schema YAML file",
        exists=True,
        dir_okay=False,
    ),
    error_policy: Optional[str] = typer.Option(
        None,
        "--error-policy",
        help="stop or continue (default from settings)",
    ),
    chunk_size: Optional[int] = typer.Option(
        None,
        "--chunk-size",
        help="Rows per chunk (default from settings)",
    ),
    no_sanitize: bool = typer.Option(
        False,
        "--no-sanitize",
        help="Read the file without the sanitizer pass",
    ),
    save: bool = typer.Option(
        False,
        "--save-run",
        help="Write the run record to the runs directory",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Run a file through detection, mapping, validation and loading."""
    _setup_logging(verbose)

    definition = None
    if mapping is not None:
        if schema is None:
            raise typer.BadParameter("--schema is required together with --mapping")
        try:
            definition = load_mapping(mapping)
        except (FileNotFoundError, ValueError) as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=2)

    try:
        store = _build_store(schema)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2)

    options = FlowOptions.from_settings(settings)
    if error_policy is not None:
        options = replace(options, error_policy=error_policy)
    if chunk_size is not None:
        options = replace(options, chunk_size=chunk_size)

    flow = Flow.for_source(file, mapping=definition, options=options)
    if no_sanitize:
        flow = replace(flow, sanitizer_config={**flow.sanitizer_config, "enabled": False})

    registry = load_custom_transforms(settings.custom_transforms) if settings.custom_transforms else None
    executor = FlowExecutor(store, registry, run_sink=save_run if save else None)

    with console.status(f"Processing {file.name}..."):
        run = executor.execute(flow)

    _print_run(run)
    if run.status is FlowRunStatus.FAILED or run.error_count > 0:
        raise typer.Exit(code=1)


@app.command()
def detect(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    rows: int = typer.Option(settings.preview_rows, "--rows", "-n", help="Preview rows"),
):
    """Show the detected format and the first rows of a file."""
    try:
        detected = detect_format(file)
    except FormatDetectionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"Format of {file.name}", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    for key, value in detected.to_dict().items():
        table.add_row(key, repr(value) if value is not None else "-")
    console.print(table)

    with create_reader(file, detected) as reader:
        preview = []
        for row in reader:
            preview.append(row)
            if len(preview) >= rows:
                break

    if preview:
        columns = list(preview[0])
        grid = Table(title="Preview")
        for column in columns:
            grid.add_column(str(column))
        for row in preview:
            grid.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in columns))
        console.print(grid)


@app.command("mappings")
def show_mappings():
    """List the mappings stored in the mappings directory."""
    names = list_mappings()
    if not names:
        console.print("No mappings found")
        return
    for name in names:
        console.print(name)


@app.command()
def serve(
    host: str = typer.Option(settings.backend_host, "--host"),
    port: int = typer.Option(settings.backend_port, "--port"),
):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("inflow.main:app", host=host, port=port)


if __name__ == "__main__":
    app()
