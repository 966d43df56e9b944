"""Process endpoint: upload a file and run it through a mapping.

The run is executed synchronously and its record saved to the runs
directory, so it can be fetched later through ``/runs/{run_id}``.
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from inflow.api.deps import get_schema_registry, get_transform_registry
from inflow.core.config import settings
from inflow.core.entity_store import InMemoryEntityStore
from inflow.core.executor import FlowExecutor
from inflow.core.flow import Flow, FlowOptions
from inflow.core.format_detector import EXTENSION_TYPES
from inflow.core.id_gen import generate_id
from inflow.core.models import FlowRunStatus, ProcessResponse
from inflow.core.schema_registry import SchemaRegistry
from inflow.core.storage import load_mapping, save_run
from inflow.core.transform_engine import TransformRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_SUFFIXES = {".csv", *(f".{ext}" for ext in EXTENSION_TYPES)}


@router.post("/process", response_model=ProcessResponse)
async def process_file(
    file: UploadFile = File(...),
    mapping_name: Optional[str] = Form(None),
    schema_name: Optional[str] = Form(None),
    error_policy: Optional[str] = Form(None),
    chunk_size: Optional[int] = Form(None),
    schemas: SchemaRegistry = Depends(get_schema_registry),
    transforms: TransformRegistry = Depends(get_transform_registry),
):
    """Upload a file and import it.

    - **file**: CSV, TXT, XLSX, JSON, JSONL or XML file
    - **mapping_name**: stored mapping to apply; omit to profile the file
    - **schema_name**: entity schema the mapping writes into
    """
    filename = Path(file.filename or "").name
    if Path(filename).suffix.lower() not in ALLOWED_SUFFIXES:
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {filename or 'unnamed'}")

    mapping = None
    if mapping_name:
        if not schema_name:
            raise HTTPException(status_code=400, detail="schema_name is required with mapping_name")
        try:
            mapping = load_mapping(mapping_name)
        except FileNotFoundError:
            raise HTTPException(status_code=404, detail=f"Mapping '{mapping_name}' not found")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid mapping: {e}")

    if schema_name:
        try:
            store = schemas.build_store(schema_name)
        except FileNotFoundError:
            raise HTTPException(status_code=404, detail=f"Schema '{schema_name}' not found")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid schema: {e}")
    else:
        store = InMemoryEntityStore([])

    upload_dir = settings.resolve_dir(settings.uploads_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    file_path = upload_dir / f"{generate_id()}_{filename}"
    file_path.write_bytes(await file.read())

    options = FlowOptions.from_settings(settings)
    if error_policy is not None:
        options = replace(options, error_policy=error_policy)
    if chunk_size is not None:
        options = replace(options, chunk_size=chunk_size)

    flow = Flow.for_source(file_path, mapping=mapping, options=options, name=mapping_name or filename)
    try:
        run = FlowExecutor(store, transforms, run_sink=save_run).execute(flow)
    except Exception as e:
        logger.error(f"Process failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Process failed: {e}")

    message = f"Run {run.status.label.lower()}"
    if run.status is FlowRunStatus.FAILED and run.errors:
        message += f": {run.errors[-1]['message']}"
    elif run.error_count:
        message += f" with {run.error_count} errors"

    return ProcessResponse(
        run_id=run.run_id,
        status=run.status,
        message=message,
        total_rows=run.total_rows,
        imported_rows=run.imported_rows,
        skipped_rows=run.skipped_rows,
        error_count=run.error_count,
    )
