"""Flow run endpoints."""

from fastapi import APIRouter, HTTPException

from inflow.core.models import FlowRunResponse
from inflow.core.storage import load_run

router = APIRouter()


@router.get("/runs/{run_id}", response_model=FlowRunResponse)
async def get_run(run_id: str):
    """Get the stored record of a flow run."""
    try:
        data = load_run(run_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    return FlowRunResponse(**data)
