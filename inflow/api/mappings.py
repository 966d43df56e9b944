"""Mapping definition endpoints."""

from fastapi import APIRouter, HTTPException

from inflow.core.storage import list_mappings, load_mapping

router = APIRouter()


@router.get("/mappings")
async def get_mappings():
    """List stored mapping names."""
    return {"mappings": list_mappings()}


@router.get("/mappings/{name}")
async def get_mapping(name: str):
    if name not in list_mappings():
        raise HTTPException(status_code=404, detail=f"Mapping '{name}' not found")
    try:
        return load_mapping(name).to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid mapping: {e}")
