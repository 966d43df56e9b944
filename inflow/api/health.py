"""Health check endpoint."""

from fastapi import APIRouter, Depends

from inflow.api.deps import get_schema_registry, get_transform_registry
from inflow.core.schema_registry import SchemaRegistry
from inflow.core.transform_engine import TransformRegistry

router = APIRouter()


@router.get("/health")
async def health_check(
    schemas: SchemaRegistry = Depends(get_schema_registry),
    transforms: TransformRegistry = Depends(get_transform_registry),
):
    """Report backend status with the schemas and custom transforms it knows."""
    return {
        "status": "ok",
        "schemas": schemas.list_schemas(),
        "custom_transforms": transforms.names(),
    }
