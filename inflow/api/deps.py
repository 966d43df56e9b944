"""FastAPI dependencies for the shared registries."""

from fastapi import Request

from inflow.core.schema_registry import SchemaRegistry
from inflow.core.transform_engine import TransformRegistry


def get_schema_registry(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


def get_transform_registry(request: Request) -> TransformRegistry:
    return request.app.state.transform_registry
