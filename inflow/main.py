"""inflow — FastAPI application entry point.

Initializes the schema registry and custom transforms on startup and
registers API routers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from inflow.core.config import settings
from inflow.core.schema_registry import SchemaRegistry
from inflow.core.transform_engine import TransformRegistry, load_custom_transforms
from inflow.api import health, mappings, process, runs

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared registries on startup."""
    logger.info("Starting inflow backend...")

    app.state.schema_registry = SchemaRegistry()
    logger.info("Schema registry initialized")

    app.state.transform_registry = (
        load_custom_transforms(settings.custom_transforms)
        if settings.custom_transforms
        else TransformRegistry()
    )
    logger.info(f"Custom transforms: {app.state.transform_registry.names() or 'none'}")

    logger.info("inflow backend ready")
    yield
    logger.info("inflow backend stopped")


app = FastAPI(
    title="inflow",
    version="0.1.0",
    description="Import CSV, Excel, JSON and XML files into entity stores "
                "through declarative mappings.",
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(process.router, prefix="/api", tags=["process"])
app.include_router(mappings.router, prefix="/api", tags=["mappings"])
app.include_router(runs.router, prefix="/api", tags=["runs"])
