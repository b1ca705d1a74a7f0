"""
storesync - Main Application
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .dependencies import init_dependencies, close_dependencies
from .mapping import InvalidTransitionError
from .routes import connections_router, usage_router
from .shopify import BulkOperationInProgress, ShopifyClientError
from .sync import ConnectionNotFoundError, MappingNotFoundError, SyncError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting storesync...")
    await init_dependencies()
    logger.info("Application ready")
    yield
    logger.info("Shutting down...")
    await close_dependencies()


# Create app
app = FastAPI(
    title="storesync",
    description="Supplier to retailer catalog sync with health and usage tracking",
    version="1.0.0",
    lifespan=lifespan
)

# Include routers
app.include_router(connections_router)
app.include_router(usage_router)


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    not_found = isinstance(exc, (ConnectionNotFoundError, MappingNotFoundError))
    return JSONResponse(status_code=404 if not_found else 409, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def transition_error_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ShopifyClientError)
async def shopify_error_handler(request: Request, exc: ShopifyClientError):
    if isinstance(exc, BulkOperationInProgress):
        return JSONResponse(status_code=409, content={"detail": str(exc)})
    logger.error(f"Store API error on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "storesync.main:app",
        host=settings.host,
        port=settings.port,
        reload=True
    )
