"""
FarmStock API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import TransferEngineError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    from api.deps import get_transfer_service
    from docstore import SqlDocumentStore

    logger.info("FarmStock API starting up", version=settings.app_version, store=settings.document_store_backend)
    service = get_transfer_service()
    if isinstance(service.store, SqlDocumentStore):
        await service.store.create_schema()
    yield
    await service.store.close()
    logger.info("FarmStock API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Inter-farm stock transfers and inventory reconciliation",
    lifespan=lifespan,
)


@app.exception_handler(TransferEngineError)
async def transfer_engine_error_handler(request: Request, exc: TransferEngineError):
    """Map engine errors to HTTP responses with a machine-readable code."""
    log = logger.error if exc.http_status >= 500 else logger.warning
    log("api.engine_error", code=exc.code, path=request.url.path, detail=exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import inventory, locations, notifications, reports, transfers

app.include_router(locations.router)
app.include_router(inventory.router)
app.include_router(transfers.router)
app.include_router(notifications.router)
app.include_router(reports.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
