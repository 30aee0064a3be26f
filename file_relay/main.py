"""
File Relay Service - Main Application
FastAPI app relaying uploads into a size-constrained backing store and
streaming them back with range support.
"""

import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared_schemas.common import ErrorResponse
from shared_schemas.file_relay import (
    ApiInfoResponse,
    ChannelInfo,
    HealthCheckResponse,
    LimitsInfo,
)
from file_relay.core.config import settings
from file_relay.core.dependencies import Store
from file_relay.core.errors import RelayError
from file_relay.storage.backend import build_backing_store
from file_relay.api import media, upload
from file_relay.utils.media import AUDIO_EXTENSIONS, VIDEO_EXTENSIONS
from file_relay.utils.naming import format_file_size

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "File Relay Service"
SERVICE_VERSION = "2.1.0"

ENDPOINTS = {
    "GET /": "Service information",
    "POST /upload": "Upload files via form data or URL",
    "GET /download/{file_id}": "Download files",
    "GET /stream/{file_id}": "Stream media files",
    "GET /player/{file_id}": "Media player page",
    "GET /api/info": "API information",
    "GET /health": "Health check",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Builds the shared HTTP client and backing store on startup, closes them on shutdown.
    """
    # Startup
    logger.info(f"Starting {SERVICE_NAME}...")

    Path(settings.STAGING_DIR).mkdir(parents=True, exist_ok=True)

    http_client = httpx.AsyncClient(follow_redirects=True)
    store = build_backing_store(settings, http_client)
    await store.start()

    app.state.http_client = http_client
    app.state.store = store

    if store.richer_available:
        logger.info("Richer channel ready, large files use native multipart uploads")
    else:
        logger.info("Richer channel unavailable, large files will be chunked")

    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    # Shutdown
    logger.info(f"Shutting down {SERVICE_NAME}...")
    await store.close()
    await http_client.aclose()


# Create FastAPI app
app = FastAPI(
    title=SERVICE_NAME,
    description="Chunked uploads to a size-constrained backing store with range-aware download and streaming",
    version=SERVICE_VERSION,
    lifespan=lifespan
)


# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Range"],
    expose_headers=["Content-Range", "Content-Length", "Accept-Ranges"],
)


# Include API routers
app.include_router(upload.router)
app.include_router(media.router)


@app.get("/", tags=["root"])
async def root():
    """Root endpoint with service information."""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "endpoints": ENDPOINTS,
        "documentation": {
            "swagger": "/docs",
            "redoc": "/redoc"
        }
    }


@app.get("/api/info", tags=["root"], response_model=ApiInfoResponse)
async def api_info(store: Store):
    """Features, limits, and channel configuration (never secrets)."""
    channels = {}
    for label, channel in (("bot", store.standard), ("client", store.richer)):
        if channel is None:
            channels[label] = ChannelInfo(configured=False, available=False, max_object_size=0)
            continue
        capabilities = channel.capabilities
        channels[label] = ChannelInfo(
            configured=True,
            available=capabilities.available,
            max_object_size=capabilities.max_object_size,
        )

    return ApiInfoResponse(
        name=SERVICE_NAME,
        version=SERVICE_VERSION,
        features=[
            f"File uploads up to {format_file_size(settings.MAX_FILE_SIZE)}",
            "Automatic chunking above the single-upload limit",
            "Video/Audio streaming with player page",
            "Range request support",
            "Multiple upload methods (form, URL)",
        ],
        endpoints=ENDPOINTS,
        limits=LimitsInfo(
            max_file_size=settings.MAX_FILE_SIZE,
            max_file_size_formatted=format_file_size(settings.MAX_FILE_SIZE),
            single_upload_limit=settings.SINGLE_UPLOAD_LIMIT,
            chunk_size=settings.CHUNK_SIZE,
            supported_video_formats=sorted(VIDEO_EXTENSIONS),
            supported_audio_formats=sorted(AUDIO_EXTENSIONS),
        ),
        channels=channels,
    )


@app.get("/health", tags=["health"], response_model=HealthCheckResponse)
async def health_check(store: Store):
    """Health check endpoint."""
    bot_ok = store.standard.capabilities.available
    if store.richer is None:
        client_status = "not_configured"
    else:
        client_status = "ok" if store.richer.capabilities.available else "unavailable"

    body = HealthCheckResponse(
        status="healthy" if bot_ok else "unhealthy",
        bot_channel="ok" if bot_ok else "not_configured",
        client_channel=client_status,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    if not bot_ok:
        logger.error("Health check failed: bot channel not configured")
        return JSONResponse(status_code=503, content=body.model_dump())
    return body


def _error_response(exc: Exception, status_code: int, message: str, **extra) -> JSONResponse:
    body = ErrorResponse(
        error=message,
        max_size_supported=format_file_size(settings.MAX_FILE_SIZE),
        details="".join(traceback.format_exception(exc)) if settings.DEBUG else None,
        **extra,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(RelayError)
async def relay_exception_handler(request: Request, exc: RelayError):
    """Render taxonomy errors with their public message."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return _error_response(exc, exc.status_code, exc.message, **exc.extra)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Unknown routes list what is available; other HTTP errors keep their detail."""
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "error": "Endpoint not found",
                "available_endpoints": list(ENDPOINTS),
            }
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error_response(exc, 500, "Internal server error")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "file_relay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.LOG_LEVEL.lower(),
        timeout_keep_alive=7200,  # 2 hours for very large file uploads
        limit_max_requests=None,
        limit_concurrency=100
    )
