# src/medinet/main.py
"""Main entry point for the MediNet application."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from medinet.api.v1 import (
    activity_router,
    auth_router,
    comments_router,
    messages_router,
    notifications_router,
    posts_router,
    realtime_router,
    users_router,
)
from medinet.core.errors import ServiceError
from medinet.core.logging_config import build_log_context, configure_logging, format_context
from medinet.core.settings import settings
from medinet.db.session import create_tables
from medinet.schemas.common import error_envelope
from medinet.services.cache import get_feed_cache
from medinet.services.events import get_event_bus
from medinet.services.realtime import get_hub

configure_logging()
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=f"{settings.app_name} API",
    description="Professional network for medical practitioners",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(auth_router, prefix="/api/v1")
app.include_router(posts_router, prefix="/api/v1")
app.include_router(comments_router, prefix="/api/v1")
app.include_router(messages_router, prefix="/api/v1")
app.include_router(notifications_router, prefix="/api/v1")
app.include_router(activity_router, prefix="/api/v1")
app.include_router(users_router, prefix="/api/v1")
app.include_router(realtime_router, prefix="/api/v1")


def _field_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        errors.append({"field": location, "message": error.get("msg", "Invalid value")})
    return errors


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_envelope(exc.message, exc.errors))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_envelope("Validation failed", _field_errors(exc)),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    context = build_log_context(
        user_id=getattr(request.state, "user_id", None),
        route=request.url.path,
        method=request.method,
    )
    logger.exception("Unhandled error %s", format_context(context), extra=context)
    message = "Internal server error" if settings.is_production else str(exc) or "Internal server error"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_envelope(message),
    )


@app.on_event("startup")
async def on_startup() -> None:
    create_tables()
    hub = get_hub()
    await hub.start()
    hub.attach(get_event_bus())
    app.state.hub = hub
    logger.info("%s %s started (environment=%s)", settings.app_name, settings.app_version, settings.environment)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    hub = getattr(app.state, "hub", None)
    if hub is not None:
        await hub.stop()
    get_feed_cache().shutdown()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": f"{settings.app_name} API",
        "version": settings.app_version,
        "description": "Professional network for medical practitioners",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("medinet.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
