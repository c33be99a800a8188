"""
FastAPI application.

Wires routers, the request middleware (request id, deadline, access log)
and the exception handlers that turn service errors into ErrorResponse
bodies.
"""

from __future__ import annotations

import importlib.metadata
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from ulid import ULID

from .config import get_settings
from .db.base import get_db, init_database
from .deadline import deadline_scope
from .errors import ServiceError
from .logging_config import configure_logging
from .routes import routers
from .services.cache import get_search_cache
from .services.health import readiness

logger = structlog.get_logger()

settings = get_settings()

VERSION = importlib.metadata.version("product-requirements-management")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings.log_level, settings.log_format)
    logger.info("Starting Product Requirements Management", version=VERSION)

    try:
        await init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    logger.info("Shutdown complete")


app = FastAPI(
    title="Product Requirements Management",
    description="Epics, user stories, acceptance criteria and requirements with "
    "workflows, comments, relationships and search",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Middleware and error handling
# =============================================================================


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Bind a request id, open the request deadline and log the outcome."""
    request_id = request.headers.get("X-Request-ID") or str(ULID())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    started = time.perf_counter()

    with deadline_scope(settings.request_timeout_seconds):
        response = await call_next(request)

    response.headers["X-Request-ID"] = request_id
    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


def _error_response(status_code: int, body: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    body = exc.to_dict()
    if exc.http_status >= 500:
        correlation_id = structlog.contextvars.get_contextvars().get("request_id")
        body["error"]["correlation_id"] = correlation_id
        logger.error(
            "request_failed",
            code=exc.code,
            error=exc.message,
            correlation_id=correlation_id,
            exc_info=exc,
        )
    return _error_response(exc.http_status, body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return _error_response(
        400,
        {
            "error": {
                "code": "VALIDATION_ERROR",
                "message": f"{field}: {message}" if field else message,
            }
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    correlation_id = structlog.contextvars.get_contextvars().get("request_id") or str(ULID())
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        correlation_id=correlation_id,
        exc_info=exc,
    )
    return _error_response(
        500,
        {
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An internal error occurred",
                "correlation_id": correlation_id,
            }
        },
    )


# =============================================================================
# Health and Info Endpoints
# =============================================================================


@app.get("/health/live", tags=["system"])
async def liveness() -> Dict[str, str]:
    """Liveness check; succeeds whenever the process serves requests."""
    return {"status": "ok"}


@app.get("/health/ready", tags=["system"])
async def ready(db: Session = Depends(get_db)) -> JSONResponse:
    """Readiness check; covers the database and the search cache."""
    result = await readiness(db, get_search_cache())
    status = "ok" if result["ready"] else "unavailable"
    return JSONResponse(
        status_code=200 if result["ready"] else 503,
        content={"status": status, "checks": result["checks"]},
    )


@app.get("/version", tags=["system"])
def version() -> Dict[str, str]:
    """Return the version of the application."""
    return {"version": VERSION}


for router in routers:
    app.include_router(router)
