"""
Arena Guard
Main Application Entry Point

Session integrity and anomaly detection for gated video playback.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
import structlog

from api.dependencies import shutdown_services
from api.routes import admin, auth, playback, sessions, tracking
from core.config import settings
from core.database import close_db, init_db
from core.exceptions import ArenaException
from core.logging import get_logger, setup_logging

# Initialize structured logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager
    Handles startup and shutdown events
    """
    logger.info("Starting Arena Guard", env=settings.ENV)

    await init_db(create_tables=not settings.is_production)

    yield

    logger.info("Shutting down Arena Guard")

    # Pending alert deliveries finish before clients close
    await shutdown_services()
    await close_db()

    logger.info("Arena Guard shut down complete")


app = FastAPI(
    title="Arena Guard API",
    description="Signed access tokens, watch-session recording and anomaly alerts",
    version=settings.API_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan,
)

# ============================================================================
# MIDDLEWARE
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests_middleware(request: Request, call_next):
    """Log all requests"""
    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
    )

    response = await call_next(request)

    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
    )
    return response


# Registered last so it wraps the logging middleware and binds request_id first
@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next):
    """Add request ID to all requests for tracing"""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(ArenaException)
async def arena_exception_handler(request: Request, exc: ArenaException):
    """Handle application exceptions"""
    content = {"error": exc.error_code, "message": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle malformed request bodies and parameters"""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "validation_error",
            "message": "Invalid request",
            "details": {"errors": [
                {"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()
            ]},
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors"""
    logger.error(
        "unhandled_exception",
        exc_info=exc,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.API_VERSION,
        "alert_delivery": settings.ENABLE_ALERT_DELIVERY,
    }


# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

app.include_router(playback.router, prefix="/api", tags=["Playback"])
app.include_router(tracking.router, prefix="/api", tags=["Tracking"])
app.include_router(sessions.router, prefix="/api", tags=["Sessions"])
app.include_router(auth.router, prefix="/api", tags=["Auth"])
app.include_router(admin.router, prefix="/api", tags=["Admin"])


if __name__ == "__main__":
    import uvicorn

    logger.info(
        "Starting uvicorn server",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info",
    )
