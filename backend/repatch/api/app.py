"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from repatch import __version__, validate_dependencies
from repatch.db import init_database, shutdown
from repatch.orchestrator.controller import get_controller
from repatch.orchestrator.errors import (
    ConcurrentModification,
    EngineSubmissionFailed,
    InvalidTransition,
    MissingContent,
    NotFound,
    RenderControllerError,
    RenderEngineError,
)
from repatch.services.github_client import close_github_client
from repatch.services.render_client import close_render_client
from repatch.api.routes import router

logger = logging.getLogger(__name__)

# Most specific first; EngineSubmissionFailed is a RenderEngineError
ERROR_STATUS_CODES: list[tuple[type[RenderControllerError], int]] = [
    (NotFound, 404),
    (InvalidTransition, 409),
    (ConcurrentModification, 409),
    (MissingContent, 422),
    (EngineSubmissionFailed, 502),
    (RenderEngineError, 502),
]


def status_code_for(exc: RenderControllerError) -> int:
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Validate render engine settings
        - Initialize database schema

    Shutdown:
        - Wait for running content pipelines
        - Close outbound HTTP clients
        - Close database connections
    """
    # Startup
    logger.info("Starting Repatch API...")
    validate_dependencies()
    await init_database()
    logger.info("API startup complete")

    yield

    # Shutdown
    logger.info("Shutting down Repatch API...")
    await get_controller().wait_for_background()
    await close_render_client()
    await close_github_client()
    await shutdown()
    logger.info("API shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Repatch API",
    version=__version__,
    lifespan=lifespan,
)

# CORS for the Vite dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include router with all endpoints
app.include_router(router)


@app.exception_handler(RenderControllerError)
async def render_controller_exception_handler(request: Request, exc: RenderControllerError):
    """Map controller errors onto HTTP status codes."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {str(exc)}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {str(exc)}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "detail": str(exc),
        }
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred",
        }
    )
