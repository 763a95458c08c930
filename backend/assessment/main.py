"""
Reference collaborator FastAPI application.

Serves the attempt operations the engine consumes from an in-memory
repository, so the engine can be driven end to end over real HTTP.

Run with:
    uvicorn assessment.main:app --reload
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from assessment.api.v1.api import api_router
from assessment.core.config import settings
from assessment.core.error_responses import ErrorCodes
from assessment.core.logging_config import setup_logging
from assessment.observability import observability

# Initialize logging configuration at startup
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan event handler.

    - On startup: initializes error tracking (no-op without SENTRY_DSN)
    """
    observability.init(environment=settings.ENV)
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started ({settings.ENV})")
    yield
    logger.info(f"{settings.APP_NAME} shutting down")


def create_application() -> FastAPI:
    """
    Create and configure FastAPI application.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Exception handlers for error tracking
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """
        Handle HTTP exceptions. Server errors are forwarded to error tracking.
        """
        if exc.status_code >= 500:
            observability.capture_error(
                exc,
                context={
                    "path": str(request.url.path),
                    "method": request.method,
                    "status_code": exc.status_code,
                },
                tags={"error_type": "HTTPException"},
            )
        else:
            logger.info(
                f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}",
                extra={"status_code": exc.status_code, "path": str(request.url.path)},
            )

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        """
        Handle request validation errors.
        """
        errors = [
            {
                "loc": list(error.get("loc", [])),
                "msg": str(error.get("msg", "")),
                "type": str(error.get("type", "")),
            }
            for error in exc.errors()
        ]

        return JSONResponse(
            status_code=422,
            content={
                "detail": {
                    "error": ErrorCodes.INVALID_INPUT,
                    "message": "Invalid request.",
                    "errors": errors,
                }
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected exceptions.

        Generates a unique error_id (UUID) for each exception so a failure
        reported by the engine can be traced in the collaborator's logs.
        """
        error_id = str(uuid.uuid4())

        logger.exception(
            f"Unhandled exception [error_id={error_id}]: {exc}",
            extra={"error_id": error_id},
        )

        observability.capture_error(
            exc,
            context={
                "path": str(request.url.path),
                "method": request.method,
                "error_id": error_id,
            },
            tags={"error_type": exc.__class__.__name__},
        )

        # Don't leak internal details
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": {
                    "error": ErrorCodes.INTERNAL_ERROR,
                    "message": "Internal server error",
                    "error_id": error_id,
                }
            },
        )

    return app


app = create_application()


@app.get("/")
async def root():
    """
    Root endpoint.
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
    }
