"""Chat Streaming API - Main Application Module.

This module initializes the FastAPI application with configuration, middleware,
error rendering, routing, and lifecycle management for the resumable chat
streaming service.
"""

import logging
import sys
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

# Add the project root to Python path if running directly
if __name__ == "__main__":
    project_root = Path(__file__).parent.parent
    sys.path.insert(0, str(project_root))

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import ConfigValidator, settings
from app.database import AsyncSessionLocal, engine
from app.domains.chat.context import NullStreamContext, create_stream_context
from app.exceptions.base import BaseAppException
from app.exceptions.chat import DEFAULT_CAUSES, ChatError, Surface, error_type_for_status
from models import Base

logging.basicConfig(
    level=settings.log_level.value,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle events."""
    logger.info(f"Starting {settings.app_name} ({settings.environment.value})")
    ConfigValidator.validate_required_settings()
    logger.info(f"Features: {ConfigValidator.get_feature_status()}")

    # Development mode: create tables if they don't exist
    if settings.is_development:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created/verified")

    app.state.stream_context = await create_stream_context(settings)

    yield

    logger.info(f"Shutting down {settings.app_name}")
    await app.state.stream_context.teardown()
    await engine.dispose()
    logger.info("Database connections closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Chat API streaming assistant replies with resumable delivery",
        version=settings.version,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # Add middleware
    setup_middleware(app)

    # Add exception handlers
    setup_exception_handlers(app)

    # Include routers
    setup_routers(app)

    return app


def setup_middleware(app: FastAPI):
    """Configure application middleware."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def _error_response(status_code: int, code: str, cause: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": code, "cause": cause}, headers=headers)


def setup_exception_handlers(app: FastAPI):
    """Render every error as ``{code, cause}``."""

    @app.exception_handler(ChatError)
    async def chat_error_handler(_request: Request, exc: ChatError):
        return _error_response(exc.status_code, exc.code, exc.cause)

    @app.exception_handler(BaseAppException)
    async def app_exception_handler(_request: Request, exc: BaseAppException):
        error_type = error_type_for_status(exc.status_code)
        logger.error(f"{exc.error_code}: {exc.message}")
        return _error_response(exc.status_code, f"{error_type.value}:{Surface.CHAT.value}", exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException):
        code = f"{error_type_for_status(exc.status_code).value}:{Surface.API.value}"
        cause = str(exc.detail) if exc.detail else DEFAULT_CAUSES.get(code, "An error occurred")
        return _error_response(exc.status_code, code, cause, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.info(f"Rejected invalid request to {request.url.path}: {len(exc.errors())} error(s)")
        return _error_response(400, "bad_request:api", DEFAULT_CAUSES["bad_request:api"])


def setup_routers(app: FastAPI):
    """Configure application routers."""
    from app.domains.chat.controller import router as chat_router

    @app.get("/health")
    async def health_check(request: Request):
        """Health check reporting database and resumable-stream status."""
        db_status = "healthy"
        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Health check database probe failed: {str(e)}")
            db_status = "unhealthy"

        context = getattr(request.app.state, "stream_context", None) or NullStreamContext()
        stream_status = "available" if context.is_available else "disabled"

        return JSONResponse(
            status_code=200 if db_status == "healthy" else 503,
            content={
                "status": "healthy" if db_status == "healthy" else "degraded",
                "version": settings.version,
                "environment": settings.environment.value,
                "timestamp": datetime.now(UTC).isoformat(),
                "services": {
                    "database": db_status,
                    "resumable_streams": stream_status,
                    "ai_service": "configured" if settings.has_ai_enabled else "not_configured",
                },
            },
        )

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.version,
            "description": "Streaming chat with resumable delivery",
            "docs_url": "/docs" if settings.is_development else None,
        }

    app.include_router(chat_router)


# Create the application instance
app = create_app()


def main():
    """Entry point for running the application directly."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    main()
