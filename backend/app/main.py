############################################################
#
# mathchat - Math-focused Chat Service
#
# main.py: FastAPI application entry point and configuration
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""FastAPI application entry point."""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.api import api_router
from backend.app.core.backends.registry import init_adapters, shutdown_adapters
from backend.app.core.errors import ChatError, InvalidRequestError
from backend.app.db.session import create_all_tables, dispose_engine
from backend.app.logging_config import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from backend.app.settings import get_settings

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info("Starting MathChat...", version=settings.app_version)

    if settings.database_auto_create:
        await create_all_tables()
        logger.info("database_tables_created")

    await init_adapters()

    logger.info("MathChat started successfully")

    yield

    # Shutdown
    logger.info("Shutting down MathChat...")
    await shutdown_adapters()
    await dispose_engine()
    logger.info("MathChat shutdown complete")


class RequestIDMiddleware:
    """Raw ASGI middleware for request ID injection.

    Unlike @app.middleware("http") which wraps in BaseHTTPMiddleware,
    this does NOT run the handler in a separate task, so client disconnects
    won't cancel in-flight DB operations and leak connections.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # Extract request ID from headers
        headers = dict(scope.get("headers", []))
        request_id = (
            headers.get(b"x-request-id", b"").decode()
            or str(uuid.uuid4())
        )

        bind_request_context(request_id=request_id)

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                # Inject X-Request-ID into response headers
                response_headers = list(message.get("headers", []))
                response_headers.append(
                    (b"x-request-id", request_id.encode())
                )
                message = {**message, "headers": response_headers}
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Math-focused chat over hosted and local language models",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Raw ASGI so a client disconnect does not cancel the handler task
    app.add_middleware(RequestIDMiddleware)

    # Exception handlers
    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        """Render chat failures as {"message": ...}."""
        if exc.status_code >= 500:
            logger.error(
                "chat_request_failed",
                path=request.url.path,
                error_type=type(exc).__name__,
                error=exc.message,
            )
        content = {"message": exc.message}
        if get_settings().debug and exc.detail:
            content["error"] = exc.detail
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Render malformed path, query or body input as a 400 InvalidRequest."""
        errors = exc.errors()
        loc = errors[0].get("loc", ()) if errors else ()
        field = ".".join(str(part) for part in loc[1:])
        message = f"Invalid {field}" if field else "Invalid request"
        return await chat_error_handler(
            request, InvalidRequestError(message, detail=str(errors))
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.exception("unhandled_exception", error=str(exc))
        content = {"message": "Internal server error"}
        if get_settings().debug:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    # Include routers
    app.include_router(api_router)

    return app


# Create application instance
app = create_app()


def main():
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "backend.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
