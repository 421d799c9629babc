"""FastAPI application setup for the Guildhall dashboard API.

``create_api`` builds the application around an ``AppContext`` so the API
can run on its own or share a process (and event loop) with the bot.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from guildhall.shared.context import AppContext
from guildhall.shared.database import init_database
from guildhall.shared.exceptions import (
    GuildhallError,
    NotFoundError,
    ValidationError,
)
from guildhall.web.api.routers.auth import router as auth_router
from guildhall.web.api.routers.guild_config import router as guild_config_router
from guildhall.web.api.routers.premium import router as premium_router
from guildhall.web.api.routers.templates import router as templates_router
from guildhall.web.api.routers.webhooks import router as webhooks_router
from guildhall.web.api.schemas import error_envelope

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def _request_extra(request: Request) -> dict:
    return {
        "request_id": getattr(request.state, "request_id", None),
        "url": str(request.url),
        "method": request.method,
    }


def create_api(context: AppContext) -> FastAPI:
    """Create the dashboard API bound to ``context``.

    Args:
        context: Shared application context; stored on ``app.state``

    Returns:
        FastAPI: Configured application
    """
    settings = context.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await init_database(context.engine)
        yield

    docs_enabled = settings.api_docs_enabled and not settings.is_production
    api = FastAPI(
        title="Guildhall API",
        description="REST API for the Guildhall dashboard: premium, templates and guild configuration",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    api.state.context = context

    @api.middleware("http")
    async def add_request_id_middleware(request: Request, call_next):
        """Add request ID to request state for tracking."""
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response

    if settings.is_development:
        api.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def hide_internal(message: str) -> str:
        # Internal details only leave the process in verbose development mode
        if settings.verbose_errors_enabled and settings.is_development:
            return message
        return "Internal server error"

    @api.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request bodies are reported like store validation failures."""
        errors = [
            f"{'.'.join(str(loc) for loc in error['loc'] if loc != 'body')}: {error['msg']}"
            for error in exc.errors()
        ]
        logger.warning("Request validation failed", extra={**_request_extra(request), "errors": errors})
        return JSONResponse(
            status_code=400, content=error_envelope("Request validation failed", errors)
        )

    @api.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.info(f"Validation error: {exc}", extra=_request_extra(request))
        return JSONResponse(
            status_code=exc.status_code, content=error_envelope(exc.message, exc.errors)
        )

    @api.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        logger.info("Resource not found", extra={**_request_extra(request), "error": str(exc)})
        return JSONResponse(status_code=exc.status_code, content=error_envelope(exc.message))

    @api.exception_handler(GuildhallError)
    async def application_error_handler(request: Request, exc: GuildhallError) -> JSONResponse:
        """Every other application error, keyed off the class's status code."""
        if exc.status_code >= 500:
            logger.error(
                f"{type(exc).__name__}: {exc}",
                extra={**_request_extra(request), "error_type": exc.error_type},
            )
            message = hide_internal(exc.message)
        else:
            logger.warning(
                f"{type(exc).__name__}: {exc}",
                extra={**_request_extra(request), "error_type": exc.error_type},
            )
            message = exc.message
        return JSONResponse(status_code=exc.status_code, content=error_envelope(message))

    @api.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        if exc.status_code == 404:
            logger.warning(f"API route not found: {request.url.path}", extra=_request_extra(request))
            message = "API endpoint not found"
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(message),
            headers=getattr(exc, "headers", None),
        )

    @api.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions globally."""
        logger.exception(
            "Unhandled exception",
            extra={**_request_extra(request), "exception_type": type(exc).__name__},
        )
        return JSONResponse(
            status_code=500, content=error_envelope(hide_internal(f"Internal server error: {exc}"))
        )

    api.include_router(auth_router)
    api.include_router(premium_router)
    api.include_router(guild_config_router)
    api.include_router(templates_router)
    api.include_router(webhooks_router)

    @api.get("/health", tags=["Health"])
    async def health_check() -> dict:
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "version": API_VERSION,
            "botConnected": context.platform is not None,
        }

    return api
