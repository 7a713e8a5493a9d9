"""
FastAPI application factory for the revkv HTTP gateway.

This module creates the FastAPI app with:
- Backend lifecycle management
- CORS configuration
- Error mapping from backend exceptions to HTTP statuses
- API routes
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..backend import Backend, RevkvError, UnsupportedOperationError, create_backend
from ..config import ServerConfig
from .config import Settings
from .routes import router

logger = logging.getLogger(__name__)


def create_app(
    backend: Backend | None = None,
    config: ServerConfig | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        backend: Already opened backend (left open on shutdown)
        config: Configuration used to open a backend when none is given
        settings: Gateway settings (loaded from env if not provided)
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage backend lifecycle."""
        owned = backend is None
        if owned:
            app.state.backend = await create_backend(config or ServerConfig.from_env())
        else:
            app.state.backend = backend
        app.state.settings = settings
        logger.info("Gateway backend ready", extra={"owned": owned})

        yield

        if owned:
            await app.state.backend.close()

    app = FastAPI(
        title="revkv gateway",
        description="HTTP access to a revisioned key-value store",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UnsupportedOperationError)
    async def unsupported_handler(request: Request, exc: UnsupportedOperationError) -> JSONResponse:
        return JSONResponse(
            status_code=501,
            content={"error": str(exc), "error_code": "UNIMPLEMENTED"},
        )

    @app.exception_handler(RevkvError)
    async def backend_error_handler(request: Request, exc: RevkvError) -> JSONResponse:
        logger.error(f"Backend error: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": str(exc), "error_code": "BACKEND"},
        )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "revkv-gateway"}

    return app


# Default app instance
app = create_app()
