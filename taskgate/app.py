from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from taskgate.api.error_handling import register_exception_handlers
from taskgate.api.routes import router
from taskgate.config import Settings, get_settings
from taskgate.logging import get_logger, set_correlation_id
from taskgate.service.container import Container
from taskgate.service.errors import StoreUnavailableError
from taskgate.service.sessions import run_session_sweeper

logger = get_logger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the session sweeper on startup; cancel it and close stores on shutdown."""
    container: Container = app.state.container
    sweeper = asyncio.create_task(
        run_session_sweeper(
            container.sessions, container.settings.session_sweep_interval_seconds
        )
    )
    logger.info("app_started", auth_mode=container.settings.auth_mode.value)

    yield

    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await container.close()
    logger.info("app_shutdown_complete")


HEALTH_CHECK_TIMEOUT_SECONDS = 3


def create_app(
    settings: Optional[Settings] = None, *, container: Optional[Container] = None
) -> FastAPI:
    """Build the application around an explicit service container."""
    if container is None:
        container = Container(settings or get_settings())
    settings = container.settings

    app = FastAPI(title="TaskGate", version=__version__, lifespan=lifespan)
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Auth-Token",
            "X-Request-ID",
            "X-Requested-With",
        ],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        if request.url.path.startswith("/api/"):
            response.headers.setdefault("Cache-Control", "no-store")
        if settings.is_production:
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
            )
        return response

    register_exception_handlers(app, settings)
    app.include_router(router)
    app.mount(
        "/media/avatars",
        StaticFiles(directory=str(container.avatars.base), check_dir=False),
        name="avatars",
    )

    @app.get("/healthz")
    async def health() -> JSONResponse:
        checks: Dict[str, Any] = {}
        try:
            await asyncio.wait_for(container.sessions.ping(), HEALTH_CHECK_TIMEOUT_SECONDS)
            checks["session_store"] = {"status": "ok"}
        except (asyncio.TimeoutError, StoreUnavailableError) as exc:
            logger.error("health_check_session_store_failed", error=str(exc))
            checks["session_store"] = {"status": "error"}
        healthy = all(c["status"] == "ok" for c in checks.values())
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "success": healthy,
                "data": {"status": "healthy" if healthy else "unhealthy", "checks": checks},
            },
        )

    return app
