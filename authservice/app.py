from __future__ import annotations

from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from authservice.api.error_handling import register_exception_handlers
from authservice.api.routes import router
from authservice.config import Settings
from authservice.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open backing stores on startup and release them on shutdown."""
    from authservice.service.runtime import get_runtime

    runtime = get_runtime()
    await runtime.startup()
    logger.info("app_started", version=__version__)

    yield

    await runtime.shutdown()
    logger.info("runtime_cleanup_complete")


app = FastAPI(title="Auth Service", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    # Local dev hosts only; a wildcard is not allowed together with credentials
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    # The session token travels in a cookie
    allow_credentials=True,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag every log line of a request with its X-Request-ID (generated if absent)."""
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault(
        "Cache-Control", "no-store, no-cache, must-revalidate, private"
    )
    return response


app.include_router(router)
register_exception_handlers(app)


def create_app() -> FastAPI:
    return app
