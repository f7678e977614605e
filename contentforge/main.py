"""
FastAPI application entry point.

Configures middleware, lifespan events, error handlers and mounts all routers.
Run locally: uvicorn contentforge.main:app --reload
Production:  gunicorn contentforge.main:app -w 1 -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from contentforge.api.v1.routes import approvals, content, health
from contentforge.core.config import get_settings
from contentforge.core.errors import ContentForgeError
from contentforge.core.logging import get_logger, setup_logging
from contentforge.core.security import limiter
from contentforge.middleware.correlation import CorrelationIdMiddleware
from contentforge.services.container import build_services

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown events."""
    setup_logging(settings)
    logger.info(
        "app_starting",
        environment=settings.app_env,
        store=settings.store_backend,
        database=settings.database_url[:30] + "...",
    )

    services = await build_services(settings)
    app.state.services = services

    sweeper_task: asyncio.Task | None = None
    if settings.expiry_sweep_enabled:
        sweeper_task = asyncio.create_task(
            services.sweeper.run_forever(settings.expiry_sweep_interval_seconds)
        )

    yield

    logger.info("app_shutting_down")
    if sweeper_task is not None:
        sweeper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper_task
    await services.aclose()


app = FastAPI(
    title="ContentForge",
    description="Video-to-content pipeline with human approval and mock publishing",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.app_env != "production" else None,
    redoc_url="/redoc" if settings.app_env != "production" else None,
)

# ── Middleware ──────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

# ── Rate limiting ──────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ── Error handlers ─────────────────────────────────────────
@app.exception_handler(ContentForgeError)
async def contentforge_error_handler(request: Request, exc: ContentForgeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in err["loc"] if part != "body") for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request body",
            "code": "validation_error",
            "fields": fields,
        },
    )


# ── Routes ─────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(content.router, prefix="/api/v1")
app.include_router(approvals.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "service": "ContentForge",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/healthz/",
    }
