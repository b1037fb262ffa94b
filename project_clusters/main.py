"""
FastAPI application entrypoint.

Startup sequence:
  1. Configure structured logging.
  2. Build the embedding / naming providers and the shared clustering
     pipeline (once) inside the lifespan context.
  3. Register versioned routers.
  4. Register global exception handlers.
  5. Optionally attach rate limiter.

Serve with:  uvicorn project_clusters.main:app
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from project_clusters.api.v1.endpoints.health import router as health_router
from project_clusters.api.v1.router import v1_router
from project_clusters.core.config import Settings, get_settings
from project_clusters.core.errors import register_exception_handlers
from project_clusters.core.logging import configure_logging
from project_clusters.models.registry import load_providers, set_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    FastAPI lifespan handler.
    Everything before `yield` runs at startup; everything after at shutdown.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    logger.info(
        "Starting %s v%s [%s]",
        settings.app_name,
        settings.app_version,
        settings.environment,
    )
    logger.info(
        "Auth: %s | Rate limiting: %s",
        "enabled" if settings.auth_enabled else "disabled (open mode)",
        "enabled" if settings.rate_limit_enabled else "disabled",
    )
    logger.info(
        "Embedding model: %s | Naming model: %s | max clusters: %d",
        settings.embedding_model,
        settings.naming_model,
        settings.max_clusters,
    )

    load_providers(settings)

    logger.info("Service ready.")
    yield

    set_registry(None)
    logger.info("Shutting down %s.", settings.app_name)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="project-clustering-api",
        description=(
            "Organises creative-AI projects into named groups by semantic "
            "similarity.\n\n"
            "Each project's title and prompts are embedded, grouped with "
            "K-Means (at most three groups) and every group is given a short "
            "LLM-generated name.\n\n"
            "**Authentication**: Pass your API key in the `X-Api-Key` header. "
            "Authentication is disabled when the `API_KEY` environment variable is unset."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        license_info={
            "name": "MIT",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    if settings.rate_limit_enabled:
        _attach_rate_limiter(app, settings)

    app.include_router(health_router)   # /health (no prefix, no auth)
    app.include_router(v1_router)       # /v1/cluster

    # Global exception handlers (must come after routers).
    register_exception_handlers(app)

    return app


def _attach_rate_limiter(app: FastAPI, settings: Settings) -> None:
    from slowapi import Limiter, _rate_limit_exceeded_handler  # type: ignore
    from slowapi.errors import RateLimitExceeded
    from slowapi.middleware import SlowAPIMiddleware
    from slowapi.util import get_remote_address

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info("Rate limiter: %d req/min per IP", settings.rate_limit_per_minute)


app = create_app()
