"""
Health check endpoints.

GET /health     root-level health (no auth required, used by container probes)
GET /v1/health  versioned alias
"""

from __future__ import annotations

import time

from fastapi import APIRouter

from project_clusters.core.config import get_settings
from project_clusters.models.registry import get_registry
from project_clusters.schemas.health import HealthResponse, ProviderStatus

router = APIRouter(tags=["Health"])

# Recorded at import time; a rough approximation of process start.
_START_TIME = time.time()


def _build_health_response() -> HealthResponse:
    settings = get_settings()
    registry = get_registry()

    return HealthResponse(
        status=registry.overall_status(),
        version=settings.app_version,
        environment=settings.environment,
        uptime_seconds=round(time.time() - _START_TIME, 1),
        clustering_in_progress=bool(registry.pipeline and registry.pipeline.busy),
        providers=[
            ProviderStatus(name=p.name, model=p.model, ready=p.ready, error=p.error)
            for p in registry.all_providers()
        ],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description=(
        "Returns the overall service status and whether the embedding and "
        "naming providers are configured. Does not require authentication."
    ),
)
async def health_root() -> HealthResponse:
    return _build_health_response()


@router.get(
    "/v1/health",
    response_model=HealthResponse,
    summary="Service health check (versioned alias)",
)
async def health_v1() -> HealthResponse:
    return _build_health_response()
