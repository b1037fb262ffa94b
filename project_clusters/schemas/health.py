"""
Health check response schemas.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ProviderStatus(BaseModel):
    name: str = Field(description="Internal provider role.")
    model: str = Field(description="LiteLLM model string used for this role.")
    ready: bool = Field(description="True if credentials for the provider are configured.")
    error: str | None = Field(
        default=None,
        description="Why the provider is not ready, if it is not.",
    )


class HealthResponse(BaseModel):
    """Response body for GET /health and GET /v1/health"""

    status: Literal["ok", "degraded", "unhealthy"] = Field(
        description=(
            "ok:        both providers configured.\n"
            "degraded:  naming provider unavailable; clusters get placeholder names.\n"
            "unhealthy: embedding provider unavailable; clustering cannot run."
        )
    )
    version: str = Field(description="Service version string.", examples=["1.0.0"])
    environment: str = Field(examples=["production"])
    uptime_seconds: float = Field(description="Seconds since the process started.")
    clustering_in_progress: bool = Field(
        description="True while a clustering run holds the pipeline."
    )
    providers: list[ProviderStatus]
