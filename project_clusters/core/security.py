"""
API key authentication dependency.

Usage in a route:
    @router.post("/cluster")
    async def cluster(body: ClusterRequest, _auth: AuthDep) -> ...:
        ...

When the `API_KEY` env var is empty the dependency is a no-op so the service
runs unauthenticated in development.
"""

from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, Security
from fastapi.security import APIKeyHeader

from project_clusters.core.config import get_settings
from project_clusters.core.errors import UnauthorizedError

_KEY_HEADER = APIKeyHeader(
    name="X-Api-Key",
    auto_error=False,      # a missing header is reported as UnauthorizedError
    description="API key for service authentication. "
                "Set the `API_KEY` environment variable on the server to enable.",
)


async def verify_api_key(
    key: Annotated[str | None, Security(_KEY_HEADER)],
) -> None:
    settings = get_settings()

    if not settings.auth_enabled:
        return

    if not key or not secrets.compare_digest(key.encode(), settings.api_key.encode()):
        raise UnauthorizedError()


AuthDep = Annotated[None, Depends(verify_api_key)]
