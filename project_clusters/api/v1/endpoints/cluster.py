"""
Clustering endpoint.

POST /v1/cluster: group a snapshot of projects by semantic similarity.

The caller sends its current project list with every request; the service
keeps no project store and stores no results. "Reset view" on the client is
simply dropping the last response.

Only one clustering run is processed at a time. A request that arrives while
another run is in progress gets 409 `busy`. If the client disconnects
mid-run, pending provider calls are cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress

from fastapi import APIRouter, Request, status

from project_clusters.core.config import get_settings
from project_clusters.core.errors import (
    HTTP_499_CLIENT_CLOSED_REQUEST,
    BatchTooLargeError,
    error_response,
)
from project_clusters.core.security import AuthDep
from project_clusters.models.registry import get_registry
from project_clusters.schemas.cluster import (
    ClusterErrorCode,
    ClusterRequest,
    ClusterResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cluster", tags=["Clustering"])

DISCONNECT_POLL_SECONDS = 0.5

_ERROR_STATUS: dict[ClusterErrorCode, int] = {
    ClusterErrorCode.insufficient_data: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ClusterErrorCode.embedding_unavailable: status.HTTP_502_BAD_GATEWAY,
    ClusterErrorCode.busy: status.HTTP_409_CONFLICT,
    ClusterErrorCode.cancelled: HTTP_499_CLIENT_CLOSED_REQUEST,
}


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling clustering run")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post(
    "",
    response_model=ClusterResponse,
    summary="Cluster projects by prompt similarity",
    description=(
        "Embeds each project's title and prompts, partitions them into at "
        "most three groups with K-Means, and names every group with an LLM. "
        "Projects without any prompt are ignored. Pass `seed` for a "
        "reproducible grouping."
    ),
    responses={
        401: {"description": "Missing or invalid X-Api-Key header."},
        409: {"description": "Another clustering run is in progress."},
        422: {"description": "Validation error or fewer than two eligible projects."},
        502: {"description": "The embedding provider failed."},
    },
)
async def cluster_projects(
    body: ClusterRequest,
    request: Request,
    _auth: AuthDep,
):
    settings = get_settings()
    if len(body.projects) > settings.max_projects:
        raise BatchTooLargeError(len(body.projects), settings.max_projects)

    pipeline = get_registry().pipeline
    if pipeline is None:
        raise RuntimeError("Clustering pipeline is not configured.")

    t0 = time.perf_counter()
    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        outcome = await pipeline.cluster(
            body.projects, seed=body.seed, cancel_event=cancel_event
        )
    finally:
        watcher.cancel()
        with suppress(asyncio.CancelledError):
            await watcher

    if not outcome.ok:
        return error_response(
            code=outcome.error.value,
            message=outcome.message or "Clustering failed.",
            status_code=_ERROR_STATUS.get(
                outcome.error, status.HTTP_500_INTERNAL_SERVER_ERROR
            ),
        )

    clusters = outcome.clusters or []
    return ClusterResponse(
        total_projects=outcome.total_projects,
        eligible_projects=outcome.eligible_projects,
        num_clusters=len(clusters),
        k=outcome.k or 0,
        iterations=outcome.iterations or 0,
        converged=bool(outcome.converged),
        silhouette=outcome.silhouette,
        clusters=clusters,
        processing_time_ms=round((time.perf_counter() - t0) * 1000, 2),
    )
