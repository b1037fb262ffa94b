"""
Clustering pipeline: projects → embeddings → K-Means → named clusters.

One run:
  1. Keep only projects with at least one non-blank prompt (order preserved).
  2. Fail with `insufficient_data` when fewer than two remain.
  3. Embed every descriptor text with ONE VectorSource call. Any failure
     fails the run with `embedding_unavailable`; partial batches are never
     used.
  4. Run K-Means with k = min(eligible, max_clusters) in a worker thread.
  5. Bucket project ids by group index, dropping empty groups.
  6. Name each bucket from its first few texts. Naming calls are independent
     and run concurrently; a failed call only costs that bucket its name
     (it gets "Cluster <n>") and never fails the run.
  7. Return clusters in ascending group index.

Failures are reported as a tagged `ClusteringOutcome.error`; domain
exceptions never escape `ClusteringPipeline.cluster()`.

A pipeline instance allows one run at a time. A second call made while a run
is in flight is rejected with `busy` rather than interleaved.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Awaitable, Sequence, TypeVar

import numpy as np
from sklearn.metrics import silhouette_score  # type: ignore

from project_clusters.core.config import Settings
from project_clusters.core.errors import (
    ClusteringAPIError,
    ClusteringCancelledError,
    EmbeddingUnavailableError,
    InsufficientDataError,
    PipelineBusyError,
)
from project_clusters.core.logging import bind_run_id
from project_clusters.schemas.cluster import Cluster, ClusterErrorCode, ClusteringOutcome
from project_clusters.schemas.project import ProjectRef
from project_clusters.services.kmeans import (
    DEFAULT_MAX_ITERATIONS,
    KMeansResult,
    as_matrix,
    kmeans,
)
from project_clusters.services.protocols import ClusterLabeler, VectorSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_ELIGIBLE_PROJECTS = 2
PLACEHOLDER_NAME_FORMAT = "Cluster {index}"


def placeholder_name(group_index: int) -> str:
    """Fallback name for a group whose naming call failed (1-based)."""
    return PLACEHOLDER_NAME_FORMAT.format(index=group_index + 1)


@dataclass(frozen=True)
class Bucket:
    index: int
    member_ids: tuple[str, ...]
    texts: tuple[str, ...]


def group_members(
    assignments: Sequence[int] | np.ndarray,
    ids: Sequence[str],
    texts: Sequence[str],
    k: int,
) -> list[Bucket]:
    """Bucket ids/texts by group index; empty groups are left out."""
    member_ids: list[list[str]] = [[] for _ in range(k)]
    member_texts: list[list[str]] = [[] for _ in range(k)]
    for position, group in enumerate(assignments):
        member_ids[int(group)].append(ids[position])
        member_texts[int(group)].append(texts[position])

    return [
        Bucket(index=i, member_ids=tuple(member_ids[i]), texts=tuple(member_texts[i]))
        for i in range(k)
        if member_ids[i]
    ]


def silhouette(vectors: np.ndarray, assignments: np.ndarray) -> float | None:
    """Silhouette score, or None when it is undefined for this partition."""
    n_labels = len(np.unique(assignments))
    if not 2 <= n_labels <= len(assignments) - 1:
        return None
    return round(float(silhouette_score(vectors, assignments, metric="euclidean")), 4)


def _cluster_vectors(
    vectors: list[list[float]],
    k: int,
    max_iterations: int,
    rng: np.random.Generator,
) -> tuple[KMeansResult, float | None]:
    result = kmeans(vectors, k, max_iterations, rng)
    return result, silhouette(as_matrix(vectors), result.assignments)


class ClusteringPipeline:
    def __init__(
        self,
        vector_source: VectorSource,
        labeler: ClusterLabeler,
        *,
        max_clusters: int = 3,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        naming_sample_size: int = 5,
        concurrent_naming: bool = True,
        default_seed: int | None = None,
    ) -> None:
        self.vector_source = vector_source
        self.labeler = labeler
        self.max_clusters = max_clusters
        self.max_iterations = max_iterations
        self.naming_sample_size = naming_sample_size
        self.concurrent_naming = concurrent_naming
        self.default_seed = default_seed
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        vector_source: VectorSource,
        labeler: ClusterLabeler,
        settings: Settings,
    ) -> ClusteringPipeline:
        return cls(
            vector_source,
            labeler,
            max_clusters=settings.max_clusters,
            max_iterations=settings.kmeans_max_iterations,
            naming_sample_size=settings.naming_sample_size,
            concurrent_naming=settings.concurrent_naming,
            default_seed=settings.cluster_seed,
        )

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def cluster(
        self,
        projects: Sequence[ProjectRef],
        *,
        seed: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ClusteringOutcome:
        """
        Cluster a snapshot of projects.

        `seed` fixes centroid initialisation (falls back to the pipeline's
        default seed, then to OS entropy). Setting `cancel_event` aborts
        pending provider calls and yields a `cancelled` outcome.
        """
        snapshot = tuple(projects)
        outcome = ClusteringOutcome(total_projects=len(snapshot))

        if self._lock.locked():
            logger.warning("Clustering run rejected: another run is in progress")
            return _failed(outcome, PipelineBusyError())

        async with self._lock:
            with bind_run_id(uuid.uuid4().hex[:12]):
                t0 = time.perf_counter()
                try:
                    await self._run(snapshot, outcome, seed, cancel_event)
                except ClusteringAPIError as exc:
                    logger.warning("Clustering run failed [%s]: %s", exc.code, exc.message)
                    return _failed(outcome, exc)

                logger.info(
                    "Clustering run finished | clusters=%d k=%s iterations=%s "
                    "converged=%s ms=%.1f",
                    len(outcome.clusters or []), outcome.k, outcome.iterations,
                    outcome.converged, (time.perf_counter() - t0) * 1000,
                )
                return outcome

    async def _run(
        self,
        projects: tuple[ProjectRef, ...],
        outcome: ClusteringOutcome,
        seed: int | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        eligible = [p for p in projects if p.is_eligible]
        outcome.eligible_projects = len(eligible)
        logger.info(
            "Clustering run started | projects=%d eligible=%d",
            len(projects), len(eligible),
        )
        if len(eligible) < MIN_ELIGIBLE_PROJECTS:
            raise InsufficientDataError(len(eligible), MIN_ELIGIBLE_PROJECTS)

        ids = [p.id for p in eligible]
        texts = [p.descriptor_text for p in eligible]

        vectors = await self._embed(texts, cancel_event)
        _raise_if_cancelled(cancel_event)

        k = min(len(eligible), self.max_clusters)
        rng = np.random.default_rng(seed if seed is not None else self.default_seed)
        result, score = await asyncio.to_thread(
            _cluster_vectors, vectors, k, self.max_iterations, rng
        )
        _raise_if_cancelled(cancel_event)

        outcome.k = result.k
        outcome.iterations = result.iterations
        outcome.converged = result.converged
        outcome.silhouette = score
        if not result.converged:
            logger.info(
                "K-Means hit the %d iteration limit; using best-effort grouping",
                self.max_iterations,
            )

        buckets = group_members(result.assignments, ids, texts, result.k)
        names = await _guard(self._name_all(buckets), cancel_event)
        _raise_if_cancelled(cancel_event)

        outcome.clusters = [
            Cluster(
                index=bucket.index,
                name=name,
                member_ids=list(bucket.member_ids),
                size=len(bucket.member_ids),
                named_by_provider=named,
            )
            for bucket, (name, named) in zip(buckets, names)
        ]

    async def _embed(
        self, texts: list[str], cancel_event: asyncio.Event | None
    ) -> list[list[float]]:
        try:
            vectors = await _guard(self.vector_source.embed_batch(texts), cancel_event)
        except ClusteringCancelledError:
            raise
        except Exception as exc:
            logger.warning("Embedding batch failed: %s", exc)
            raise EmbeddingUnavailableError(
                "Could not compute embeddings for the projects. Please try again."
            ) from exc

        if len(vectors) != len(texts):
            raise EmbeddingUnavailableError(
                f"Embedding provider returned {len(vectors)} vectors "
                f"for {len(texts)} projects."
            )
        if not all(np.isfinite(np.asarray(v, dtype=float)).all() for v in vectors):
            raise EmbeddingUnavailableError(
                "Embedding provider returned non-finite values (NaN or infinity)."
            )
        return [list(v) for v in vectors]

    async def _name_all(self, buckets: list[Bucket]) -> list[tuple[str, bool]]:
        if self.concurrent_naming:
            # gather() keeps argument order, not completion order.
            return list(await asyncio.gather(*(self._name_bucket(b) for b in buckets)))
        return [await self._name_bucket(b) for b in buckets]

    async def _name_bucket(self, bucket: Bucket) -> tuple[str, bool]:
        sample = list(bucket.texts[: self.naming_sample_size])
        try:
            name = (await self.labeler.name_cluster(sample)).strip()
        except Exception as exc:
            name = ""
            logger.warning("Naming failed for cluster %d: %s", bucket.index, exc)

        if not name:
            return placeholder_name(bucket.index), False
        return name, True


def _failed(outcome: ClusteringOutcome, exc: ClusteringAPIError) -> ClusteringOutcome:
    return outcome.model_copy(
        update={
            "clusters": None,
            "error": ClusterErrorCode(exc.code),
            "message": exc.message,
        }
    )


def _raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ClusteringCancelledError()


async def _guard(awaitable: Awaitable[T], cancel_event: asyncio.Event | None) -> T:
    """Await `awaitable`, abandoning it if `cancel_event` fires first."""
    if cancel_event is None:
        return await awaitable

    work: asyncio.Future[Any] = asyncio.ensure_future(awaitable)
    if cancel_event.is_set():
        work.cancel()
        with suppress(asyncio.CancelledError):
            await work
        raise ClusteringCancelledError()

    stop = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop.cancel()
        if not work.done():
            work.cancel()

    if work in done:
        return work.result()

    with suppress(asyncio.CancelledError):
        await work
    raise ClusteringCancelledError()
