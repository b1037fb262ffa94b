"""
Lloyd's K-Means on embedding vectors.

Initial centroids are `k` distinct input rows sampled without replacement
from an injectable `numpy.random.Generator`, so a fixed seed reproduces a
run exactly. Each iteration assigns every vector to its nearest centroid
(squared Euclidean distance, lowest centroid index wins ties) and moves each
centroid to the mean of its members. A centroid that ends up with no members
is reseeded to a random input vector instead of being left behind.

The loop stops as soon as an assignment pass changes nothing, or after
`max_iterations` passes. Hitting the limit is not an error; the current
state is returned with `converged=False`.

Cost is O(iterations × n × k × d).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from project_clusters.core.errors import (
    DimensionMismatchError,
    EmptyInputError,
    InvalidKError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 50


@dataclass
class KMeansResult:
    assignments: np.ndarray          # (n,) int, values in [0, k)
    centroids: np.ndarray            # (k, d) float64
    iterations: int
    converged: bool
    reseeded_clusters: list[int] = field(default_factory=list)

    @property
    def k(self) -> int:
        return int(self.centroids.shape[0])

    def cluster_sizes(self) -> list[int]:
        return np.bincount(self.assignments, minlength=self.k).tolist()


def as_matrix(vectors: Sequence[Sequence[float]] | np.ndarray) -> np.ndarray:
    """Validate `vectors` and return them as an (n, d) float64 array."""
    if isinstance(vectors, np.ndarray):
        if vectors.ndim != 2:
            raise EmptyInputError(
                f"Expected a 2-D array of vectors, got {vectors.ndim} dimension(s)."
            )
        data = vectors.astype(np.float64, copy=False)
    else:
        if len(vectors) == 0:
            raise EmptyInputError()
        expected_dim = len(vectors[0])
        for i, vec in enumerate(vectors):
            if len(vec) != expected_dim:
                raise DimensionMismatchError(i, len(vec), expected_dim)
        data = np.asarray(vectors, dtype=np.float64)

    if data.shape[0] == 0 or data.shape[1] == 0:
        raise EmptyInputError()
    return data


def kmeans(
    vectors: Sequence[Sequence[float]] | np.ndarray,
    k: int,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    rng: np.random.Generator | None = None,
    *,
    init: np.ndarray | None = None,
) -> KMeansResult:
    """
    Partition `vectors` into at most `k` groups.

    `k` is clamped to the number of distinct vectors, so identical inputs
    collapse to fewer groups instead of failing. Pass `init` (a (k, d) array)
    to start from explicit centroids instead of a random sample.

    Raises:
        EmptyInputError: no vectors, or zero-length vectors.
        DimensionMismatchError: vectors of different lengths.
        InvalidKError: k < 1 or max_iterations < 1.
    """
    if k < 1:
        raise InvalidKError(f"k must be at least 1; got {k}.")
    if max_iterations < 1:
        raise InvalidKError(f"max_iterations must be at least 1; got {max_iterations}.")

    data = as_matrix(vectors)
    n, dim = data.shape
    rng = rng if rng is not None else np.random.default_rng()

    if init is not None:
        centroids = np.array(init, dtype=np.float64)
        if centroids.ndim != 2 or centroids.shape[0] < 1:
            raise InvalidKError("init must hold at least one centroid row.")
        if centroids.shape[1] != dim:
            raise DimensionMismatchError(0, centroids.shape[1], dim)
    else:
        distinct = np.unique(data, axis=0)
        k = min(k, distinct.shape[0])
        picks = rng.choice(distinct.shape[0], size=k, replace=False)
        centroids = distinct[picks].copy()

    k = centroids.shape[0]
    assignments = np.full(n, -1, dtype=np.intp)
    reseeded: list[int] = []
    converged = False
    iterations = 0

    for iterations in range(1, max_iterations + 1):
        # (n, k) squared distances; argmin keeps the first minimum.
        distances = ((data[:, np.newaxis, :] - centroids[np.newaxis, :, :]) ** 2).sum(axis=2)
        new_assignments = distances.argmin(axis=1)

        if np.array_equal(new_assignments, assignments):
            converged = True
            break
        assignments = new_assignments

        for j in range(k):
            members = data[assignments == j]
            if len(members):
                centroids[j] = members.mean(axis=0)
            else:
                centroids[j] = data[rng.integers(n)]
                reseeded.append(j)
                logger.debug("Cluster %d empty at iteration %d; reseeded", j, iterations)

    logger.debug(
        "K-Means finished | n=%d d=%d k=%d iterations=%d converged=%s",
        n, dim, k, iterations, converged,
    )

    return KMeansResult(
        assignments=assignments,
        centroids=centroids,
        iterations=iterations,
        converged=converged,
        reseeded_clusters=reseeded,
    )
