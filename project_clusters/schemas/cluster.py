"""
Schemas for clustering results and the clustering endpoint.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, Field, model_validator

from project_clusters.schemas.project import ProjectRef


class ClusterErrorCode(str, Enum):
    insufficient_data = "insufficient_data"
    embedding_unavailable = "embedding_unavailable"
    empty_input = "empty_input"
    dimension_mismatch = "dimension_mismatch"
    invalid_k = "invalid_k"
    busy = "busy"
    cancelled = "cancelled"


class Cluster(BaseModel):
    index: int = Field(description="K-Means group index this cluster came from.")
    name: str = Field(description="Short descriptive name for the group.")
    member_ids: list[str] = Field(
        description="Project ids in this cluster, in input order."
    )
    size: int
    named_by_provider: bool = Field(
        default=True,
        description="False when naming failed and a placeholder name was used.",
    )


class ClusteringOutcome(BaseModel):
    """
    Result of one pipeline run: either `clusters` or a tagged `error`.

    Run statistics are filled in as far as the run got before failing.
    """

    clusters: list[Cluster] | None = None
    error: ClusterErrorCode | None = None
    message: str | None = None
    total_projects: int = 0
    eligible_projects: int = 0
    k: int | None = None
    iterations: int | None = None
    converged: bool | None = None
    silhouette: float | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ClusterRequest(BaseModel):
    """
    Request body for POST /v1/cluster

    Send the current snapshot of projects. Projects without any prompt text
    are ignored; at least two eligible projects are required.
    """

    projects: Annotated[
        list[ProjectRef],
        Field(min_length=1, description="Projects to organise into clusters."),
    ]
    seed: int | None = Field(
        default=None,
        ge=0,
        description="Seed for centroid initialisation. Same seed and same "
                    "embeddings give the same grouping. Omit for a random seed.",
    )

    @model_validator(mode="after")
    def unique_ids(self) -> ClusterRequest:
        ids = [p.id for p in self.projects]
        if len(set(ids)) != len(ids):
            raise ValueError("Project `id` values must be unique.")
        return self


class ClusterResponse(BaseModel):
    """Response body for POST /v1/cluster"""

    api_version: str = Field(default="1.0")
    algorithm: str = Field(default="k-means")
    total_projects: int
    eligible_projects: int
    num_clusters: int
    k: int = Field(description="Number of groups K-Means ran with.")
    iterations: int
    converged: bool = Field(
        description="False when the iteration limit was hit first; "
                    "the grouping is then a best-effort result."
    )
    silhouette: float | None = Field(
        default=None,
        description="Euclidean silhouette score of the grouping, when defined.",
    )
    clusters: list[Cluster]
    processing_time_ms: float
