"""
Capabilities the clustering pipeline depends on.

Implementations live in `embedding_service` and `llm_service`; tests pass
their own fakes. Neither call is retried by the pipeline: any retry or
backoff policy belongs to the implementation.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class VectorSource(Protocol):
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Return one vector per text, in input order.
        Raises ProviderError on any failure; partial batches are never returned.
        """
        ...


@runtime_checkable
class ClusterLabeler(Protocol):
    async def name_cluster(self, sample_texts: list[str]) -> str:
        """Return a short name for a group of texts. Raises ProviderError."""
        ...
