"""
Provider registry: single source of truth for the embedding and naming
providers and the shared clustering pipeline.

Everything is built exactly once at application startup via the `lifespan`
context manager in `main.py`. Route handlers retrieve the pipeline through
`get_registry()`; the pipeline's single-run lock only works because every
request shares this one instance.

Missing provider credentials do not stop the service from starting. The
provider is reported as not ready on /health and clustering requests fail
with `embedding_unavailable` (or fall back to placeholder names).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from project_clusters.core.config import Settings
from project_clusters.services.cluster_service import ClusteringPipeline
from project_clusters.services.embedding_service import LiteLLMVectorSource
from project_clusters.services.llm_service import LiteLLMClusterLabeler

logger = logging.getLogger(__name__)


@dataclass
class LoadedProvider:
    name: str
    model: str = ""
    instance: Any | None = None
    ready: bool = False
    error: str | None = None


@dataclass
class ProviderRegistry:
    """Container for the provider instances and the pipeline built on them."""

    vector_source: LoadedProvider = field(
        default_factory=lambda: LoadedProvider("vector_source")
    )
    labeler: LoadedProvider = field(default_factory=lambda: LoadedProvider("labeler"))
    pipeline: ClusteringPipeline | None = None

    def all_providers(self) -> list[LoadedProvider]:
        return [self.vector_source, self.labeler]

    def overall_status(self) -> str:
        # Clustering cannot run without embeddings; naming only degrades.
        if not self.vector_source.ready:
            return "unhealthy"
        if not self.labeler.ready:
            return "degraded"
        return "ok"


# Module-level singleton, populated during startup lifespan.
_registry: ProviderRegistry | None = None


def get_registry() -> ProviderRegistry:
    if _registry is None:
        raise RuntimeError(
            "ProviderRegistry has not been initialised. "
            "Ensure `load_providers()` is called inside the lifespan handler."
        )
    return _registry


def set_registry(registry: ProviderRegistry | None) -> None:
    global _registry
    _registry = registry


def load_providers(settings: Settings) -> ProviderRegistry:
    """
    Build both providers and the pipeline, and return a populated registry.
    Called once from the FastAPI lifespan context manager.
    """
    registry = ProviderRegistry()

    vector_source = LiteLLMVectorSource(
        model=settings.embedding_model,
        api_key=settings.provider_api_key(settings.embedding_model),
        timeout=settings.provider_timeout_seconds,
    )
    registry.vector_source = _check_credentials(
        "vector_source", settings.embedding_model, vector_source, settings
    )

    labeler = LiteLLMClusterLabeler(
        model=settings.naming_model,
        api_key=settings.provider_api_key(settings.naming_model),
        max_tokens=settings.naming_max_tokens,
        temperature=settings.naming_temperature,
        timeout=settings.provider_timeout_seconds,
    )
    registry.labeler = _check_credentials(
        "labeler", settings.naming_model, labeler, settings
    )

    registry.pipeline = ClusteringPipeline.from_settings(vector_source, labeler, settings)

    set_registry(registry)
    ready = sum(1 for p in registry.all_providers() if p.ready)
    logger.info(
        "Providers configured: %d/%d ready (status=%s)",
        ready, len(registry.all_providers()), registry.overall_status(),
    )
    return registry


def _check_credentials(
    name: str, model: str, instance: Any, settings: Settings
) -> LoadedProvider:
    if settings.provider_api_key(model):
        return LoadedProvider(name=name, model=model, instance=instance, ready=True)

    try:
        import litellm  # type: ignore

        env = litellm.validate_environment(model=model)
    except Exception as exc:
        err = f"Could not validate credentials for {model}: {exc}"
        logger.error(err)
        return LoadedProvider(name=name, model=model, instance=instance, error=err)

    if env.get("keys_in_environment"):
        return LoadedProvider(name=name, model=model, instance=instance, ready=True)

    missing = ", ".join(env.get("missing_keys") or []) or "provider API key"
    err = f"Missing credentials for {model}: {missing}"
    logger.warning(err)
    return LoadedProvider(name=name, model=model, instance=instance, error=err)
