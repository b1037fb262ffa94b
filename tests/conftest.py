"""
Shared pytest fixtures.

Strategy: we never call real embedding or LLM providers in tests.
The provider registry is replaced with fakes that return canned vectors
and names, so tests are fast and deterministic.
"""

from __future__ import annotations

import asyncio
from typing import Iterator
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from project_clusters.core.config import get_settings
from project_clusters.core.errors import ProviderError
from project_clusters.models.registry import LoadedProvider, ProviderRegistry, set_registry
from project_clusters.schemas.project import ProjectPrompts, ProjectRef
from project_clusters.services.cluster_service import ClusteringPipeline


# ------------------------------------------------------------------ #
# Fake providers
# ------------------------------------------------------------------ #

# Each text maps to the vector of the first keyword it contains, so
# projects about the same topic embed to the same point.
KEYWORD_VECTORS: dict[str, list[float]] = {
    "cat": [0.0, 0.0],
    "rocket": [10.0, 10.0],
    "ocean": [-10.0, 10.0],
}


def keyword_of(text: str) -> str | None:
    lowered = text.lower()
    for keyword in KEYWORD_VECTORS:
        if keyword in lowered:
            return keyword
    return None


class FakeVectorSource:
    def __init__(self, error: Exception | None = None, drop_last: bool = False) -> None:
        self.error = error
        self.drop_last = drop_last
        self.calls: list[list[str]] = []

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        vectors = [list(KEYWORD_VECTORS.get(keyword_of(t) or "", [5.0, -5.0])) for t in texts]
        return vectors[:-1] if self.drop_last else vectors


class BlockingVectorSource(FakeVectorSource):
    """Waits for `release` before answering; records whether it was cancelled."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = False

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return await super().embed_batch(texts)


class FakeLabeler:
    def __init__(self, fail_on: set[str] | None = None, delays: dict[str, float] | None = None) -> None:
        self.fail_on = fail_on or set()
        self.delays = delays or {}
        self.calls: list[list[str]] = []

    async def name_cluster(self, sample_texts: list[str]) -> str:
        self.calls.append(list(sample_texts))
        keyword = keyword_of(sample_texts[0]) or "misc"
        await asyncio.sleep(self.delays.get(keyword, 0))
        if keyword in self.fail_on:
            raise ProviderError("fake/naming", f"refused to name {keyword}")
        return f"{keyword.title()} Projects"


class BlockingLabeler(FakeLabeler):
    """Blocks every naming call until `release` is set; counts cancelled calls."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = 0

    async def name_cluster(self, sample_texts: list[str]) -> str:
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return await super().name_cluster(sample_texts)


# ------------------------------------------------------------------ #
# Project helpers
# ------------------------------------------------------------------ #

def make_project(project_id: str, title: str = "", **prompts: str) -> ProjectRef:
    return ProjectRef(id=project_id, title=title, prompts=ProjectPrompts(**prompts))


def topic_projects() -> list[ProjectRef]:
    """Six projects over three well-separated topics."""
    return [
        make_project("p1", "Cat nap", text="a cat sleeping in the sun"),
        make_project("p2", "Launch day", image="a rocket lifting off"),
        make_project("p3", "Deep blue", tts="waves of the ocean at night"),
        make_project("p4", "Kitten", text="a playful cat chasing yarn"),
        make_project("p5", "Mars", video="rocket landing on mars"),
        make_project("p6", "Reef", image="ocean coral reef"),
    ]


# ------------------------------------------------------------------ #
# Registry / test client fixtures
# ------------------------------------------------------------------ #

def make_fake_registry(
    vector_source: FakeVectorSource | None = None,
    labeler: FakeLabeler | None = None,
) -> ProviderRegistry:
    vs = vector_source or FakeVectorSource()
    lb = labeler or FakeLabeler()
    return ProviderRegistry(
        vector_source=LoadedProvider("vector_source", model="fake/embedding", instance=vs, ready=True),
        labeler=LoadedProvider("labeler", model="fake/naming", instance=lb, ready=True),
        pipeline=ClusteringPipeline(vs, lb, default_seed=0),
    )


@pytest.fixture
def fake_registry() -> ProviderRegistry:
    return make_fake_registry()


def _make_client(registry: ProviderRegistry, env: dict[str, str]) -> Iterator[TestClient]:
    def _load(settings: object) -> ProviderRegistry:
        set_registry(registry)
        return registry

    get_settings.cache_clear()
    with patch.dict("os.environ", env), patch(
        "project_clusters.main.load_providers", side_effect=_load
    ):
        from project_clusters.main import create_app

        test_app = create_app()
        with TestClient(test_app, raise_server_exceptions=False) as c:
            yield c
    get_settings.cache_clear()


@pytest.fixture
def client(fake_registry: ProviderRegistry) -> Iterator[TestClient]:
    """
    TestClient with:
      - API_KEY authentication disabled (open mode)
      - provider registry replaced with fakes
    """
    yield from _make_client(
        fake_registry, {"API_KEY": "", "RATE_LIMIT_ENABLED": "false", "LOG_JSON": "false"}
    )


@pytest.fixture
def authed_client(fake_registry: ProviderRegistry) -> Iterator[TestClient]:
    """TestClient with API_KEY=test-secret enforced."""
    yield from _make_client(
        fake_registry,
        {"API_KEY": "test-secret", "RATE_LIMIT_ENABLED": "false", "LOG_JSON": "false"},
    )
