"""Unit tests for the clustering pipeline."""

from __future__ import annotations

import asyncio
import re
from unittest.mock import patch

import numpy as np

from project_clusters.core.errors import ProviderError
from project_clusters.schemas.cluster import ClusterErrorCode
from project_clusters.services.cluster_service import (
    PLACEHOLDER_NAME_FORMAT,
    ClusteringPipeline,
    group_members,
    placeholder_name,
    silhouette,
)
from tests.conftest import (
    BlockingLabeler,
    BlockingVectorSource,
    FakeLabeler,
    FakeVectorSource,
    make_project,
    topic_projects,
)


def _run(pipeline: ClusteringPipeline, projects, **kwargs):
    return asyncio.run(pipeline.cluster(projects, **kwargs))


def _membership(outcome) -> list[list[str]]:
    return [c.member_ids for c in outcome.clusters]


# ------------------------------------------------------------------ #
# Happy path
# ------------------------------------------------------------------ #

def test_three_topics_become_three_named_clusters() -> None:
    pipeline = ClusteringPipeline(FakeVectorSource(), FakeLabeler())

    outcome = _run(pipeline, topic_projects(), seed=1)

    assert outcome.ok
    assert outcome.k == 3
    assert outcome.converged is True
    groups = sorted(sorted(m) for m in _membership(outcome))
    assert groups == [["p1", "p4"], ["p2", "p5"], ["p3", "p6"]]
    assert sorted(c.name for c in outcome.clusters) == [
        "Cat Projects", "Ocean Projects", "Rocket Projects",
    ]
    assert all(c.named_by_provider for c in outcome.clusters)
    assert all(c.size == 2 for c in outcome.clusters)


def test_clusters_are_returned_in_ascending_group_order() -> None:
    # The first group to be named finishes last.
    labeler = FakeLabeler(delays={"cat": 0.05, "rocket": 0.02, "ocean": 0.0})
    pipeline = ClusteringPipeline(FakeVectorSource(), labeler)

    outcome = _run(pipeline, topic_projects(), seed=3)

    indices = [c.index for c in outcome.clusters]
    assert indices == sorted(indices)


def test_members_keep_input_order() -> None:
    pipeline = ClusteringPipeline(FakeVectorSource(), FakeLabeler())

    outcome = _run(pipeline, topic_projects(), seed=0)

    for cluster in outcome.clusters:
        positions = [int(pid[1:]) for pid in cluster.member_ids]
        assert positions == sorted(positions)


def test_ineligible_projects_are_ignored() -> None:
    source = FakeVectorSource()
    pipeline = ClusteringPipeline(source, FakeLabeler())
    projects = topic_projects() + [make_project("empty", "Only a title")]

    outcome = _run(pipeline, projects, seed=0)

    assert outcome.total_projects == 7
    assert outcome.eligible_projects == 6
    assert all("empty" not in c.member_ids for c in outcome.clusters)
    assert len(source.calls) == 1
    assert len(source.calls[0]) == 6


def test_k_is_at_most_eligible_count() -> None:
    pipeline = ClusteringPipeline(FakeVectorSource(), FakeLabeler())
    projects = [
        make_project("a", "Cat", text="cat"),
        make_project("b", "Rocket", text="rocket"),
    ]

    outcome = _run(pipeline, projects, seed=0)

    assert outcome.k == 2
    assert len(outcome.clusters) == 2


def test_naming_sample_is_first_five_member_texts() -> None:
    labeler = FakeLabeler()
    pipeline = ClusteringPipeline(FakeVectorSource(), labeler)
    cats = [make_project(f"c{i}", f"Cat {i}", text=f"cat picture {i}") for i in range(7)]
    projects = cats + [make_project("r", "R", text="rocket"), make_project("o", "O", text="ocean")]

    _run(pipeline, projects, seed=0)

    cat_call = next(call for call in labeler.calls if "cat" in call[0].lower())
    assert cat_call == [p.descriptor_text for p in cats[:5]]
    assert all(len(call) <= 5 for call in labeler.calls)


def test_sequential_naming_gives_same_result() -> None:
    concurrent = ClusteringPipeline(FakeVectorSource(), FakeLabeler())
    sequential = ClusteringPipeline(FakeVectorSource(), FakeLabeler(), concurrent_naming=False)

    a = _run(concurrent, topic_projects(), seed=9)
    b = _run(sequential, topic_projects(), seed=9)

    assert [(c.name, c.member_ids) for c in a.clusters] == [
        (c.name, c.member_ids) for c in b.clusters
    ]


def test_same_seed_gives_same_membership() -> None:
    pipeline = ClusteringPipeline(FakeVectorSource(), FakeLabeler())
    projects = [
        make_project(f"p{i}", f"Project {i}", text=f"prompt {i}") for i in range(8)
    ]

    class SpreadSource(FakeVectorSource):
        async def embed_batch(self, texts):
            rng = np.random.default_rng(123)
            return rng.normal(size=(len(texts), 4)).tolist()

    pipeline.vector_source = SpreadSource()
    first = _run(pipeline, projects, seed=11)
    second = _run(pipeline, projects, seed=11)

    assert _membership(first) == _membership(second)


# ------------------------------------------------------------------ #
# Failure handling
# ------------------------------------------------------------------ #

def test_single_eligible_project_is_insufficient_data() -> None:
    source = FakeVectorSource()
    pipeline = ClusteringPipeline(source, FakeLabeler())
    projects = [make_project("a", "Cat", text="cat"), make_project("b", "No prompt")]

    with patch("project_clusters.services.cluster_service.kmeans") as engine:
        outcome = _run(pipeline, projects)

    assert outcome.error is ClusterErrorCode.insufficient_data
    assert outcome.clusters is None
    assert outcome.eligible_projects == 1
    engine.assert_not_called()
    assert source.calls == []


def test_embedding_failure_fails_the_run() -> None:
    labeler = FakeLabeler()
    source = FakeVectorSource(error=ProviderError("fake/embedding", "quota exceeded"))
    pipeline = ClusteringPipeline(source, labeler)

    outcome = _run(pipeline, topic_projects())

    assert outcome.error is ClusterErrorCode.embedding_unavailable
    assert outcome.clusters is None
    assert labeler.calls == []


def test_unexpected_embedding_exception_is_embedding_unavailable() -> None:
    source = FakeVectorSource(error=RuntimeError("connection reset"))
    pipeline = ClusteringPipeline(source, FakeLabeler())

    outcome = _run(pipeline, topic_projects())

    assert outcome.error is ClusterErrorCode.embedding_unavailable


def test_partial_embedding_batch_is_rejected() -> None:
    pipeline = ClusteringPipeline(FakeVectorSource(drop_last=True), FakeLabeler())

    outcome = _run(pipeline, topic_projects())

    assert outcome.error is ClusterErrorCode.embedding_unavailable
    assert "5 vectors for 6 projects" in outcome.message


def test_non_finite_embeddings_are_rejected() -> None:
    class NaNSource(FakeVectorSource):
        async def embed_batch(self, texts):
            self.calls.append(list(texts))
            return [[0.0, 0.0], [float("nan"), 1.0], [10.0, 10.0], [10.0, float("inf")]]

    labeler = FakeLabeler()
    pipeline = ClusteringPipeline(NaNSource(), labeler)
    projects = [make_project(f"p{i}", f"Cat {i}", text="cat") for i in range(4)]

    with patch("project_clusters.services.cluster_service.kmeans") as engine:
        outcome = _run(pipeline, projects, seed=0)

    assert outcome.error is ClusterErrorCode.embedding_unavailable
    assert outcome.clusters is None
    assert "non-finite" in outcome.message
    engine.assert_not_called()
    assert labeler.calls == []


def test_ragged_embeddings_are_reported_not_raised() -> None:
    class RaggedSource(FakeVectorSource):
        async def embed_batch(self, texts):
            return [[0.0, 1.0]] * (len(texts) - 1) + [[1.0]]

    pipeline = ClusteringPipeline(RaggedSource(), FakeLabeler())

    outcome = _run(pipeline, topic_projects())

    assert outcome.error is ClusterErrorCode.dimension_mismatch
    assert outcome.clusters is None


def test_one_naming_failure_gets_placeholder_name() -> None:
    pipeline = ClusteringPipeline(FakeVectorSource(), FakeLabeler(fail_on={"rocket"}))

    outcome = _run(pipeline, topic_projects(), seed=2)

    assert outcome.ok
    assert len(outcome.clusters) == 3
    named = [c for c in outcome.clusters if c.named_by_provider]
    placeholders = [c for c in outcome.clusters if not c.named_by_provider]
    assert sorted(c.name for c in named) == ["Cat Projects", "Ocean Projects"]
    assert len(placeholders) == 1
    placeholder = placeholders[0]
    assert re.fullmatch(r"Cluster \d+", placeholder.name)
    assert placeholder.name == placeholder_name(placeholder.index)
    assert sorted(placeholder.member_ids) == ["p2", "p5"]


def test_blank_name_falls_back_to_placeholder() -> None:
    class BlankLabeler(FakeLabeler):
        async def name_cluster(self, sample_texts):
            return "   "

    pipeline = ClusteringPipeline(FakeVectorSource(), BlankLabeler())

    outcome = _run(pipeline, topic_projects(), seed=0)

    assert all(not c.named_by_provider for c in outcome.clusters)


def test_placeholder_name_format() -> None:
    assert PLACEHOLDER_NAME_FORMAT == "Cluster {index}"
    assert placeholder_name(0) == "Cluster 1"
    assert placeholder_name(2) == "Cluster 3"


# ------------------------------------------------------------------ #
# Concurrency
# ------------------------------------------------------------------ #

def test_second_run_while_busy_is_rejected() -> None:
    async def scenario():
        source = BlockingVectorSource()
        pipeline = ClusteringPipeline(source, FakeLabeler())

        first = asyncio.create_task(pipeline.cluster(topic_projects(), seed=0))
        await source.started.wait()
        assert pipeline.busy

        second = await pipeline.cluster(topic_projects(), seed=0)
        source.release.set()
        return await first, second, pipeline.busy

    first, second, still_busy = asyncio.run(scenario())

    assert first.ok
    assert second.error is ClusterErrorCode.busy
    assert second.clusters is None
    assert still_busy is False


def test_cancel_event_aborts_pending_embedding_call() -> None:
    async def scenario():
        source = BlockingVectorSource()
        pipeline = ClusteringPipeline(source, FakeLabeler())
        cancel = asyncio.Event()

        run = asyncio.create_task(pipeline.cluster(topic_projects(), cancel_event=cancel))
        await source.started.wait()
        cancel.set()
        return await run, source, pipeline

    outcome, source, pipeline = asyncio.run(scenario())

    assert outcome.error is ClusterErrorCode.cancelled
    assert outcome.clusters is None
    assert source.cancelled is True
    assert pipeline.busy is False


def test_cancel_event_set_before_start_never_calls_labeler() -> None:
    async def scenario():
        labeler = FakeLabeler()
        pipeline = ClusteringPipeline(FakeVectorSource(), labeler)
        cancel = asyncio.Event()
        cancel.set()
        return await pipeline.cluster(topic_projects(), cancel_event=cancel), labeler

    outcome, labeler = asyncio.run(scenario())

    assert outcome.error is ClusterErrorCode.cancelled
    assert labeler.calls == []


def test_cancel_event_aborts_pending_naming_calls() -> None:
    async def scenario():
        labeler = BlockingLabeler()
        pipeline = ClusteringPipeline(FakeVectorSource(), labeler)
        cancel = asyncio.Event()

        run = asyncio.create_task(
            pipeline.cluster(topic_projects(), seed=0, cancel_event=cancel)
        )
        await labeler.started.wait()
        cancel.set()
        return await run, labeler, pipeline

    outcome, labeler, pipeline = asyncio.run(scenario())

    assert outcome.error is ClusterErrorCode.cancelled
    assert outcome.clusters is None
    assert labeler.cancelled >= 1
    assert labeler.calls == []
    assert pipeline.busy is False


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #

def test_group_members_drops_empty_groups() -> None:
    buckets = group_members([0, 2, 0], ["a", "b", "c"], ["ta", "tb", "tc"], k=3)

    assert [b.index for b in buckets] == [0, 2]
    assert buckets[0].member_ids == ("a", "c")
    assert buckets[1].texts == ("tb",)


def test_silhouette_undefined_for_single_group() -> None:
    vectors = np.array([[0.0], [1.0], [2.0]])

    assert silhouette(vectors, np.array([0, 0, 0])) is None
    assert silhouette(vectors, np.array([0, 1, 2])) is None


def test_silhouette_high_for_separated_groups() -> None:
    vectors = np.array([[0.0, 0.0], [0.1, 0.0], [10.0, 10.0], [10.1, 10.0]])

    score = silhouette(vectors, np.array([0, 0, 1, 1]))

    assert score is not None and score > 0.9
