"""Unit tests for MemoryClusterer hybrid-similarity clustering."""

from datetime import timedelta

import pytest

from memory_insight_service.config import ClusteringSettings
from memory_insight_service.insights.clustering import MemoryClusterer, calculate_time_span, common_tags

# =============================================================================
# Helpers
# =============================================================================

NEAR = [1.0, 0.0, 0.0]
NEAR_TOO = [0.95, 0.31, 0.0]
FAR = [0.0, 1.0, 0.0]
FAR_TOO = [0.0, 0.0, 1.0]


@pytest.fixture
def clusterer():
    return MemoryClusterer(ClusteringSettings())


# =============================================================================
# are_similar
# =============================================================================


class TestAreSimilar:
    """Short-circuit and hybrid scoring."""

    def test_high_cosine_short_circuits(self, clusterer, make_memory):
        """Strong embedding match wins even with disjoint tags and distant dates."""
        a = make_memory(1, content_embedding=NEAR, smart_tags=["redis"])
        b = make_memory(2, content_embedding=NEAR_TOO, smart_tags=["css"], days_ago=365)

        assert clusterer.are_similar(a, b)

    def test_orthogonal_embeddings_without_tags_not_similar(self, clusterer, make_memory):
        a = make_memory(1, content_embedding=FAR)
        b = make_memory(2, content_embedding=FAR_TOO)

        # 0.7*0 + 0.2*0 + 0.1*1 = 0.1
        assert not clusterer.are_similar(a, b)

    def test_hybrid_threshold_inclusive(self, make_memory):
        config = ClusteringSettings(embedding_weight=0.0, tag_weight=0.5, time_weight=0.5, hybrid_threshold=0.5)
        a = make_memory(1, smart_tags=["x"], days_ago=14)
        b = make_memory(2, smart_tags=["x"], days_ago=0)

        # tag 1.0 * 0.5 + time 0.0 * 0.5 == 0.5
        assert MemoryClusterer(config).are_similar(a, b)

    def test_missing_embeddings_fall_back_to_tags_and_time(self, make_memory):
        config = ClusteringSettings(embedding_weight=0.4, tag_weight=0.4, time_weight=0.2, hybrid_threshold=0.5)
        a = make_memory(1, smart_tags=["auth", "jwt"])
        b = make_memory(2, smart_tags=["auth", "jwt"], days_ago=1)

        assert MemoryClusterer(config).are_similar(a, b)

    def test_hybrid_score_components(self, clusterer, make_memory):
        a = make_memory(1, smart_tags=["a", "b"], days_ago=7)
        b = make_memory(2, smart_tags=["b", "c"])

        # jaccard 1/3, proximity 0.5
        assert clusterer.hybrid_score(a, b) == pytest.approx(0.2 / 3 + 0.05)


# =============================================================================
# cluster
# =============================================================================


class TestCluster:
    """Greedy seed-based grouping."""

    def test_never_mixes_types(self, clusterer, make_memory):
        memories = [
            make_memory(1, memory_type="bug", content_embedding=NEAR),
            make_memory(2, memory_type="decision", content_embedding=NEAR),
            make_memory(3, memory_type="bug", content_embedding=NEAR),
            make_memory(4, memory_type="decision", content_embedding=NEAR),
        ]

        result = clusterer.cluster(memories)

        assert len(result.clusters) == 2
        for cluster in result.clusters:
            assert {m.memory_type for m in cluster.memories} == {cluster.memory_type}
        assert result.unclustered == []

    def test_similar_pair_always_together(self, clusterer, make_memory):
        memories = [
            make_memory(1, content_embedding=NEAR, smart_tags=["a"]),
            make_memory(2, content_embedding=FAR, smart_tags=["z"], days_ago=100),
            make_memory(3, content_embedding=NEAR_TOO, smart_tags=["b"], days_ago=200),
        ]

        result = clusterer.cluster(memories)

        assert len(result.clusters) == 1
        assert result.clusters[0].member_ids == [1, 3]
        assert [m.id for m in result.unclustered] == [2]

    def test_below_min_size_stays_unclustered(self, make_memory):
        clusterer = MemoryClusterer(ClusteringSettings(min_cluster_size=3))
        memories = [
            make_memory(1, content_embedding=NEAR),
            make_memory(2, content_embedding=NEAR_TOO),
            make_memory(3, content_embedding=FAR, days_ago=60),
        ]

        result = clusterer.cluster(memories)

        assert result.clusters == []
        assert [m.id for m in result.unclustered] == [1, 2, 3]

    def test_small_type_partition_skipped(self, clusterer, make_memory):
        result = clusterer.cluster([make_memory(1, memory_type="rule", content_embedding=NEAR)])

        assert result.clusters == []
        assert [m.id for m in result.unclustered] == [1]

    def test_similarity_measured_against_seed(self, clusterer, make_memory):
        """Memories are compared with the seed only; a seed with no neighbours does not block later seeds."""
        memories = [
            make_memory(1, content_embedding=NEAR, days_ago=300),
            make_memory(2, content_embedding=FAR, days_ago=200),
            make_memory(3, content_embedding=FAR, days_ago=100),
        ]

        result = clusterer.cluster(memories)

        assert [c.member_ids for c in result.clusters] == [[2, 3]]
        assert [m.id for m in result.unclustered] == [1]

    def test_cluster_metadata(self, clusterer, make_memory):
        memories = [
            make_memory(1, memory_type="bug", content_embedding=NEAR, smart_tags=["redis", "timeout"], days_ago=3.5),
            make_memory(2, memory_type="bug", content_embedding=NEAR, smart_tags=["timeout", "redis", "pool"]),
        ]

        cluster = clusterer.cluster(memories).clusters[0]

        assert cluster.cluster_id.startswith("cluster_bug_")
        assert cluster.cluster_id.endswith("_0")
        assert cluster.size == 2
        assert cluster.common_tags == ["redis", "timeout"]
        assert cluster.time_span.days == 4
        assert cluster.metadata()["member_ids"] == [1, 2]

    def test_empty_batch(self, clusterer):
        result = clusterer.cluster([])
        assert result.clusters == []
        assert result.unclustered == []


class TestClusterHelpers:
    """Time span and common tag helpers."""

    def test_time_span_rounds_up(self, make_memory):
        span = calculate_time_span([make_memory(1, days_ago=0), make_memory(2, days_ago=1.2)])

        assert span.days == 2
        assert span.end - span.start == timedelta(days=1.2)

    def test_common_tags_empty_when_disjoint(self, make_memory):
        assert common_tags([make_memory(1, smart_tags=["a"]), make_memory(2, smart_tags=["b"])]) == []
