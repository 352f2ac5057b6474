"""
Memory clustering for batch insight generation.

Groups a bounded batch of unprocessed memories into clusters of same-type,
mutually related memories using a hybrid similarity:

1. Both memories have content embeddings and their cosine similarity reaches
   ``embedding_similarity_threshold``: similar, nothing else is consulted.
2. Otherwise ``embedding_weight * cosine + tag_weight * jaccard(tags)
   + time_weight * time_proximity`` is compared against ``hybrid_threshold``.

Grouping is greedy and seed-based within each memory-type partition. A seed
gathers every later unclustered memory similar to it; the candidate becomes a
cluster only if it reaches ``min_cluster_size``. Membership is provisional
until commit, so members of a rejected candidate stay available to later
seeds in the same pass.
"""

import logging
import math
import time
from collections.abc import Sequence

from ..config import ClusteringSettings
from ..errors import ClusteringError
from ..models.cluster import Cluster, ClusteringResult, TimeSpan
from ..models.memory import Memory
from ..utils.similarity import SECONDS_PER_DAY, cosine_similarity, jaccard_similarity, time_proximity

logger = logging.getLogger(__name__)


def calculate_time_span(memories: Sequence[Memory]) -> TimeSpan:
    """Creation-time range of *memories*; days rounded up."""
    timestamps = [m.created_at for m in memories]
    start, end = min(timestamps), max(timestamps)
    days = math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)
    return TimeSpan(start=start, end=end, days=days)


def common_tags(memories: Sequence[Memory]) -> list[str]:
    """Tags shared by every member, in the first member's order."""
    if not memories:
        return []
    shared = set(memories[0].smart_tags)
    for memory in memories[1:]:
        shared &= set(memory.smart_tags)
    return [tag for tag in memories[0].smart_tags if tag in shared]


class MemoryClusterer:
    """Partitions memories into type-homogeneous similarity clusters."""

    def __init__(self, config: ClusteringSettings | None = None):
        if config is None:
            from ..config import settings

            config = settings.clustering
        self.config = config

    def hybrid_score(self, a: Memory, b: Memory) -> float:
        """Weighted blend of embedding, tag, and time similarity."""
        cfg = self.config
        embedding_sim = cosine_similarity(a.content_embedding, b.content_embedding)
        tag_sim = jaccard_similarity(a.smart_tags, b.smart_tags)
        time_sim = time_proximity(a.created_at, b.created_at, cfg.time_proximity_days)
        return cfg.embedding_weight * embedding_sim + cfg.tag_weight * tag_sim + cfg.time_weight * time_sim

    def are_similar(self, a: Memory, b: Memory) -> bool:
        cfg = self.config
        if a.content_embedding is not None and b.content_embedding is not None:
            embedding_sim = cosine_similarity(a.content_embedding, b.content_embedding)
            if embedding_sim >= cfg.embedding_similarity_threshold:
                logger.debug(f"Memories {a.id}/{b.id} similar by embedding ({embedding_sim:.3f})")
                return True

        score = self.hybrid_score(a, b)
        logger.debug(f"Memories {a.id}/{b.id} hybrid score {score:.3f}")
        return score >= cfg.hybrid_threshold

    def _cluster_partition(
        self,
        memory_type: str,
        arena: Sequence[Memory],
        clustered: set[int],
        offsets: Sequence[int],
    ) -> list[Cluster]:
        """Greedy seed-based grouping over one type partition.

        ``arena`` holds the partition's memories; ``offsets[k]`` maps arena
        index ``k`` back to the batch index recorded in ``clustered``.
        """
        clusters: list[Cluster] = []
        visited = [False] * len(arena)
        stamp = int(time.time() * 1000)

        for i, seed in enumerate(arena):
            if visited[i]:
                continue

            candidate = [i]
            for j in range(i + 1, len(arena)):
                if not visited[j] and self.are_similar(seed, arena[j]):
                    candidate.append(j)

            if len(candidate) < self.config.min_cluster_size:
                continue

            for k in candidate:
                visited[k] = True
                clustered.add(offsets[k])

            members = [arena[k] for k in candidate]
            clusters.append(
                Cluster(
                    cluster_id=f"cluster_{memory_type}_{stamp}_{i}",
                    memory_type=memory_type,
                    memories=members,
                    time_span=calculate_time_span(members),
                    common_tags=common_tags(members),
                )
            )

        return clusters

    def cluster(self, memories: Sequence[Memory]) -> ClusteringResult:
        """
        Partition *memories* into clusters and leftover singles.

        Args:
            memories: One processing batch

        Returns:
            Clusters (each of one memory type, at least ``min_cluster_size``
            members) and the unclustered memories in input order

        Raises:
            ClusteringError: On malformed memory data
        """
        logger.info(f"Starting clustering for {len(memories)} memories")

        partitions: dict[str, list[int]] = {}
        for index, memory in enumerate(memories):
            partitions.setdefault(memory.memory_type, []).append(index)

        clusters: list[Cluster] = []
        clustered: set[int] = set()
        try:
            for memory_type, offsets in partitions.items():
                if len(offsets) < self.config.min_cluster_size:
                    continue
                arena = [memories[k] for k in offsets]
                clusters.extend(self._cluster_partition(memory_type, arena, clustered, offsets))
        except (TypeError, ValueError) as e:
            raise ClusteringError(f"Clustering failed: {e}") from e

        unclustered = [m for index, m in enumerate(memories) if index not in clustered]
        logger.info(f"Clustering complete: {len(clusters)} clusters formed, {len(unclustered)} memories unclustered")
        return ClusteringResult(clusters=clusters, unclustered=unclustered)
