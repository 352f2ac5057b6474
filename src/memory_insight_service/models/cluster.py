"""Cluster models produced by :class:`MemoryClusterer` for one processing run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .memory import Memory


@dataclass
class TimeSpan:
    """Creation-time range covered by a cluster; ``days`` is rounded up."""

    start: datetime
    end: datetime
    days: int

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "days": self.days}


@dataclass
class Cluster:
    """A group of same-type memories judged similar enough to analyse together."""

    cluster_id: str
    memory_type: str
    memories: list[Memory]
    time_span: TimeSpan
    common_tags: list[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.memories)

    @property
    def member_ids(self) -> list[int]:
        return [m.id for m in self.memories]

    def metadata(self) -> dict[str, Any]:
        """Cluster description passed to the cluster insight generator and stored on the job."""
        return {
            "id": self.cluster_id,
            "type": self.memory_type,
            "size": self.size,
            "member_ids": self.member_ids,
            "time_span": self.time_span.to_dict(),
            "common_tags": self.common_tags,
        }


@dataclass
class ClusteringResult:
    """Partition of one batch into clusters and leftover singles."""

    clusters: list[Cluster] = field(default_factory=list)
    unclustered: list[Memory] = field(default_factory=list)

    @property
    def clustered_count(self) -> int:
        return sum(c.size for c in self.clusters)
