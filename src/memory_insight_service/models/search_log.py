# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Search analytics record emitted after every completed search."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SearchLog:
    """Represents a single search operation for analytics tracking."""

    query: str
    search_mode: str
    timestamp: float
    response_time_ms: float
    result_count: int
    content_weight: float
    tag_weight: float
    avg_similarity: float = 0.0
    project_name: str | None = None
    memory_type: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "query": self.query,
            "search_mode": self.search_mode,
            "timestamp": self.timestamp,
            "response_time_ms": self.response_time_ms,
            "result_count": self.result_count,
            "content_weight": self.content_weight,
            "tag_weight": self.tag_weight,
            "avg_similarity": self.avg_similarity,
            "project_name": self.project_name,
            "memory_type": self.memory_type,
            "error": self.error,
            "metadata": self.metadata,
        }
