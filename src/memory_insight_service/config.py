"""
Centralized configuration using Pydantic Settings.

Each concern has its own settings group loaded from environment variables
with an ``MCP_<GROUP>_`` prefix, e.g. ``MCP_HYBRID_SEARCH_CONTENT_WEIGHT=0.6``
or ``MCP_CLUSTERING_MIN_CLUSTER_SIZE=3``. The groups are aggregated in
:class:`Settings`, exposed as the module-level ``settings`` object.
"""

import math
from pathlib import Path
from typing import Literal, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_BASE_DIR = Path.home() / ".memory-insight-service"

# Weights are compared with this tolerance everywhere they must sum to 1.0
WEIGHT_SUM_TOLERANCE = 0.01


class HybridSearchSettings(BaseSettings):
    """Hybrid (content + tag embedding) search tuning."""

    model_config = SettingsConfigDict(env_prefix="MCP_HYBRID_SEARCH_", extra="ignore")

    content_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    tag_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    default_limit: int = Field(default=10, ge=1, le=1000)
    # Each strategy fetches ceil(limit * overfetch_factor) candidates in hybrid mode
    overfetch_factor: float = Field(default=1.5, ge=1.0, le=10.0)
    overlap_boost: float = Field(default=0.1, ge=0.0, le=1.0)
    max_boost: float = Field(default=0.95, ge=0.0, le=1.0)
    recent_days: int = Field(default=30, ge=1)
    analytics_enabled: bool = True

    @model_validator(mode="after")
    def weights_sum_to_one(self) -> Self:
        if not math.isclose(self.content_weight + self.tag_weight, 1.0, abs_tol=WEIGHT_SUM_TOLERANCE):
            raise ValueError(
                f"content_weight ({self.content_weight}) and tag_weight ({self.tag_weight}) must sum to 1.0"
            )
        return self


class ClusteringSettings(BaseSettings):
    """Hybrid-distance clustering used ahead of batch insight generation."""

    model_config = SettingsConfigDict(env_prefix="MCP_CLUSTERING_", extra="ignore")

    min_cluster_size: int = Field(default=2, ge=2)
    # Cosine similarity at or above this short-circuits to "similar"
    embedding_similarity_threshold: float = Field(default=0.65, ge=0.0, le=1.0)
    hybrid_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    time_proximity_days: float = Field(default=14.0, gt=0.0)
    embedding_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    tag_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    time_weight: float = Field(default=0.1, ge=0.0, le=1.0)


class InsightProcessingSettings(BaseSettings):
    """Batch insight job settings."""

    model_config = SettingsConfigDict(env_prefix="MCP_INSIGHTS_", extra="ignore")

    batch_size: int = Field(default=10, ge=1, le=100)
    max_memories_per_run: int = Field(default=1000, ge=1, le=1000)
    min_content_length: int = Field(default=10, ge=0)
    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    min_summary_length: int = Field(default=10, ge=0)
    schedule_interval_seconds: float = Field(default=300.0, gt=0.0)
    max_retries: int = Field(default=3, ge=0)


class EmbeddingSettings(BaseSettings):
    """Embedding provider selection."""

    model_config = SettingsConfigDict(env_prefix="MCP_EMBEDDING_", extra="ignore")

    provider: Literal["ollama", "sentence_transformers"] = "ollama"
    model: str = "nomic-embed-text"
    ollama_url: str = "http://localhost:11434"
    timeout_seconds: float = Field(default=60.0, gt=0.0)
    max_attempts: int = Field(default=3, ge=1)


class StorageSettings(BaseSettings):
    """SQLite storage locations."""

    model_config = SettingsConfigDict(env_prefix="MCP_STORAGE_", extra="ignore")

    base_dir: Path = _DEFAULT_BASE_DIR
    database_file: str = "memories.db"
    analytics_file: str = "search_analytics.db"

    @property
    def database_path(self) -> Path:
        return self.base_dir / self.database_file

    @property
    def analytics_path(self) -> Path:
        return self.base_dir / "analytics" / self.analytics_file


class RedisSettings(BaseSettings):
    """Optional Redis cache for query embeddings. Disabled when ``url`` is unset."""

    model_config = SettingsConfigDict(env_prefix="MCP_REDIS_", extra="ignore")

    url: str | None = None
    ttl_seconds: int = Field(default=3600, ge=1)
    key_prefix: str = "mcp:embeddings:"
    max_connections: int = Field(default=10, ge=1)


class Settings(BaseSettings):
    """Top-level settings; each group reads its own env prefix."""

    model_config = SettingsConfigDict(env_prefix="MCP_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = "INFO"

    hybrid_search: HybridSearchSettings = Field(default_factory=HybridSearchSettings)
    clustering: ClusteringSettings = Field(default_factory=ClusteringSettings)
    insights: InsightProcessingSettings = Field(default_factory=InsightProcessingSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)


settings = Settings()
