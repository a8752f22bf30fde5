"""
Configuration management for the threat feed core.

Uses Pydantic Settings for environment variable validation and type safety.
Every threshold and weight here is a tunable default, not a derived constant.
"""

from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class SimilarityConfig(BaseSettings):
    """Dimension weights for the similarity scorer."""

    indicators_weight: float = Field(default=0.25, ge=0.0, le=1.0)
    targets_weight: float = Field(default=0.25, ge=0.0, le=1.0)
    attribution_weight: float = Field(default=0.20, ge=0.0, le=1.0)
    temporal_weight: float = Field(default=0.15, ge=0.0, le=1.0)
    content_weight: float = Field(default=0.15, ge=0.0, le=1.0)
    temporal_window_days: int = Field(
        default=30,
        ge=1,
        description="First-seen distance at which temporal similarity reaches 0",
    )

    @model_validator(mode="after")
    def validate_weights(self) -> "SimilarityConfig":
        """Weights must add up to 1.0 so the overall score stays in [0, 1]."""
        total = (
            self.indicators_weight
            + self.targets_weight
            + self.attribution_weight
            + self.temporal_weight
            + self.content_weight
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Similarity weights must sum to 1.0 (got {total:.4f})")
        return self

    class Config:
        env_prefix = "THREATFEED_SIMILARITY_"


class DedupConfig(BaseSettings):
    """Duplicate detection configuration."""

    duplicate_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Overall similarity at which a candidate is a duplicate",
    )
    candidate_limit: int = Field(
        default=20,
        ge=1,
        description="Maximum records fetched for fuzzy comparison",
    )
    indicator_probe_count: int = Field(
        default=5,
        ge=0,
        description="How many leading indicator values are used to find candidates",
    )

    class Config:
        env_prefix = "THREATFEED_DEDUP_"


class CorrelationConfig(BaseSettings):
    """Correlation graph configuration."""

    correlation_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    candidate_limit: int = Field(default=100, ge=1)
    max_correlations: int = Field(
        default=50,
        ge=1,
        description="Fan-out cap: accepted correlations per analysis pass",
    )
    duplicate_edge_threshold: float = Field(default=0.90, ge=0.0, le=1.0)
    target_overlap_threshold: float = Field(default=0.80, ge=0.0, le=1.0)
    bulk_batch_size: int = Field(default=50, ge=1)

    class Config:
        env_prefix = "THREATFEED_CORRELATION_"


class PatternConfig(BaseSettings):
    """Pattern rule engine configuration."""

    auto_resolve_max_confidence: int = Field(
        default=30,
        ge=0,
        le=100,
        description="auto_resolve only applies below this confidence",
    )
    patterns_file: Optional[str] = Field(
        default=None,
        description="Optional YAML file with additional patterns",
    )
    load_defaults: bool = Field(
        default=True,
        description="Seed the built-in patterns on startup",
    )

    class Config:
        env_prefix = "THREATFEED_PATTERNS_"


class StoreConfig(BaseSettings):
    """Record store configuration."""

    db_path: str = Field(
        default="/var/lib/threatfeed/threatfeed.db",
        description="Path to the SQLite database",
    )

    class Config:
        env_prefix = "THREATFEED_STORE_"


class NotificationConfig(BaseSettings):
    """Notification dispatcher configuration."""

    webhook_url: Optional[str] = Field(default=None, description="Webhook endpoint URL")
    webhook_token: Optional[str] = Field(default=None, description="Bearer token")
    timeout: float = Field(default=10.0, gt=0.0, description="Request timeout (seconds)")
    failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before the circuit opens",
    )
    reset_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="How long the circuit stays open before a trial call",
    )

    class Config:
        env_prefix = "THREATFEED_NOTIFY_"


class AppConfig(BaseSettings):
    """Main application configuration."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    similarity: SimilarityConfig = Field(default_factory=SimilarityConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    correlation: CorrelationConfig = Field(default_factory=CorrelationConfig)
    patterns: PatternConfig = Field(default_factory=PatternConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the global configuration instance.

    Lazily loads configuration on first access.
    """
    global _config
    if _config is None:
        _config = AppConfig(
            similarity=SimilarityConfig(),
            dedup=DedupConfig(),
            correlation=CorrelationConfig(),
            patterns=PatternConfig(),
            store=StoreConfig(),
            notifications=NotificationConfig(),
        )
    return _config


def reload_config() -> AppConfig:
    """
    Reload configuration from environment variables.

    Useful for testing or when environment changes.
    """
    global _config
    _config = None
    return get_config()
