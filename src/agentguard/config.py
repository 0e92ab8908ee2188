"""Configuration management for AgentGuard."""

from __future__ import annotations

from functools import lru_cache
from typing import Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Logging Configuration
    log_to_file: bool = Field(default=False, description="Enable file-based logging")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=52428800,  # 50MB
        description="Max size per log file before rotation",
    )
    log_file_backup_count: int = Field(
        default=10, description="Number of rotated log files to keep"
    )
    log_file_prefix: str = Field(default="agentguard", description="Prefix for log file names")

    @property
    def log_file_path(self) -> str:
        """Get the full log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}.log"

    # Result cache
    cache_backend: str = Field(default="redis", description="Cache backend: 'redis' or 'memory'")
    redis_url: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    cache_ttl_seconds: int = Field(default=3600, description="Default verdict TTL in seconds")
    cache_timeout_seconds: float = Field(
        default=0.5, description="Upper bound on a single cache call before it counts as a miss"
    )
    cache_fingerprint_length: int = Field(
        default=16, description="Hex characters of the prompt SHA-256 kept in cache keys"
    )
    cache_max_entries: int = Field(
        default=10000, description="Capacity of the in-memory cache backend"
    )

    # Policy engine
    policies_path: str | None = Field(
        default=None, description="YAML policy file (packaged defaults when unset)"
    )

    # Request counting / rate limiting
    rate_limit_max_requests: int = Field(
        default=100, description="Requests per agent per window before blocking"
    )
    rate_limit_window_seconds: float = Field(
        default=3600.0, description="Length of the per-agent counting window"
    )
    request_counter_capacity: int = Field(
        default=50000, description="Maximum number of agents tracked by the request counter"
    )

    # Heuristic thresholds (used when no policy matches)
    high_risk_threshold: float = Field(
        default=0.7, description="Threat probability above which requests are blocked"
    )
    moderate_risk_threshold: float = Field(
        default=0.3, description="Threat probability above which requests are warned"
    )

    # Optional ML scorer
    ml_scorer_enabled: bool = Field(default=False, description="Add the ML endpoint score")
    ml_scorer_url: str = Field(default="", description="Prediction endpoint URL")
    ml_scorer_timeout: float = Field(default=2.0, description="ML endpoint timeout in seconds")

    # Audit ledger
    audit_enabled: bool = Field(default=True, description="Forward verdicts to the audit ledger")

    @field_validator("high_risk_threshold", "moderate_risk_threshold")
    @classmethod
    def validate_float_0_1(cls, v: float) -> float:
        """Validate float values are between 0 and 1."""
        if not 0 <= v <= 1:
            raise ValueError(f"Value must be between 0 and 1, got: {v}")
        return v

    @field_validator("cache_backend")
    @classmethod
    def validate_cache_backend(cls, v: str) -> str:
        """Validate cache backend choice."""
        valid_backends = ["redis", "memory"]
        if v not in valid_backends:
            raise ValueError(f"cache_backend must be one of {valid_backends}, got: {v}")
        return v

    @field_validator("cache_fingerprint_length")
    @classmethod
    def validate_fingerprint_length(cls, v: int) -> int:
        """Validate the fingerprint fits inside a SHA-256 hex digest."""
        if not 8 <= v <= 64:
            raise ValueError(f"cache_fingerprint_length must be between 8 and 64, got: {v}")
        return v

    @field_validator("rate_limit_max_requests", "request_counter_capacity", "cache_max_entries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate counts are positive."""
        if v < 1:
            raise ValueError(f"Value must be positive, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_thresholds(self) -> Self:
        """The moderate threshold must sit below the high-risk threshold."""
        if self.moderate_risk_threshold >= self.high_risk_threshold:
            raise ValueError("moderate_risk_threshold must be lower than high_risk_threshold")
        if self.ml_scorer_enabled and not self.ml_scorer_url:
            raise ValueError("ML_SCORER_URL is required when ML_SCORER_ENABLED is set")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
