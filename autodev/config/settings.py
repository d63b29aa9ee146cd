"""Pydantic settings for autodev configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml


class CandidateConfig(BaseModel):
    """One model in a role's failover hierarchy."""

    model: str
    priority: int
    speed: str = "fast"
    quality: str = "good"


def _default_hierarchy() -> dict[str, list[CandidateConfig]]:
    return {
        "analyst": [
            CandidateConfig(model="opencode/gpt-5-nano", priority=1),
            CandidateConfig(model="opencode/trinity-large-preview-free", priority=2),
            CandidateConfig(model="opencode/glm-4.7-free", priority=3),
        ],
        "planner": [
            CandidateConfig(model="opencode/gpt-5-nano", priority=1),
            CandidateConfig(model="opencode/trinity-large-preview-free", priority=2),
            CandidateConfig(model="opencode/glm-4.7-free", priority=3),
        ],
        "coder": [
            CandidateConfig(model="opencode/gpt-5-nano", priority=1),
            CandidateConfig(model="opencode/grok-code", priority=2),
            CandidateConfig(model="opencode/trinity-large-preview-free", priority=3),
        ],
        "reviewer": [
            CandidateConfig(model="opencode/gpt-5-nano", priority=1),
            CandidateConfig(model="opencode/trinity-large-preview-free", priority=2),
            CandidateConfig(model="opencode/minimax-m2.1-free", priority=3),
        ],
    }


class CallTimeouts(BaseModel):
    """Per-call model timeouts in seconds, by role."""

    analyst: int = 60
    planner: int = 120
    coder: int = 300
    reviewer: int = 180

    def for_role(self, role: str) -> int:
        return getattr(self, role, self.planner)


class SessionSettings(BaseModel):
    """Retry, deadline and gating behaviour of the state machine."""

    max_retries: int = 3
    timeout_minutes: float = 25.0
    confidence_threshold: float = 0.7
    degraded_confidence_floor: float = 0.5
    analysis_question_threshold: float = 0.7
    call_timeouts: CallTimeouts = Field(default_factory=CallTimeouts)
    test_command: str | None = None
    test_timeout: int = 120
    create_tickets: bool = True


class FailoverSettings(BaseModel):
    """Model hierarchy, circuit breaker and degradation settings."""

    hierarchy: dict[str, list[CandidateConfig]] = Field(default_factory=_default_hierarchy)
    failure_threshold: int = 3
    reset_timeout: float = 60.0  # seconds
    monitoring_period: float = 300.0  # seconds
    graceful_degradation: bool = True
    base_backoff_ms: int = 1000
    max_backoff_ms: int = 10000
    persist_breakers: bool = True


class AggregatorSettings(BaseModel):
    """Parallel milestone fan-out settings."""

    worker_count: int = 3
    files_per_worker: int = 2
    min_success_rate: float = 0.5
    commit_prefix: str = "autodev"


class ResourceSettings(BaseModel):
    """Thresholds for resource-pressure mitigation."""

    max_memory_percent: float = 90.0
    min_free_disk_mb: int = 500
    backups_to_keep_under_pressure: int = 2


class Settings(BaseSettings):
    """Main settings for autodev."""

    model_config = SettingsConfigDict(
        env_prefix="AUTODEV_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # General
    debug: bool = False
    verbose: bool = False
    log_level: str = "INFO"

    # Model CLI used by the default invoker: opencode or claude
    invoker: str = "opencode"

    session: SessionSettings = Field(default_factory=SessionSettings)
    failover: FailoverSettings = Field(default_factory=FailoverSettings)
    aggregator: AggregatorSettings = Field(default_factory=AggregatorSettings)
    resources: ResourceSettings = Field(default_factory=ResourceSettings)

    # Paths, relative to the project root
    state_dir: str = "state"
    ideas_dir: str = "ideas/backlog"

    def get_timeout_for_role(self, role: str) -> int:
        """Get per-call timeout in seconds for a role."""
        return self.session.call_timeouts.for_role(role)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_settings_from_yaml(yaml_path: Path) -> Settings:
    """Load settings from a YAML file."""
    with open(yaml_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return Settings.model_validate(data or {})


def get_default_config() -> dict[str, Any]:
    """Get default configuration as a dictionary."""
    return Settings().model_dump()
