"""Configuration schemas and loading for the usage ledger."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from usage_ledger.core.errors import ConfigurationError

DATABASE_ENV_VAR = "USAGE_LEDGER_DB"

IdentityScheme = Literal["username", "machine", "source"]
MergePolicyName = Literal["additive", "overwrite"]
AnomalyPolicyName = Literal["lab", "public"]


class LabAnomalyThresholds(BaseModel):
    """Lenient thresholds applied to report totals."""

    max_total_tokens: int = Field(default=100_000_000, gt=0)
    max_total_cost: float = Field(default=1000.0, gt=0)


class PublicAnomalyThresholds(BaseModel):
    """Stricter thresholds for the public submission path.

    Attributes:
        max_daily_cost: Per-day cost above which a day is flagged.
        max_daily_tokens: Per-day tokens above which a day is flagged.
        max_average_daily_cost: Flag when total cost / active days exceeds this.
        min_cost_per_token: Lower bound of a plausible cost/token ratio.
        max_cost_per_token: Upper bound of a plausible cost/token ratio.
    """

    max_daily_cost: float = Field(default=5000.0, gt=0)
    max_daily_tokens: int = Field(default=250_000_000, gt=0)
    max_average_daily_cost: float = Field(default=2500.0, gt=0)
    min_cost_per_token: float = Field(default=0.0000001, ge=0)
    max_cost_per_token: float = Field(default=0.1, gt=0)

    @model_validator(mode="after")
    def validate_ratio_bounds(self) -> PublicAnomalyThresholds:
        if self.min_cost_per_token > self.max_cost_per_token:
            msg = "min_cost_per_token must not exceed max_cost_per_token"
            raise ValueError(msg)
        return self


class AnomalyConfig(BaseModel):
    """Which anomaly policy flags submissions, and its thresholds."""

    policy: AnomalyPolicyName = "lab"
    lab: LabAnomalyThresholds = Field(default_factory=LabAnomalyThresholds)
    public: PublicAnomalyThresholds = Field(default_factory=PublicAnomalyThresholds)


class ValidationConfig(BaseModel):
    """Tolerances for the token arithmetic check."""

    total_token_tolerance: float = Field(default=0.01, ge=0, lt=1)
    daily_token_epsilon: int = Field(default=1, ge=0)


class LeaderboardConfig(BaseModel):
    """Read-cost bounds for ranking queries."""

    default_page_size: int = Field(default=25, ge=1)
    max_page_size: int = Field(default=50, ge=1)
    default_range_limit: int = Field(default=50, ge=1)
    max_range_limit: int = Field(default=100, ge=1)
    scan_batch_size: int = Field(default=100, ge=1)
    timeline_limit: int = Field(default=20, ge=1)
    max_flagged_limit: int = Field(default=50, ge=1)

    @model_validator(mode="after")
    def validate_page_sizes(self) -> LeaderboardConfig:
        if self.default_page_size > self.max_page_size:
            msg = "default_page_size must not exceed max_page_size"
            raise ValueError(msg)
        return self


class TransactionConfig(BaseModel):
    """Retry limit for concurrent-modification conflicts."""

    max_conflict_retries: int = Field(default=10, ge=0)


class TaskConfig(BaseModel):
    """Deferred task queue settings."""

    max_attempts: int = Field(default=5, ge=1)
    retry_delay_seconds: float = Field(default=30.0, ge=0)
    poll_interval_seconds: float = Field(default=5.0, gt=0)


def _default_merge_policies() -> dict[str, MergePolicyName]:
    return {"username": "overwrite", "machine": "additive", "source": "overwrite"}


class LedgerConfig(BaseModel):
    """Complete ledger configuration.

    ``identity_scheme`` decides which secondary dimension (none, machine or
    source) scopes a canonical record. ``merge_policies`` gives the default
    policy for each scheme; callers of ``submit`` may override it.
    """

    database_path: str = "./usage_ledger.duckdb"
    identity_scheme: IdentityScheme = "machine"
    merge_policies: dict[IdentityScheme, MergePolicyName] = Field(
        default_factory=_default_merge_policies
    )
    preferred_sources: list[str] = Field(default_factory=lambda: ["oauth"])
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    leaderboard: LeaderboardConfig = Field(default_factory=LeaderboardConfig)
    transactions: TransactionConfig = Field(default_factory=TransactionConfig)
    tasks: TaskConfig = Field(default_factory=TaskConfig)

    @model_validator(mode="after")
    def fill_merge_policies(self) -> LedgerConfig:
        # Partial YAML mappings keep the defaults for unlisted schemes
        merged = _default_merge_policies()
        merged.update(self.merge_policies)
        self.merge_policies = merged
        return self

    def default_merge_policy(self) -> MergePolicyName:
        """Merge policy used when the caller does not pick one."""
        return self.merge_policies[self.identity_scheme]

    def get_database_path(self) -> Path:
        """Database path from the environment, falling back to config."""
        return Path(os.environ.get(DATABASE_ENV_VAR) or self.database_path)


def load_config(path: str | Path) -> LedgerConfig:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to YAML configuration file.

    Returns:
        Validated LedgerConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ConfigurationError: If the file is not a YAML mapping.
        pydantic.ValidationError: If config is invalid.
    """
    config_path = Path(path)
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open() as f:
        data = yaml.safe_load(f)

    if data is not None and not isinstance(data, dict):
        raise ConfigurationError(
            f"{config_path} must contain a mapping, got {type(data).__name__}",
            suggestion="Start from config.example.yaml",
        )
    return LedgerConfig.model_validate(data or {})
