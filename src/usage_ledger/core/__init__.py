"""Core configuration and utilities for the usage ledger."""

from usage_ledger.core.clock import Clock, utc_now
from usage_ledger.core.config import (
    DATABASE_ENV_VAR,
    AnomalyConfig,
    LabAnomalyThresholds,
    LedgerConfig,
    PublicAnomalyThresholds,
    load_config,
)
from usage_ledger.core.errors import (
    ConfigurationError,
    ConflictError,
    LedgerError,
    RecordNotFoundError,
    StoreUnavailableError,
    ValidationError,
)

__all__ = [
    "DATABASE_ENV_VAR",
    "AnomalyConfig",
    "Clock",
    "ConfigurationError",
    "ConflictError",
    "LabAnomalyThresholds",
    "LedgerConfig",
    "LedgerError",
    "PublicAnomalyThresholds",
    "RecordNotFoundError",
    "StoreUnavailableError",
    "ValidationError",
    "load_config",
    "utc_now",
]
