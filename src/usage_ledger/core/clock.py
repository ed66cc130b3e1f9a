"""Clock helpers shared by services."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a naive UTC datetime.

    DuckDB TIMESTAMP columns drop offsets, so every stored timestamp is
    naive UTC.
    """
    return datetime.now(UTC).replace(tzinfo=None)
