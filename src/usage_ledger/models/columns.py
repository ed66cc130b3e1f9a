"""Column types shared by the ledger tables."""

import json
from typing import Any

from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator


class JSONText(TypeDecorator):
    """JSON document stored as text and decoded on every read.

    The DuckDB driver hands JSON columns back as strings, so decoding is
    done here rather than left to the dialect.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        return json.dumps(value)

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        return json.loads(value)
