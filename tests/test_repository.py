"""Tests for mapping store driver failures onto ledger errors."""

import duckdb
import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from usage_ledger.core.errors import ConflictError, StoreUnavailableError
from usage_ledger.services.storage.repository import translate_store_error


class TestTranslateStoreError:
    """Driver exceptions become ConflictError or StoreUnavailableError."""

    def test_integrity_error_is_conflict(self):
        exc = IntegrityError("INSERT INTO submissions ...", {}, Exception("duplicate key"))
        assert isinstance(translate_store_error(exc), ConflictError)

    def test_stale_data_is_conflict(self):
        exc = StaleDataError("expected to update 1 row, updated 0")
        assert isinstance(translate_store_error(exc), ConflictError)

    def test_wrapped_transaction_conflict(self):
        orig = duckdb.TransactionException("Conflict on tuple deletion!")
        translated = translate_store_error(DBAPIError("UPDATE submissions ...", {}, orig))
        assert isinstance(translated, ConflictError)
        assert "tuple deletion" in str(translated)

    def test_wrapped_constraint_violation(self):
        orig = duckdb.ConstraintException("Duplicate key violates primary key constraint")
        translated = translate_store_error(DBAPIError("INSERT ...", {}, orig))
        assert isinstance(translated, ConflictError)

    def test_wrapped_io_error_is_unavailable(self):
        orig = duckdb.IOException("Could not open file")
        translated = translate_store_error(DBAPIError("SELECT 1", {}, orig))
        assert isinstance(translated, StoreUnavailableError)
        assert "Could not open file" in str(translated)

    def test_raw_driver_errors(self):
        assert isinstance(
            translate_store_error(duckdb.TransactionException("write-write conflict")),
            ConflictError,
        )
        assert isinstance(
            translate_store_error(duckdb.IOException("disk full")), StoreUnavailableError
        )


class TestSessionErrors:
    """Failures inside a transaction surface as ledger errors."""

    async def test_missing_table_is_unavailable(self, ledger):
        def _query(session):
            session.connection().exec_driver_sql("SELECT * FROM no_such_table")

        with pytest.raises(StoreUnavailableError):
            await ledger.store.transaction(_query)
