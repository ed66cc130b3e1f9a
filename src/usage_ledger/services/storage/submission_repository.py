"""Database persistence for canonical submissions."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy import delete, func, update
from sqlmodel import Session, col, select

from usage_ledger.core.errors import ConflictError
from usage_ledger.models import CanonicalSubmission

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

SortMetric = Literal["cost", "tokens"]


def _metric_column(sort_by: SortMetric) -> Any:
    if sort_by == "tokens":
        return col(CanonicalSubmission.total_tokens)
    return col(CanonicalSubmission.total_cost)


class SubmissionRepository(AsyncRepository):
    """Persist and query canonical submissions.

    The ``find``/``insert``/``update_versioned``/``delete`` helpers take an
    open Session so callers can compose them into one transaction.
    """

    def __init__(self, engine: Engine, max_conflict_retries: int = 10) -> None:
        super().__init__(engine, max_conflict_retries)

    # ==================== Transaction helpers ====================

    @staticmethod
    def find(session: Session, username: str, scope: str) -> CanonicalSubmission | None:
        statement = select(CanonicalSubmission).where(
            CanonicalSubmission.username == username,
            CanonicalSubmission.scope == scope,
        )
        return session.exec(statement).first()

    @staticmethod
    def find_all_for_user(session: Session, username: str) -> list[CanonicalSubmission]:
        """All scoped records of a user, oldest submission first."""
        statement = (
            select(CanonicalSubmission)
            .where(CanonicalSubmission.username == username)
            .order_by(col(CanonicalSubmission.submitted_at), col(CanonicalSubmission.scope))
        )
        return list(session.exec(statement).all())

    @staticmethod
    def insert(session: Session, record: CanonicalSubmission) -> None:
        session.add(record)
        session.flush()

    @staticmethod
    def update_versioned(
        session: Session, record_id: str, expected_version: int, values: dict[str, Any]
    ) -> int:
        """Patch a record only if nobody changed it since it was read.

        Returns:
            The new version number.

        Raises:
            ConflictError: If the stored version no longer matches.
        """
        statement = (
            update(CanonicalSubmission)
            .where(
                col(CanonicalSubmission.id) == record_id,
                col(CanonicalSubmission.version) == expected_version,
            )
            .values(**values, version=expected_version + 1)
            .returning(col(CanonicalSubmission.version))
        )
        row = session.connection().execute(statement).first()
        if row is None:
            msg = f"Submission {record_id} changed concurrently (expected v{expected_version})"
            raise ConflictError(msg)
        return row[0]

    @staticmethod
    def delete_ids(session: Session, record_ids: list[str]) -> None:
        if not record_ids:
            return
        statement = delete(CanonicalSubmission).where(col(CanonicalSubmission.id).in_(record_ids))
        session.connection().execute(statement)

    # ==================== Queries ====================

    async def get(self, username: str, scope: str) -> CanonicalSubmission | None:
        return await self._run_session(lambda session: self.find(session, username, scope))

    async def get_by_id(self, record_id: str) -> CanonicalSubmission | None:
        return await self._run_session(lambda session: session.get(CanonicalSubmission, record_id))

    async def get_by_username(self, username: str) -> list[CanonicalSubmission]:
        return await self._run_session(lambda session: self.find_all_for_user(session, username))

    async def get_by_department(self, department: str) -> list[CanonicalSubmission]:
        def _get(session: Session) -> list[CanonicalSubmission]:
            statement = (
                select(CanonicalSubmission)
                .where(CanonicalSubmission.department == department)
                .order_by(col(CanonicalSubmission.total_cost).desc())
            )
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def get_all(self) -> list[CanonicalSubmission]:
        def _get(session: Session) -> list[CanonicalSubmission]:
            statement = select(CanonicalSubmission).order_by(col(CanonicalSubmission.id))
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def leaderboard_page(
        self,
        sort_by: SortMetric,
        offset: int,
        limit: int,
        include_flagged: bool = False,
    ) -> tuple[list[CanonicalSubmission], int]:
        """One page of records ordered by a metric, plus the total row count.

        Ties on the metric are ordered by username then scope.
        """

        def _get(session: Session) -> tuple[list[CanonicalSubmission], int]:
            statement = select(CanonicalSubmission)
            count_statement = select(func.count()).select_from(CanonicalSubmission)
            if not include_flagged:
                statement = statement.where(col(CanonicalSubmission.flagged_for_review).is_(False))
                count_statement = count_statement.where(
                    col(CanonicalSubmission.flagged_for_review).is_(False)
                )
            statement = (
                statement.order_by(
                    _metric_column(sort_by).desc(),
                    col(CanonicalSubmission.username),
                    col(CanonicalSubmission.scope),
                )
                .offset(offset)
                .limit(limit)
            )
            rows = list(session.exec(statement).all())
            total = session.exec(count_statement).one()
            return rows, total

        return await self._run_session(_get)

    async def most_recent(
        self, limit: int, flagged_only: bool = False
    ) -> list[CanonicalSubmission]:
        def _get(session: Session) -> list[CanonicalSubmission]:
            statement = select(CanonicalSubmission)
            if flagged_only:
                statement = statement.where(col(CanonicalSubmission.flagged_for_review).is_(True))
            statement = statement.order_by(
                col(CanonicalSubmission.submitted_at).desc(),
                col(CanonicalSubmission.username),
                col(CanonicalSubmission.scope),
            ).limit(limit)
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def iter_batches(self, batch_size: int) -> AsyncIterator[list[CanonicalSubmission]]:
        """Yield every record in id order, ``batch_size`` rows per read."""
        last_id = ""
        while True:

            def _get(session: Session, after: str = last_id) -> list[CanonicalSubmission]:
                statement = (
                    select(CanonicalSubmission)
                    .where(col(CanonicalSubmission.id) > after)
                    .order_by(col(CanonicalSubmission.id))
                    .limit(batch_size)
                )
                return list(session.exec(statement).all())

            batch = await self._run_session(_get)
            if not batch:
                return
            yield batch
            if len(batch) < batch_size:
                return
            last_id = batch[-1].id
