"""Database persistence for profile summaries."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

from sqlmodel import Session, col, select

from usage_ledger.models import ProfileSummary

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine


class ProfileRepository(AsyncRepository):
    """Persist and query profile summaries."""

    def __init__(self, engine: Engine, max_conflict_retries: int = 10) -> None:
        super().__init__(engine, max_conflict_retries)

    @staticmethod
    def find(session: Session, username: str) -> ProfileSummary | None:
        statement = select(ProfileSummary).where(ProfileSummary.username == username)
        return session.exec(statement).first()

    @staticmethod
    def upsert(session: Session, values: dict[str, Any]) -> Literal["created", "updated"]:
        """Replace the derived fields of a profile, creating it if absent."""
        existing = ProfileRepository.find(session, values["username"])
        if existing:
            for key, value in values.items():
                setattr(existing, key, value)
            session.add(existing)
            session.flush()
            return "updated"
        session.add(ProfileSummary.model_validate(values))
        session.flush()
        return "created"

    async def get(self, username: str) -> ProfileSummary | None:
        return await self._run_session(lambda session: self.find(session, username))

    async def get_all(self) -> list[ProfileSummary]:
        def _get(session: Session) -> list[ProfileSummary]:
            statement = select(ProfileSummary).order_by(col(ProfileSummary.username))
            return list(session.exec(statement).all())

        return await self._run_session(_get)

    async def top_by_cost(self, limit: int) -> list[ProfileSummary]:
        """Profiles ordered by total cost, highest first."""

        def _get(session: Session) -> list[ProfileSummary]:
            statement = (
                select(ProfileSummary)
                .order_by(col(ProfileSummary.total_cost).desc(), col(ProfileSummary.username))
                .limit(limit)
            )
            return list(session.exec(statement).all())

        return await self._run_session(_get)
