import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from usage_ledger.core.clock import utc_now
from usage_ledger.models.columns import JSONText


class ProfileSummary(SQLModel, table=True):
    """Per-identity rollup, rebuilt from that identity's canonical records."""

    __tablename__ = "profile_summary"
    __table_args__ = (UniqueConstraint("username", name="uq_profile_username"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    username: str
    department: str | None = None
    machines: list[str] = Field(default_factory=list, sa_column=Column(JSONText))
    sources: list[str] = Field(default_factory=list, sa_column=Column(JSONText))
    total_submissions: int = 0
    total_tokens: int = Field(default=0, sa_type=BigInteger)
    total_cost: float = 0.0
    first_submission: datetime
    last_submission: datetime
    created_at: datetime = Field(default_factory=utc_now)
