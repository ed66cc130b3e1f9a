import uuid
from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from usage_ledger.core.clock import utc_now

RECOMPUTE_PROFILE = "recompute_profile"


class RecomputeTask(SQLModel, table=True):
    """A deferred, idempotent follow-up keyed by task name and identity.

    ``token`` changes on every (re)schedule so that finishing an older run
    never discards a newer request.
    """

    __tablename__ = "recompute_task"
    __table_args__ = (UniqueConstraint("task_name", "identity", name="uq_task_identity"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    task_name: str = RECOMPUTE_PROFILE
    identity: str
    token: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_after: datetime = Field(default_factory=utc_now)
    attempts: int = 0
    status: str = "pending"  # "pending" or "failed"
    last_error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
