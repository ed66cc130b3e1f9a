from .profile_repository import ProfileRepository
from .repository import AsyncRepository, translate_store_error
from .store import LedgerStore
from .submission_repository import SortMetric, SubmissionRepository
from .task_queue import TaskQueue

__all__ = [
    "AsyncRepository",
    "LedgerStore",
    "ProfileRepository",
    "SortMetric",
    "SubmissionRepository",
    "TaskQueue",
    "translate_store_error",
]
