"""Exception hierarchy for the usage ledger."""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for all ledger failures."""


class ConfigurationError(LedgerError):
    """Configuration error with an optional suggestion."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"[Configuration Error] {self.message}"
        if self.suggestion:
            msg += f"\n[Suggestion] {self.suggestion}"
        return msg


class ValidationError(LedgerError):
    """A usage report was rejected before any write.

    The message is meant to be shown verbatim to the submitter.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class ConflictError(LedgerError):
    """Concurrent modification detected during a read-merge-write."""


class StoreUnavailableError(LedgerError):
    """The store failed for a reason unrelated to the submitted data.

    Callers may retry later; the data itself was not judged invalid.
    """


class RecordNotFoundError(LedgerError):
    """An administrative operation referenced a record that does not exist."""

    def __init__(self, what: str) -> None:
        self.what = what
        super().__init__(f"Not found: {what}")
