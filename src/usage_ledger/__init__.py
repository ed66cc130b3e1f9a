"""Usage Ledger.

Reconcile token/cost usage reports submitted from many clients into one
canonical per-day record per identity, and derive leaderboards and
aggregate statistics from those records.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
