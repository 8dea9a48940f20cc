"""Transaction and fraud-log store backends.

Backends live in ``memory`` and ``sql`` and are imported directly so the
rules never pull in a database driver or feed implementation.
"""

from .base import FraudLogStore, TransactionStore

__all__ = ["FraudLogStore", "TransactionStore"]
