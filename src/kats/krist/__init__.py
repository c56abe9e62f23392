"""Krist ledger API client, push listener and record types."""

from .client import KristAPIError, KristClient
from .listener import KristNotificationListener
from .models import RecordValidationError, Transaction, TransactionPage

__all__ = [
    "KristAPIError",
    "KristClient",
    "KristNotificationListener",
    "RecordValidationError",
    "Transaction",
    "TransactionPage",
]
