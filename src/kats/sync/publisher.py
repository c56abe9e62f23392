"""Idempotent publishing of ledger transactions onto the broker."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from ..krist.models import Transaction
from .metrics import SyncMetrics

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "krist"
RESERVED_RECIPIENTS = frozenset({"name", "a"})


class TransactionBroker(Protocol):
    """Publish primitive with a per-message deduplication token."""

    def publish(self, subject: str, payload: bytes, *, dedup_id: str) -> None: ...


def routing_key(sender: str, recipient: str) -> str:
    """Subject for a transfer; ``*`` arguments build the wildcard pattern."""
    return f"{SUBJECT_PREFIX}.from.{sender}.to.{recipient}"


ALL_TRANSACTIONS = routing_key("*", "*")


def is_publishable(transaction: Transaction) -> bool:
    """Return False for name purchases, mining rewards and other synthetic rows."""
    if not transaction.sender:
        return False
    return transaction.recipient not in RESERVED_RECIPIENTS


class TransactionPublisher:
    """Maps transactions to subjects and dedup ids, then hands them to the broker."""

    def __init__(
        self,
        broker: TransactionBroker,
        *,
        metrics: Optional[SyncMetrics] = None,
    ) -> None:
        self._broker = broker
        self._metrics = metrics or SyncMetrics()

    def publish(self, transaction: Transaction) -> bool:
        sender = transaction.sender
        if sender is None or not is_publishable(transaction):
            self._metrics.inc_skipped()
            return False
        subject = routing_key(sender, transaction.recipient)
        logger.debug(
            "Processing transaction %d from %s to %s",
            transaction.id,
            transaction.sender,
            transaction.recipient,
        )
        self._broker.publish(
            subject, transaction.to_json(), dedup_id=str(transaction.id)
        )
        self._metrics.inc_published()
        return True


__all__ = [
    "ALL_TRANSACTIONS",
    "RESERVED_RECIPIENTS",
    "TransactionBroker",
    "TransactionPublisher",
    "is_publishable",
    "routing_key",
]
