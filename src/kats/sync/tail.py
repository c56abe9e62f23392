"""Incremental replay of transactions appended since the last checkpoint."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from ..krist.models import RecordValidationError, Transaction, TransactionPage
from .checkpoint import CheckpointRepository
from .metrics import SyncMetrics
from .publisher import ALL_TRANSACTIONS, TransactionPublisher
from .state import TailState

logger = logging.getLogger(__name__)

TAIL_PAGE_SIZE = 10


class LatestTransactionSource(Protocol):
    """Newest-first listing of the ledger."""

    def list_latest_transactions(
        self, *, limit: int, offset: int = 0
    ) -> TransactionPage: ...


class StreamHistory(Protocol):
    """Read access to what has already been published to the stream."""

    def last_message(self, subject: str) -> Optional[bytes]: ...


@dataclass(frozen=True)
class TailResult:
    last_seen: int
    found: int
    published: int


class TailController:
    """Publishes everything newer than ``lastSeen`` in ascending id order."""

    def __init__(
        self,
        *,
        source: LatestTransactionSource,
        publisher: TransactionPublisher,
        checkpoints: CheckpointRepository,
        history: StreamHistory,
        page_size: int = TAIL_PAGE_SIZE,
        metrics: Optional[SyncMetrics] = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._source = source
        self._publisher = publisher
        self._checkpoints = checkpoints
        self._history = history
        self._page_size = page_size
        self._metrics = metrics or SyncMetrics()

    def run(self) -> TailResult:
        last_seen = self._load_last_seen()
        fresh = self._collect_newer_than(last_seen)
        if not fresh:
            self._metrics.inc_tail_runs()
            return TailResult(last_seen=last_seen, found=0, published=0)

        # the listing is newest-first; consumers need ascending ids
        fresh.reverse()
        published = 0
        for transaction in fresh:
            if self._publisher.publish(transaction):
                published += 1

        new_last_seen = fresh[-1].id
        self._checkpoints.save_tail(TailState(last_seen=new_last_seen))
        self._metrics.set_last_seen(new_last_seen)
        self._metrics.inc_tail_runs()
        logger.info(
            "Processed latest transactions, %d new (%d published), lastSeen %d",
            len(fresh),
            published,
            new_last_seen,
        )
        return TailResult(
            last_seen=new_last_seen, found=len(fresh), published=published
        )

    def _collect_newer_than(self, last_seen: int) -> List[Transaction]:
        collected: List[Transaction] = []
        offset = 0
        while True:
            page = self._source.list_latest_transactions(
                limit=self._page_size, offset=offset
            )
            if page.count == 0:
                logger.warning(
                    "Reached the oldest transaction without finding id %d", last_seen
                )
                return collected
            for transaction in page.transactions:
                if transaction.id <= last_seen:
                    return collected
                # Offsets shift when the ledger grows mid-walk; ids must keep falling.
                if collected and transaction.id >= collected[-1].id:
                    continue
                logger.debug("Found new transaction %d", transaction.id)
                collected.append(transaction)
            offset += page.count

    def _load_last_seen(self) -> int:
        state = self._checkpoints.load_tail()
        if state is not None:
            return state.last_seen
        raw = self._history.last_message(ALL_TRANSACTIONS)
        if raw is None:
            logger.info("Stream is empty; tailing from the start of the ledger")
            return 0
        try:
            last = Transaction.from_mapping(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise RecordValidationError(
                "last stream message is not a JSON transaction"
            ) from exc
        logger.info("Bootstrapped lastSeen %d from the stream", last.id)
        return last.id


__all__ = [
    "LatestTransactionSource",
    "StreamHistory",
    "TAIL_PAGE_SIZE",
    "TailController",
    "TailResult",
]
