"""One-time historical replay of the full ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ..krist.models import TransactionPage
from .checkpoint import CheckpointRepository
from .metrics import SyncMetrics
from .publisher import TransactionPublisher
from .state import BackfillState, TailState

logger = logging.getLogger(__name__)

BACKFILL_PAGE_SIZE = 1000


class TransactionSource(Protocol):
    """Ascending-id listing of the whole ledger."""

    def list_transactions(self, *, limit: int, offset: int = 0) -> TransactionPage: ...


@dataclass(frozen=True)
class BackfillResult:
    pages: int
    published: int
    skipped: int
    offset: int
    already_done: bool = False


class BackfillController:
    """Walks the ledger from the stored offset to its end, one checkpoint per page.

    A crash between publishing a page and persisting its offset re-publishes at
    most that page on the next run; the broker's dedup window absorbs it.
    """

    def __init__(
        self,
        *,
        source: TransactionSource,
        publisher: TransactionPublisher,
        checkpoints: CheckpointRepository,
        page_size: int = BACKFILL_PAGE_SIZE,
        metrics: Optional[SyncMetrics] = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._source = source
        self._publisher = publisher
        self._checkpoints = checkpoints
        self._page_size = page_size
        self._metrics = metrics or SyncMetrics()

    def run(self) -> BackfillResult:
        state = self._checkpoints.load_backfill()
        if state.done:
            logger.info("Already caught up (offset %d)", state.offset)
            return BackfillResult(
                pages=0, published=0, skipped=0, offset=state.offset, already_done=True
            )

        offset = state.offset
        pages = published = skipped = 0
        logger.info("Starting backfill at offset %d", offset)
        while True:
            page = self._source.list_transactions(limit=self._page_size, offset=offset)
            logger.info(
                "Got %d transactions at offset %d, %s total",
                page.count,
                offset,
                page.total if page.total is not None else "?",
            )

            if page.count == 0:
                self._checkpoints.save_backfill(BackfillState(done=True, offset=offset))
                logger.info("Caught up after %d pages, offset %d", pages, offset)
                break

            for transaction in page.transactions:
                if self._publisher.publish(transaction):
                    published += 1
                else:
                    skipped += 1

            next_offset = offset + page.count
            self._checkpoints.save_backfill(
                BackfillState(done=False, offset=next_offset)
            )
            last_id = page.transactions[-1].id
            self._checkpoints.save_tail(TailState(last_seen=last_id))
            self._metrics.inc_backfill_pages()
            self._metrics.set_last_seen(last_id)
            pages += 1
            offset = next_offset

        return BackfillResult(
            pages=pages, published=published, skipped=skipped, offset=offset
        )


__all__ = ["BACKFILL_PAGE_SIZE", "BackfillController", "BackfillResult", "TransactionSource"]
