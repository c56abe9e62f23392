"""Process runtime wiring the ledger, the broker and the sync engine together."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from typing import Iterable, Optional, Protocol

from prometheus_client import REGISTRY, start_http_server

from .backoff import ExponentialBackoff
from .broker import JetStreamBroker
from .config import Settings, load_settings
from .krist import KristClient, KristNotificationListener, Transaction, TransactionPage
from .sync import (
    ALL_TRANSACTIONS,
    BackfillController,
    CheckpointRepository,
    CheckpointStore,
    FileCheckpointStore,
    InMemoryCheckpointStore,
    PeriodicTrigger,
    SingleFlightDispatcher,
    SyncMetrics,
    TailController,
    TransactionPublisher,
)

logger = logging.getLogger(__name__)


class Broker(Protocol):
    def connect(self) -> None: ...

    def close(self) -> None: ...

    def ensure_stream(self, subjects: Iterable[str]) -> object: ...

    def publish(self, subject: str, payload: bytes, *, dedup_id: str) -> None: ...

    def last_message(self, subject: str) -> Optional[bytes]: ...

    def key_value(self, bucket: str) -> CheckpointStore: ...


class Ledger(Protocol):
    def list_transactions(self, *, limit: int, offset: int = 0) -> TransactionPage: ...

    def list_latest_transactions(
        self, *, limit: int, offset: int = 0
    ) -> TransactionPage: ...

    def start_websocket(self) -> str: ...

    def close(self) -> None: ...


class ServiceRuntime:
    """Owns the process-scoped connections and the backfill/tail lifecycle."""

    def __init__(
        self,
        settings: Settings,
        *,
        broker: Optional[Broker] = None,
        ledger: Optional[Ledger] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        metrics: Optional[SyncMetrics] = None,
    ) -> None:
        self.settings = settings
        self.broker: Broker = broker or JetStreamBroker(
            settings.nats_host,
            stream=settings.nats_stream,
            user=settings.nats_user,
            password=settings.nats_password,
            connect_timeout_seconds=settings.nats_connect_timeout_seconds,
        )
        self.ledger: Ledger = ledger or KristClient(
            settings.krist_api_url,
            request_timeout_seconds=settings.krist_request_timeout_seconds,
        )
        self.metrics = metrics or SyncMetrics()
        self._checkpoint_store = checkpoint_store
        self._stop_event = threading.Event()
        self._stopped = False
        self.dispatcher: Optional[SingleFlightDispatcher] = None
        self._timer: Optional[PeriodicTrigger] = None
        self._listener: Optional[KristNotificationListener] = None

    # ------------------------------------------------------------------ Lifecycle
    def start(self) -> None:
        """Connect, finish the backfill, then start the tail triggers."""
        self.broker.connect()
        self.broker.ensure_stream([ALL_TRANSACTIONS])
        checkpoints = CheckpointRepository(self._build_checkpoint_store())
        publisher = TransactionPublisher(self.broker, metrics=self.metrics)

        backfill = BackfillController(
            source=self.ledger,
            publisher=publisher,
            checkpoints=checkpoints,
            page_size=self.settings.backfill_page_size,
            metrics=self.metrics,
        )
        result = backfill.run()
        logger.info(
            "Backfill finished: %d pages, %d published, %d skipped, offset %d",
            result.pages,
            result.published,
            result.skipped,
            result.offset,
        )

        tail = TailController(
            source=self.ledger,
            publisher=publisher,
            checkpoints=checkpoints,
            history=self.broker,
            page_size=self.settings.tail_page_size,
            metrics=self.metrics,
        )
        self.dispatcher = SingleFlightDispatcher(tail.run, metrics=self.metrics)
        self._timer = PeriodicTrigger(
            self.dispatcher.trigger, self.settings.tail_interval_seconds
        )
        self._timer.start()
        if self.settings.krist_websocket_enabled:
            self._listener = KristNotificationListener(
                self.ledger,
                self._on_transaction,
                backoff=ExponentialBackoff(
                    base_interval=self.settings.listener_reconnect_base_seconds,
                    max_interval=self.settings.listener_reconnect_max_seconds,
                ),
            )
            self._listener.start()
        self.dispatcher.trigger()

    def run(self) -> None:
        """Start and block until :meth:`request_stop`; always releases resources."""
        try:
            self.start()
            self._stop_event.wait()
        except KeyboardInterrupt:
            logger.info("shutdown requested (KeyboardInterrupt)")
        finally:
            self.stop()

    def request_stop(self) -> None:
        self._stop_event.set()

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._stop_event.set()
        if self._listener is not None:
            self._listener.stop()
        if self._timer is not None:
            self._timer.stop()
        if self.dispatcher is not None:
            self.dispatcher.stop()
        try:
            self.ledger.close()
        finally:
            self.broker.close()
        logger.info("Shut down cleanly")

    # ------------------------------------------------------------------ Internal helpers
    def _build_checkpoint_store(self) -> CheckpointStore:
        if self._checkpoint_store is not None:
            return self._checkpoint_store
        backend = self.settings.checkpoint_backend
        if backend == "file":
            store: CheckpointStore = FileCheckpointStore(
                self.settings.checkpoint_path, fsync=self.settings.checkpoint_fsync
            )
        elif backend == "memory":
            logger.warning("using in-memory checkpoints; progress is lost on restart")
            store = InMemoryCheckpointStore()
        else:
            store = self.broker.key_value(self.settings.nats_kv_bucket)
        self._checkpoint_store = store
        return store

    def _on_transaction(self, transaction: Transaction) -> None:
        if self.dispatcher is None:
            logger.debug("transaction %d arrived before tailing started", transaction.id)
            return
        self.dispatcher.trigger()


def main() -> None:
    """Entrypoint used by both python -m and the console script hook."""
    settings = load_settings()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        )
    runtime = ServiceRuntime(settings, metrics=SyncMetrics(registry=REGISTRY))
    signal.signal(signal.SIGTERM, lambda _signum, _frame: runtime.request_stop())
    if settings.metrics_port > 0:
        start_http_server(settings.metrics_port)
        logger.info("serving metrics on port %d", settings.metrics_port)
    try:
        runtime.run()
    except Exception:  # noqa: BLE001 - startup failures end the process
        logger.exception("unrecoverable error; exiting")
        sys.exit(1)
