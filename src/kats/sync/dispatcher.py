"""Single-flight execution of tail runs with a shallow coalescing backlog."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .metrics import SyncMetrics

logger = logging.getLogger(__name__)

MAX_DEPTH = 2


class SingleFlightDispatcher:
    """Runs ``job`` on one worker thread, at most one at a time.

    ``trigger`` may be called from any thread. While a run is in flight one
    more run can be queued; further triggers are dropped because the queued
    run will already observe whatever they were signalling.
    """

    def __init__(
        self,
        job: Callable[[], object],
        *,
        name: str = "tail-dispatcher",
        metrics: Optional[SyncMetrics] = None,
        auto_start: bool = True,
    ) -> None:
        self._job = job
        self._name = name
        self._metrics = metrics or SyncMetrics()
        self._cond = threading.Condition()
        self._pending = 0
        self._running = False
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None
        if auto_start:
            self.start()

    @property
    def depth(self) -> int:
        with self._cond:
            return self._depth_locked()

    # ------------------------------------------------------------------ Lifecycle
    def start(self) -> None:
        if self._worker and self._worker.is_alive():
            return
        self._stop_event.clear()
        self._worker = threading.Thread(
            target=self._run_loop,
            name=self._name,
            daemon=True,
        )
        self._worker.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop accepting work; an in-flight run is allowed to finish."""
        self._stop_event.set()
        with self._cond:
            self._pending = 0
            self._cond.notify_all()
        if self._worker and self._worker.is_alive():
            self._worker.join(timeout=timeout)
        self._worker = None
        self._metrics.set_dispatcher_depth(self.depth)

    # ------------------------------------------------------------------ Queue
    def trigger(self) -> bool:
        """Schedule a run; returns False when the request was coalesced away."""
        with self._cond:
            if self._stop_event.is_set():
                return False
            if self._depth_locked() >= MAX_DEPTH:
                self._metrics.inc_dropped_triggers()
                logger.debug("tail run already queued - dropping trigger")
                return False
            self._pending += 1
            self._metrics.set_dispatcher_depth(self._depth_locked())
            self._cond.notify()
        return True

    def drain_once(self) -> bool:
        """Execute one pending run on the calling thread; useful for tests."""
        with self._cond:
            if self._pending == 0 or self._running:
                return False
            self._pending -= 1
            self._running = True
        self._execute()
        return True

    # ------------------------------------------------------------------ Internal loop
    def _depth_locked(self) -> int:
        return self._pending + (1 if self._running else 0)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            with self._cond:
                while self._pending == 0 and not self._stop_event.is_set():
                    self._cond.wait(timeout=0.5)
                if self._stop_event.is_set():
                    return
                self._pending -= 1
                self._running = True
            self._execute()

    def _execute(self) -> None:
        try:
            self._job()
        except Exception:  # noqa: BLE001 - a failed run must not stop later triggers
            self._metrics.inc_tail_failures()
            logger.exception("tail run failed")
        finally:
            with self._cond:
                self._running = False
                self._metrics.set_dispatcher_depth(self._depth_locked())
                self._cond.notify_all()


class PeriodicTrigger:
    """Calls ``callback`` every ``interval_seconds`` on a daemon thread."""

    def __init__(
        self,
        callback: Callable[[], object],
        interval_seconds: float,
        *,
        name: str = "tail-timer",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._callback = callback
        self._interval = interval_seconds
        self._name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self._callback()
            except Exception:  # noqa: BLE001
                logger.exception("periodic trigger callback raised")


__all__ = ["MAX_DEPTH", "PeriodicTrigger", "SingleFlightDispatcher"]
