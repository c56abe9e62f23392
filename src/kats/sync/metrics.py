"""Prometheus counters for the synchronization engine."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge


class SyncMetrics:
    """Wraps Prometheus counters and mirrors them into a plain snapshot for tests."""

    def __init__(
        self,
        namespace: str = "kats",
        *,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._registry = registry if registry is not None else CollectorRegistry()
        self._published = self._counter(
            namespace, "published_total", "Transactions handed to the broker"
        )
        self._skipped = self._counter(
            namespace, "skipped_total", "Reserved transactions filtered out"
        )
        self._backfill_pages = self._counter(
            namespace, "backfill_pages_total", "Backfill pages persisted"
        )
        self._tail_runs = self._counter(
            namespace, "tail_runs_total", "Tail runs completed"
        )
        self._tail_failures = self._counter(
            namespace, "tail_failures_total", "Tail runs that raised"
        )
        self._dropped_triggers = self._counter(
            namespace, "dropped_triggers_total", "Tail triggers coalesced away"
        )
        self._dispatcher_depth = Gauge(
            f"{namespace}_dispatcher_depth",
            "Pending plus running tail runs",
            registry=self._registry,
        )
        self._last_seen = Gauge(
            f"{namespace}_last_seen_id",
            "Highest transaction id recorded as published",
            registry=self._registry,
        )
        self._snapshot: Dict[str, float] = defaultdict(float)

    def _counter(self, namespace: str, name: str, documentation: str) -> Counter:
        return Counter(f"{namespace}_{name}", documentation, registry=self._registry)

    def inc_published(self, amount: int = 1) -> None:
        self._published.inc(amount)
        self._snapshot["published_total"] += amount

    def inc_skipped(self, amount: int = 1) -> None:
        self._skipped.inc(amount)
        self._snapshot["skipped_total"] += amount

    def inc_backfill_pages(self, amount: int = 1) -> None:
        self._backfill_pages.inc(amount)
        self._snapshot["backfill_pages_total"] += amount

    def inc_tail_runs(self, amount: int = 1) -> None:
        self._tail_runs.inc(amount)
        self._snapshot["tail_runs_total"] += amount

    def inc_tail_failures(self, amount: int = 1) -> None:
        self._tail_failures.inc(amount)
        self._snapshot["tail_failures_total"] += amount

    def inc_dropped_triggers(self, amount: int = 1) -> None:
        self._dropped_triggers.inc(amount)
        self._snapshot["dropped_triggers_total"] += amount

    def set_dispatcher_depth(self, value: int) -> None:
        self._dispatcher_depth.set(value)
        self._snapshot["dispatcher_depth"] = value

    def set_last_seen(self, value: int) -> None:
        self._last_seen.set(value)
        self._snapshot["last_seen_id"] = value

    def snapshot(self) -> Dict[str, float]:
        return dict(self._snapshot)


__all__ = ["SyncMetrics"]
