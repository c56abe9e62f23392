import threading
import time

import pytest

from kats.sync.dispatcher import PeriodicTrigger, SingleFlightDispatcher


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class BlockingJob:
    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self.runs = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self) -> None:
        with self._lock:
            self.runs += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        self.release.wait(timeout=5)
        with self._lock:
            self.active -= 1


@pytest.mark.unit
def test_concurrent_triggers_queue_at_most_one_extra_run(metrics):
    job = BlockingJob()
    dispatcher = SingleFlightDispatcher(job, metrics=metrics)
    try:
        assert dispatcher.trigger() is True
        assert job.started.wait(timeout=5)

        accepted = []
        threads = [
            threading.Thread(target=lambda: accepted.append(dispatcher.trigger()))
            for _ in range(10)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert accepted.count(True) == 1
        assert dispatcher.depth == 2

        job.release.set()
        assert _wait_for(lambda: job.runs == 2 and dispatcher.depth == 0)
        assert job.max_active == 1
        assert metrics.snapshot()["dropped_triggers_total"] == 9
    finally:
        job.release.set()
        dispatcher.stop()


@pytest.mark.unit
def test_failed_run_is_logged_and_later_triggers_still_run(metrics, caplog):
    calls = []

    def job():
        calls.append(len(calls))
        if len(calls) == 1:
            raise ConnectionError("ledger unreachable")

    dispatcher = SingleFlightDispatcher(job, metrics=metrics, auto_start=False)

    assert dispatcher.trigger() is True
    assert dispatcher.drain_once() is True
    assert "tail run failed" in caplog.text

    assert dispatcher.trigger() is True
    assert dispatcher.drain_once() is True
    assert calls == [0, 1]
    assert metrics.snapshot()["tail_failures_total"] == 1
    assert dispatcher.depth == 0


@pytest.mark.unit
def test_drain_once_without_pending_work_is_noop(metrics):
    dispatcher = SingleFlightDispatcher(lambda: None, metrics=metrics, auto_start=False)
    assert dispatcher.drain_once() is False


@pytest.mark.unit
def test_trigger_after_stop_is_rejected(metrics):
    dispatcher = SingleFlightDispatcher(lambda: None, metrics=metrics)
    dispatcher.stop()
    assert dispatcher.trigger() is False


@pytest.mark.unit
def test_periodic_trigger_fires_until_stopped():
    fired = threading.Event()
    count = []

    def callback():
        count.append(1)
        if len(count) >= 3:
            fired.set()

    timer = PeriodicTrigger(callback, 0.01)
    timer.start()
    try:
        assert fired.wait(timeout=5)
    finally:
        timer.stop()
    seen = len(count)
    time.sleep(0.05)
    assert len(count) == seen


@pytest.mark.unit
def test_periodic_trigger_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        PeriodicTrigger(lambda: None, 0)
