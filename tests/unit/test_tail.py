import json

import pytest

from fakes import FakeLedger, make_tx
from kats.krist.models import RecordValidationError
from kats.sync.checkpoint import TAIL_KEY, CheckpointRepository
from kats.sync.publisher import TransactionPublisher
from kats.sync.state import TailState
from kats.sync.tail import TailController


def _controller(ledger, broker, store, metrics, page_size=10):
    return TailController(
        source=ledger,
        publisher=TransactionPublisher(broker, metrics=metrics),
        checkpoints=CheckpointRepository(store),
        history=broker,
        page_size=page_size,
        metrics=metrics,
    )


@pytest.mark.unit
def test_tail_publishes_new_transactions_in_ascending_order(broker, store, metrics):
    CheckpointRepository(store).save_tail(TailState(last_seen=42))
    store.writes.clear()
    ledger = FakeLedger([make_tx(i) for i in range(1, 51)])

    result = _controller(ledger, broker, store, metrics).run()

    assert ledger.calls == [("latest", 10, 0)]
    assert broker.delivered_ids() == list(range(43, 51))
    assert store.writes == [(TAIL_KEY, {"lastSeen": 50})]
    assert result.found == 8
    assert result.last_seen == 50
    assert metrics.snapshot()["last_seen_id"] == 50


@pytest.mark.unit
def test_tail_walks_multiple_pages_until_known_id(broker, store, metrics):
    CheckpointRepository(store).save_tail(TailState(last_seen=17))
    ledger = FakeLedger([make_tx(i) for i in range(1, 51)])

    _controller(ledger, broker, store, metrics).run()

    assert [offset for _kind, _limit, offset in ledger.calls] == [0, 10, 20, 30]
    assert broker.delivered_ids() == list(range(18, 51))


@pytest.mark.unit
def test_tail_without_new_transactions_does_not_write(broker, store, metrics):
    CheckpointRepository(store).save_tail(TailState(last_seen=50))
    store.writes.clear()
    ledger = FakeLedger([make_tx(i) for i in range(1, 51)])

    result = _controller(ledger, broker, store, metrics).run()

    assert result.found == 0
    assert broker.published == []
    assert store.writes == []
    assert metrics.snapshot()["tail_runs_total"] == 1


@pytest.mark.unit
def test_tail_filters_reserved_but_still_advances_last_seen(broker, store, metrics):
    CheckpointRepository(store).save_tail(TailState(last_seen=2))
    ledger = FakeLedger(
        [
            make_tx(1),
            make_tx(2),
            make_tx(3),
            make_tx(4, recipient="name"),
            make_tx(5, sender=""),
        ]
    )

    result = _controller(ledger, broker, store, metrics).run()

    assert broker.delivered_ids() == [3]
    assert result.published == 1
    assert CheckpointRepository(store).load_tail() == TailState(last_seen=5)


@pytest.mark.unit
def test_tail_bootstraps_last_seen_from_stream(broker, store, metrics):
    ledger = FakeLedger([make_tx(i) for i in range(1, 31)])
    broker.publish(
        "krist.from.kfromaaaaa.to.ktobbbbbbb",
        json.dumps({"id": 25, "from": "kfromaaaaa", "to": "ktobbbbbbb"}).encode(),
        dedup_id="25",
    )

    _controller(ledger, broker, store, metrics).run()

    assert broker.delivered_ids() == [25, 26, 27, 28, 29, 30]
    assert CheckpointRepository(store).load_tail() == TailState(last_seen=30)


@pytest.mark.unit
def test_tail_with_empty_stream_starts_from_beginning(broker, store, metrics):
    ledger = FakeLedger([make_tx(i) for i in range(1, 4)])

    _controller(ledger, broker, store, metrics).run()

    assert broker.delivered_ids() == [1, 2, 3]
    assert ledger.calls == [("latest", 10, 0), ("latest", 10, 3)]


@pytest.mark.unit
def test_tail_rejects_malformed_stream_message(broker, store, metrics):
    broker.publish("krist.from.x.to.y", b"not json", dedup_id="1")

    with pytest.raises(RecordValidationError):
        _controller(FakeLedger([]), broker, store, metrics).run()


@pytest.mark.unit
def test_tail_failure_keeps_last_seen(broker, store, metrics):
    CheckpointRepository(store).save_tail(TailState(last_seen=40))
    ledger = FakeLedger([make_tx(i) for i in range(1, 51)])
    broker.fail_on = lambda dedup_id: dedup_id == "45"

    with pytest.raises(ConnectionError):
        _controller(ledger, broker, store, metrics).run()

    assert CheckpointRepository(store).load_tail() == TailState(last_seen=40)
    assert broker.delivered_ids() == [41, 42, 43, 44]

    broker.fail_on = None
    _controller(ledger, broker, store, metrics).run()
    assert broker.delivered_ids() == list(range(41, 51))


class GrowingLedger(FakeLedger):
    """Appends a transaction right after the first latest page is served."""

    def __init__(self, transactions, arriving):
        super().__init__(transactions)
        self._arriving = arriving

    def list_latest_transactions(self, *, limit, offset=0):
        page = super().list_latest_transactions(limit=limit, offset=offset)
        if self._arriving is not None:
            self.transactions.append(self._arriving)
            self._arriving = None
        return page


@pytest.mark.unit
def test_tail_skips_ids_repeated_when_ledger_grows_mid_walk(broker, store, metrics):
    CheckpointRepository(store).save_tail(TailState(last_seen=5))
    ledger = GrowingLedger([make_tx(i) for i in range(1, 31)], arriving=make_tx(31))

    result = _controller(ledger, broker, store, metrics).run()

    published = [json.loads(payload)["id"] for _subject, payload, _id in broker.published]
    assert published == list(range(6, 31))
    assert result.found == 25
    assert CheckpointRepository(store).load_tail() == TailState(last_seen=30)
