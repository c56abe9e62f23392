import json
import threading

import pytest

from kats.backoff import ExponentialBackoff
from kats.krist.listener import SUBSCRIBE_MESSAGE, KristNotificationListener


class StubStarter:
    def __init__(self) -> None:
        self.calls = 0

    def start_websocket(self) -> str:
        self.calls += 1
        return f"wss://example.invalid/ws/{self.calls}"


class FakeWebsocket:
    """Async context manager yielding a fixed list of frames."""

    def __init__(self, frames):
        self._frames = list(frames)
        self.sent = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True
        return False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self._frames:
            yield frame


def _event(tx_id):
    return json.dumps(
        {
            "type": "event",
            "event": "transaction",
            "transaction": {"id": tx_id, "from": "ka", "to": "kb", "value": 1},
        }
    )


@pytest.mark.unit
def test_handle_message_fires_callback_for_transaction_events():
    received = []
    listener = KristNotificationListener(StubStarter(), received.append)

    listener.handle_message(_event(7))
    listener.handle_message(json.dumps({"type": "keepalive", "server_time": "now"}))
    listener.handle_message(json.dumps({"type": "hello", "motd": "hi"}))
    listener.handle_message(json.dumps({"ok": True, "id": 1, "type": "response"}))

    assert [tx.id for tx in received] == [7]


@pytest.mark.unit
def test_handle_message_ignores_garbage_and_malformed_events(caplog):
    received = []
    listener = KristNotificationListener(StubStarter(), received.append)

    listener.handle_message("not json")
    listener.handle_message(json.dumps([1, 2]))
    listener.handle_message(
        json.dumps({"type": "event", "event": "transaction", "transaction": {"id": "x"}})
    )

    assert received == []
    assert "malformed transaction event" in caplog.text


@pytest.mark.unit
def test_callback_errors_do_not_escape(caplog):
    def explode(_tx):
        raise RuntimeError("queue closed")

    listener = KristNotificationListener(StubStarter(), explode)
    listener.handle_message(_event(1))

    assert "transaction callback raised" in caplog.text


@pytest.mark.unit
def test_listener_subscribes_and_reconnects_with_fresh_url():
    starter = StubStarter()
    sockets = []
    received = []
    done = threading.Event()

    def on_transaction(tx):
        received.append(tx.id)
        if len(received) == 2:
            done.set()

    def connect(url):
        socket = FakeWebsocket([_event(len(sockets) + 1)])
        sockets.append((url, socket))
        return socket

    listener = KristNotificationListener(
        starter,
        on_transaction,
        backoff=ExponentialBackoff(base_interval=0.01, max_interval=0.01, jitter=False),
        connect=connect,
    )
    listener.start()
    try:
        assert done.wait(timeout=5)
    finally:
        listener.stop()

    assert received[:2] == [1, 2]
    assert sockets[0][0] == "wss://example.invalid/ws/1"
    assert sockets[1][0] == "wss://example.invalid/ws/2"
    assert sockets[0][1].sent == [SUBSCRIBE_MESSAGE]
    assert sockets[0][1].closed is True
