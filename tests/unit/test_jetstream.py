import asyncio

import pytest
from nats.js.api import StreamConfig
from nats.js.errors import APIError

from kats.broker.jetstream import (
    STREAM_NAME_IN_USE,
    BrokerError,
    JetStreamBroker,
    create_or_update_stream,
)


class FakeJetStream:
    def __init__(self, add_error=None):
        self.add_error = add_error
        self.calls = []

    async def add_stream(self, config):
        self.calls.append(("add", config))
        if self.add_error is not None:
            raise self.add_error
        return "added"

    async def update_stream(self, config):
        self.calls.append(("update", config))
        return "updated"


@pytest.mark.unit
def test_create_stream_when_missing():
    js = FakeJetStream()
    config = StreamConfig(name="krist", subjects=["krist.from.*.to.*"])

    assert asyncio.run(create_or_update_stream(js, config)) == "added"
    assert [kind for kind, _ in js.calls] == ["add"]


@pytest.mark.unit
def test_existing_stream_falls_back_to_update_with_same_config():
    js = FakeJetStream(
        add_error=APIError(
            code=400,
            err_code=STREAM_NAME_IN_USE,
            description="stream name already in use with a different configuration",
        )
    )
    config = StreamConfig(name="krist", subjects=["krist.from.*.to.*"])

    assert asyncio.run(create_or_update_stream(js, config)) == "updated"
    assert [kind for kind, _ in js.calls] == ["add", "update"]
    assert js.calls[1][1] is config


@pytest.mark.unit
def test_other_api_errors_propagate():
    js = FakeJetStream(add_error=APIError(code=500, err_code=10049, description="boom"))
    config = StreamConfig(name="krist", subjects=["krist.from.*.to.*"])

    with pytest.raises(APIError):
        asyncio.run(create_or_update_stream(js, config))
    assert [kind for kind, _ in js.calls] == ["add"]


@pytest.mark.unit
def test_broker_operations_require_connection():
    broker = JetStreamBroker("nats://127.0.0.1:4222", stream="krist")

    with pytest.raises(BrokerError):
        broker.publish("krist.from.a.to.b", b"{}", dedup_id="1")
    broker.close()
