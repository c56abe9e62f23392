"""NATS JetStream adapter."""

from .jetstream import (
    BrokerError,
    JetStreamBroker,
    JetStreamKeyValueStore,
    create_or_update_stream,
)

__all__ = [
    "BrokerError",
    "JetStreamBroker",
    "JetStreamKeyValueStore",
    "create_or_update_stream",
]
