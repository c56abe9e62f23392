"""Synchronous facade over the asyncio NATS JetStream client."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Coroutine, Iterable, Optional, TypeVar

import nats
from nats.aio.client import Client as NATS
from nats.js import JetStreamContext
from nats.js.api import StreamConfig, StreamInfo
from nats.js.errors import (
    APIError,
    BucketNotFoundError,
    KeyNotFoundError,
    NotFoundError,
)
from nats.js.kv import KeyValue

logger = logging.getLogger(__name__)

T = TypeVar("T")

# JetStream API error: "stream name already in use with a different configuration"
STREAM_NAME_IN_USE = 10058
DEDUP_HEADER = "Nats-Msg-Id"


class BrokerError(RuntimeError):
    """Raised when the broker facade is used before connecting or after closing."""


async def create_or_update_stream(
    js: JetStreamContext, config: StreamConfig
) -> StreamInfo:
    """Declare ``config``; when the stream already exists update it in place."""
    try:
        return await js.add_stream(config)
    except APIError as exc:
        if exc.err_code != STREAM_NAME_IN_USE:
            raise
        logger.info("stream %s already exists - updating configuration", config.name)
        return await js.update_stream(config)


class JetStreamBroker:
    """Owns one NATS connection and an event loop running on a daemon thread."""

    def __init__(
        self,
        servers: str | Iterable[str],
        *,
        stream: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        connect_timeout_seconds: float = 5.0,
        request_timeout_seconds: float = 10.0,
    ) -> None:
        self._servers = [servers] if isinstance(servers, str) else list(servers)
        self._stream = stream
        self._user = user or None
        self._password = password or None
        self._connect_timeout = connect_timeout_seconds
        self._request_timeout = request_timeout_seconds
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._nc: Optional[NATS] = None
        self._js: Optional[JetStreamContext] = None
        self._loop_ready = threading.Event()

    @property
    def stream(self) -> str:
        return self._stream

    # ------------------------------------------------------------------ Lifecycle
    def connect(self) -> None:
        if self._nc is not None:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="nats-loop", daemon=True
        )
        self._loop_ready.clear()
        self._thread.start()
        self._loop_ready.wait(timeout=5.0)
        try:
            self._nc = self.submit(
                nats.connect(
                    servers=self._servers,
                    user=self._user,
                    password=self._password,
                    connect_timeout=self._connect_timeout,
                    allow_reconnect=True,
                    error_cb=self._on_error,
                    disconnected_cb=self._on_disconnected,
                    reconnected_cb=self._on_reconnected,
                ),
                timeout=self._connect_timeout + self._request_timeout,
            )
        except Exception:
            self._stop_loop()
            raise
        self._js = self._nc.jetstream(timeout=self._request_timeout)
        logger.info("Connected to NATS at %s", ", ".join(self._servers))

    def close(self) -> None:
        """Drain the connection and stop the loop; safe to call more than once."""
        nc, self._nc, self._js = self._nc, None, None
        if nc is not None:
            try:
                self.submit(nc.drain())
            except Exception:  # noqa: BLE001 - closing is best effort
                logger.exception("failed to drain NATS connection")
        self._stop_loop()

    def __enter__(self) -> "JetStreamBroker":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------ Operations
    def ensure_stream(self, subjects: Iterable[str]) -> StreamInfo:
        config = StreamConfig(name=self._stream, subjects=list(subjects))
        info = self.submit(create_or_update_stream(self._jetstream(), config))
        logger.info("Stream %s ready for %s", self._stream, ", ".join(config.subjects))
        return info

    def publish(self, subject: str, payload: bytes, *, dedup_id: str) -> None:
        ack = self.submit(
            self._jetstream().publish(
                subject, payload, stream=self._stream, headers={DEDUP_HEADER: dedup_id}
            )
        )
        if ack.duplicate:
            logger.debug("broker reported %s as a duplicate", dedup_id)

    def last_message(self, subject: str) -> Optional[bytes]:
        """Payload of the newest message matching ``subject``, or None."""
        try:
            msg = self.submit(self._jetstream().get_last_msg(self._stream, subject))
        except NotFoundError:
            return None
        return msg.data

    def key_value(self, bucket: str) -> "JetStreamKeyValueStore":
        return JetStreamKeyValueStore(self, self.submit(self._bind_bucket(bucket)))

    # ------------------------------------------------------------------ Internal helpers
    async def _bind_bucket(self, bucket: str) -> KeyValue:
        js = self._jetstream()
        try:
            return await js.key_value(bucket)
        except BucketNotFoundError:
            logger.info("creating key-value bucket %s", bucket)
            return await js.create_key_value(bucket=bucket)

    def _jetstream(self) -> JetStreamContext:
        if self._js is None:
            raise BrokerError("not connected to NATS")
        return self._js

    def submit(
        self, coro: Coroutine[Any, Any, T], *, timeout: Optional[float] = None
    ) -> T:
        """Run ``coro`` on the broker loop and block until it finishes."""
        if self._loop is None or not self._loop.is_running():
            coro.close()
            raise BrokerError("NATS event loop is not running")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(
            timeout=timeout if timeout is not None else self._request_timeout * 2
        )

    def _run_loop(self) -> None:
        loop = self._loop
        if loop is None:
            return
        asyncio.set_event_loop(loop)
        loop.call_soon(self._loop_ready.set)
        try:
            loop.run_forever()
        finally:
            loop.close()

    def _stop_loop(self) -> None:
        loop, thread = self._loop, self._thread
        self._loop = None
        self._thread = None
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=5.0)

    async def _on_error(self, exc: Exception) -> None:
        logger.warning("NATS error: %s", exc)

    async def _on_disconnected(self) -> None:
        logger.warning("disconnected from NATS")

    async def _on_reconnected(self) -> None:
        logger.info("reconnected to NATS")


class JetStreamKeyValueStore:
    """Checkpoint store backed by a JetStream key-value bucket."""

    def __init__(self, broker: JetStreamBroker, kv: KeyValue) -> None:
        self._broker = broker
        self._kv = kv

    def get(self, key: str) -> Optional[bytes]:
        try:
            entry = self._broker.submit(self._kv.get(key))
        except KeyNotFoundError:
            return None
        return entry.value

    def put(self, key: str, value: bytes) -> None:
        self._broker.submit(self._kv.put(key, value))


__all__ = [
    "BrokerError",
    "DEDUP_HEADER",
    "JetStreamBroker",
    "JetStreamKeyValueStore",
    "STREAM_NAME_IN_USE",
    "create_or_update_stream",
]
