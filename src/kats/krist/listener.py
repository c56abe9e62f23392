"""Krist websocket subscription that signals new transactions."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any, Callable, Optional, Protocol

import websockets

from ..backoff import ExponentialBackoff
from .models import RecordValidationError, Transaction

logger = logging.getLogger(__name__)

SUBSCRIBE_MESSAGE = {"id": 1, "type": "subscribe", "event": "transactions"}


class WebsocketStarter(Protocol):
    def start_websocket(self) -> str: ...


class KristNotificationListener:
    """Keeps a websocket open to Krist and calls ``on_transaction`` per event.

    The connection runs on its own event loop thread and is re-established with
    exponential backoff until :meth:`stop` is called. The websocket URL handed
    out by ``/ws/start`` is single-use, so a new one is requested per attempt.
    """

    def __init__(
        self,
        client: WebsocketStarter,
        on_transaction: Callable[[Transaction], Any],
        *,
        backoff: Optional[ExponentialBackoff] = None,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self._client = client
        self._on_transaction = on_transaction
        self._backoff = backoff or ExponentialBackoff(
            base_interval=1.0, multiplier=2.0, max_interval=30.0
        )
        self._connect = connect
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._websocket: Optional[Any] = None

    # ------------------------------------------------------------------ Lifecycle
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="krist-listener", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        loop, websocket = self._loop, self._websocket
        if loop is not None and websocket is not None and loop.is_running():
            asyncio.run_coroutine_threadsafe(websocket.close(), loop)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None

    # ------------------------------------------------------------------ Messages
    def handle_message(self, raw: str | bytes) -> None:
        """Decode one websocket frame and fire the callback for transactions."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("ignoring non-JSON websocket frame")
            return
        if not isinstance(message, dict):
            return

        kind = message.get("type")
        if kind == "event" and message.get("event") == "transaction":
            try:
                transaction = Transaction.from_mapping(message.get("transaction"))
            except RecordValidationError as exc:
                logger.warning("ignoring malformed transaction event: %s", exc)
                return
            logger.debug("push notification for transaction %d", transaction.id)
            try:
                self._on_transaction(transaction)
            except Exception:  # noqa: BLE001 - a bad callback must not kill the socket
                logger.exception("transaction callback raised")
        elif kind == "hello":
            logger.info("Krist websocket greeted us (motd: %s)", message.get("motd"))
        elif kind == "keepalive":
            logger.debug("websocket keepalive")
        elif message.get("ok") is False:
            logger.warning(
                "websocket request %s failed: %s",
                message.get("id"),
                message.get("error"),
            )
        else:
            logger.debug("unhandled websocket message type %s", kind)

    # ------------------------------------------------------------------ Internal loop
    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._serve())
        finally:
            self._loop = None
            loop.close()

    async def _serve(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self._listen_once()
            except Exception:  # noqa: BLE001 - reconnect below
                logger.warning("Krist websocket error", exc_info=True)
            if self._stop_event.is_set():
                break
            delay = self._backoff.next_delay()
            logger.info("reconnecting to Krist websocket in %.2fs", delay)
            await asyncio.to_thread(self._stop_event.wait, delay)

    async def _listen_once(self) -> None:
        url = await asyncio.to_thread(self._client.start_websocket)
        async with self._connect(url) as websocket:
            self._websocket = websocket
            try:
                logger.info("Krist websocket open")
                self._backoff.reset()
                await websocket.send(json.dumps(SUBSCRIBE_MESSAGE))
                async for raw in websocket:
                    self.handle_message(raw)
            finally:
                self._websocket = None
        logger.info("Krist websocket closed")


__all__ = ["KristNotificationListener", "SUBSCRIBE_MESSAGE", "WebsocketStarter"]
