"""Checkpoint store implementations and the typed repository on top of them."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock, RLock
from typing import Dict, Optional, Protocol

from .state import BackfillState, TailState

logger = logging.getLogger(__name__)

BACKFILL_KEY = "catchup_state"
TAIL_KEY = "latest_state"


class CheckpointStore(Protocol):
    """Key/value persistence for small opaque blobs."""

    def get(self, key: str) -> Optional[bytes]: ...

    def put(self, key: str, value: bytes) -> None: ...


class CheckpointRegressionError(RuntimeError):
    """Raised when a write would move backfill progress backwards."""


class InMemoryCheckpointStore:
    """Volatile checkpoint store keeping blobs in-memory."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._values: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._values.get(key)

    def put(self, key: str, value: bytes) -> None:
        with self._lock:
            self._values[key] = bytes(value)


class FileCheckpointStore:
    """Durable checkpoint store that rewrites a JSON file atomically on every put."""

    def __init__(self, path: Path | str, *, fsync: bool = False) -> None:
        self._path = Path(path)
        self._fsync = fsync
        self._lock = RLock()
        self._values: Dict[str, str] = {}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._load_from_disk()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            value = self._values.get(key)
        return None if value is None else value.encode("utf-8")

    def put(self, key: str, value: bytes) -> None:
        with self._lock:
            self._values[key] = value.decode("utf-8")
            self._write_locked()

    def _load_from_disk(self) -> None:
        if not self._path.exists():
            return
        raw = self._path.read_text(encoding="utf-8")
        data = json.loads(raw) if raw else {}
        if not isinstance(data, dict):
            raise ValueError(f"checkpoint file {self._path} must hold a JSON object")
        self._values = {
            key: value
            for key, value in data.items()
            if isinstance(key, str) and isinstance(value, str)
        }

    def _write_locked(self) -> None:
        temp_fd: Optional[int] = None
        temp_path: Optional[str] = None
        try:
            temp_fd, temp_path = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=str(self._path.parent)
            )
            with os.fdopen(temp_fd, "w", encoding="utf-8") as tmp:
                temp_fd = None  # ownership transferred to file object
                json.dump(self._values, tmp, sort_keys=True)
                tmp.flush()
                if self._fsync:
                    os.fsync(tmp.fileno())
            os.replace(temp_path, self._path)
            temp_path = None
        except OSError as exc:
            logger.error("failed to persist checkpoint file %s: %s", self._path, exc)
            raise
        finally:
            if temp_fd is not None:
                os.close(temp_fd)
            if temp_path is not None:
                try:
                    os.unlink(temp_path)
                except OSError:
                    logger.debug("could not remove temp file %s", temp_path)


class CheckpointRepository:
    """Typed access to the backfill and tail progress records."""

    def __init__(self, store: CheckpointStore) -> None:
        self._store = store

    @property
    def store(self) -> CheckpointStore:
        return self._store

    def load_backfill(self) -> BackfillState:
        raw = self._store.get(BACKFILL_KEY)
        if raw is None:
            return BackfillState()
        return BackfillState.decode(raw)

    def save_backfill(self, state: BackfillState) -> None:
        current = self.load_backfill()
        if state.offset < current.offset:
            raise CheckpointRegressionError(
                f"backfill offset would move from {current.offset} to {state.offset}"
            )
        if current.done and not state.done:
            raise CheckpointRegressionError("backfill is already marked done")
        self._store.put(BACKFILL_KEY, state.encode())

    def load_tail(self) -> Optional[TailState]:
        raw = self._store.get(TAIL_KEY)
        if raw is None:
            return None
        return TailState.decode(raw)

    def save_tail(self, state: TailState) -> None:
        self._store.put(TAIL_KEY, state.encode())


__all__ = [
    "BACKFILL_KEY",
    "CheckpointRegressionError",
    "CheckpointRepository",
    "CheckpointStore",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    "TAIL_KEY",
]
