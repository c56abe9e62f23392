"""Runtime configuration helpers for the Krist to JetStream bridge."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """Immutable container for service configuration."""

    nats_host: str
    nats_user: str
    nats_password: str
    nats_stream: str
    nats_kv_bucket: str
    nats_connect_timeout_seconds: float
    krist_api_url: str
    krist_request_timeout_seconds: float
    krist_websocket_enabled: bool
    backfill_page_size: int
    tail_page_size: int
    tail_interval_seconds: float
    checkpoint_backend: str
    checkpoint_path: Path
    checkpoint_fsync: bool
    listener_reconnect_base_seconds: float = 1.0
    listener_reconnect_max_seconds: float = 30.0
    metrics_port: int = 0
    log_level: str = "INFO"


def _as_bool(value: Optional[str], default: bool) -> bool:
    """Convert environment strings to booleans."""
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no"}


def _coerce_checkpoint_backend(value: Optional[str]) -> str:
    if value is None:
        return "kv"
    normalized = value.strip().lower()
    if normalized in {"kv", "file", "memory"}:
        return normalized
    return "kv"


def _as_positive_int(value: Optional[str], default: int, *, upper: int) -> int:
    """Parse ``value`` and clamp it to ``1..upper``; fall back on garbage."""
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return max(1, min(parsed, upper))


def _as_positive_float(value: Optional[str], default: float) -> float:
    """Parse a positive finite float; fall back on garbage like the int helper."""
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    if not math.isfinite(parsed) or parsed <= 0:
        return default
    return parsed


def _coerce_port(value: Optional[str]) -> int:
    """Return a TCP port, or 0 (disabled) for blanks, garbage and out-of-range values."""
    if value is None or not value.strip():
        return 0
    try:
        parsed = int(value)
    except ValueError:
        return 0
    return parsed if 0 <= parsed <= 65535 else 0


def load_settings() -> Settings:
    """Load configuration from the environment (and `.env`)."""
    load_dotenv()
    nats_host = os.getenv("NATS_HOST", "127.0.0.1")
    nats_user = os.getenv("NATS_USER", "krist")
    nats_password = os.getenv("NATS_PASSWORD", "krist")
    nats_stream = os.getenv("NATS_STREAM", "krist")
    nats_kv_bucket = os.getenv("NATS_KV_BUCKET", "kats")
    nats_connect_timeout_seconds = _as_positive_float(
        os.getenv("NATS_CONNECT_TIMEOUT_SECONDS"), 5.0
    )

    krist_api_url = os.getenv("KRIST_API_URL", "https://krist.dev").strip()
    krist_request_timeout_seconds = _as_positive_float(
        os.getenv("KRIST_REQUEST_TIMEOUT_SECONDS"), 10.0
    )
    krist_websocket_enabled = _as_bool(os.getenv("KRIST_WEBSOCKET_ENABLED"), True)

    backfill_page_size = _as_positive_int(
        os.getenv("BACKFILL_PAGE_SIZE"), 1000, upper=1000
    )
    tail_page_size = _as_positive_int(os.getenv("TAIL_PAGE_SIZE"), 10, upper=1000)
    tail_interval_seconds = _as_positive_float(os.getenv("TAIL_INTERVAL_SECONDS"), 1.0)

    checkpoint_backend = _coerce_checkpoint_backend(os.getenv("CHECKPOINT_BACKEND"))
    checkpoint_path = Path(os.getenv("CHECKPOINT_PATH", "kats_checkpoints.json"))
    checkpoint_fsync = _as_bool(os.getenv("CHECKPOINT_FSYNC"), False)

    listener_reconnect_base_seconds = _as_positive_float(
        os.getenv("LISTENER_RECONNECT_BASE_SECONDS"), 1.0
    )
    listener_reconnect_max_seconds = _as_positive_float(
        os.getenv("LISTENER_RECONNECT_MAX_SECONDS"), 30.0
    )
    metrics_port = _coerce_port(os.getenv("METRICS_PORT"))
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    if krist_api_url.endswith("/"):
        krist_api_url = krist_api_url.rstrip("/")

    return Settings(
        nats_host=nats_host,
        nats_user=nats_user,
        nats_password=nats_password,
        nats_stream=nats_stream,
        nats_kv_bucket=nats_kv_bucket,
        nats_connect_timeout_seconds=nats_connect_timeout_seconds,
        krist_api_url=krist_api_url,
        krist_request_timeout_seconds=krist_request_timeout_seconds,
        krist_websocket_enabled=krist_websocket_enabled,
        backfill_page_size=backfill_page_size,
        tail_page_size=tail_page_size,
        tail_interval_seconds=tail_interval_seconds,
        checkpoint_backend=checkpoint_backend,
        checkpoint_path=checkpoint_path,
        checkpoint_fsync=checkpoint_fsync,
        listener_reconnect_base_seconds=listener_reconnect_base_seconds,
        listener_reconnect_max_seconds=listener_reconnect_max_seconds,
        metrics_port=metrics_port,
        log_level=log_level,
    )
