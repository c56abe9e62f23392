"""Progress records persisted between runs."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Mapping

from ..krist.models import RecordValidationError


def _decode_object(raw: bytes, kind: str) -> Mapping[str, object]:
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RecordValidationError(f"{kind} checkpoint is not valid JSON") from exc
    if not isinstance(data, dict):
        raise RecordValidationError(f"{kind} checkpoint must be a JSON object")
    return data


def _encode(payload: Mapping[str, object]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class BackfillState:
    """Position of the historical walk; ``offset`` is the next page start."""

    done: bool = False
    offset: int = 0

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise RecordValidationError("backfill offset must not be negative")

    @classmethod
    def decode(cls, raw: bytes) -> "BackfillState":
        data = _decode_object(raw, "backfill")
        done = data.get("done")
        offset = data.get("offset")
        if not isinstance(done, bool):
            raise RecordValidationError(f"backfill 'done' must be a boolean, got {done!r}")
        if isinstance(offset, bool) or not isinstance(offset, int):
            raise RecordValidationError(
                f"backfill 'offset' must be an integer, got {offset!r}"
            )
        return cls(done=done, offset=offset)

    def encode(self) -> bytes:
        return _encode({"done": self.done, "offset": self.offset})


@dataclass(frozen=True)
class TailState:
    """Highest transaction id known to have been published."""

    last_seen: int

    @classmethod
    def decode(cls, raw: bytes) -> "TailState":
        data = _decode_object(raw, "tail")
        last_seen = data.get("lastSeen")
        if isinstance(last_seen, bool) or not isinstance(last_seen, int):
            raise RecordValidationError(
                f"tail 'lastSeen' must be an integer, got {last_seen!r}"
            )
        return cls(last_seen=last_seen)

    def encode(self) -> bytes:
        return _encode({"lastSeen": self.last_seen})


__all__ = ["BackfillState", "TailState"]
