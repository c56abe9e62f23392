"""Typed records decoded from Krist API responses."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple


class RecordValidationError(ValueError):
    """Raised when a ledger or checkpoint record does not have the expected shape."""


def _require_int(payload: Mapping[str, object], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise RecordValidationError(f"'{key}' must be an integer, got {value!r}")
    return value


@dataclass(frozen=True)
class Transaction:
    """A single ledger transaction.

    Only ``id``, ``from`` and ``to`` are interpreted; the untouched ledger
    record is kept in ``raw`` so it can be republished byte-for-byte.
    """

    id: int
    sender: Optional[str]
    recipient: str
    raw: Dict[str, object] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> "Transaction":
        if not isinstance(payload, Mapping):
            raise RecordValidationError("transaction must be a JSON object")
        tx_id = _require_int(payload, "id")
        sender = payload.get("from")
        if sender is not None and not isinstance(sender, str):
            raise RecordValidationError(
                f"transaction {tx_id} has non-string 'from': {sender!r}"
            )
        recipient = payload.get("to")
        if not isinstance(recipient, str):
            raise RecordValidationError(
                f"transaction {tx_id} has non-string 'to': {recipient!r}"
            )
        return cls(id=tx_id, sender=sender, recipient=recipient, raw=dict(payload))

    def to_json(self) -> bytes:
        return json.dumps(self.raw, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class TransactionPage:
    """One page of a paginated transaction listing."""

    count: int
    transactions: Tuple[Transaction, ...]
    total: Optional[int] = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> "TransactionPage":
        if not isinstance(payload, Mapping):
            raise RecordValidationError("transaction listing must be a JSON object")
        raw_transactions = payload.get("transactions")
        if not isinstance(raw_transactions, Sequence) or isinstance(
            raw_transactions, (str, bytes)
        ):
            raise RecordValidationError("'transactions' must be a list")
        transactions = tuple(Transaction.from_mapping(t) for t in raw_transactions)
        count = payload.get("count", len(transactions))
        if isinstance(count, bool) or not isinstance(count, int):
            raise RecordValidationError(f"'count' must be an integer, got {count!r}")
        if count != len(transactions):
            raise RecordValidationError(
                f"'count' is {count} but {len(transactions)} transactions were returned"
            )
        total = payload.get("total")
        if total is not None and (isinstance(total, bool) or not isinstance(total, int)):
            raise RecordValidationError(f"'total' must be an integer, got {total!r}")
        return cls(count=count, transactions=transactions, total=total)


__all__ = ["RecordValidationError", "Transaction", "TransactionPage"]
