"""HTTP client for the Krist ledger API."""

from __future__ import annotations

import logging
from typing import Mapping, Optional

import httpx

from .models import TransactionPage

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000


class KristAPIError(RuntimeError):
    """Raised when the Krist API answers with ``ok: false`` or an unusable body."""

    def __init__(self, message: str, *, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class KristClient:
    """Thin synchronous wrapper over the Krist REST endpoints we consume."""

    def __init__(
        self,
        base_url: str = "https://krist.dev",
        *,
        request_timeout_seconds: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be provided")
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.Client(
            timeout=request_timeout_seconds,
            headers={"Accept": "application/json"},
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def list_transactions(self, *, limit: int, offset: int = 0) -> TransactionPage:
        """Return a page of the full ledger in ascending id order."""
        return self._list("/transactions", limit=limit, offset=offset)

    def list_latest_transactions(
        self, *, limit: int, offset: int = 0
    ) -> TransactionPage:
        """Return a page of the most recent transactions, newest first."""
        return self._list("/transactions/latest", limit=limit, offset=offset)

    def start_websocket(self) -> str:
        """Request a single-use websocket URL for the push channel."""
        data = self._request("POST", "/ws/start")
        url = data.get("url")
        if not isinstance(url, str) or not url:
            raise KristAPIError("ws/start response missing 'url'")
        return url

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "KristClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------ Internal helpers
    def _list(self, path: str, *, limit: int, offset: int) -> TransactionPage:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValueError("offset must not be negative")
        data = self._request("GET", path, params={"limit": limit, "offset": offset})
        page = TransactionPage.from_mapping(data)
        logger.debug(
            "GET %s limit=%d offset=%d -> %d transactions", path, limit, offset, page.count
        )
        return page

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, object]] = None,
    ) -> Mapping[str, object]:
        response = self._client.request(method, f"{self._base_url}{path}", params=params)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as exc:
            raise KristAPIError(f"{path} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise KristAPIError(f"{path} returned {type(data).__name__}, expected object")
        if data.get("ok") is False:
            raise KristAPIError(
                str(data.get("message") or data.get("error") or "request failed"),
                error_code=data.get("error"),
            )
        return data


__all__ = ["KristAPIError", "KristClient", "MAX_PAGE_SIZE"]
