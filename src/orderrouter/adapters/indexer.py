"""Indexer HTTP client.

Wraps the indexer's debug and /execute endpoints used to save orders,
request step sequences and post signatures back.

Configuration (environment variables):
  - INDEXER_URL: base URL (default http://127.0.0.1:3000)

The /execute endpoints report failures in the response body, so they
never raise on HTTP status; the debug getters do.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional
from urllib.parse import urljoin

from orderrouter.models.steps import StepSequence

try:
    import requests
    from requests.adapters import HTTPAdapter
    from urllib3.util.retry import Retry
except ImportError as e:
    raise ImportError(
        "requests is required for the indexer client. "
        "Install with: pip install orderrouter"
    ) from e

DEFAULT_INDEXER_URL = "http://127.0.0.1:3000"


class IndexerClient:
    """Thin client over the indexer's REST API."""

    def __init__(self, base_url: str | None = None, timeout: int = 10) -> None:
        base_url = base_url or os.environ.get("INDEXER_URL", DEFAULT_INDEXER_URL)
        self._base_url = base_url.rstrip("/") + "/"
        self._timeout = timeout

        # Build session with retry on 429 / 5xx
        self._session = requests.Session()
        retry = Retry(
            total=2,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)
        self._session.headers.update({"Accept": "application/json"})

    # ── Thin HTTP layer (mock this for tests) ─────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Dict[str, Any] | None = None,
        json: Any = None,
        raise_for_status: bool = True,
    ) -> Any:
        """Execute an HTTP request against the indexer.

        Returns the parsed JSON response body.
        Raises requests.HTTPError on non-2xx responses when `raise_for_status`.
        """
        url = urljoin(self._base_url, path.lstrip("/"))
        resp = self._session.request(
            method, url, params=params, json=json, timeout=self._timeout,
        )
        if raise_for_status:
            resp.raise_for_status()
        return resp.json()

    # ── Debug endpoints ──────────────────────────────────────────────

    def event_parsing(self, tx_hash: str, skip_processing: bool = True) -> Dict[str, Any]:
        """Ask the indexer which fill/cancel events a transaction produced."""
        return self._request(
            "GET",
            "debug/event-parsing",
            params={"tx": tx_hash, "skipProcessing": str(skip_processing).lower()},
            raise_for_status=False,
        )

    def save_orders(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "debug/order-saving", json=payload, raise_for_status=False)

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", "debug/get-order", params={"orderId": order_id})

    def reset(self) -> Dict[str, Any]:
        return self._request("GET", "debug/reset")

    # ── Execute endpoints ────────────────────────────────────────────

    def _execute(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", path, json=payload, raise_for_status=False)

    def execute_buy(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._execute("execute/buy/v7", payload)

    def execute_sell(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._execute("execute/sell/v7", payload)

    def execute_bid(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._execute("execute/bid/v5", payload)

    def execute_cancel(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._execute("execute/cancel/v3", payload)

    def save_pre_signature(self, signature: str, order_id: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            "execute/pre-signature/v1",
            params={"signature": signature},
            json={"id": order_id},
            raise_for_status=False,
        )

    def call_step(self, endpoint: str, signature: str, body: Any) -> Dict[str, Any]:
        """POST a signed step body back to the endpoint named in the step."""
        return self._request(
            "POST",
            endpoint,
            params={"signature": signature},
            json=body,
            raise_for_status=False,
        )


def parse_steps(response: Dict[str, Any]) -> StepSequence:
    """Validate an /execute response into a StepSequence."""
    return StepSequence.model_validate(response)


def first_error(response: Dict[str, Any]) -> Optional[str]:
    """The indexer's error message, if the response carries one."""
    if response.get("error"):
        return str(response.get("message") or response["error"])
    errors = response.get("errors") or []
    if errors:
        first = errors[0]
        return str(first.get("message", first)) if isinstance(first, dict) else str(first)
    return None
