"""Async HTTP client for BTCPay Server's Greenfield API.

BTCPay is the payment collaborator for book purchases: buyers pay an
invoice for a listing's price, and the settled invoice amount is what the
ledger compares against that price.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from bookledger.constants import DEFAULT_CURRENCY


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class BTCPayError(Exception):
    """Base exception for BTCPay operations."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BTCPayAuthError(BTCPayError):
    """401/403: authentication or authorization failure."""


class BTCPayNotFoundError(BTCPayError):
    """404: resource not found."""


class BTCPayValidationError(BTCPayError):
    """422: request validation failure."""


class BTCPayServerError(BTCPayError):
    """5xx: server-side error (retryable)."""


class BTCPayConnectionError(BTCPayError):
    """Network/DNS failure (retryable)."""


class BTCPayTimeoutError(BTCPayError):
    """Request timeout (retryable)."""


_STATUS_MAP: dict[int, type[BTCPayError]] = {
    401: BTCPayAuthError,
    403: BTCPayAuthError,
    404: BTCPayNotFoundError,
    422: BTCPayValidationError,
}


def invoice_amount(invoice: dict[str, Any]) -> int:
    """Return an invoice's amount as an integer in the store currency.

    Greenfield reports amounts as decimal strings (``"1500"``,
    ``"1500.0"``). Fractions are truncated; the ledger works in whole units.
    """
    raw = invoice.get("amount", "0")
    try:
        amount = Decimal(str(raw))
        if not amount.is_finite():
            raise ValueError("not finite")
        return int(amount)
    except (TypeError, ValueError, OverflowError, InvalidOperation) as e:
        raise BTCPayValidationError(f"Invoice amount {raw!r} is not a number.") from e


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class BTCPayClient:
    """Async client for BTCPay Server Greenfield API v1.

    Constructor accepts explicit params, no env-var loading.
    Uses ``token`` auth header (not Bearer) per BTCPay convention.
    All invoices are issued in a single ``currency``.
    """

    def __init__(
        self,
        host: str,
        api_key: str,
        store_id: str,
        currency: str = DEFAULT_CURRENCY,
    ) -> None:
        base_url = host.rstrip("/") + "/api/v1"
        self._store_id = store_id
        self._currency = currency
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"token {api_key}"},
            timeout=httpx.Timeout(connect=5.0, read=15.0, write=10.0, pool=5.0),
        )

    @property
    def currency(self) -> str:
        return self._currency

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and map errors to the BTCPay exception hierarchy."""
        try:
            response = await self._client.request(method, endpoint, json=json_data)
        except httpx.ConnectError as exc:
            raise BTCPayConnectionError(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise BTCPayTimeoutError(str(exc)) from exc

        if response.status_code >= 400:
            body = response.text
            exc_cls = _STATUS_MAP.get(response.status_code)
            if exc_cls is not None:
                raise exc_cls(body, status_code=response.status_code)
            if response.status_code >= 500:
                raise BTCPayServerError(body, status_code=response.status_code)
            raise BTCPayError(body, status_code=response.status_code)

        return response.json()

    async def health_check(self) -> dict[str, Any]:
        """GET /health: server health status."""
        return await self._request("GET", "/health")

    async def get_store(self) -> dict[str, Any]:
        """GET /stores/{storeId}: store details."""
        return await self._request("GET", f"/stores/{self._store_id}")

    async def get_api_key_info(self) -> dict[str, Any]:
        """GET /api-keys/current: current API key metadata and permissions."""
        return await self._request("GET", "/api-keys/current")

    async def create_invoice(
        self,
        amount: int,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """POST /stores/{storeId}/invoices: invoice ``amount`` in the store currency."""
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")
        payload: dict[str, Any] = {
            "amount": str(amount),
            "currency": self._currency,
        }
        if metadata is not None:
            payload["metadata"] = metadata
        return await self._request(
            "POST", f"/stores/{self._store_id}/invoices", json_data=payload
        )

    async def get_invoice(self, invoice_id: str) -> dict[str, Any]:
        """GET /stores/{storeId}/invoices/{invoiceId}: invoice details."""
        return await self._request(
            "GET", f"/stores/{self._store_id}/invoices/{invoice_id}"
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> BTCPayClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
