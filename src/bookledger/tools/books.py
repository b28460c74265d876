"""Book marketplace tools: list, get, update, request_purchase, purchase, status.

Each tool verifies the caller's identity token where the operation needs a
caller, runs the ledger operation through the LedgerStore, and reports the
outcome as a result dict. Ledger failures come back as ``success: False``
with ``error_kind`` set to the failure's taxonomy name.
"""

from __future__ import annotations

import importlib.metadata
import logging
import platform
from typing import Any

from bookledger.btcpay_client import BTCPayAuthError, BTCPayClient, BTCPayError, invoice_amount
from bookledger.config import BookLedgerConfig
from bookledger.constants import InvoiceStatus
from bookledger.errors import (
    AlreadySoldError,
    InsufficientFundsError,
    LedgerError,
    SellerCannotPurchaseError,
    StorageError,
)
from bookledger.identity import (
    IdentityError,
    key_fingerprint,
    normalize_public_key,
    verify_identity_token,
)
from bookledger.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

_PURCHASE_PURPOSE = "book_purchase"


def _ledger_failure(e: LedgerError) -> dict[str, Any]:
    result: dict[str, Any] = {"success": False, "error": str(e), "error_kind": e.kind}
    if e.book_id is not None:
        result["book_id"] = e.book_id
    return result


def _storage_failure(e: StorageError) -> dict[str, Any]:
    logger.warning("Ledger unavailable: %s", e)
    return {"success": False, "error": f"Ledger unavailable: {e}"}


def _resolve_caller(
    identity_token: str,
    identity_public_key: str,
    identity_audience: str | None,
) -> tuple[str | None, dict[str, Any] | None]:
    """Return (caller, None) on success or (None, error result) on failure."""
    if not identity_public_key:
        return None, {
            "success": False,
            "error": "Ledger misconfigured: identity_public_key is required "
            "to accept calls that act on behalf of a caller.",
        }
    try:
        return verify_identity_token(
            identity_token, identity_public_key, audience=identity_audience,
        ), None
    except IdentityError as e:
        return None, {"success": False, "error": f"Identity rejected: {e}"}


async def list_book_tool(
    store: LedgerStore,
    identity_token: str,
    identity_public_key: str,
    title: str,
    author: str,
    price: int,
    identity_audience: str | None = None,
) -> dict[str, Any]:
    """List a book for sale; the verified caller becomes its seller.

    Returns dict with:
        success: True if the listing was created.
        book_id: The new listing's id (ids count up from 1).
        book: The stored record.

    Errors: InvalidInput for an empty title/author or a non-positive price.
    """
    seller, error = _resolve_caller(identity_token, identity_public_key, identity_audience)
    if error is not None:
        return error

    try:
        book_id = await store.list_book(title, author, price, seller)
        book = await store.get_book(book_id)
    except LedgerError as e:
        return _ledger_failure(e)
    except StorageError as e:
        return _storage_failure(e)

    return {
        "success": True,
        "book_id": book_id,
        "book": book.to_dict(),
        "message": f'Listed "{title}" by {author} for {price:,} as book {book_id}.',
    }


async def get_book_tool(store: LedgerStore, book_id: int) -> dict[str, Any]:
    """Return a listing's current state. Read-only; no identity required."""
    try:
        book = await store.get_book(book_id)
    except LedgerError as e:
        return _ledger_failure(e)
    except StorageError as e:
        return _storage_failure(e)
    return {"success": True, "book": book.to_dict()}


async def update_book_tool(
    store: LedgerStore,
    identity_token: str,
    identity_public_key: str,
    book_id: int,
    title: str,
    author: str,
    price: int,
    identity_audience: str | None = None,
) -> dict[str, Any]:
    """Replace title, author and price of an unsold listing. Seller only.

    Errors: NotFound, AlreadySold, Unauthorized (caller is not the seller),
    InvalidInput, reported in that order of precedence.
    """
    caller, error = _resolve_caller(identity_token, identity_public_key, identity_audience)
    if error is not None:
        return error

    try:
        book = await store.update_book(book_id, title, author, price, caller)
    except LedgerError as e:
        return _ledger_failure(e)
    except StorageError as e:
        return _storage_failure(e)

    return {"success": True, "book": book.to_dict()}


async def request_purchase_tool(
    btcpay: BTCPayClient,
    store: LedgerStore,
    identity_token: str,
    identity_public_key: str,
    book_id: int,
    identity_audience: str | None = None,
) -> dict[str, Any]:
    """Create a BTCPay invoice for a listing's price.

    Refuses up front when the purchase could never succeed (unknown or sold
    listing, caller is the seller) so nobody pays for a book they cannot
    get. After paying, the buyer calls purchase_book_tool with the
    returned invoice_id.
    """
    buyer, error = _resolve_caller(identity_token, identity_public_key, identity_audience)
    if error is not None:
        return error

    try:
        book = await store.get_book(book_id)
    except LedgerError as e:
        return _ledger_failure(e)
    except StorageError as e:
        return _storage_failure(e)

    if book.is_sold:
        return _ledger_failure(
            AlreadySoldError(f"Book {book_id} is already sold.", book_id=book_id)
        )
    if buyer == book.seller:
        return _ledger_failure(SellerCannotPurchaseError(
            f"Seller cannot purchase their own listing {book_id}.", book_id=book_id,
        ))

    try:
        invoice = await btcpay.create_invoice(
            book.price,
            metadata={
                "book_id": book_id,
                "buyer": buyer,
                "price": book.price,
                "purpose": _PURCHASE_PURPOSE,
            },
        )
    except BTCPayError as e:
        return {"success": False, "error": f"BTCPay error: {e}"}

    invoice_id = invoice.get("id", "")
    checkout_link = invoice.get("checkoutLink", "")
    expiry = invoice.get("expirationTime", "")

    return {
        "success": True,
        "book_id": book_id,
        "invoice_id": invoice_id,
        "amount": book.price,
        "currency": btcpay.currency,
        "checkout_link": checkout_link,
        "expiration": expiry,
        "message": (
            f'Invoice created for "{book.title}" ({book.price:,} {btcpay.currency}).\n\n'
            f"Pay here: {checkout_link}\n"
            f"Expires: {expiry}\n\n"
            f'After paying, call purchase_book with book_id {book_id} '
            f'and invoice_id: "{invoice_id}"'
        ),
    }


async def _explain_repricing(
    store: LedgerStore,
    metadata: dict[str, Any],
    book_id: int,
    invoice_id: str,
    result: dict[str, Any],
) -> None:
    """Point out a seller price change between invoicing and settlement."""
    invoiced_price = metadata.get("price")
    if not isinstance(invoiced_price, int) or isinstance(invoiced_price, bool):
        return
    try:
        current_price = (await store.get_book(book_id)).price
    except (LedgerError, StorageError):
        return
    if current_price <= invoiced_price:
        return
    logger.warning(
        "Settled invoice %s priced book %d at %d; the listing now costs %d.",
        invoice_id, book_id, invoiced_price, current_price,
    )
    result.update(
        invoiced_price=invoiced_price,
        current_price=current_price,
        error=(
            f"The seller raised the price of book {book_id} from {invoiced_price:,} "
            f"to {current_price:,} after invoice {invoice_id} was issued. "
            "The paid amount no longer covers it; the book was not sold."
        ),
    )


async def purchase_book_tool(
    btcpay: BTCPayClient,
    store: LedgerStore,
    identity_token: str,
    identity_public_key: str,
    book_id: int,
    invoice_id: str,
    identity_audience: str | None = None,
) -> dict[str, Any]:
    """Complete a purchase once its BTCPay invoice has settled.

    The invoice must be Settled and must have been issued for this book and
    this buyer. Its amount is the offered amount the ledger compares with
    the price. Calling again after success reports AlreadySold, so an
    invoice can never buy a book twice.

    Returns dict with:
        success: True if the book is now sold to the caller.
        status: The BTCPay invoice status.
        book: The sold record (on success).
    """
    buyer, error = _resolve_caller(identity_token, identity_public_key, identity_audience)
    if error is not None:
        return error

    try:
        invoice = await btcpay.get_invoice(invoice_id)
    except BTCPayError as e:
        return {"success": False, "error": f"BTCPay error: {e}"}

    status = invoice.get("status", "Unknown")
    result: dict[str, Any] = {
        "book_id": book_id,
        "invoice_id": invoice_id,
        "status": status,
    }

    if status != InvoiceStatus.SETTLED.value:
        if status in (InvoiceStatus.NEW.value, InvoiceStatus.PROCESSING.value):
            message = "Payment not settled yet; try again once it confirms."
        elif status in (InvoiceStatus.EXPIRED.value, InvoiceStatus.INVALID.value):
            message = f"Invoice is {status}. Request a new one with request_purchase."
        else:
            message = f"Unknown invoice status: {status}"
        result.update(success=False, error=message)
        return result

    metadata = invoice.get("metadata") or {}
    if metadata.get("purpose") != _PURCHASE_PURPOSE or metadata.get("book_id") != book_id:
        result.update(success=False, error=f"Invoice {invoice_id} was not issued for book {book_id}.")
        return result
    if metadata.get("buyer") != buyer:
        result.update(success=False, error=f"Invoice {invoice_id} was issued to a different buyer.")
        return result

    try:
        offered_amount = invoice_amount(invoice)
    except BTCPayError as e:
        result.update(success=False, error=f"BTCPay error: {e}")
        return result

    try:
        book = await store.purchase_book(book_id, offered_amount, buyer)
    except LedgerError as e:
        if isinstance(e, AlreadySoldError):
            logger.warning(
                "Settled invoice %s presented for sold book %d.", invoice_id, book_id,
            )
        result.update(_ledger_failure(e))
        if isinstance(e, InsufficientFundsError):
            await _explain_repricing(store, metadata, book_id, invoice_id, result)
        return result
    except StorageError as e:
        result.update(_storage_failure(e))
        return result

    result.update(
        success=True,
        book=book.to_dict(),
        amount_paid=offered_amount,
        message=f'Purchase complete: "{book.title}" is yours.',
    )
    return result


async def ledger_status_tool(
    config: BookLedgerConfig,
    store: LedgerStore,
    btcpay: BTCPayClient | None,
) -> dict[str, Any]:
    """Report ledger store health, identity key and BTCPay state for diagnostics.

    Admin/operator tool. Call during setup to verify configuration, or
    when purchases fail to tell storage, identity and payment issues apart.
    """
    result: dict[str, Any] = {
        "ledger": store.health(),
        "currency": config.currency,
        "btcpay_host": config.btcpay_host or None,
        "btcpay_store_id": config.btcpay_store_id or None,
        "btcpay_api_key_status": "present" if config.btcpay_api_key else "missing",
    }

    versions: dict[str, str] = {"python": platform.python_version()}
    for pkg in ("bookledger", "httpx", "PyJWT"):
        try:
            versions[pkg.lower()] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg.lower()] = "unknown"
    result["versions"] = versions

    identity_config: dict[str, Any] = {
        "public_key_configured": bool(config.identity_public_key),
        "audience": config.identity_audience,
    }
    if config.identity_public_key:
        from cryptography.hazmat.primitives.serialization import load_pem_public_key

        try:
            load_pem_public_key(normalize_public_key(config.identity_public_key).encode())
            identity_config["public_key_fingerprint"] = key_fingerprint(config.identity_public_key)
            identity_config["public_key_valid"] = True
        except (ValueError, TypeError) as e:
            identity_config["public_key_valid"] = False
            identity_config["public_key_error"] = str(e)
    result["identity_config"] = identity_config

    connection_vars_present = bool(
        config.btcpay_host and config.btcpay_store_id and config.btcpay_api_key
    )
    if connection_vars_present and btcpay is not None:
        try:
            await btcpay.health_check()
            result["server_reachable"] = True
        except BTCPayError:
            result["server_reachable"] = False

        try:
            btcpay_store = await btcpay.get_store()
            result["store_name"] = btcpay_store.get("name", "unknown")
        except BTCPayAuthError:
            result["store_name"] = "unauthorized"
        except BTCPayError:
            result["store_name"] = None

        try:
            key_info = await btcpay.get_api_key_info()
            permissions = key_info.get("permissions", [])
            required = ["btcpay.store.cancreateinvoice", "btcpay.store.canviewinvoices"]
            result["api_key_permissions"] = {
                "permissions": permissions,
                "required": required,
                "missing": [p for p in required if p not in permissions],
            }
        except BTCPayError as e:
            result["api_key_permissions"] = {"error": str(e)}
    else:
        result["server_reachable"] = None
        result["store_name"] = None

    return result
