"""Book Ledger: listings, sales and edits for a two-sided book marketplace.

Sellers list books, buyers purchase them, sellers amend unsold listings.
"""

__version__ = "0.1.0"

from bookledger.btcpay_client import BTCPayClient, BTCPayError, BTCPayAuthError
from bookledger.config import BookLedgerConfig
from bookledger.constants import EventKind, DEFAULT_LEDGER_ID, DEFAULT_CURRENCY
from bookledger.errors import (
    LedgerError,
    InvalidInputError,
    NotFoundError,
    AlreadySoldError,
    InsufficientFundsError,
    SellerCannotPurchaseError,
    UnauthorizedError,
    LedgerDataError,
    StorageError,
)
from bookledger.events import BookAdded, BookPurchased, BookUpdated
from bookledger.identity import IdentityError, verify_identity_token, normalize_public_key, key_fingerprint
from bookledger.ledger import Book, BookLedger
from bookledger.ledger_store import LedgerStore
from bookledger.vault_backend import VaultBackend, EventSink, LoggingEventSink
from bookledger.vaults import FileVault

__all__ = [
    "BTCPayClient",
    "BTCPayError",
    "BTCPayAuthError",
    "BookLedgerConfig",
    "EventKind",
    "DEFAULT_LEDGER_ID",
    "DEFAULT_CURRENCY",
    "LedgerError",
    "InvalidInputError",
    "NotFoundError",
    "AlreadySoldError",
    "InsufficientFundsError",
    "SellerCannotPurchaseError",
    "UnauthorizedError",
    "LedgerDataError",
    "StorageError",
    "BookAdded",
    "BookPurchased",
    "BookUpdated",
    "IdentityError",
    "verify_identity_token",
    "normalize_public_key",
    "key_fingerprint",
    "Book",
    "BookLedger",
    "LedgerStore",
    "VaultBackend",
    "EventSink",
    "LoggingEventSink",
    "FileVault",
]
