"""Constants for the book ledger."""

from enum import Enum


DEFAULT_LEDGER_ID = "books"
DEFAULT_CURRENCY = "SATS"  # single currency; amounts are integers in its smallest unit


class EventKind(str, Enum):
    """Names of the notifications announced by the ledger."""

    BOOK_ADDED = "BookAdded"
    BOOK_PURCHASED = "BookPurchased"
    BOOK_UPDATED = "BookUpdated"


class InvoiceStatus(str, Enum):
    """BTCPay invoice statuses the purchase tools act on."""

    NEW = "New"
    PROCESSING = "Processing"
    SETTLED = "Settled"
    EXPIRED = "Expired"
    INVALID = "Invalid"
