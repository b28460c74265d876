"""Ledger exception hierarchy.

Every failure the ledger reports is a caller-input or caller-authorization
error. ``kind`` carries the taxonomy name so dispatch layers can report it
without matching on classes.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for ledger operations."""

    kind = "LedgerError"

    def __init__(self, message: str, book_id: int | None = None) -> None:
        super().__init__(message)
        self.book_id = book_id


class InvalidInputError(LedgerError):
    """Empty title/author or non-positive price on list/update."""

    kind = "InvalidInput"


class NotFoundError(LedgerError):
    """No book with the given id."""

    kind = "NotFound"


class AlreadySoldError(LedgerError):
    """Mutation attempted on a sold (terminal) book."""

    kind = "AlreadySold"


class InsufficientFundsError(LedgerError):
    """Offered amount is below the book's price."""

    kind = "InsufficientFunds"


class SellerCannotPurchaseError(LedgerError):
    """The seller tried to buy their own listing."""

    kind = "SellerCannotPurchase"


class UnauthorizedError(LedgerError):
    """Someone other than the seller tried to update a listing."""

    kind = "Unauthorized"


class LedgerDataError(LedgerError):
    """Persisted ledger data is corrupt or violates a ledger invariant."""

    kind = "LedgerData"


class StorageError(Exception):
    """The vault backing a ledger store could not be read."""
