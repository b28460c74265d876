"""Book ledger: listing records and their sale state transitions.

Pure data model, no I/O. Prices and offered amounts are integers in the
smallest unit of the marketplace currency. Caller identities are opaque
strings compared only for equality.

Each mutation validates every precondition before touching state, so a
rejected call leaves the ledger exactly as it was.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any

from bookledger.errors import (
    AlreadySoldError,
    InsufficientFundsError,
    InvalidInputError,
    LedgerDataError,
    NotFoundError,
    SellerCannotPurchaseError,
    UnauthorizedError,
)
from bookledger.events import BookAdded, BookPurchased, BookUpdated, LedgerEvent

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1


def _is_price(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_amount(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def _check_listing_fields(title: Any, author: Any, price: Any) -> None:
    if not _is_text(title):
        raise InvalidInputError("title must be a non-empty string.")
    if not _is_text(author):
        raise InvalidInputError("author must be a non-empty string.")
    if not _is_price(price):
        raise InvalidInputError(f"price must be a positive integer, got {price!r}.")


# ---------------------------------------------------------------------------
# Book
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Book:
    """A single listing. Replaced wholesale on every change."""

    id: int
    title: str
    author: str
    price: int
    seller: str
    is_sold: bool = False

    def as_tuple(self) -> tuple[int, str, str, int, str, bool]:
        return (self.id, self.title, self.author, self.price, self.seller, self.is_sold)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "price": self.price,
            "seller": self.seller,
            "is_sold": self.is_sold,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Book:
        """Build a record from persisted data, rejecting anything malformed."""
        book_id = data.get("id")
        if not isinstance(book_id, int) or isinstance(book_id, bool) or book_id < 1:
            raise LedgerDataError(f"Invalid book id {book_id!r}.")
        try:
            _check_listing_fields(data.get("title"), data.get("author"), data.get("price"))
        except InvalidInputError as e:
            raise LedgerDataError(f"Book {book_id}: {e}", book_id=book_id) from e
        seller = data.get("seller")
        if not isinstance(seller, str):
            raise LedgerDataError(f"Book {book_id}: seller must be a string.", book_id=book_id)
        is_sold = data.get("is_sold", False)
        if not isinstance(is_sold, bool):
            raise LedgerDataError(f"Book {book_id}: is_sold must be a boolean.", book_id=book_id)
        return cls(
            id=book_id,
            title=data["title"],
            author=data["author"],
            price=data["price"],
            seller=seller,
            is_sold=is_sold,
        )


# ---------------------------------------------------------------------------
# BookLedger
# ---------------------------------------------------------------------------


@dataclass
class BookLedger:
    """All listings of one marketplace plus the id counter.

    ``book_count`` is the number of ids handed out so far; the next listing
    gets ``book_count + 1``. Successful mutations queue a notification that
    the owner collects with ``drain_events()``.
    """

    book_count: int = 0
    books: dict[int, Book] = field(default_factory=dict)
    _events: list[LedgerEvent] = field(default_factory=list, repr=False, compare=False)

    # -- lookups --------------------------------------------------------------

    def _require(self, book_id: int) -> Book:
        if not isinstance(book_id, int) or isinstance(book_id, bool):
            raise NotFoundError(f"Book {book_id!r} not found.")
        book = self.books.get(book_id) if 1 <= book_id <= self.book_count else None
        if book is None:
            raise NotFoundError(f"Book {book_id} not found.", book_id=book_id)
        return book

    def get(self, book_id: int) -> Book:
        """Return the record for ``book_id``. Raises NotFoundError if unknown."""
        return self._require(book_id)

    def __len__(self) -> int:
        return len(self.books)

    def __contains__(self, book_id: object) -> bool:
        return book_id in self.books

    # -- mutations ------------------------------------------------------------

    def list_book(self, title: str, author: str, price: int, seller: str) -> int:
        """Create a listing owned by ``seller`` and return its id."""
        _check_listing_fields(title, author, price)

        book_id = self.book_count + 1
        book = Book(id=book_id, title=title, author=author, price=price, seller=seller)
        self.books[book_id] = book
        self.book_count = book_id

        self._events.append(BookAdded(
            id=book_id, title=title, author=author, price=price, seller=seller,
        ))
        return book_id

    def purchase(self, book_id: int, offered_amount: int, buyer: str) -> None:
        """Mark a listing sold to ``buyer``.

        Checks run in order: existence, not yet sold, amount covers the
        price, buyer is not the seller. The amount is only compared; moving
        funds is the payment collaborator's job. An amount that is not an
        integer (``bool``, ``float``, ``str``) covers no price.
        """
        book = self._require(book_id)
        if book.is_sold:
            raise AlreadySoldError(f"Book {book_id} is already sold.", book_id=book_id)
        if not _is_amount(offered_amount):
            raise InsufficientFundsError(
                f"Offered amount {offered_amount!r} is not a whole number.",
                book_id=book_id,
            )
        if offered_amount < book.price:
            raise InsufficientFundsError(
                f"Offered {offered_amount} is below the price of {book.price}.",
                book_id=book_id,
            )
        if buyer == book.seller:
            raise SellerCannotPurchaseError(
                f"Seller cannot purchase their own listing {book_id}.", book_id=book_id,
            )

        self.books[book_id] = replace(book, is_sold=True)
        self._events.append(BookPurchased(
            id=book_id, title=book.title, author=book.author, price=book.price, buyer=buyer,
        ))

    def update(
        self, book_id: int, title: str, author: str, price: int, caller: str,
    ) -> None:
        """Overwrite title, author and price of an unsold listing.

        Checks run in order: existence, not yet sold, caller is the seller,
        then field validity.
        """
        book = self._require(book_id)
        if book.is_sold:
            raise AlreadySoldError(f"Book {book_id} is already sold.", book_id=book_id)
        if caller != book.seller:
            raise UnauthorizedError(
                f"Only the seller may update listing {book_id}.", book_id=book_id,
            )
        _check_listing_fields(title, author, price)

        self.books[book_id] = replace(book, title=title, author=author, price=price)
        self._events.append(BookUpdated(id=book_id, title=title, author=author, price=price))

    # -- notifications --------------------------------------------------------

    def drain_events(self) -> list[LedgerEvent]:
        """Return queued notifications in order and clear the queue."""
        events, self._events = self._events, []
        return events

    # -- serialization --------------------------------------------------------

    def to_json(self) -> str:
        """Serialize to JSON string with schema version."""
        return json.dumps({
            "v": _SCHEMA_VERSION,
            "book_count": self.book_count,
            "books": {str(bid): book.to_dict() for bid, book in self.books.items()},
        }, indent=2)

    @classmethod
    def from_json(cls, data: str | None) -> BookLedger:
        """Deserialize from JSON. Empty/missing data yields a fresh ledger.

        Corrupt data raises LedgerDataError: starting over would hand out
        ids that already belong to someone's listing.
        """
        if not data:
            return cls()

        try:
            obj = json.loads(data)
        except (json.JSONDecodeError, TypeError) as e:
            raise LedgerDataError(f"Ledger data is not valid JSON: {e}") from e

        if not isinstance(obj, dict):
            raise LedgerDataError("Ledger data is not a JSON object.")

        version = obj.get("v")
        if version != _SCHEMA_VERSION:
            raise LedgerDataError(f"Unsupported ledger schema version {version!r}.")

        book_count = obj.get("book_count", 0)
        if not isinstance(book_count, int) or isinstance(book_count, bool) or book_count < 0:
            raise LedgerDataError(f"Invalid book_count {book_count!r}.")

        raw_books = obj.get("books", {})
        if not isinstance(raw_books, dict):
            raise LedgerDataError("Ledger books must be a JSON object.")

        books: dict[int, Book] = {}
        for key, rec_data in raw_books.items():
            if not isinstance(rec_data, dict):
                raise LedgerDataError(f"Book entry {key!r} is not an object.")
            book = Book.from_dict(rec_data)
            if str(book.id) != key:
                raise LedgerDataError(
                    f"Book entry {key!r} holds id {book.id}.", book_id=book.id,
                )
            if book.id > book_count:
                raise LedgerDataError(
                    f"Book id {book.id} exceeds book_count {book_count}.", book_id=book.id,
                )
            books[book.id] = book

        if len(books) != book_count:
            # Records are never deleted, so every assigned id must be present.
            raise LedgerDataError(
                f"Ledger holds {len(books)} book(s) but book_count is {book_count}.",
            )
        logger.debug("Loaded ledger with %d book(s).", book_count)
        return cls(book_count=book_count, books=books)
