"""Notifications announced by the ledger.

Pure data. The ledger queues one event per successful mutation; how events
reach observers is up to the ``EventSink`` the store is given.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Union

from bookledger.constants import EventKind


@dataclass(frozen=True)
class BookAdded:
    """A new listing was created."""

    id: int
    title: str
    author: str
    price: int
    seller: str

    kind = EventKind.BOOK_ADDED

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.kind.value, **asdict(self)}


@dataclass(frozen=True)
class BookPurchased:
    """A listing was sold to ``buyer``."""

    id: int
    title: str
    author: str
    price: int
    buyer: str

    kind = EventKind.BOOK_PURCHASED

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.kind.value, **asdict(self)}


@dataclass(frozen=True)
class BookUpdated:
    """An unsold listing's title, author or price changed."""

    id: int
    title: str
    author: str
    price: int

    kind = EventKind.BOOK_UPDATED

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.kind.value, **asdict(self)}


LedgerEvent = Union[BookAdded, BookPurchased, BookUpdated]
