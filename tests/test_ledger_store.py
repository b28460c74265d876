"""Tests for LedgerStore: loading, serialization of calls, flushing, notifications."""

import asyncio
import logging

import pytest
from unittest.mock import AsyncMock

from bookledger.errors import (
    AlreadySoldError,
    InvalidInputError,
    LedgerDataError,
    NotFoundError,
    StorageError,
)
from bookledger.events import BookAdded, BookPurchased, BookUpdated
from bookledger.ledger import BookLedger
from bookledger.ledger_store import LedgerStore
from bookledger.vault_backend import EventSink, LoggingEventSink


SELLER = "seller-a"
BUYER = "buyer-b"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_vault(ledger_json: str | None = None, fail_store: bool = False):
    """Create a mock vault with fetch_ledger/store_ledger/snapshot_ledger."""
    vault = AsyncMock()
    vault.fetch_ledger = AsyncMock(return_value=ledger_json)
    if fail_store:
        vault.store_ledger = AsyncMock(side_effect=Exception("vault write failed"))
    else:
        vault.store_ledger = AsyncMock(return_value="ledger.json")
    vault.snapshot_ledger = AsyncMock(return_value="snapshot.json")
    return vault


def _stored_ledger() -> str:
    ledger = BookLedger()
    ledger.list_book("Dune", "Herbert", 100, SELLER)
    return ledger.to_json()


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLedgerStoreLoad:
    @pytest.mark.asyncio
    async def test_empty_vault_starts_fresh(self) -> None:
        vault = _mock_vault(ledger_json=None)
        store = LedgerStore(vault, ledger_id="market")
        assert await store.book_count() == 0
        vault.fetch_ledger.assert_called_once_with("market")

    @pytest.mark.asyncio
    async def test_loads_existing_ledger(self) -> None:
        vault = _mock_vault(ledger_json=_stored_ledger())
        store = LedgerStore(vault)
        book = await store.get_book(1)
        assert book.title == "Dune"
        assert await store.list_book("Emma", "Austen", 50, SELLER) == 2

    @pytest.mark.asyncio
    async def test_loads_only_once(self) -> None:
        vault = _mock_vault(ledger_json=_stored_ledger())
        store = LedgerStore(vault)
        await store.get_book(1)
        await store.get_book(1)
        vault.fetch_ledger.assert_called_once()

    @pytest.mark.asyncio
    async def test_vault_error_raises_storage_error(self) -> None:
        vault = _mock_vault()
        vault.fetch_ledger = AsyncMock(side_effect=Exception("network error"))
        store = LedgerStore(vault)
        with pytest.raises(StorageError):
            await store.list_book("Dune", "Herbert", 100, SELLER)
        vault.store_ledger.assert_not_called()

    @pytest.mark.asyncio
    async def test_vault_error_is_retried_next_call(self) -> None:
        vault = _mock_vault()
        vault.fetch_ledger = AsyncMock(side_effect=[Exception("blip"), _stored_ledger()])
        store = LedgerStore(vault)
        with pytest.raises(StorageError):
            await store.get_book(1)
        assert (await store.get_book(1)).title == "Dune"

    @pytest.mark.asyncio
    async def test_corrupt_vault_data_raises(self) -> None:
        vault = _mock_vault(ledger_json="{not json")
        store = LedgerStore(vault)
        with pytest.raises(LedgerDataError):
            await store.get_book(1)


# ---------------------------------------------------------------------------
# Operations and dirty tracking
# ---------------------------------------------------------------------------


class TestLedgerStoreOperations:
    @pytest.mark.asyncio
    async def test_list_marks_dirty_without_flushing(self) -> None:
        vault = _mock_vault()
        store = LedgerStore(vault)
        assert await store.list_book("Dune", "Herbert", 100, SELLER) == 1
        assert store.dirty is True
        vault.store_ledger.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_operation_stays_clean(self) -> None:
        vault = _mock_vault()
        store = LedgerStore(vault)
        with pytest.raises(InvalidInputError):
            await store.list_book("", "Herbert", 100, SELLER)
        assert store.dirty is False
        assert await store.book_count() == 0

    @pytest.mark.asyncio
    async def test_purchase_flushes_immediately(self) -> None:
        vault = _mock_vault(ledger_json=_stored_ledger())
        store = LedgerStore(vault, ledger_id="market")
        book = await store.purchase_book(1, 100, BUYER)
        assert book.is_sold is True
        assert store.dirty is False
        vault.store_ledger.assert_called_once()
        ledger_id, ledger_json = vault.store_ledger.call_args[0]
        assert ledger_id == "market"
        assert BookLedger.from_json(ledger_json).get(1).is_sold is True

    @pytest.mark.asyncio
    async def test_purchase_flush_failure_keeps_sale(self) -> None:
        vault = _mock_vault(ledger_json=_stored_ledger(), fail_store=True)
        store = LedgerStore(vault, flush_retries=0)
        book = await store.purchase_book(1, 100, BUYER)
        assert book.is_sold is True
        assert store.dirty is True
        with pytest.raises(AlreadySoldError):
            await store.purchase_book(1, 100, "buyer-c")

    @pytest.mark.asyncio
    async def test_update_returns_new_record(self) -> None:
        store = LedgerStore(_mock_vault(ledger_json=_stored_ledger()))
        book = await store.update_book(1, "Dune", "Frank Herbert", 120, SELLER)
        assert book.author == "Frank Herbert"
        assert book.price == 120

    @pytest.mark.asyncio
    async def test_get_unknown_raises(self) -> None:
        store = LedgerStore(_mock_vault())
        with pytest.raises(NotFoundError):
            await store.get_book(1)

    @pytest.mark.asyncio
    async def test_concurrent_lists_get_distinct_ids(self) -> None:
        store = LedgerStore(_mock_vault())
        ids = await asyncio.gather(*(
            store.list_book(f"T{i}", "A", 10, SELLER) for i in range(20)
        ))
        assert sorted(ids) == list(range(1, 21))

    @pytest.mark.asyncio
    async def test_concurrent_purchases_sell_once(self) -> None:
        store = LedgerStore(_mock_vault(ledger_json=_stored_ledger()))
        results = await asyncio.gather(
            *(store.purchase_book(1, 100, f"buyer-{i}") for i in range(5)),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 4
        assert all(isinstance(e, AlreadySoldError) for e in errors)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestLedgerStoreNotifications:
    @pytest.mark.asyncio
    async def test_events_published_in_order(self) -> None:
        sink = AsyncMock()
        store = LedgerStore(_mock_vault(), sink=sink)
        await store.list_book("Dune", "Herbert", 100, SELLER)
        await store.update_book(1, "Dune", "Herbert", 90, SELLER)
        await store.purchase_book(1, 90, BUYER)
        published = [c.args[0] for c in sink.publish.call_args_list]
        assert published == [
            BookAdded(id=1, title="Dune", author="Herbert", price=100, seller=SELLER),
            BookUpdated(id=1, title="Dune", author="Herbert", price=90),
            BookPurchased(id=1, title="Dune", author="Herbert", price=90, buyer=BUYER),
        ]
        assert store.health()["events_published"] == 3

    @pytest.mark.asyncio
    async def test_failed_operation_publishes_nothing(self) -> None:
        sink = AsyncMock()
        store = LedgerStore(_mock_vault(ledger_json=_stored_ledger()), sink=sink)
        with pytest.raises(InvalidInputError):
            await store.update_book(1, "", "Herbert", 100, SELLER)
        sink.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_fail_operation(self) -> None:
        sink = AsyncMock()
        sink.publish = AsyncMock(side_effect=Exception("broker down"))
        store = LedgerStore(_mock_vault(), sink=sink)
        assert await store.list_book("Dune", "Herbert", 100, SELLER) == 1
        assert (await store.get_book(1)).title == "Dune"


# ---------------------------------------------------------------------------
# Flushing
# ---------------------------------------------------------------------------


class TestLedgerStoreFlush:
    @pytest.mark.asyncio
    async def test_flush_writes_dirty_ledger(self) -> None:
        vault = _mock_vault()
        store = LedgerStore(vault)
        await store.list_book("Dune", "Herbert", 100, SELLER)
        assert await store.flush() is True
        assert store.dirty is False
        vault.store_ledger.assert_called_once()

    @pytest.mark.asyncio
    async def test_flush_clean_is_noop(self) -> None:
        vault = _mock_vault()
        store = LedgerStore(vault)
        assert await store.flush() is True
        vault.store_ledger.assert_not_called()

    @pytest.mark.asyncio
    async def test_flush_retries_then_succeeds(self) -> None:
        vault = _mock_vault()
        vault.store_ledger = AsyncMock(side_effect=[Exception("blip"), "ledger.json"])
        store = LedgerStore(vault, flush_retries=1, flush_retry_delay=0)
        await store.list_book("Dune", "Herbert", 100, SELLER)
        assert await store.flush() is True
        assert vault.store_ledger.call_count == 2
        assert store.health()["total_flushes"] == 1

    @pytest.mark.asyncio
    async def test_flush_gives_up_after_retries(self) -> None:
        vault = _mock_vault(fail_store=True)
        store = LedgerStore(vault, flush_retries=2, flush_retry_delay=0)
        await store.list_book("Dune", "Herbert", 100, SELLER)
        assert await store.flush() is False
        assert vault.store_ledger.call_count == 3
        assert store.dirty is True

    @pytest.mark.asyncio
    async def test_opportunistic_flush(self) -> None:
        vault = _mock_vault()
        store = LedgerStore(vault, flush_interval_secs=0)
        await store.list_book("Dune", "Herbert", 100, SELLER)
        vault.store_ledger.assert_not_called()
        await store.get_book(1)
        vault.store_ledger.assert_called_once()

    @pytest.mark.asyncio
    async def test_stop_flushes_remaining(self) -> None:
        vault = _mock_vault()
        store = LedgerStore(vault, flush_interval_secs=3600)
        await store.start_background_flush()
        assert store.health()["background_flush_running"] is True
        await store.list_book("Dune", "Herbert", 100, SELLER)
        await store.stop()
        assert store.health()["background_flush_running"] is False
        vault.store_ledger.assert_called_once()

    @pytest.mark.asyncio
    async def test_snapshot(self) -> None:
        vault = _mock_vault(ledger_json=_stored_ledger())
        store = LedgerStore(vault, ledger_id="market")
        result = await store.snapshot("2026-01-01T00:00:00Z")
        assert result == "snapshot.json"
        ledger_id, ledger_json, timestamp = vault.snapshot_ledger.call_args[0]
        assert ledger_id == "market"
        assert timestamp == "2026-01-01T00:00:00Z"
        assert BookLedger.from_json(ledger_json).book_count == 1

    @pytest.mark.asyncio
    async def test_snapshot_failure_returns_none(self) -> None:
        vault = _mock_vault()
        vault.snapshot_ledger = AsyncMock(side_effect=Exception("boom"))
        store = LedgerStore(vault)
        assert await store.snapshot("t") is None

    def test_health_before_load(self) -> None:
        health = LedgerStore(_mock_vault(), ledger_id="market").health()
        assert health["ledger_id"] == "market"
        assert health["loaded"] is False
        assert health["book_count"] is None
        assert health["dirty"] is False


# ---------------------------------------------------------------------------
# LoggingEventSink
# ---------------------------------------------------------------------------


class TestLoggingEventSink:
    def test_event_to_dict(self) -> None:
        event = BookPurchased(id=1, title="Dune", author="Herbert", price=100, buyer=BUYER)
        assert event.to_dict() == {
            "event": "BookPurchased", "id": 1, "title": "Dune",
            "author": "Herbert", "price": 100, "buyer": BUYER,
        }

    def test_satisfies_protocol(self) -> None:
        assert isinstance(LoggingEventSink(), EventSink)

    @pytest.mark.asyncio
    async def test_store_logs_events(self, caplog) -> None:
        store = LedgerStore(_mock_vault(), sink=LoggingEventSink())
        with caplog.at_level(logging.INFO, logger="bookledger.events"):
            await store.list_book("Dune", "Herbert", 100, SELLER)
        records = [r for r in caplog.records if r.name == "bookledger.events"]
        assert len(records) == 1
        assert "BookAdded" in records[0].getMessage()
        assert "'seller': 'seller-a'" in records[0].getMessage()
