"""In-memory BookLedger with write-behind flush to a vault.

The store is the hot path for every ledger operation. It serializes calls
with a single lock, so no two operations interleave their reads and
writes. The vault is the durable backing store, updated every
``flush_interval_secs``; sales are flushed before the call returns.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from bookledger.constants import DEFAULT_LEDGER_ID
from bookledger.errors import StorageError
from bookledger.events import LedgerEvent
from bookledger.ledger import Book, BookLedger

if TYPE_CHECKING:
    from bookledger.vault_backend import EventSink, VaultBackend

logger = logging.getLogger(__name__)


class LedgerStore:
    """Owns one BookLedger loaded from a vault.

    - The ledger is loaded on first use; a failed load raises StorageError
      and is retried on the next call.
    - Successful mutations mark the ledger dirty and publish their
      notifications to the sink.
    - A background task (or the opportunistic check on every call)
      flushes dirty state to the vault periodically.
    """

    def __init__(
        self,
        vault: VaultBackend,
        ledger_id: str = DEFAULT_LEDGER_ID,
        sink: EventSink | None = None,
        flush_interval_secs: int = 60,
        flush_retries: int = 1,
        flush_retry_delay: float = 2.0,
    ) -> None:
        self._vault = vault
        self._ledger_id = ledger_id
        self._sink = sink
        self._flush_interval = flush_interval_secs
        self._flush_retries = flush_retries
        self._flush_retry_delay = flush_retry_delay
        self._ledger: BookLedger | None = None
        self._dirty = False
        self._lock = asyncio.Lock()
        self._flush_task: asyncio.Task[None] | None = None
        self._last_flush_at: str | None = None
        self._total_flushes: int = 0
        self._events_published: int = 0
        self._last_flush_check: float = time.monotonic()

    @property
    def ledger_id(self) -> str:
        return self._ledger_id

    @property
    def dirty(self) -> bool:
        return self._dirty

    # -- loading ----------------------------------------------------------------

    async def _ensure_loaded(self) -> BookLedger:
        """Return the ledger, loading it from the vault on first use."""
        if self._ledger is not None:
            return self._ledger
        try:
            ledger_json = await self._vault.fetch_ledger(self._ledger_id)
        except Exception as e:
            logger.warning("Failed to load ledger %s from vault.", self._ledger_id)
            raise StorageError(f"Could not load ledger {self._ledger_id}: {e}") from e
        self._ledger = BookLedger.from_json(ledger_json)
        logger.info(
            "Loaded ledger %s (%d book(s)).", self._ledger_id, self._ledger.book_count,
        )
        return self._ledger

    async def _maybe_flush(self) -> None:
        """Flush if dirty and enough time has passed since the last check.

        Called on every operation so persistence still happens where the
        background loop never gets scheduled between requests.
        """
        now = time.monotonic()
        if now - self._last_flush_check < self._flush_interval:
            return
        self._last_flush_check = now
        if self._dirty and await self._flush_locked():
            logger.info("Opportunistic flush: wrote ledger %s.", self._ledger_id)

    # -- operations -------------------------------------------------------------

    async def list_book(self, title: str, author: str, price: int, seller: str) -> int:
        """Create a listing and return its id."""
        async with self._lock:
            await self._maybe_flush()
            ledger = await self._ensure_loaded()
            book_id = ledger.list_book(title, author, price, seller)
            self._dirty = True
            events = ledger.drain_events()
        await self._publish(events)
        return book_id

    async def purchase_book(self, book_id: int, offered_amount: int, buyer: str) -> Book:
        """Mark a listing sold and flush immediately. Returns the sold record."""
        async with self._lock:
            await self._maybe_flush()
            ledger = await self._ensure_loaded()
            ledger.purchase(book_id, offered_amount, buyer)
            self._dirty = True
            if not await self._flush_locked():
                logger.error(
                    "CRITICAL: Failed to flush sale of book %d to %s (ledger %s). "
                    "The sale is in memory but may be lost on restart.",
                    book_id, buyer, self._ledger_id,
                )
            book = ledger.get(book_id)
            events = ledger.drain_events()
        await self._publish(events)
        return book

    async def update_book(
        self, book_id: int, title: str, author: str, price: int, caller: str,
    ) -> Book:
        """Edit an unsold listing. Returns the updated record."""
        async with self._lock:
            await self._maybe_flush()
            ledger = await self._ensure_loaded()
            ledger.update(book_id, title, author, price, caller)
            self._dirty = True
            book = ledger.get(book_id)
            events = ledger.drain_events()
        await self._publish(events)
        return book

    async def get_book(self, book_id: int) -> Book:
        """Return the current record for ``book_id``."""
        async with self._lock:
            await self._maybe_flush()
            ledger = await self._ensure_loaded()
            return ledger.get(book_id)

    async def book_count(self) -> int:
        async with self._lock:
            ledger = await self._ensure_loaded()
            return ledger.book_count

    # -- notifications ------------------------------------------------------------

    async def _publish(self, events: list[LedgerEvent]) -> None:
        """Hand notifications to the sink. Delivery failures are logged."""
        if self._sink is None:
            return
        for event in events:
            try:
                await self._sink.publish(event)
                self._events_published += 1
            except Exception:
                logger.warning(
                    "Failed to publish %s for book %d.", event.kind.value, event.id,
                )

    # -- flushing -----------------------------------------------------------------

    async def _flush_locked(self) -> bool:
        """Write the ledger to the vault with retry. Caller holds the lock."""
        if self._ledger is None or not self._dirty:
            return True

        max_attempts = 1 + self._flush_retries
        for attempt in range(max_attempts):
            try:
                await self._vault.store_ledger(self._ledger_id, self._ledger.to_json())
                self._dirty = False
                self._last_flush_at = datetime.now(timezone.utc).isoformat()
                self._total_flushes += 1
                return True
            except Exception:
                if attempt < max_attempts - 1:
                    logger.warning(
                        "Flush attempt %d/%d failed for ledger %s, retrying in %.1fs...",
                        attempt + 1, max_attempts, self._ledger_id, self._flush_retry_delay,
                    )
                    await asyncio.sleep(self._flush_retry_delay)
                else:
                    logger.warning(
                        "Failed to flush ledger %s to vault after %d attempt(s).",
                        self._ledger_id, max_attempts,
                    )
        return False

    async def flush(self) -> bool:
        """Flush dirty state to the vault now. Returns True if nothing is left unflushed."""
        async with self._lock:
            return await self._flush_locked()

    async def snapshot(self, timestamp: str) -> str | None:
        """Write a point-in-time copy of the ledger to the vault."""
        async with self._lock:
            ledger = await self._ensure_loaded()
            ledger_json = ledger.to_json()
        try:
            return await self._vault.snapshot_ledger(self._ledger_id, ledger_json, timestamp)
        except Exception:
            logger.warning("Failed to snapshot ledger %s.", self._ledger_id)
            return None

    async def start_background_flush(self) -> None:
        """Start the periodic background flush task."""
        if self._flush_task is not None:
            return
        self._flush_task = asyncio.create_task(self._background_flush_loop())

    async def _background_flush_loop(self) -> None:
        """Periodically flush dirty state until cancelled."""
        logger.info(
            "Background flush loop started for ledger %s (interval=%ds).",
            self._ledger_id, self._flush_interval,
        )
        cycles = 0
        try:
            while True:
                await asyncio.sleep(self._flush_interval)
                cycles += 1
                was_dirty = self._dirty
                if await self.flush() and was_dirty:
                    logger.info(
                        "Background flush: wrote ledger %s (cycle %d, total flushes: %d).",
                        self._ledger_id, cycles, self._total_flushes,
                    )
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Cancel background flush and flush any remaining dirty state."""
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        await self.flush()

    def health(self) -> dict[str, object]:
        """Return store health metrics for monitoring."""
        return {
            "ledger_id": self._ledger_id,
            "loaded": self._ledger is not None,
            "book_count": self._ledger.book_count if self._ledger is not None else None,
            "dirty": self._dirty,
            "last_flush_at": self._last_flush_at,
            "total_flushes": self._total_flushes,
            "events_published": self._events_published,
            "flush_retries": self._flush_retries,
            "flush_retry_delay": self._flush_retry_delay,
            "background_flush_running": self._flush_task is not None
                                        and not self._flush_task.done(),
            "last_flush_check_age_secs": round(
                time.monotonic() - self._last_flush_check, 1
            ),
        }
