"""Abstract persistence and notification interfaces used by LedgerStore.

Defines the VaultBackend and EventSink Protocols. Concrete vaults live in
``bookledger.vaults``; event transport is the host application's concern.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from bookledger.events import LedgerEvent


@runtime_checkable
class VaultBackend(Protocol):
    """Async persistence backend for serialized book ledgers.

    Any object implementing these three methods can serve as the
    durable backing store for LedgerStore.
    """

    async def store_ledger(self, ledger_id: str, ledger_json: str) -> str: ...

    async def fetch_ledger(self, ledger_id: str) -> str | None: ...

    async def snapshot_ledger(
        self, ledger_id: str, ledger_json: str, timestamp: str
    ) -> str | None: ...


@runtime_checkable
class EventSink(Protocol):
    """Delivers ledger notifications to external observers."""

    async def publish(self, event: LedgerEvent) -> None: ...


class LoggingEventSink:
    """EventSink that writes each notification to the ``bookledger.events`` log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("bookledger.events")

    async def publish(self, event: LedgerEvent) -> None:
        self._logger.info("%s %s", event.kind.value, event.to_dict())
