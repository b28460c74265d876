"""FileVault: VaultBackend implementation on the local filesystem.

Layout under ``root``::

    <ledger_id>/ledger.json                 current state
    <ledger_id>/snapshots/<timestamp>.json  point-in-time copies

Writes go to a temporary file in the same directory and are moved into
place with ``os.replace``, so a reader never sees a half-written ledger.
Blocking file I/O runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

_LEDGER_FILE = "ledger.json"
_SNAPSHOT_DIR = "snapshots"
_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


def _safe_name(name: str) -> str:
    """Map an id or timestamp onto a single path component."""
    cleaned = _SAFE_NAME.sub("_", name).strip(".")
    if not cleaned:
        raise ValueError(f"Unusable name for vault path: {name!r}")
    return cleaned


class FileVault:
    """Vault persistence in plain JSON files.

    Implements the bookledger ``VaultBackend`` protocol:

    - ``store_ledger(ledger_id, ledger_json) -> str``
    - ``fetch_ledger(ledger_id) -> str | None``
    - ``snapshot_ledger(ledger_id, ledger_json, timestamp) -> str | None``

    Returned ids are the paths written.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _ledger_dir(self, ledger_id: str) -> Path:
        return self._root / _safe_name(ledger_id)

    # -- sync helpers (run in a worker thread) --------------------------------

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @staticmethod
    def _read(path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    # -- VaultBackend protocol ---------------------------------------------------

    async def store_ledger(self, ledger_id: str, ledger_json: str) -> str:
        """Replace the current ledger file. Returns its path."""
        path = self._ledger_dir(ledger_id) / _LEDGER_FILE
        await asyncio.to_thread(self._write_atomic, path, ledger_json)
        return str(path)

    async def fetch_ledger(self, ledger_id: str) -> str | None:
        """Return the current ledger JSON, or None if nothing was stored yet."""
        path = self._ledger_dir(ledger_id) / _LEDGER_FILE
        return await asyncio.to_thread(self._read, path)

    async def snapshot_ledger(
        self, ledger_id: str, ledger_json: str, timestamp: str
    ) -> str | None:
        """Write a timestamped copy next to the ledger.

        Returns the snapshot path, or None if the ledger was never stored.
        """
        ledger_dir = self._ledger_dir(ledger_id)
        if not (ledger_dir / _LEDGER_FILE).exists():
            logger.warning("No stored ledger %s to snapshot.", ledger_id)
            return None
        path = ledger_dir / _SNAPSHOT_DIR / f"{_safe_name(timestamp)}.json"
        await asyncio.to_thread(self._write_atomic, path, ledger_json)
        return str(path)
