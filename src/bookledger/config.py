"""Book ledger configuration: plain frozen dataclass, no pydantic.

The host application constructs this from its own settings (env vars,
pydantic-settings, etc.) and passes it to the store and tools.
"""

from dataclasses import dataclass

from bookledger.constants import DEFAULT_CURRENCY, DEFAULT_LEDGER_ID


@dataclass(frozen=True)
class BookLedgerConfig:
    btcpay_host: str | None = None
    btcpay_store_id: str | None = None
    btcpay_api_key: str | None = None
    currency: str = DEFAULT_CURRENCY
    identity_public_key: str | None = None
    identity_audience: str | None = None
    vault_path: str | None = None
    ledger_id: str = DEFAULT_LEDGER_ID
    flush_interval_secs: int = 60
    flush_retries: int = 1
    flush_retry_delay: float = 2.0
