# services/data_sources.py
"""
Where payment state lives.

  DataSource.LIVE      SqlPaymentStore against DATABASE_URL (durable)
  DataSource.FALLBACK  MemoryPaymentStore (process-local, lost on restart)

PAYMENTS_DATA_SOURCE = live | fallback | auto. "auto" probes the database
once at startup and falls back if it cannot be reached. The choice is made
once per app; handlers only see the PaymentStore returned by get_store().

With APP_ENV=production the ledger must be durable: "fallback" is refused and
"auto" raises instead of falling back.
"""

from __future__ import annotations
from enum import Enum

from flask import current_app

from models.store import PaymentStore
from models.payments_store import SqlPaymentStore
from models.memory_store import MemoryPaymentStore

_EXT_STORE = "payments_store"
_EXT_SOURCE = "payments_data_source"


class DataSource(str, Enum):
    LIVE = "live"
    FALLBACK = "fallback"


def probe_database() -> None:
    SqlPaymentStore().ping()


def select_data_source(app) -> DataSource:
    production = (app.config.get("APP_ENV") or "").lower() == "production"
    default = "live" if production else "auto"
    wanted = (app.config.get("PAYMENTS_DATA_SOURCE") or default).lower()
    if wanted == DataSource.LIVE.value:
        return DataSource.LIVE
    if wanted == DataSource.FALLBACK.value:
        if production:
            raise RuntimeError("PAYMENTS_DATA_SOURCE=fallback is not allowed in production")
        return DataSource.FALLBACK
    if wanted != "auto":
        raise RuntimeError(f"Unknown PAYMENTS_DATA_SOURCE: {wanted}")

    try:
        probe_database()
        return DataSource.LIVE
    except Exception as e:
        if production:
            raise RuntimeError(f"Database unreachable in production: {e}") from e
        app.logger.warning(
            "Database unreachable (%s); payments run on the in-memory fallback store", e)
        return DataSource.FALLBACK


def build_store(source: DataSource) -> PaymentStore:
    if source is DataSource.LIVE:
        return SqlPaymentStore()
    return MemoryPaymentStore()


def init_app(app) -> DataSource:
    source = select_data_source(app)
    app.extensions[_EXT_SOURCE] = source
    app.extensions[_EXT_STORE] = build_store(source)
    app.logger.info("Payments data source: %s", source.value)
    return source


def get_store() -> PaymentStore:
    return current_app.extensions[_EXT_STORE]


def get_data_source() -> DataSource:
    return current_app.extensions[_EXT_SOURCE]
