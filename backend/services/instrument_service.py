"""Service for the Instrument catalog."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy.orm import Session

from config import settings
from integrations.brokerage_protocol import BrokerageClient, BrokerageInstrument
from integrations.exceptions import UPSTREAM_FAILURES
from models import Instrument
from models.utils import ensure_utc
from services.sync_result import ErrorCategory, SyncItemError

logger = logging.getLogger(__name__)

_CATALOG_FIELDS = (
    "symbol",
    "description",
    "currency",
    "security_type",
    "industry_sector",
    "industry_group",
    "is_tradable",
    "last_trade_price",
    "prev_day_close_price",
    "bid_price",
    "ask_price",
    "volume",
    "dividend_per_share",
    "dividend_frequency",
    "yield_percent",
    "ex_date",
    "dividend_date",
)


def _naive_utc(value):
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class InstrumentService:
    """Lazy, TTL-based refresh of catalog entries referenced by holdings."""

    def __init__(self, client: BrokerageClient | None, ttl_hours: int | None = None):
        self._client = client
        self.ttl = timedelta(hours=ttl_hours or settings.INSTRUMENT_REFRESH_TTL_HOURS)

    @staticmethod
    def get_by_symbol_ids(db: Session, symbol_ids: Iterable[int]) -> dict[int, Instrument]:
        """Load catalog entries keyed by symbol id."""
        ids = {int(i) for i in symbol_ids if i is not None}
        if not ids:
            return {}
        rows = db.query(Instrument).filter(Instrument.symbol_id.in_(ids)).all()
        return {row.symbol_id: row for row in rows}

    def ensure_fresh(
        self,
        db: Session,
        owner_name: str,
        symbol_ids: Iterable[int],
        now: datetime | None = None,
        errors: list[SyncItemError] | None = None,
    ) -> dict[int, Instrument]:
        """Make sure every referenced instrument exists and is within the TTL.

        Missing or stale ids are fetched in a single upstream call. On an
        upstream failure the cached rows (possibly stale) are returned so
        the holdings sync can proceed with what it has.

        Args:
            db: Database session
            owner_name: Owner whose credentials the catalog call uses
            symbol_ids: Referenced catalog ids; None entries are ignored
            now: Reference time for the TTL check
            errors: Collects a holdings-stage error when the refresh fails

        Returns:
            Catalog entries keyed by symbol id (flushed, not committed).
        """
        now = now or datetime.now(timezone.utc)
        wanted = {int(i) for i in symbol_ids if i is not None}
        cached = self.get_by_symbol_ids(db, wanted)

        stale = sorted(
            symbol_id
            for symbol_id in wanted
            if symbol_id not in cached
            or cached[symbol_id].refreshed_at is None
            or now - ensure_utc(cached[symbol_id].refreshed_at) > self.ttl
        )
        if not stale:
            return cached

        try:
            fetched = self._client.get_instruments(stale, owner_name) or []
        except UPSTREAM_FAILURES as exc:
            logger.warning(
                "Failed to refresh %d instruments for %s: %s", len(stale), owner_name, exc
            )
            if errors is not None:
                errors.append(
                    SyncItemError(
                        stage="holdings",
                        message=f"Failed to refresh {len(stale)} instruments: {exc}",
                        category=ErrorCategory.UPSTREAM,
                    )
                )
            return cached

        for item in fetched:
            cached[item.symbol_id] = self._upsert(db, cached.get(item.symbol_id), item, now)
        db.flush()
        logger.info("Refreshed %d/%d instruments for %s", len(fetched), len(stale), owner_name)
        return cached

    @staticmethod
    def _upsert(
        db: Session,
        instrument: Instrument | None,
        item: BrokerageInstrument,
        now: datetime,
    ) -> Instrument:
        if instrument is None:
            instrument = Instrument(symbol_id=item.symbol_id)
            db.add(instrument)
        for name in _CATALOG_FIELDS:
            setattr(instrument, name, _naive_utc(getattr(item, name)))
        instrument.refreshed_at = _naive_utc(now)
        return instrument
