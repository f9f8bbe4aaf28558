"""Holding sync - positions enriched with dividend metrics."""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from integrations.brokerage_protocol import BrokerageClient, BrokerageHolding
from integrations.exceptions import UPSTREAM_FAILURES
from models import Account, Holding, Instrument, Owner
from services.account_service import AccountService
from services.dividend_calculator import DividendCalculator, DividendMetrics, parse_frequency
from services.instrument_service import InstrumentService
from services.sync_result import ErrorCategory, StageResult, SyncItemError
from services.transaction_service import TransactionService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_currency(symbol: str, instrument: Instrument | None) -> str:
    """Instrument currency, else CAD for TSX listings, else USD."""
    if instrument is not None and instrument.currency:
        return instrument.currency
    if symbol.upper().endswith(".TO"):
        return "CAD"
    return "USD"


def annual_dividend_per_share(metrics: DividendMetrics, instrument: Instrument | None) -> Decimal:
    """Projected annual dividend per share stored on the Holding row."""
    if metrics.annual_dividend_per_share > 0:
        return metrics.annual_dividend_per_share
    if instrument is None or not instrument.dividend_per_share:
        return ZERO
    frequency = parse_frequency(instrument.dividend_frequency) or 0
    return Decimal(str(instrument.dividend_per_share)) * frequency


class HoldingService:
    """Upserts positions by (account, instrument) and computes dividend data."""

    def __init__(
        self,
        client: BrokerageClient | None,
        instrument_service: InstrumentService | None = None,
        calculator: DividendCalculator | None = None,
    ):
        self._client = client
        self.instruments = instrument_service or InstrumentService(client)
        self.calculator = calculator or DividendCalculator()

    def sync_holdings(
        self,
        db: Session,
        owner: Owner,
        full_sync: bool = False,
        should_stop: Callable[[], bool] | None = None,
    ) -> StageResult:
        """Sync positions for every account of the owner.

        On a full sync each account's holdings are deleted first so
        positions that disappeared upstream do not survive. Failures are
        isolated per account and per holding.
        """
        result = StageResult()
        accounts = (
            db.query(Account).filter_by(owner_id=owner.id).order_by(Account.number).all()
        )
        logger.info(
            "Holding sync started for %s: %d accounts (full_sync=%s)",
            owner.name, len(accounts), full_sync,
        )

        for account in accounts:
            if should_stop is not None and should_stop():
                logger.warning("Stop requested; holding sync for %s halted", owner.name)
                break
            try:
                result.merge(self._sync_account(db, owner, account, full_sync))
            except UPSTREAM_FAILURES as exc:
                logger.warning("Failed to fetch holdings for account %s: %s", account.number, exc)
                result.errors.append(
                    SyncItemError(
                        stage="holdings",
                        message=f"Failed to fetch holdings: {exc}",
                        category=ErrorCategory.UPSTREAM,
                        account_number=account.number,
                    )
                )
            except Exception as exc:
                logger.error(
                    "Unexpected error syncing holdings for account %s: %s",
                    account.number, exc, exc_info=True,
                )
                result.errors.append(
                    SyncItemError(
                        stage="holdings",
                        message=str(exc),
                        account_number=account.number,
                    )
                )

        logger.info(
            "Holding sync completed for %s: %d synced, %d errors",
            owner.name, result.synced, len(result.errors),
        )
        return result.finish()

    def _sync_account(
        self, db: Session, owner: Owner, account: Account, full_sync: bool
    ) -> StageResult:
        result = StageResult()
        positions = self._client.get_holdings(account.number, owner.name) or []

        if full_sync:
            deleted = (
                db.query(Holding)
                .filter(Holding.account_id == account.id)
                .delete(synchronize_session=False)
            )
            db.flush()
            db.expire(account, ["holdings"])
            logger.info("Cleared %d holdings for account %s", deleted, account.number)

        catalog_errors: list[SyncItemError] = []
        instruments = self.instruments.ensure_fresh(
            db, owner.name, [p.symbol_id for p in positions], errors=catalog_errors
        )
        for error in catalog_errors:
            error.account_number = account.number
        result.errors.extend(catalog_errors)
        for position in positions:
            try:
                with db.begin_nested():
                    self._upsert_holding(
                        db, account, position, instruments.get(position.symbol_id)
                    )
                    db.flush()
                result.synced += 1
            except SQLAlchemyError as exc:
                logger.warning(
                    "Failed to save holding %s in account %s: %s",
                    position.symbol, account.number, exc,
                )
                result.errors.append(
                    SyncItemError(
                        stage="holdings",
                        message=f"Failed to save holding {position.symbol}: {exc}",
                        category=ErrorCategory.PERSISTENCE,
                        account_number=account.number,
                        symbol=position.symbol,
                    )
                )

        AccountService.update_account_statistics(db, account)
        logger.info(
            "Synced %d/%d holdings for account %s",
            result.synced, len(positions), account.number,
        )
        return result

    def _upsert_holding(
        self,
        db: Session,
        account: Account,
        position: BrokerageHolding,
        instrument: Instrument | None,
    ) -> Holding:
        holding = (
            db.query(Holding)
            .filter_by(account_id=account.id, symbol_id=position.symbol_id)
            .first()
        )
        if holding is None:
            holding = Holding(account_id=account.id, symbol_id=position.symbol_id)
            db.add(holding)

        holding.symbol = position.symbol
        holding.open_quantity = position.open_quantity
        holding.closed_quantity = position.closed_quantity
        holding.current_price = position.current_price
        holding.current_market_value = position.current_market_value
        holding.average_entry_price = position.average_entry_price
        holding.total_cost = position.total_cost
        holding.day_pnl = position.day_pnl
        holding.open_pnl = position.open_pnl
        holding.closed_pnl = position.closed_pnl
        holding.is_real_time = position.is_real_time
        holding.is_under_reorg = position.is_under_reorg
        holding.currency = resolve_currency(position.symbol, instrument)
        if instrument is not None:
            holding.security_type = instrument.security_type
            holding.industry_sector = instrument.industry_sector
            holding.industry_group = instrument.industry_group

        self._apply_dividends(db, holding, instrument)
        holding.synced_at = _utcnow_naive()
        return holding

    def _apply_dividends(
        self, db: Session, holding: Holding, instrument: Instrument | None
    ) -> DividendMetrics:
        transactions = TransactionService.get_dividend_transactions(
            db, holding.account_id, holding.symbol
        )
        metrics = self.calculator.calculate(
            holding.symbol,
            holding.open_quantity,
            holding.average_entry_price,
            instrument,
            transactions,
        )
        self.calculator.validate(metrics, holding.symbol)

        instrument_pays = bool(instrument is not None and instrument.dividend_per_share)
        holding.dividend_per_share = annual_dividend_per_share(metrics, instrument)
        holding.is_dividend_stock = (
            metrics.annual_dividend > 0 or metrics.total_received > 0 or instrument_pays
        )
        holding.dividend_data = metrics.to_dict()
        return metrics

    def recalculate_dividends(
        self, db: Session, owner_name: str, symbol: str | None = None
    ) -> int:
        """Recompute stored dividend data from local transactions and catalog.

        No upstream calls are made.

        Returns:
            Number of holdings updated.
        """
        query = (
            db.query(Holding)
            .join(Account, Holding.account_id == Account.id)
            .join(Owner, Account.owner_id == Owner.id)
            .filter(Owner.name == owner_name)
        )
        if symbol:
            query = query.filter(Holding.symbol == symbol)
        holdings = query.all()

        instruments = InstrumentService.get_by_symbol_ids(db, [h.symbol_id for h in holdings])
        for holding in holdings:
            self._apply_dividends(db, holding, instruments.get(holding.symbol_id))
        db.flush()
        logger.info("Recalculated dividend data for %d holdings of %s", len(holdings), owner_name)
        return len(holdings)

    @staticmethod
    def get_holding_stats(db: Session, owner_name: str) -> dict:
        """Position counts and totals for an owner."""
        row = (
            db.query(
                func.count(Holding.id),
                func.count(func.distinct(Holding.symbol_id)),
                func.sum(Holding.total_cost),
                func.sum(Holding.current_market_value),
                func.max(Holding.synced_at),
            )
            .join(Account, Holding.account_id == Account.id)
            .join(Owner, Account.owner_id == Owner.id)
            .filter(Owner.name == owner_name)
            .one()
        )
        dividend_count = (
            db.query(func.count(Holding.id))
            .join(Account, Holding.account_id == Account.id)
            .join(Owner, Account.owner_id == Owner.id)
            .filter(Owner.name == owner_name, Holding.is_dividend_stock.is_(True))
            .scalar()
        )
        total, unique_symbols, cost, value, last_synced = row
        return {
            "owner_name": owner_name,
            "total_holdings": total,
            "unique_symbols": unique_symbols,
            "dividend_holdings": dividend_count,
            "total_cost": Decimal(str(cost or 0)),
            "total_market_value": Decimal(str(value or 0)),
            "last_synced_at": last_synced,
        }

    @staticmethod
    def get_stale_holdings(
        db: Session, owner_name: str, days_old: int = 7, now: datetime | None = None
    ) -> list[Holding]:
        """Holdings not refreshed within ``days_old`` days."""
        now = now or datetime.now(timezone.utc)
        cutoff = (now - timedelta(days=days_old)).astimezone(timezone.utc).replace(tzinfo=None)
        return (
            db.query(Holding)
            .join(Account, Holding.account_id == Account.id)
            .join(Owner, Account.owner_id == Owner.id)
            .filter(Owner.name == owner_name, Holding.synced_at < cutoff)
            .order_by(Holding.synced_at)
            .all()
        )
