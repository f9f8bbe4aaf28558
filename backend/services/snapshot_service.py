"""Portfolio snapshots - append-only rollups per owner."""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from config import settings
from models import Account, Holding, Owner, PortfolioSnapshot
from services.aggregation_service import percent
from services.dividend_calculator import DividendMetrics, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def classify_asset(symbol: str, security_type: str | None) -> str:
    """Bucket a holding into Stocks / ETFs / Bonds / Other."""
    symbol = symbol or ""
    if "ETF" in symbol or (".TO" in symbol and len(symbol) <= 6):
        return "ETFs"
    if "BOND" in symbol or "TDB" in symbol:
        return "Bonds"
    if security_type == "Stock":
        return "Stocks"
    return "Other"


def _rows(buckets: dict[str, Decimal], key: str, total: Decimal) -> list[dict]:
    rows = [
        {key: name, "value": str(value), "percentage": str(percent(value, total))}
        for name, value in buckets.items()
    ]
    rows.sort(key=lambda row: Decimal(row["value"]), reverse=True)
    return rows


class SnapshotService:
    """Creates, reads and prunes PortfolioSnapshot rows."""

    @staticmethod
    def create_snapshot(
        db: Session,
        owner_name: str,
        sector_threshold: float | None = None,
    ) -> PortfolioSnapshot:
        """Roll up the owner's current holdings into a new snapshot.

        Raises:
            ValueError: If the owner does not exist.
        """
        owner = db.query(Owner).filter_by(name=owner_name).first()
        if owner is None:
            raise ValueError(f"Owner not found: {owner_name}")
        threshold = Decimal(str(
            settings.SNAPSHOT_SECTOR_THRESHOLD_PERCENT if sector_threshold is None else sector_threshold
        ))

        holdings = (
            db.query(Holding)
            .join(Account, Holding.account_id == Account.id)
            .filter(Account.owner_id == owner.id)
            .all()
        )
        account_count = db.query(Account).filter(Account.owner_id == owner.id).count()

        total_investment = current_value = unrealized = dividends = ZERO
        dividend_stocks = 0
        sectors: dict[str, Decimal] = defaultdict(lambda: ZERO)
        currencies: dict[str, Decimal] = defaultdict(lambda: ZERO)
        assets: dict[str, Decimal] = defaultdict(lambda: ZERO)

        for holding in holdings:
            value = to_decimal(holding.current_market_value)
            total_investment += to_decimal(holding.total_cost)
            current_value += value
            unrealized += to_decimal(holding.open_pnl)

            metrics = DividendMetrics.from_dict(holding.dividend_data)
            dividends += metrics.total_received
            if metrics.annual_dividend > 0:
                dividend_stocks += 1

            symbol = holding.symbol or ""
            sector = holding.industry_sector or (
                "Canadian Equity" if ".TO" in symbol else "Other"
            )
            sectors[sector] += value
            currency = holding.currency or ("CAD" if ".TO" in symbol else "USD")
            currencies[currency] += value
            assets[classify_asset(symbol, holding.security_type)] += value

        total_return = unrealized + dividends
        sector_rows = [
            row for row in _rows(sectors, "sector", current_value)
            if Decimal(row["percentage"]) > threshold
        ]
        asset_rows = [
            row for row in _rows(assets, "category", current_value)
            if Decimal(row["value"]) > 0
        ]

        snapshot = PortfolioSnapshot(
            owner_id=owner.id,
            scope="owner",
            taken_at=_naive_utc(datetime.now(timezone.utc)),
            total_investment=total_investment,
            current_value=current_value,
            unrealized_pnl=unrealized,
            total_dividends=dividends,
            total_return_value=total_return,
            total_return_percent=percent(total_return, total_investment),
            number_of_positions=len(holdings),
            number_of_accounts=account_count,
            number_of_dividend_stocks=dividend_stocks,
            asset_allocation=asset_rows,
            sector_allocation=sector_rows,
            currency_breakdown=_rows(currencies, "currency", current_value),
        )
        db.add(snapshot)
        owner.total_investment = total_investment
        owner.total_value = current_value
        db.flush()
        logger.info(
            "Portfolio snapshot %s created for %s: %d positions, value=%s",
            snapshot.id, owner_name, len(holdings), current_value,
        )
        return snapshot

    @staticmethod
    def get_latest_snapshot(db: Session, owner_name: str) -> PortfolioSnapshot | None:
        return (
            db.query(PortfolioSnapshot)
            .join(Owner, PortfolioSnapshot.owner_id == Owner.id)
            .filter(Owner.name == owner_name)
            .order_by(PortfolioSnapshot.taken_at.desc())
            .first()
        )

    @staticmethod
    def get_snapshot_history(
        db: Session, owner_name: str, days: int = 30, now: datetime | None = None
    ) -> list[PortfolioSnapshot]:
        """Snapshots from the last ``days`` days, newest first."""
        now = now or datetime.now(timezone.utc)
        since = _naive_utc(now - timedelta(days=days))
        return (
            db.query(PortfolioSnapshot)
            .join(Owner, PortfolioSnapshot.owner_id == Owner.id)
            .filter(Owner.name == owner_name, PortfolioSnapshot.taken_at >= since)
            .order_by(PortfolioSnapshot.taken_at.desc())
            .all()
        )

    @staticmethod
    def cleanup_old_snapshots(
        db: Session,
        retention_days: int | None = None,
        owner_name: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Delete snapshots older than the retention window.

        Returns:
            Number of snapshots deleted (not yet committed).
        """
        retention_days = retention_days or settings.SNAPSHOT_RETENTION_DAYS
        now = now or datetime.now(timezone.utc)
        cutoff = _naive_utc(now - timedelta(days=retention_days))

        query = db.query(PortfolioSnapshot).filter(PortfolioSnapshot.taken_at < cutoff)
        if owner_name:
            owner_ids = db.query(Owner.id).filter(Owner.name == owner_name)
            query = query.filter(PortfolioSnapshot.owner_id.in_(owner_ids.scalar_subquery()))
        deleted = query.delete(synchronize_session=False)
        if deleted:
            logger.info("Cleaned up %d snapshots older than %d days", deleted, retention_days)
        return deleted
