"""Test fixtures and sample data."""
import pytest
from datetime import datetime, timezone
from decimal import Decimal

from models import Account, Credential, Holding, Instrument, Owner, Transaction
from services.dividend_calculator import DividendMetrics
from sqlalchemy.orm import Session


def create_holding(
    db: Session,
    account: Account,
    symbol: str,
    symbol_id: int,
    shares: Decimal,
    total_cost: Decimal,
    market_value: Decimal | None = None,
    annual_dividend: Decimal = Decimal("0"),
    total_received: Decimal = Decimal("0"),
    dividend_per_share: Decimal = Decimal("0"),
    open_pnl: Decimal = Decimal("0"),
    currency: str | None = "CAD",
    industry_sector: str | None = None,
    security_type: str | None = "Stock",
    synced_at: datetime | None = None,
) -> Holding:
    """Create a Holding with a minimal dividend_data block.

    Args:
        db: Database session
        account: Account that owns the holding
        symbol: Ticker
        symbol_id: Catalog id
        shares: Open quantity
        total_cost: Cost basis
        market_value: Defaults to total_cost + open_pnl
        annual_dividend: Projected annual dividend for the whole position
        total_received: Dividends already received
        dividend_per_share: Annual dividend per share stored on the row

    Returns:
        The flushed Holding
    """
    metrics = DividendMetrics(
        total_received=total_received,
        annual_dividend=annual_dividend,
        monthly_dividend=annual_dividend / 12,
        annual_dividend_per_share=annual_dividend / shares if shares else Decimal("0"),
        dividend_frequency=4 if annual_dividend > 0 else 0,
    )
    holding = Holding(
        account_id=account.id,
        symbol=symbol,
        symbol_id=symbol_id,
        open_quantity=shares,
        average_entry_price=total_cost / shares if shares else Decimal("0"),
        total_cost=total_cost,
        current_market_value=market_value if market_value is not None else total_cost + open_pnl,
        current_price=Decimal("10"),
        open_pnl=open_pnl,
        currency=currency,
        industry_sector=industry_sector,
        security_type=security_type,
        dividend_per_share=dividend_per_share,
        is_dividend_stock=annual_dividend > 0 or total_received > 0 or dividend_per_share > 0,
        dividend_data=metrics.to_dict(),
        synced_at=synced_at or datetime(2024, 6, 1, 12, 0),
    )
    db.add(holding)
    db.flush()
    return holding


def create_dividend(
    db: Session,
    account: Account,
    symbol: str,
    when: datetime,
    net_amount: Decimal,
    quantity: Decimal = Decimal("100"),
) -> Transaction:
    """Create a persisted Dividend transaction."""
    tx = Transaction(
        account_id=account.id,
        transaction_date=when,
        symbol=symbol,
        description=f"{symbol} dividend",
        quantity=quantity,
        net_amount=net_amount,
        type="Dividend",
        raw_type="Dividends",
        is_dividend=True,
        dividend_per_share=abs(net_amount) / quantity if quantity else Decimal("0"),
    )
    db.add(tx)
    db.flush()
    return tx


@pytest.fixture
def owner(db):
    """Create an active test owner."""
    owner = Owner(name="alice", display_name="Alice")
    db.add(owner)
    db.commit()
    db.refresh(owner)
    return owner


@pytest.fixture
def credential(db, owner):
    """Create an active, non-expiring credential for the owner."""
    credential = Credential(owner_id=owner.id, credential_type="refresh", is_active=True)
    db.add(credential)
    db.commit()
    db.refresh(credential)
    return credential


@pytest.fixture
def account(db, owner):
    """Create a TFSA account for the owner."""
    account = Account(
        owner_id=owner.id,
        number="11111111",
        account_type="TFSA",
        currency="CAD",
        cash=Decimal("250.00"),
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture
def second_account(db, owner):
    """Create an RRSP account for the owner."""
    account = Account(
        owner_id=owner.id,
        number="22222222",
        account_type="RRSP",
        currency="CAD",
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture
def instrument(db):
    """Create a monthly-paying catalog entry."""
    instrument = Instrument(
        symbol_id=5001,
        symbol="XEI.TO",
        currency="CAD",
        security_type="ETF",
        industry_sector="Financials",
        last_trade_price=Decimal("25.00"),
        dividend_per_share=Decimal("0.05"),
        dividend_frequency="Monthly",
        yield_percent=Decimal("2.40"),
        refreshed_at=datetime.now(timezone.utc).replace(tzinfo=None),
    )
    db.add(instrument)
    db.commit()
    db.refresh(instrument)
    return instrument
