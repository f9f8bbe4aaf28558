"""Holding model - a quantity of one instrument held in one account."""

from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Holding(Base):
    """A position upserted on every holdings sync.

    Identity is (account_id, symbol_id). ``dividend_data`` embeds the
    serialized DividendMetrics block computed at sync time.
    """

    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint("account_id", "symbol_id", name="uix_holding_account_symbol"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    symbol_id = Column(BigInteger, nullable=False)
    symbol = Column(String, nullable=False, index=True)

    open_quantity = Column(Numeric(18, 8), nullable=False, default=Decimal("0"))
    closed_quantity = Column(Numeric(18, 8), nullable=False, default=Decimal("0"))
    current_price = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    current_market_value = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    average_entry_price = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    total_cost = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    day_pnl = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    open_pnl = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    closed_pnl = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    is_real_time = Column(Boolean, default=False, nullable=False)
    is_under_reorg = Column(Boolean, default=False, nullable=False)

    currency = Column(String, nullable=True)
    security_type = Column(String, nullable=True)
    industry_sector = Column(String, nullable=True)
    industry_group = Column(String, nullable=True)

    # Dividend fields
    dividend_per_share = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))  # annual
    is_dividend_stock = Column(Boolean, default=False, nullable=False)
    dividend_data = Column(JSON, nullable=True)

    synced_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    account = relationship("Account", back_populates="holdings")
