"""PortfolioSnapshot model - immutable point-in-time rollup per owner."""

from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class PortfolioSnapshot(Base):
    """Append-only portfolio totals and allocation breakdowns.

    Rows are never updated; retention cleanup deletes old rows.
    """

    __tablename__ = "portfolio_snapshots"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    owner_id = Column(
        String(36), ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    scope = Column(String, nullable=False, default="owner")
    taken_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    total_investment = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    current_value = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    unrealized_pnl = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    total_dividends = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    total_return_value = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    total_return_percent = Column(Numeric(10, 4), nullable=False, default=Decimal("0"))

    number_of_positions = Column(Integer, default=0, nullable=False)
    number_of_accounts = Column(Integer, default=0, nullable=False)
    number_of_dividend_stocks = Column(Integer, default=0, nullable=False)

    asset_allocation = Column(JSON, nullable=True)
    sector_allocation = Column(JSON, nullable=True)
    currency_breakdown = Column(JSON, nullable=True)

    owner = relationship("Owner", back_populates="snapshots")
