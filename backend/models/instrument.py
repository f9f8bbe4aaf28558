"""Instrument model - global catalog of tradable securities."""

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Numeric, String

from database import Base
from models.utils import generate_uuid, utcnow


class Instrument(Base):
    """A security keyed by the brokerage's numeric symbol id.

    Refreshed lazily whenever a holdings sync references it and the
    cached copy is older than the configured TTL.
    """

    __tablename__ = "instruments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    symbol_id = Column(BigInteger, nullable=False, unique=True, index=True)
    symbol = Column(String, nullable=False, index=True)
    description = Column(String, nullable=True)
    currency = Column(String, nullable=True)
    security_type = Column(String, nullable=True)  # e.g., "Stock", "ETF", "Bond"
    industry_sector = Column(String, nullable=True)
    industry_group = Column(String, nullable=True)
    is_tradable = Column(Boolean, default=True, nullable=False)

    # Price/volume snapshot
    last_trade_price = Column(Numeric(18, 4), nullable=True)
    prev_day_close_price = Column(Numeric(18, 4), nullable=True)
    bid_price = Column(Numeric(18, 4), nullable=True)
    ask_price = Column(Numeric(18, 4), nullable=True)
    volume = Column(BigInteger, nullable=True)

    # Dividend projection inputs
    dividend_per_share = Column(Numeric(18, 6), nullable=True)  # per payment
    dividend_frequency = Column(String, nullable=True)  # e.g., "Monthly", "4"
    yield_percent = Column(Numeric(10, 4), nullable=True)
    ex_date = Column(DateTime, nullable=True)
    dividend_date = Column(DateTime, nullable=True)

    refreshed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
