"""Transaction model - a dated, typed cash or security event in an account."""

from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Transaction(Base):
    """A transaction record from the brokerage history.

    Transactions are an append-only log. Deduplication uses the key
    (account_id, transaction_date, symbol, type, net_amount, description);
    nullable members make a database UNIQUE constraint unreliable, so the
    key is enforced by the persister and indexed here for lookups.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transaction_dedup", "account_id", "transaction_date", "type", "net_amount"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    trade_date = Column(DateTime, nullable=True)
    transaction_date = Column(DateTime, nullable=False)
    settlement_date = Column(DateTime, nullable=True)
    action = Column(String, nullable=True)
    symbol = Column(String, nullable=True, index=True)
    symbol_id = Column(BigInteger, nullable=True)
    description = Column(String, nullable=True)
    currency = Column(String, nullable=True)
    quantity = Column(Numeric(18, 8), nullable=True)
    price = Column(Numeric(18, 6), nullable=True)
    gross_amount = Column(Numeric(18, 4), nullable=True)
    commission = Column(Numeric(18, 4), nullable=True)
    net_amount = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    type = Column(String, nullable=False)  # TransactionType value
    raw_type = Column(String, nullable=True)
    is_dividend = Column(Boolean, default=False, nullable=False)
    dividend_per_share = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    account = relationship("Account", back_populates="transactions")
