"""Account model - one brokerage account belonging to an owner."""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Account(Base):
    """A brokerage account upserted by account sync.

    The combination of owner_id + number uniquely identifies an account.
    Balance columns always carry a value: a missing or failed balance fetch
    leaves zero cash in the default currency.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("owner_id", "number", name="uix_account_owner_number"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    owner_id = Column(
        String(36), ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    number = Column(String, nullable=False)  # Brokerage account number
    account_type = Column(String, nullable=True)  # e.g., "TFSA", "RRSP", "Margin"
    status = Column(String, nullable=True)
    is_primary = Column(Boolean, default=False, nullable=False)
    is_billing = Column(Boolean, default=False, nullable=False)
    client_account_type = Column(String, nullable=True)
    display_name = Column(String, nullable=True)

    # Combined balance (explicit defaults instead of optional nesting)
    currency = Column(String, nullable=False, default="CAD")
    cash = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    market_value = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    total_equity = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    per_currency_balances = Column(JSON, nullable=True)  # list of balance dicts
    balances_updated_at = Column(DateTime, nullable=True)

    # Position statistics, recomputed after each holdings sync
    number_of_positions = Column(Integer, default=0, nullable=False)
    total_investment = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    current_value = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    day_pnl = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    open_pnl = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    closed_pnl = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    net_deposits = Column(Numeric(18, 4), nullable=False, default=Decimal("0"))

    synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    owner = relationship("Owner", back_populates="accounts")
    holdings = relationship(
        "Holding", back_populates="account", cascade="all, delete-orphan"
    )
    transactions = relationship(
        "Transaction", back_populates="account", cascade="all, delete-orphan"
    )

    @property
    def label(self) -> str:
        """Human-readable name used in aggregation output."""
        return self.display_name or f"{self.account_type or 'Account'} - {self.number}"
