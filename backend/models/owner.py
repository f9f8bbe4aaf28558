"""Owner model - an individual whose brokerage data is tracked."""

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Owner(Base):
    """An identity whose accounts are synchronized from the brokerage.

    Last-sync metadata is written by the sync orchestrator after every run,
    successful or not.
    """

    __tablename__ = "owners"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False, unique=True)
    display_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # Portfolio preference: restrict yield-on-cost to dividend payers
    yield_on_cost_dividend_only = Column(Boolean, default=True, nullable=False)

    # Sync tracking
    last_sync_time = Column(DateTime, nullable=True)
    last_successful_sync = Column(DateTime, nullable=True)
    last_sync_status = Column(String, nullable=True)  # "success" | "partial" | "failed" | "stopped"
    last_sync_error = Column(String, nullable=True)
    last_sync_results = Column(JSON, nullable=True)

    # Cached totals, refreshed by snapshot creation
    number_of_accounts = Column(Integer, default=0, nullable=False)
    total_investment = Column(Numeric(18, 2), nullable=True)
    total_value = Column(Numeric(18, 2), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    accounts = relationship(
        "Account", back_populates="owner", cascade="all, delete-orphan"
    )
    credentials = relationship(
        "Credential", back_populates="owner", cascade="all, delete-orphan"
    )
    snapshots = relationship(
        "PortfolioSnapshot", back_populates="owner", cascade="all, delete-orphan"
    )
