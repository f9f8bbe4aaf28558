"""SQLAlchemy ORM models."""

from .owner import Owner
from .credential import Credential
from .account import Account
from .instrument import Instrument
from .holding import Holding
from .transaction import Transaction
from .portfolio_snapshot import PortfolioSnapshot
from .utils import generate_uuid

__all__ = ["Account", "Credential", "Holding", "Instrument", "Owner", "PortfolioSnapshot", "Transaction", "generate_uuid"]
