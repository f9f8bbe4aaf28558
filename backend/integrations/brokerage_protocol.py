"""Brokerage client protocol and normalized data transfer objects.

The wire format and transport of the upstream brokerage API are owned by
the client implementation; the sync services only see these dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Protocol


@dataclass
class BrokerageAccount:
    """Normalized account data from the brokerage."""

    number: str  # Brokerage account number (unique per owner)
    type: str | None = None  # e.g., "TFSA", "RRSP", "Margin"
    status: str | None = None
    is_primary: bool = False
    is_billing: bool = False
    client_account_type: str | None = None


@dataclass
class CurrencyBalance:
    """One balance row; every amount defaults to zero when not reported."""

    currency: str
    cash: Decimal = Decimal("0")
    market_value: Decimal = Decimal("0")
    total_equity: Decimal = Decimal("0")
    buying_power: Decimal = Decimal("0")


@dataclass
class AccountBalances:
    """Per-currency and combined balances for one account.

    ``combined`` holds one row per reporting currency; the first row is the
    account's primary combined balance.
    """

    per_currency: list[CurrencyBalance] = field(default_factory=list)
    combined: list[CurrencyBalance] = field(default_factory=list)

    def primary(self, default_currency: str) -> CurrencyBalance:
        """First combined balance, or a zero balance in the default currency."""
        if self.combined:
            return self.combined[0]
        return CurrencyBalance(currency=default_currency)


@dataclass
class BrokerageHolding:
    """Normalized position data from the brokerage."""

    symbol: str
    symbol_id: int
    open_quantity: Decimal
    current_price: Decimal = Decimal("0")
    current_market_value: Decimal = Decimal("0")
    average_entry_price: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    closed_quantity: Decimal = Decimal("0")
    day_pnl: Decimal = Decimal("0")
    open_pnl: Decimal = Decimal("0")
    closed_pnl: Decimal = Decimal("0")
    is_real_time: bool = False
    is_under_reorg: bool = False


@dataclass
class BrokerageTransaction:
    """Normalized transaction history row.

    ``type`` is the raw upstream label; classification into a closed
    TransactionType happens on persistence.
    """

    transaction_date: datetime
    type: str
    net_amount: Decimal
    description: str | None = None
    symbol: str | None = None
    symbol_id: int | None = None
    trade_date: datetime | None = None
    settlement_date: datetime | None = None
    action: str | None = None
    currency: str | None = None
    quantity: Decimal | None = None
    price: Decimal | None = None
    gross_amount: Decimal | None = None
    commission: Decimal | None = None


@dataclass
class BrokerageInstrument:
    """Normalized instrument catalog entry."""

    symbol_id: int
    symbol: str
    description: str | None = None
    currency: str | None = None
    security_type: str | None = None
    industry_sector: str | None = None
    industry_group: str | None = None
    is_tradable: bool = True
    last_trade_price: Decimal | None = None
    prev_day_close_price: Decimal | None = None
    bid_price: Decimal | None = None
    ask_price: Decimal | None = None
    volume: int | None = None
    dividend_per_share: Decimal | None = None  # amount per payment
    dividend_frequency: str | None = None
    yield_percent: Decimal | None = None
    ex_date: datetime | None = None
    dividend_date: datetime | None = None


class BrokerageClient(Protocol):
    """Protocol the brokerage API client must implement.

    Every call is made on behalf of one owner; the client resolves that
    owner's bearer credential itself. Failures surface as
    :class:`integrations.exceptions.UpstreamError` subtypes.
    """

    @property
    def provider_name(self) -> str:
        """Return the upstream name used in logs and error reports."""
        ...

    def get_accounts(self, owner_name: str) -> list[BrokerageAccount]:
        """Fetch every account visible to the owner's credential."""
        ...

    def get_account_balances(
        self, account_number: str, owner_name: str
    ) -> AccountBalances | None:
        """Fetch balances for one account (None when not reported)."""
        ...

    def get_holdings(
        self, account_number: str, owner_name: str
    ) -> list[BrokerageHolding]:
        """Fetch current positions for one account."""
        ...

    def get_transactions(
        self,
        account_number: str,
        owner_name: str,
        start_iso: str,
        end_iso: str,
    ) -> list[BrokerageTransaction] | None:
        """Fetch transaction history for one window.

        Args:
            account_number: Account to query.
            owner_name: Owner whose credential is used.
            start_iso: Window start, ``YYYY-MM-DDT00:00:00±HH:MM``.
            end_iso: Window end, same format.

        Returns:
            Transactions in the window; None or an empty list when the
            upstream reports nothing.
        """
        ...

    def get_instruments(
        self, symbol_ids: list[int], owner_name: str
    ) -> list[BrokerageInstrument]:
        """Fetch catalog entries for the given symbol ids."""
        ...
