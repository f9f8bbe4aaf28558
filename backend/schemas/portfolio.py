"""Pydantic schemas for aggregated holdings and portfolio summaries."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class IndividualPosition(BaseModel):
    """One account's share of an aggregated holding."""

    account_number: str
    account_name: str
    account_type: Optional[str] = None
    owner_name: str
    shares: Decimal
    avg_cost: Decimal
    market_value: Decimal
    total_cost: Decimal
    open_pnl: Decimal


class AggregatedDividendData(BaseModel):
    """Dividend metrics summed across the members of a group.

    ``yield_on_cost`` is recomputed from the sums, never averaged.
    """

    total_received: Decimal = Decimal("0")
    dividend_return_percent: Decimal = Decimal("0")
    yield_on_cost: Decimal = Decimal("0")
    dividend_adjusted_cost: Optional[Decimal] = None
    dividend_adjusted_cost_per_share: Optional[Decimal] = None
    annual_dividend: Decimal = Decimal("0")
    annual_dividend_per_share: Decimal = Decimal("0")
    monthly_dividend: Decimal = Decimal("0")
    monthly_dividend_per_share: Decimal = Decimal("0")
    dividend_frequency: int = 0
    last_dividend_date: Optional[datetime] = None
    last_dividend_amount: Decimal = Decimal("0")


class AggregatedHolding(BaseModel):
    """All holdings of one instrument within a scope, combined."""

    symbol: str
    symbol_id: int
    owner_name: str  # "Multiple" when members belong to different owners
    account_number: Optional[str] = None  # None when aggregated

    open_quantity: Decimal
    current_market_value: Decimal
    current_price: Decimal
    average_entry_price: Decimal  # weighted average cost
    total_cost: Decimal

    open_pnl: Decimal
    day_pnl: Decimal
    total_return_value: Decimal
    total_return_percent: Decimal
    capital_gain_value: Decimal
    capital_gain_percent: Decimal

    dividend_data: AggregatedDividendData
    dividend_per_share: Decimal = Decimal("0")
    is_dividend_stock: bool = False

    currency: Optional[str] = None
    security_type: Optional[str] = None
    industry_sector: Optional[str] = None
    industry_group: Optional[str] = None

    is_aggregated: bool = False
    source_accounts: list[str] = []
    number_of_accounts: int = 1
    individual_positions: list[IndividualPosition] = []
    synced_at: Optional[datetime] = None


class AllocationSlice(BaseModel):
    """A share of total market value (sector, currency or asset class)."""

    name: str
    value: Decimal
    percentage: Decimal


class OwnerBreakdown(BaseModel):
    owner_name: str
    value: Decimal
    percentage: Decimal
    number_of_positions: int


class AccountSummary(BaseModel):
    """Per-account totals inside a portfolio summary."""

    account_number: str
    account_name: str
    account_type: Optional[str] = None
    owner_name: str
    currency: str
    total_investment: Decimal
    current_value: Decimal
    unrealized_pnl: Decimal
    cash_balance: Decimal
    number_of_positions: int
    return_percent: Decimal
    last_updated: Optional[datetime] = None


class YieldCalculationInfo(BaseModel):
    """Inputs behind the two portfolio yield-on-cost figures."""

    dividend_stocks_only: bool
    yield_calculation_total_cost: Decimal
    yield_calculation_annual_dividend: Decimal
    portfolio_total_cost: Decimal
    portfolio_total_annual_dividend: Decimal
    dividend_stock_count: int
    total_position_count: int


class AggregationInfo(BaseModel):
    has_aggregated_positions: bool
    total_aggregated_symbols: int


class PortfolioSummary(BaseModel):
    """Portfolio-wide metrics for one aggregation scope."""

    scope: str
    owner_name: Optional[str] = None
    account_number: Optional[str] = None
    currency: str

    total_investment: Decimal
    current_value: Decimal
    unrealized_pnl: Decimal
    total_dividends: Decimal
    total_return_value: Decimal
    total_return_percent: Decimal
    monthly_dividend_income: Decimal
    annual_projected_dividend: Decimal
    average_yield_percent: Decimal

    # Selected by dividend_stocks_only (default: dividend payers only)
    yield_on_cost_percent: Decimal
    # Every holding's cost and dividend
    portfolio_yield_on_cost: Decimal

    number_of_positions: int
    number_of_accounts: int
    number_of_dividend_stocks: int

    sector_allocation: list[AllocationSlice] = []
    currency_breakdown: list[AllocationSlice] = []
    owner_breakdown: list[OwnerBreakdown] = []
    accounts: list[AccountSummary] = []
    aggregation_info: AggregationInfo
    yield_calculation_info: YieldCalculationInfo


class ScopeOption(BaseModel):
    """One entry in the scope picker (all / owner / account)."""

    value: str
    label: str
    scope: str
    owner_name: Optional[str] = None
    account_number: Optional[str] = None
