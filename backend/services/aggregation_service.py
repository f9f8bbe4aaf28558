"""Aggregation engine - combines holdings across accounts and owners.

Read path only: works on persisted Holdings, never calls the brokerage.
Holdings of the same instrument within a scope are grouped; groups with
more than one member are combined by summing quantities, cost, value,
P&L and dividend figures, and recomputing every ratio from those sums.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy.orm import Session, joinedload

from config import settings
from models import Account, Holding, Instrument, Owner
from schemas.portfolio import (
    AccountSummary,
    AggregatedDividendData,
    AggregatedHolding,
    AggregationInfo,
    AllocationSlice,
    IndividualPosition,
    OwnerBreakdown,
    PortfolioSummary,
    ScopeOption,
    YieldCalculationInfo,
)
from services.dividend_calculator import DividendMetrics, parse_frequency, to_decimal
from services.instrument_service import InstrumentService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MULTIPLE_OWNERS = "Multiple"


class AggregationScope(str, Enum):
    """Breadth over which holdings are grouped."""

    ALL = "all"
    OWNER = "owner"
    ACCOUNT = "account"


def percent(part: Decimal, whole: Decimal) -> Decimal:
    """``part / whole * 100``, or zero when whole is not positive."""
    if whole <= 0:
        return ZERO
    return part / whole * HUNDRED


def representative_dividend_per_share(values: list[Decimal]) -> Decimal:
    """Most frequent positive value; ties go to the larger value."""
    counts = Counter(v for v in values if v and v > 0)
    if not counts:
        return ZERO
    value, _ = max(counts.items(), key=lambda item: (item[1], item[0]))
    return value


def _catalog_dividend_per_share(instrument: Instrument | None) -> Decimal:
    """Catalog per-payment amount, only for monthly or quarterly payers."""
    if instrument is None or not instrument.dividend_per_share:
        return ZERO
    if parse_frequency(instrument.dividend_frequency) in (12, 4):
        return to_decimal(instrument.dividend_per_share)
    return ZERO


def _allocation(buckets: dict[str, Decimal], total: Decimal) -> list[AllocationSlice]:
    slices = [
        AllocationSlice(name=name, value=value, percentage=percent(value, total))
        for name, value in buckets.items()
    ]
    slices.sort(key=lambda s: s.value, reverse=True)
    return slices


class AggregationService:
    """Groups persisted holdings by instrument and summarizes a portfolio."""

    @staticmethod
    def _load_holdings(
        db: Session,
        scope: AggregationScope,
        owner_name: str | None,
        account_number: str | None,
    ) -> list[Holding]:
        query = (
            db.query(Holding)
            .join(Account, Holding.account_id == Account.id)
            .join(Owner, Account.owner_id == Owner.id)
            .options(joinedload(Holding.account).joinedload(Account.owner))
        )
        if scope is AggregationScope.OWNER:
            if not owner_name:
                raise ValueError("owner_name is required for the owner scope")
            query = query.filter(Owner.name == owner_name)
        elif scope is AggregationScope.ACCOUNT:
            if not account_number:
                raise ValueError("account_number is required for the account scope")
            query = query.filter(Account.number == account_number)
            if owner_name:
                query = query.filter(Owner.name == owner_name)
        return query.order_by(Holding.symbol, Account.number).all()

    @staticmethod
    def aggregate_holdings(
        db: Session,
        scope: AggregationScope | str = AggregationScope.ALL,
        owner_name: str | None = None,
        account_number: str | None = None,
    ) -> list[AggregatedHolding]:
        """Group the scope's holdings by instrument and combine each group.

        Raises:
            ValueError: Unknown scope, or a scope missing its owner/account.
        """
        scope = AggregationScope(scope)
        holdings = AggregationService._load_holdings(db, scope, owner_name, account_number)
        if not holdings:
            return []

        instruments = InstrumentService.get_by_symbol_ids(db, {h.symbol_id for h in holdings})
        groups: dict[int, list[Holding]] = defaultdict(list)
        for holding in holdings:
            groups[holding.symbol_id].append(holding)

        aggregated = [
            AggregationService.combine(members, instruments.get(symbol_id))
            for symbol_id, members in groups.items()
        ]
        aggregated.sort(key=lambda h: h.current_market_value, reverse=True)
        return aggregated

    @staticmethod
    def combine(members: list[Holding], instrument: Instrument | None = None) -> AggregatedHolding:
        """Combine holdings of one instrument into a single row."""
        total_shares = ZERO
        total_cost = ZERO
        total_value = ZERO
        total_open_pnl = ZERO
        total_day_pnl = ZERO
        total_received = ZERO
        total_annual = ZERO
        per_share_values: list[Decimal] = []
        owners = set()
        latest: Holding | None = None
        last_dividend_date: datetime | None = None
        last_dividend_amount = ZERO
        frequency = 0

        for holding in members:
            total_shares += to_decimal(holding.open_quantity)
            total_cost += to_decimal(holding.total_cost)
            total_value += to_decimal(holding.current_market_value)
            total_open_pnl += to_decimal(holding.open_pnl)
            total_day_pnl += to_decimal(holding.day_pnl)
            owners.add(holding.account.owner.name)

            if latest is None or (holding.synced_at or datetime.min) > (latest.synced_at or datetime.min):
                latest = holding

            metrics = DividendMetrics.from_dict(holding.dividend_data)
            total_received += metrics.total_received
            total_annual += metrics.annual_dividend
            frequency = max(frequency, metrics.dividend_frequency)
            if metrics.last_dividend_date is not None and (
                last_dividend_date is None or metrics.last_dividend_date > last_dividend_date
            ):
                last_dividend_date = metrics.last_dividend_date
                last_dividend_amount = metrics.last_dividend_amount
            per_share_values.append(to_decimal(holding.dividend_per_share))

        weighted_avg_cost = total_cost / total_shares if total_shares > 0 else ZERO
        dividend_per_share = representative_dividend_per_share(per_share_values)
        if dividend_per_share == 0:
            dividend_per_share = _catalog_dividend_per_share(instrument)

        if total_received > 0 and total_shares > 0:
            adjusted_per_share = max(ZERO, weighted_avg_cost - total_received / total_shares)
            adjusted_cost = adjusted_per_share * total_shares
        else:
            adjusted_per_share = weighted_avg_cost if total_shares > 0 else None
            adjusted_cost = total_cost if total_cost > 0 else None

        monthly = total_annual / 12
        dividend_data = AggregatedDividendData(
            total_received=total_received,
            dividend_return_percent=percent(total_received, total_cost),
            yield_on_cost=percent(total_annual, total_cost) if total_annual > 0 else ZERO,
            dividend_adjusted_cost=adjusted_cost,
            dividend_adjusted_cost_per_share=adjusted_per_share,
            annual_dividend=total_annual,
            annual_dividend_per_share=total_annual / total_shares if total_shares > 0 else ZERO,
            monthly_dividend=monthly,
            monthly_dividend_per_share=monthly / total_shares if total_shares > 0 else ZERO,
            dividend_frequency=frequency,
            last_dividend_date=last_dividend_date,
            last_dividend_amount=last_dividend_amount,
        )

        total_return = total_open_pnl + total_received
        first = members[0]
        is_aggregated = len(members) > 1
        source_accounts = [h.account.number for h in members]

        result = AggregatedHolding(
            symbol=first.symbol,
            symbol_id=first.symbol_id,
            owner_name=owners.pop() if len(owners) == 1 else MULTIPLE_OWNERS,
            account_number=None if is_aggregated else first.account.number,
            open_quantity=total_shares,
            current_market_value=total_value,
            current_price=to_decimal(latest.current_price),
            average_entry_price=weighted_avg_cost,
            total_cost=total_cost,
            open_pnl=total_open_pnl,
            day_pnl=total_day_pnl,
            total_return_value=total_return,
            total_return_percent=percent(total_return, total_cost),
            capital_gain_value=total_open_pnl,
            capital_gain_percent=percent(total_open_pnl, total_cost),
            dividend_data=dividend_data,
            dividend_per_share=dividend_per_share,
            is_dividend_stock=total_annual > 0 or total_received > 0 or dividend_per_share > 0,
            currency=(instrument.currency if instrument is not None else None) or first.currency,
            security_type=(instrument.security_type if instrument is not None else None)
            or first.security_type,
            industry_sector=(instrument.industry_sector if instrument is not None else None)
            or first.industry_sector,
            industry_group=(instrument.industry_group if instrument is not None else None)
            or first.industry_group,
            is_aggregated=is_aggregated,
            source_accounts=source_accounts,
            number_of_accounts=len(source_accounts),
            individual_positions=[
                IndividualPosition(
                    account_number=h.account.number,
                    account_name=h.account.label,
                    account_type=h.account.account_type or h.account.client_account_type,
                    owner_name=h.account.owner.name,
                    shares=to_decimal(h.open_quantity),
                    avg_cost=to_decimal(h.average_entry_price),
                    market_value=to_decimal(h.current_market_value),
                    total_cost=to_decimal(h.total_cost),
                    open_pnl=to_decimal(h.open_pnl),
                )
                for h in members
            ],
            synced_at=latest.synced_at,
        )
        if is_aggregated and total_annual > 0:
            logger.debug(
                "Aggregated %s: annual dividend=%s, yoc=%s%%, positions=%d",
                result.symbol, total_annual, dividend_data.yield_on_cost, len(members),
            )
        return result

    @staticmethod
    def get_portfolio_summary(
        db: Session,
        scope: AggregationScope | str = AggregationScope.ALL,
        owner_name: str | None = None,
        account_number: str | None = None,
        dividend_only: bool | None = None,
    ) -> PortfolioSummary | None:
        """Portfolio-wide totals, allocations and yield-on-cost for a scope.

        Two yield-on-cost figures are reported: ``portfolio_yield_on_cost``
        over every holding, and ``yield_on_cost_percent`` restricted to
        dividend-paying holdings when ``dividend_only`` is set. When not
        given, the owner's preference applies in the owner scope and the
        configured default otherwise.

        Returns:
            The summary, or None when the scope has no holdings.
        """
        scope = AggregationScope(scope)
        holdings = AggregationService.aggregate_holdings(db, scope, owner_name, account_number)
        if not holdings:
            return None

        if dividend_only is None:
            dividend_only = settings.YIELD_ON_COST_DIVIDEND_ONLY
            if owner_name:
                owner = db.query(Owner).filter_by(name=owner_name).first()
                if owner is not None:
                    dividend_only = owner.yield_on_cost_dividend_only

        total_investment = ZERO
        current_value = ZERO
        unrealized_pnl = ZERO
        total_dividends = ZERO
        monthly_income = ZERO
        annual_projected = ZERO
        yield_cost = ZERO
        yield_annual = ZERO
        sectors: dict[str, Decimal] = defaultdict(lambda: ZERO)
        currencies: dict[str, Decimal] = defaultdict(lambda: ZERO)
        owners: dict[str, Decimal] = defaultdict(lambda: ZERO)
        owner_positions: Counter = Counter()

        for holding in holdings:
            annual = holding.dividend_data.annual_dividend
            total_investment += holding.total_cost
            current_value += holding.current_market_value
            unrealized_pnl += holding.open_pnl
            total_dividends += holding.dividend_data.total_received
            monthly_income += holding.dividend_data.monthly_dividend
            annual_projected += annual

            if not dividend_only or (holding.is_dividend_stock and annual > 0):
                yield_cost += holding.total_cost
                yield_annual += annual

            sector = holding.industry_sector or holding.security_type or "Other"
            sectors[sector] += holding.current_market_value
            currencies[holding.currency or settings.DEFAULT_CURRENCY] += holding.current_market_value
            if scope is AggregationScope.ALL and holding.owner_name != MULTIPLE_OWNERS:
                owners[holding.owner_name] += holding.current_market_value
                owner_positions[holding.owner_name] += 1

        total_return = unrealized_pnl + total_dividends
        dividend_stock_count = sum(1 for h in holdings if h.dividend_data.annual_dividend > 0)
        currency_breakdown = _allocation(currencies, current_value)
        account_numbers = {number for h in holdings for number in h.source_accounts}

        summary = PortfolioSummary(
            scope=scope.value,
            owner_name=owner_name,
            account_number=account_number,
            currency=currency_breakdown[0].name if currency_breakdown else settings.DEFAULT_CURRENCY,
            total_investment=total_investment,
            current_value=current_value,
            unrealized_pnl=unrealized_pnl,
            total_dividends=total_dividends,
            total_return_value=total_return,
            total_return_percent=percent(total_return, total_investment),
            monthly_dividend_income=monthly_income,
            annual_projected_dividend=annual_projected,
            average_yield_percent=percent(annual_projected, current_value),
            yield_on_cost_percent=percent(yield_annual, yield_cost),
            portfolio_yield_on_cost=percent(annual_projected, total_investment),
            number_of_positions=len(holdings),
            number_of_accounts=len(account_numbers),
            number_of_dividend_stocks=dividend_stock_count,
            sector_allocation=_allocation(sectors, current_value),
            currency_breakdown=currency_breakdown,
            owner_breakdown=[
                OwnerBreakdown(
                    owner_name=name,
                    value=value,
                    percentage=percent(value, current_value),
                    number_of_positions=owner_positions[name],
                )
                for name, value in sorted(owners.items(), key=lambda item: item[1], reverse=True)
            ],
            accounts=AggregationService._account_summaries(
                db, scope, owner_name, account_number, holdings
            ),
            aggregation_info=AggregationInfo(
                has_aggregated_positions=any(h.is_aggregated for h in holdings),
                total_aggregated_symbols=sum(1 for h in holdings if h.is_aggregated),
            ),
            yield_calculation_info=YieldCalculationInfo(
                dividend_stocks_only=dividend_only,
                yield_calculation_total_cost=yield_cost,
                yield_calculation_annual_dividend=yield_annual,
                portfolio_total_cost=total_investment,
                portfolio_total_annual_dividend=annual_projected,
                dividend_stock_count=dividend_stock_count,
                total_position_count=len(holdings),
            ),
        )
        logger.debug(
            "Portfolio summary (%s): value=%s, yoc=%s%% (dividend_only=%s), portfolio yoc=%s%%",
            scope.value, current_value, summary.yield_on_cost_percent, dividend_only,
            summary.portfolio_yield_on_cost,
        )
        return summary

    @staticmethod
    def _account_summaries(
        db: Session,
        scope: AggregationScope,
        owner_name: str | None,
        account_number: str | None,
        holdings: list[AggregatedHolding],
    ) -> list[AccountSummary]:
        query = db.query(Account).join(Owner, Account.owner_id == Owner.id)
        if scope is AggregationScope.OWNER:
            query = query.filter(Owner.name == owner_name)
        elif scope is AggregationScope.ACCOUNT:
            query = query.filter(Account.number == account_number)
            if owner_name:
                query = query.filter(Owner.name == owner_name)

        summaries = []
        for account in query.order_by(Owner.name, Account.number).all():
            value = investment = pnl = ZERO
            positions = 0
            for holding in holdings:
                for position in holding.individual_positions:
                    if (
                        position.account_number == account.number
                        and position.owner_name == account.owner.name
                    ):
                        value += position.market_value
                        investment += position.total_cost
                        pnl += position.open_pnl
                        positions += 1
            summaries.append(
                AccountSummary(
                    account_number=account.number,
                    account_name=account.label,
                    account_type=account.account_type,
                    owner_name=account.owner.name,
                    currency=account.currency or settings.DEFAULT_CURRENCY,
                    total_investment=investment,
                    current_value=value,
                    unrealized_pnl=pnl,
                    cash_balance=to_decimal(account.cash),
                    number_of_positions=positions,
                    return_percent=percent(pnl, investment),
                    last_updated=account.synced_at,
                )
            )
        return summaries

    @staticmethod
    def get_scope_options(db: Session) -> list[ScopeOption]:
        """All / per active owner / per account picker entries."""
        options = [ScopeOption(value="all", label="All Accounts", scope=AggregationScope.ALL.value)]
        owners = (
            db.query(Owner)
            .filter(Owner.is_active.is_(True))
            .order_by(Owner.name)
            .all()
        )
        for owner in owners:
            accounts = sorted(owner.accounts, key=lambda a: a.number)
            if not accounts:
                continue
            options.append(
                ScopeOption(
                    value=f"owner-{owner.name}",
                    label=f"All Accounts - {owner.name}",
                    scope=AggregationScope.OWNER.value,
                    owner_name=owner.name,
                )
            )
            for account in accounts:
                options.append(
                    ScopeOption(
                        value=f"account-{account.number}",
                        label=f"{owner.name} {account.account_type or 'Account'} - {account.number}",
                        scope=AggregationScope.ACCOUNT.value,
                        owner_name=owner.name,
                        account_number=account.number,
                    )
                )
        return options
