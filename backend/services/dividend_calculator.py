"""Dividend metrics for a single holding.

Combines historical fact (dividend transactions actually received) with a
forward projection from the instrument catalog. Two yield figures are
produced and must not be confused:

- ``dividend_return_percent``: dividends received / total cost (realized)
- ``yield_on_cost``: projected annual dividend per share / average cost
  per share (forward-looking)
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from services.date_chunks import shift_months

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

STANDARD_FREQUENCIES = (12, 4, 2, 1)
FREQUENCY_SCHEDULES = {12: "monthly", 4: "quarterly", 2: "semi-annual", 1: "annual"}
DEFAULT_FREQUENCY = 4

# Relative distance from a standard frequency accepted when inferring the
# frequency from yield and price.
YIELD_RATIO_TOLERANCE = Decimal("0.25")

MAX_REASONABLE_YIELD_ON_COST = Decimal("50")
MAX_REASONABLE_CURRENT_YIELD = Decimal("50")


def to_decimal(value: Any) -> Decimal:
    """Coerce numbers (or None) to Decimal; None becomes zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class DividendMetrics:
    """Dividend Metrics block embedded in each Holding."""

    total_received: Decimal = ZERO
    last_dividend_amount: Decimal = ZERO
    last_dividend_date: datetime | None = None
    last_dividend_per_share: Decimal = ZERO
    dividend_frequency: int = 0
    dividend_schedule: str = "unknown"
    dividend_per_share: Decimal = ZERO  # per payment
    annual_dividend_per_share: Decimal = ZERO
    annual_dividend: Decimal = ZERO
    monthly_dividend: Decimal = ZERO
    monthly_dividend_per_share: Decimal = ZERO
    quarterly_dividend: Decimal = ZERO
    quarterly_dividend_per_share: Decimal = ZERO
    next_dividend_date: datetime | None = None
    next_dividend_amount: Decimal = ZERO
    ex_dividend_date: datetime | None = None
    dividend_return_percent: Decimal = ZERO
    yield_on_cost: Decimal = ZERO
    dividend_adjusted_cost: Decimal = ZERO
    dividend_adjusted_cost_per_share: Decimal = ZERO
    dividend_adjusted_yield: Decimal = ZERO
    current_yield: Decimal = ZERO
    dividend_growth_rate: Decimal = ZERO
    calculation_method: str = "default"
    data_source: str = "calculated"
    calculated_at: datetime | None = None

    @classmethod
    def zero(cls, shares: Any = None, avg_cost: Any = None) -> "DividendMetrics":
        """Default block for non-paying holdings and failed calculations.

        Every dividend figure is zero; the adjusted cost equals the plain
        cost basis when it can be computed.
        """
        try:
            avg = to_decimal(avg_cost)
            cost = avg * to_decimal(shares)
        except (InvalidOperation, TypeError, ValueError):
            avg, cost = ZERO, ZERO
        return cls(
            dividend_adjusted_cost=cost,
            dividend_adjusted_cost_per_share=avg,
            calculated_at=datetime.now(timezone.utc),
        )

    @property
    def is_paying(self) -> bool:
        return (
            self.annual_dividend > 0
            or self.total_received > 0
            or self.dividend_per_share > 0
        )

    def to_dict(self) -> dict:
        """JSON-safe form stored in Holding.dividend_data."""
        data = {}
        for key, value in asdict(self).items():
            if isinstance(value, Decimal):
                data[key] = str(value)
            elif isinstance(value, datetime):
                data[key] = value.isoformat()
            else:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict | None) -> "DividendMetrics":
        """Rebuild from Holding.dividend_data; missing keys keep defaults."""
        if not data:
            return cls()
        kwargs = {}
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            value = data[f.name]
            if isinstance(f.default, Decimal):
                kwargs[f.name] = to_decimal(value)
            elif f.name.endswith("_date") or f.name == "calculated_at":
                kwargs[f.name] = (
                    datetime.fromisoformat(value) if isinstance(value, str) else value
                )
            elif f.name == "dividend_frequency":
                kwargs[f.name] = int(value)
            else:
                kwargs[f.name] = value
        return cls(**kwargs)


def parse_frequency(frequency: str | int | None) -> int | None:
    """Parse an instrument's frequency label into payments per year.

    Accepts words ("Monthly", "Quarterly", "Semi-Annual", "Biannual",
    "Annually", "Yearly") and the numeric strings "12", "4", "2", "1".
    """
    if frequency is None:
        return None
    label = str(frequency).strip().lower()
    if not label:
        return None
    if "month" in label:
        return 12
    if "quarter" in label:
        return 4
    if "semi" in label or "biannual" in label:
        return 2
    if "annual" in label or "year" in label:
        return 1
    if label in ("12", "4", "2", "1"):
        return int(label)
    return None


def reference_price(instrument: Any) -> Decimal:
    """Last trade price, then previous close, then bid (zero if none)."""
    if instrument is None:
        return ZERO
    for attr in ("last_trade_price", "prev_day_close_price", "bid_price"):
        price = to_decimal(getattr(instrument, attr, None))
        if price > 0:
            return price
    return ZERO


def infer_frequency_from_yield(
    yield_percent: Any, price: Any, per_payment: Any
) -> int | None:
    """Match (yield x price) / per-payment amount against 12/4/2/1.

    The implied annual dividend per share divided by the amount of one
    payment approximates payments per year; the closest standard
    frequency within YIELD_RATIO_TOLERANCE wins.
    """
    yield_percent = to_decimal(yield_percent)
    price = to_decimal(price)
    per_payment = to_decimal(per_payment)
    if yield_percent <= 0 or price <= 0 or per_payment <= 0:
        return None

    ratio = (yield_percent / HUNDRED * price) / per_payment
    best = None
    best_distance = None
    for frequency in STANDARD_FREQUENCIES:
        distance = abs(ratio - frequency) / frequency
        if distance <= YIELD_RATIO_TOLERANCE and (best_distance is None or distance < best_distance):
            best, best_distance = frequency, distance
    return best


def infer_frequency_from_history(transactions: list[Any]) -> int | None:
    """Infer frequency from the average gap between dividend payments.

    Uses up to the five most recent gaps between consecutive payments
    (ignoring same-day and >400-day gaps): <=40 days -> 12, <=120 -> 4,
    <=200 -> 2, otherwise 1.
    """
    dates = sorted(
        (t.transaction_date for t in transactions if t.transaction_date is not None),
        reverse=True,
    )
    if len(dates) < 2:
        return None

    gaps = []
    for newer, older in zip(dates[:6], dates[1:6]):
        days = (newer - older).total_seconds() / 86400
        if 0 < days < 400:
            gaps.append(days)
    if not gaps:
        return None

    average = sum(gaps) / len(gaps)
    if average <= 40:
        return 12
    if average <= 120:
        return 4
    if average <= 200:
        return 2
    return 1


def _payment_amount(transaction: Any) -> Decimal:
    amount = to_decimal(getattr(transaction, "net_amount", None))
    if amount == 0:
        amount = to_decimal(getattr(transaction, "gross_amount", None))
    return abs(amount)


class DividendCalculator:
    """Derives the Dividend Metrics block for one holding."""

    def calculate(
        self,
        symbol: str,
        shares: Any,
        avg_cost: Any,
        instrument: Any = None,
        dividend_transactions: Iterable[Any] = (),
        as_of: datetime | None = None,
    ) -> DividendMetrics:
        """Compute metrics; never raises.

        Args:
            symbol: Ticker, for logging.
            shares: Open quantity.
            avg_cost: Average cost per share.
            instrument: Catalog entry (ORM Instrument or BrokerageInstrument).
            dividend_transactions: Dividend-classified transactions for the
                same account and symbol, any order.
            as_of: Reference time for "recent" dividends.

        Returns:
            The metrics, or DividendMetrics.zero() if anything fails.
        """
        try:
            return self._calculate(
                symbol, shares, avg_cost, instrument, list(dividend_transactions), as_of
            )
        except Exception:
            logger.error("Error calculating dividend data for %s", symbol, exc_info=True)
            return DividendMetrics.zero(shares, avg_cost)

    def _calculate(
        self,
        symbol: str,
        shares: Any,
        avg_cost: Any,
        instrument: Any,
        transactions: list[Any],
        as_of: datetime | None,
    ) -> DividendMetrics:
        shares = to_decimal(shares)
        avg_cost = to_decimal(avg_cost)
        as_of = as_of or datetime.now(timezone.utc)
        transactions = sorted(transactions, key=lambda t: t.transaction_date, reverse=True)
        metrics = DividendMetrics(calculated_at=as_of)

        # Historical
        metrics.total_received = sum((_payment_amount(t) for t in transactions), ZERO)
        if transactions:
            last = transactions[0]
            metrics.last_dividend_amount = _payment_amount(last)
            metrics.last_dividend_date = last.transaction_date
            quantity = to_decimal(getattr(last, "quantity", None))
            if quantity > 0:
                metrics.last_dividend_per_share = metrics.last_dividend_amount / quantity

        # Projection
        per_payment = to_decimal(getattr(instrument, "dividend_per_share", None))
        if per_payment <= 0:
            per_payment = self._estimate_per_payment(transactions, as_of)
        price = reference_price(instrument)
        yield_percent = to_decimal(getattr(instrument, "yield_percent", None))
        frequency = self.resolve_frequency(instrument, per_payment, price, transactions)

        annual_per_share = ZERO
        if per_payment > 0 and frequency > 0:
            annual_per_share = per_payment * frequency
        elif yield_percent > 0 and price > 0:
            # Catalog reports only a yield: derive the payment from it.
            annual_per_share = yield_percent / HUNDRED * price
            frequency = frequency or DEFAULT_FREQUENCY
            per_payment = annual_per_share / frequency

        metrics.dividend_frequency = frequency
        metrics.dividend_schedule = FREQUENCY_SCHEDULES.get(frequency, "unknown")
        metrics.dividend_per_share = per_payment
        metrics.annual_dividend_per_share = annual_per_share
        metrics.annual_dividend = annual_per_share * shares
        metrics.monthly_dividend_per_share = annual_per_share / 12
        metrics.monthly_dividend = metrics.annual_dividend / 12
        metrics.quarterly_dividend_per_share = annual_per_share / 4
        metrics.quarterly_dividend = metrics.annual_dividend / 4

        # Upcoming payment
        metrics.ex_dividend_date = getattr(instrument, "ex_date", None)
        if per_payment > 0 and shares > 0:
            metrics.next_dividend_amount = per_payment * shares
        if metrics.last_dividend_date is not None and frequency > 0:
            metrics.next_dividend_date = shift_months(
                metrics.last_dividend_date, 12 // frequency
            )
        elif instrument is not None:
            metrics.next_dividend_date = getattr(instrument, "dividend_date", None)

        # Yields
        total_cost = avg_cost * shares
        if total_cost > 0 and metrics.total_received > 0:
            metrics.dividend_return_percent = metrics.total_received / total_cost * HUNDRED
        if avg_cost > 0 and annual_per_share > 0:
            metrics.yield_on_cost = annual_per_share / avg_cost * HUNDRED

        adjusted_per_share = avg_cost
        if metrics.total_received > 0 and shares > 0:
            adjusted_per_share = max(ZERO, avg_cost - metrics.total_received / shares)
        metrics.dividend_adjusted_cost_per_share = adjusted_per_share
        metrics.dividend_adjusted_cost = adjusted_per_share * shares
        if adjusted_per_share > 0 and annual_per_share > 0:
            metrics.dividend_adjusted_yield = annual_per_share / adjusted_per_share * HUNDRED

        metrics.current_yield = self.current_yield(annual_per_share, instrument)
        metrics.dividend_growth_rate = self.dividend_growth_rate(transactions)

        if transactions:
            metrics.calculation_method = "activity_based"
            metrics.data_source = "brokerage"
        else:
            metrics.calculation_method = "symbol_based"
            metrics.data_source = "instrument_catalog"

        if metrics.annual_dividend > 0 or metrics.total_received > 0:
            logger.debug(
                "Dividend calculation for %s: %d payments, received=%s, annual=%s, yoc=%s%%",
                symbol, len(transactions), metrics.total_received,
                metrics.annual_dividend, metrics.yield_on_cost,
            )
        return metrics

    def resolve_frequency(
        self,
        instrument: Any,
        per_payment: Decimal,
        price: Decimal,
        transactions: list[Any],
    ) -> int:
        """Resolve payments per year, most explicit signal first.

        Order: the instrument's frequency label, then yield/price versus
        the per-payment amount, then the payment history, then quarterly
        when the instrument pays anything at all. Zero means non-paying.
        """
        frequency = parse_frequency(getattr(instrument, "dividend_frequency", None))
        if frequency:
            return frequency

        frequency = infer_frequency_from_yield(
            getattr(instrument, "yield_percent", None), price, per_payment
        )
        if frequency:
            return frequency

        frequency = infer_frequency_from_history(transactions)
        if frequency:
            return frequency

        if per_payment > 0:
            return DEFAULT_FREQUENCY
        return 0

    @staticmethod
    def _estimate_per_payment(transactions: list[Any], as_of: datetime) -> Decimal:
        """Average per-share payment over the last year (or last four payments)."""
        if len(transactions) < 2:
            return ZERO

        cutoff = as_of - timedelta(days=365)
        recent = [t for t in transactions if _aware(t.transaction_date) >= cutoff]
        if not recent:
            recent = transactions[:4]

        per_share = []
        for t in recent:
            quantity = to_decimal(getattr(t, "quantity", None))
            if quantity > 0:
                amount = _payment_amount(t) / quantity
                if amount > 0:
                    per_share.append(amount)
        if not per_share:
            return ZERO
        return sum(per_share, ZERO) / len(per_share)

    @staticmethod
    def current_yield(annual_per_share: Decimal, instrument: Any) -> Decimal:
        """Projected annual dividend per share over the current price, in %.

        Falls back to the instrument's reported yield when no price is known.
        """
        if instrument is None or annual_per_share <= 0:
            return ZERO
        price = reference_price(instrument)
        if price > 0:
            return annual_per_share / price * HUNDRED
        return to_decimal(getattr(instrument, "yield_percent", None))

    @staticmethod
    def dividend_growth_rate(transactions: list[Any]) -> Decimal:
        """Average year-over-year growth of annual dividend totals, in %.

        Needs at least eight payments spanning two calendar years.
        """
        if len(transactions) < 8:
            return ZERO

        totals: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for t in transactions:
            totals[t.transaction_date.year] += _payment_amount(t)
        years = sorted(totals)
        if len(years) < 2:
            return ZERO

        rates = []
        for previous, current in zip(years, years[1:]):
            if totals[previous] > 0:
                rates.append((totals[current] - totals[previous]) / totals[previous] * HUNDRED)
        if not rates:
            return ZERO
        return (sum(rates, ZERO) / len(rates)).quantize(Decimal("0.01"))

    @staticmethod
    def validate(metrics: DividendMetrics, symbol: str | None = None) -> list[str]:
        """Flag suspicious values; warnings never block persistence."""
        warnings = []
        if metrics.total_received < 0:
            warnings.append("Negative total received")
        if metrics.annual_dividend < 0:
            warnings.append("Negative annual dividend")
        if metrics.yield_on_cost > MAX_REASONABLE_YIELD_ON_COST:
            warnings.append(f"Unusually high yield on cost: {metrics.yield_on_cost:.2f}%")
        if metrics.current_yield > MAX_REASONABLE_CURRENT_YIELD:
            warnings.append(f"Unusually high current yield: {metrics.current_yield:.2f}%")
        if metrics.dividend_frequency < 0 or metrics.dividend_frequency > 12:
            warnings.append(f"Unusual dividend frequency: {metrics.dividend_frequency}")
        if metrics.annual_dividend > 0 and metrics.annual_dividend_per_share == 0:
            warnings.append("Annual dividend exists but per-share value is zero")

        if warnings:
            logger.warning("Dividend validation warnings for %s: %s", symbol, "; ".join(warnings))
        return warnings


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
