"""Tests for the dividend metrics calculator."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from services.dividend_calculator import (
    DividendCalculator,
    DividendMetrics,
    infer_frequency_from_history,
    infer_frequency_from_yield,
    parse_frequency,
    reference_price,
)

AS_OF = datetime(2024, 8, 1, tzinfo=timezone.utc)


def _instrument(**overrides):
    values = dict(
        dividend_per_share=None,
        dividend_frequency=None,
        yield_percent=None,
        last_trade_price=Decimal("25.00"),
        prev_day_close_price=None,
        bid_price=None,
        ex_date=None,
        dividend_date=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _payment(when, amount="-5.00", quantity="100"):
    return SimpleNamespace(
        transaction_date=when,
        net_amount=Decimal(amount),
        gross_amount=None,
        quantity=Decimal(quantity) if quantity is not None else None,
    )


def _every(days, count, start=datetime(2024, 7, 15, tzinfo=timezone.utc), **kwargs):
    return [_payment(start - timedelta(days=days * i), **kwargs) for i in range(count)]


@pytest.fixture
def calculator():
    return DividendCalculator()


class TestParseFrequency:
    @pytest.mark.parametrize("label,expected", [
        ("Monthly", 12),
        ("QUARTERLY", 4),
        ("Semi-Annual", 2),
        ("Biannual", 2),
        ("Annually", 1),
        ("Yearly", 1),
        ("12", 12),
        ("4", 4),
        (" 2 ", 2),
        ("1", 1),
    ])
    def test_known_labels(self, label, expected):
        assert parse_frequency(label) == expected

    @pytest.mark.parametrize("label", [None, "", "weekly", "3"])
    def test_unknown_labels(self, label):
        assert parse_frequency(label) is None


class TestReferencePrice:
    def test_prefers_last_trade(self):
        assert reference_price(_instrument(prev_day_close_price=Decimal("24"))) == Decimal("25.00")

    def test_falls_back_to_close_then_bid(self):
        assert reference_price(
            _instrument(last_trade_price=None, prev_day_close_price=Decimal("24"))
        ) == Decimal("24")
        assert reference_price(
            _instrument(last_trade_price=Decimal("0"), bid_price=Decimal("23.5"))
        ) == Decimal("23.5")

    def test_none(self):
        assert reference_price(None) == Decimal("0")


class TestFrequencyInference:
    @pytest.mark.parametrize("per_payment,expected", [
        ("0.10", 12),
        ("0.30", 4),
        ("0.50", 2),
        ("1.20", 1),
    ])
    def test_from_yield(self, per_payment, expected):
        # 4.8% of 25.00 is 1.20 per year
        assert infer_frequency_from_yield("4.8", "25", per_payment) == expected

    def test_from_yield_ambiguous_ratio(self):
        assert infer_frequency_from_yield("4.8", "25", "0.90") is None

    def test_from_yield_missing_inputs(self):
        assert infer_frequency_from_yield(None, "25", "0.10") is None
        assert infer_frequency_from_yield("4.8", "0", "0.10") is None

    @pytest.mark.parametrize("gap,expected", [(30, 12), (91, 4), (182, 2), (365, 1)])
    def test_from_history(self, gap, expected):
        assert infer_frequency_from_history(_every(gap, 4)) == expected

    def test_from_history_needs_two_payments(self):
        assert infer_frequency_from_history(_every(30, 1)) is None

    def test_from_history_ignores_same_day(self):
        when = datetime(2024, 7, 15, tzinfo=timezone.utc)
        assert infer_frequency_from_history([_payment(when), _payment(when)]) is None


class TestCalculate:
    def test_monthly_projection(self, calculator):
        instrument = _instrument(dividend_per_share=Decimal("0.05"), dividend_frequency="Monthly")

        metrics = calculator.calculate("XEI.TO", Decimal("100"), Decimal("20"), instrument, as_of=AS_OF)

        assert metrics.dividend_frequency == 12
        assert metrics.dividend_schedule == "monthly"
        assert metrics.annual_dividend_per_share == Decimal("0.60")
        assert metrics.annual_dividend == Decimal("60.00")
        assert metrics.monthly_dividend == Decimal("5.00")
        assert metrics.quarterly_dividend == Decimal("15.00")
        assert metrics.yield_on_cost == Decimal("3")
        assert metrics.current_yield == Decimal("2.4")
        assert metrics.next_dividend_amount == Decimal("5.00")
        assert metrics.calculation_method == "symbol_based"
        assert metrics.data_source == "instrument_catalog"

    def test_realized_return_differs_from_yield_on_cost(self, calculator):
        instrument = _instrument(dividend_per_share=Decimal("0.05"), dividend_frequency="Monthly")
        history = _every(30, 3)

        metrics = calculator.calculate(
            "XEI.TO", Decimal("100"), Decimal("20"), instrument, history, as_of=AS_OF
        )

        assert metrics.total_received == Decimal("15.00")
        assert metrics.dividend_return_percent == Decimal("0.75")
        assert metrics.yield_on_cost == Decimal("3")
        assert metrics.dividend_adjusted_cost_per_share == Decimal("19.85")
        assert metrics.dividend_adjusted_cost == Decimal("1985.00")
        assert metrics.last_dividend_amount == Decimal("5.00")
        assert metrics.last_dividend_per_share == Decimal("0.05")
        assert metrics.calculation_method == "activity_based"
        assert metrics.data_source == "brokerage"

    def test_adjusted_cost_floored_at_zero(self, calculator):
        history = _every(30, 3, amount="-500.00")
        metrics = calculator.calculate("X", Decimal("10"), Decimal("20"), None, history, as_of=AS_OF)

        assert metrics.dividend_adjusted_cost == Decimal("0")
        assert metrics.dividend_adjusted_yield == Decimal("0")

    def test_default_quarterly_when_only_amount_known(self, calculator):
        instrument = _instrument(dividend_per_share=Decimal("0.25"))
        metrics = calculator.calculate("ABC", Decimal("10"), Decimal("10"), instrument, as_of=AS_OF)

        assert metrics.dividend_frequency == 4
        assert metrics.annual_dividend_per_share == Decimal("1.00")

    def test_yield_only_catalog(self, calculator):
        instrument = _instrument(yield_percent=Decimal("4"))
        metrics = calculator.calculate("ABC", Decimal("10"), Decimal("20"), instrument, as_of=AS_OF)

        assert metrics.annual_dividend_per_share == Decimal("1.00")
        assert metrics.dividend_frequency == 4
        assert metrics.dividend_per_share == Decimal("0.25")
        assert metrics.yield_on_cost == Decimal("5")

    def test_per_payment_estimated_from_history(self, calculator):
        history = _every(91, 4, amount="-50.00")
        metrics = calculator.calculate("ABC", Decimal("100"), Decimal("40"), None, history, as_of=AS_OF)

        assert metrics.dividend_per_share == Decimal("0.5")
        assert metrics.dividend_frequency == 4
        assert metrics.annual_dividend == Decimal("200.0")
        assert metrics.current_yield == Decimal("0")

    def test_next_dividend_date_from_last_payment(self, calculator):
        instrument = _instrument(dividend_per_share=Decimal("0.30"), dividend_frequency="Quarterly")
        history = [_payment(datetime(2024, 6, 15, tzinfo=timezone.utc))]

        metrics = calculator.calculate("ABC", Decimal("10"), Decimal("20"), instrument, history, as_of=AS_OF)

        assert metrics.next_dividend_date == datetime(2024, 9, 15, tzinfo=timezone.utc)

    def test_next_dividend_date_from_catalog(self, calculator):
        pay_date = datetime(2024, 8, 30)
        instrument = _instrument(
            dividend_per_share=Decimal("0.30"), dividend_frequency="Quarterly", dividend_date=pay_date
        )
        metrics = calculator.calculate("ABC", Decimal("10"), Decimal("20"), instrument, as_of=AS_OF)
        assert metrics.next_dividend_date == pay_date

    def test_non_paying_holding(self, calculator):
        metrics = calculator.calculate("SHOP.TO", Decimal("10"), Decimal("90"), _instrument(), as_of=AS_OF)

        assert metrics.dividend_frequency == 0
        assert metrics.dividend_schedule == "unknown"
        assert metrics.annual_dividend == Decimal("0")
        assert metrics.dividend_adjusted_cost == Decimal("900")
        assert not metrics.is_paying

    def test_failure_returns_zero_block(self, calculator):
        broken = SimpleNamespace(net_amount=Decimal("-1"))  # no transaction_date

        metrics = calculator.calculate("ABC", Decimal("10"), Decimal("5"), None, [broken], as_of=AS_OF)

        assert metrics.annual_dividend == Decimal("0")
        assert metrics.total_received == Decimal("0")
        assert metrics.dividend_adjusted_cost == Decimal("50")


class TestGrowthRate:
    def test_year_over_year_average(self):
        history = [
            _payment(datetime(2022, month, 15, tzinfo=timezone.utc), amount="-100")
            for month in (3, 6, 9, 12)
        ] + [
            _payment(datetime(2023, month, 15, tzinfo=timezone.utc), amount="-110")
            for month in (3, 6, 9, 12)
        ]
        assert DividendCalculator.dividend_growth_rate(history) == Decimal("10.00")

    def test_needs_eight_payments(self):
        assert DividendCalculator.dividend_growth_rate(_every(91, 7)) == Decimal("0")


class TestValidate:
    def test_clean_metrics(self):
        metrics = DividendMetrics(annual_dividend=Decimal("60"), annual_dividend_per_share=Decimal("0.6"),
                                  yield_on_cost=Decimal("3"), dividend_frequency=12)
        assert DividendCalculator.validate(metrics, "XEI.TO") == []

    def test_flags_suspicious_values(self):
        metrics = DividendMetrics(
            annual_dividend=Decimal("60"),
            yield_on_cost=Decimal("75"),
            dividend_frequency=52,
        )
        warnings = DividendCalculator.validate(metrics, "XEI.TO")

        assert len(warnings) == 3
        assert any("yield on cost" in w for w in warnings)
        assert any("frequency" in w for w in warnings)
        assert any("per-share value is zero" in w for w in warnings)


class TestSerialization:
    def test_to_dict_is_json_safe(self):
        metrics = DividendMetrics(
            annual_dividend=Decimal("60.00"),
            last_dividend_date=datetime(2024, 6, 15, tzinfo=timezone.utc),
            dividend_frequency=12,
        )
        data = metrics.to_dict()

        assert data["annual_dividend"] == "60.00"
        assert data["last_dividend_date"] == "2024-06-15T00:00:00+00:00"
        assert data["dividend_frequency"] == 12

    def test_from_dict_tolerates_partial_blocks(self):
        metrics = DividendMetrics.from_dict({"annual_dividend": "12.5", "dividend_frequency": "4"})

        assert metrics.annual_dividend == Decimal("12.5")
        assert metrics.dividend_frequency == 4
        assert metrics.yield_on_cost == Decimal("0")
        assert DividendMetrics.from_dict(None) == DividendMetrics()

    def test_zero_block(self):
        metrics = DividendMetrics.zero(Decimal("10"), Decimal("20"))
        assert metrics.dividend_adjusted_cost == Decimal("200")
        assert metrics.dividend_adjusted_cost_per_share == Decimal("20")
        assert metrics.annual_dividend == Decimal("0")
