"""Tests for raw transaction label classification."""

import pytest

from utils.transaction_types import TransactionType, classify_transaction_type


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Trades", TransactionType.TRADE),
        ("Dividends", TransactionType.DIVIDEND),
        ("DIVIDEND REINVESTMENT", TransactionType.DIVIDEND),
        ("Deposits", TransactionType.DEPOSIT),
        ("Withdrawals", TransactionType.WITHDRAWAL),
        ("Interest", TransactionType.INTEREST),
        ("Transfers", TransactionType.TRANSFER),
        ("Fees and rebates", TransactionType.FEE),
        ("Tax withholding", TransactionType.TAX),
        ("FX conversion", TransactionType.FX),
        ("Currency exchange", TransactionType.FX),
        ("Corporate actions", TransactionType.OTHER),
    ],
)
def test_classify_known_labels(raw, expected):
    assert classify_transaction_type(raw) is expected


def test_empty_and_none_map_to_other():
    assert classify_transaction_type("") is TransactionType.OTHER
    assert classify_transaction_type(None) is TransactionType.OTHER


def test_first_matching_keyword_wins():
    """'Dividend tax' contains both keywords; dividend is checked first."""
    assert classify_transaction_type("Dividend tax") is TransactionType.DIVIDEND
    assert classify_transaction_type("Transfer fee") is TransactionType.TRANSFER


def test_values_are_stable_strings():
    assert TransactionType.DIVIDEND.value == "Dividend"
    assert TransactionType("FX") is TransactionType.FX
