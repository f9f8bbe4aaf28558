"""Classification of raw brokerage transaction labels."""

from enum import Enum


class TransactionType(str, Enum):
    """Closed set of transaction categories stored on Transaction.type."""

    TRADE = "Trade"
    DIVIDEND = "Dividend"
    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"
    INTEREST = "Interest"
    TRANSFER = "Transfer"
    FEE = "Fee"
    TAX = "Tax"
    FX = "FX"
    OTHER = "Other"


# Checked in order; the first keyword contained in the raw label wins.
_KEYWORD_ORDER: tuple[tuple[tuple[str, ...], TransactionType], ...] = (
    (("trade",), TransactionType.TRADE),
    (("dividend",), TransactionType.DIVIDEND),
    (("deposit",), TransactionType.DEPOSIT),
    (("withdrawal",), TransactionType.WITHDRAWAL),
    (("interest",), TransactionType.INTEREST),
    (("transfer",), TransactionType.TRANSFER),
    (("fee",), TransactionType.FEE),
    (("tax",), TransactionType.TAX),
    (("fx", "exchange"), TransactionType.FX),
)


def classify_transaction_type(raw_type: str | None) -> TransactionType:
    """Map a raw upstream label to a TransactionType.

    Matching is case-insensitive substring containment, e.g.
    ``"Dividends"`` -> DIVIDEND, ``"FX conversion"`` -> FX. Unknown or
    empty labels map to OTHER.
    """
    label = (raw_type or "").lower()
    for keywords, tx_type in _KEYWORD_ORDER:
        if any(keyword in label for keyword in keywords):
            return tx_type
    return TransactionType.OTHER
