"""External API integrations.

This package contains:
- Brokerage protocol: normalized DTOs and the client interface
- Exceptions: typed upstream error hierarchy
"""

from integrations.brokerage_protocol import (
    AccountBalances,
    BrokerageAccount,
    BrokerageClient,
    BrokerageHolding,
    BrokerageInstrument,
    BrokerageTransaction,
    CurrencyBalance,
)

__all__ = [
    "AccountBalances",
    "BrokerageAccount",
    "BrokerageClient",
    "BrokerageHolding",
    "BrokerageInstrument",
    "BrokerageTransaction",
    "CurrencyBalance",
]
