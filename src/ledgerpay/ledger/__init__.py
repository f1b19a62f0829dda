"""Ledger service access.

Provides the PaymentManager contract; implementations live in:
- ledgerpay.ledger.simulated: In-memory ledger for dry runs and tests
- ledgerpay.ledger.http: JSON gateway in front of the payment contracts
"""

from ledgerpay.ledger.client import LedgerClient, PaymentManager
from ledgerpay.ledger.errors import LedgerError

__all__ = [
    "LedgerClient",
    "LedgerError",
    "PaymentManager",
]
