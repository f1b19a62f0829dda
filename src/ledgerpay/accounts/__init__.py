"""Signing accounts.

- Delegated: derived from the auth layer's public key
- Self-custodied: locally generated or imported keys
"""

from ledgerpay.accounts.base import Account, AccountSource, AuthState
from ledgerpay.accounts.binder import AccountBinder
from ledgerpay.accounts.local import account_from_private_key, create_local_account

__all__ = [
    "Account",
    "AccountSource",
    "AuthState",
    "AccountBinder",
    "account_from_private_key",
    "create_local_account",
]
