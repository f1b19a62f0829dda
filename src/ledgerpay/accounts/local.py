"""Self-custodied accounts backed by in-memory private keys.

WARNING: Private keys are held in memory for the lifetime of the account.
"""

import logging

from eth_account import Account as EthAccount

from ledgerpay.accounts.base import Account, AccountSource

logger = logging.getLogger(__name__)


def create_local_account() -> Account:
    """Generate a fresh self-custodied account."""
    local = EthAccount.create()
    logger.info(f"Created new self-custodied account {local.address}")
    return Account(address=local.address, source=AccountSource.SELF_CUSTODIED, signer=local)


def account_from_private_key(private_key: str) -> Account:
    """Load a self-custodied account from a hex private key.

    Raises:
        ValueError: If the key is malformed
    """
    key = private_key.strip()
    if not key.startswith("0x"):
        key = f"0x{key}"
    local = EthAccount.from_key(key)
    return Account(address=local.address, source=AccountSource.SELF_CUSTODIED, signer=local)


def watch_only_account(address: str) -> Account:
    """Bind an address without signing capability (external wallet signs)."""
    if not address.startswith("0x") or len(address) != 42:
        raise ValueError("Invalid Ethereum address format")
    return Account(address=address, source=AccountSource.SELF_CUSTODIED)
