"""Signing account types and the delegated derivation interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class AccountSource(str, Enum):
    """Where the active signing account comes from."""
    DELEGATED = "delegated"             # Derived from a custodial key held by the auth layer
    SELF_CUSTODIED = "self_custodied"   # Supplied by the user


@dataclass(frozen=True)
class Account:
    """Opaque signing identity.

    Attributes:
        address: Account address (0x-prefixed)
        source: How the account was obtained
        signer: Underlying signing object (eth-account LocalAccount, remote signer, ...)
    """
    address: str
    source: AccountSource
    signer: Any = field(default=None, compare=False, repr=False)

    @property
    def identity(self) -> tuple[str, str]:
        """Identity used to invalidate derived state: source plus address."""
        return (self.source.value, self.address.lower())


@dataclass(frozen=True)
class AuthState:
    """Snapshot of the upstream auth layer.

    Attributes:
        has_credential: Whether an auth context is present
        public_key_id: Public key of the delegated key, if any
        credential: Opaque auth context passed through to derivation
    """
    has_credential: bool = False
    public_key_id: Optional[str] = None
    credential: Any = field(default=None, compare=False, repr=False)


class DelegatedAccountProvider(ABC):
    """Derives a signing account from a custodial key held by the auth layer."""

    @abstractmethod
    async def derive_account(self, public_key_id: str, credential: Any) -> Account:
        """Derive the delegated account.

        Args:
            public_key_id: Public key identifier of the delegated key
            credential: Auth context proving control of the key

        Returns:
            Account with source DELEGATED
        """
        pass
