"""Active signing account resolution.

The binder owns the single active Account. Delegated accounts are derived
asynchronously from the auth layer; self-custodied accounts are handed in
by the caller. Every source switch advances the binder's generation so a
derivation started for the previous source is dropped when it resolves.
"""

import logging
from typing import Optional

from ledgerpay.accounts.base import Account, AccountSource, AuthState, DelegatedAccountProvider
from ledgerpay.ledger.errors import (
    AccountUnavailable,
    ConfigurationError,
    DerivationError,
)
from ledgerpay.utils.events import EventEmitter
from ledgerpay.utils.generation import Generation

logger = logging.getLogger(__name__)


class AccountBinder:
    """Resolves and owns the active signing account."""

    def __init__(
        self,
        provider: Optional[DelegatedAccountProvider] = None,
        *,
        allow_delegated: bool = True,
        allow_self_custodied: bool = True,
        initial_source: AccountSource = AccountSource.DELEGATED,
    ):
        if not allow_delegated and not allow_self_custodied:
            raise ConfigurationError("At least one account source must be enabled")

        self.provider = provider
        self.allow_delegated = allow_delegated
        self.allow_self_custodied = allow_self_custodied
        self.events = EventEmitter("binder")
        self._generation = Generation("account source")
        self._account: Optional[Account] = None
        self._deriving = False

        # Delegated disabled forces self-custodied
        if initial_source == AccountSource.DELEGATED and not allow_delegated:
            initial_source = AccountSource.SELF_CUSTODIED
        elif initial_source == AccountSource.SELF_CUSTODIED and not allow_self_custodied:
            initial_source = AccountSource.DELEGATED
        self._source = initial_source

    @property
    def source(self) -> AccountSource:
        return self._source

    @property
    def account(self) -> Optional[Account]:
        return self._account

    @property
    def is_deriving(self) -> bool:
        return self._deriving

    @property
    def generation(self) -> int:
        return self._generation.current

    def is_enabled(self, source: AccountSource) -> bool:
        if source == AccountSource.DELEGATED:
            return self.allow_delegated
        return self.allow_self_custodied

    def _set_account(self, account: Optional[Account]) -> None:
        previous = self._account
        self._account = account
        if previous != account:
            if account:
                logger.info(f"Active account: {account.address} ({account.source.value})")
            else:
                logger.info("Active account cleared")
            self.events.emit("changed", payload=account)

    def switch_source(self, source: AccountSource) -> None:
        """Select a new account source, dropping the current account.

        Raises:
            ConfigurationError: If the source is disabled
        """
        if not self.is_enabled(source):
            raise ConfigurationError(f"Account source '{source.value}' is disabled")

        self._generation.advance()
        self._deriving = False
        self._source = source
        logger.info(f"Account source switched to {source.value}")
        self._set_account(None)

    async def bind_delegated(self, auth: AuthState) -> Optional[Account]:
        """Derive the delegated account for the current auth state.

        Returns:
            The bound account, or None if a source switch superseded this call

        Raises:
            ConfigurationError: If the delegated source is disabled
            AccountUnavailable: If the auth layer has no credential or key
            DerivationError: If derivation fails
        """
        if not self.allow_delegated:
            raise ConfigurationError("Delegated accounts are disabled")
        if self._source != AccountSource.DELEGATED:
            self.switch_source(AccountSource.DELEGATED)

        stamp = self._generation.advance()
        self._set_account(None)

        if self.provider is None:
            raise AccountUnavailable("No delegated account provider configured")
        if not auth.has_credential:
            raise AccountUnavailable("No auth context available")
        if not auth.public_key_id:
            raise AccountUnavailable("No public key available for delegated account")

        self._deriving = True
        try:
            account = await self.provider.derive_account(auth.public_key_id, auth.credential)
        except Exception as e:
            if not self._generation.is_current(stamp):
                logger.debug(f"Ignoring failed derivation for superseded source: {e}")
                return None
            self._deriving = False
            logger.error(f"Failed to derive delegated account: {e}")
            raise DerivationError(f"Failed to derive delegated account: {e}") from e

        if not self._generation.is_current(stamp):
            logger.debug(f"Discarding delegated account {account.address} for superseded source")
            return None

        self._deriving = False
        self._set_account(account)
        return account

    def bind_self_custodied(self, account: Account) -> Account:
        """Bind a caller-supplied account.

        Raises:
            ConfigurationError: If the self-custodied source is disabled
        """
        if not self.allow_self_custodied:
            raise ConfigurationError("Self-custodied accounts are disabled")
        if account.source != AccountSource.SELF_CUSTODIED:
            raise ConfigurationError("Account was not created as self-custodied")
        if self._source != AccountSource.SELF_CUSTODIED:
            self.switch_source(AccountSource.SELF_CUSTODIED)
        else:
            self._generation.advance()

        self._set_account(account)
        return account

    def invalidate(self, reason: str = "auth invalidated") -> None:
        """Drop the active account (e.g. the auth layer logged out)."""
        self._generation.advance()
        self._deriving = False
        if self._account is not None:
            logger.info(f"Invalidating account {self._account.address}: {reason}")
        self._set_account(None)
