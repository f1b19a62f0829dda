"""Payment controller.

Composes the account binder, session factory, balance tracker, withdrawal
coordinator and deposit executor behind one state surface.

Account change sequence:
1. Advance the account generation (outstanding results become stale)
2. Stop timers and reset every component
3. Acquire a session for the new account (security delay fetched with it)
4. Bind components to the session, start balance auto-refresh
5. Load the withdrawal status for the new account

Calls only go downward. Components publish change events; the controller
turns them into state snapshots, error banners and success pulses.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from ledgerpay.accounts.base import Account, AccountSource, AuthState, DelegatedAccountProvider
from ledgerpay.accounts.binder import AccountBinder
from ledgerpay.accounts.local import account_from_private_key, create_local_account
from ledgerpay.chains import get_explorer_tx_url, get_network
from ledgerpay.config import Settings, get_settings
from ledgerpay.controller.balance import BalanceTracker
from ledgerpay.controller.deposit import DEPOSIT_FOR_USER, DEPOSIT_SELF, DepositExecutor, DepositReceipt
from ledgerpay.controller.feedback import ErrorBanner, SuccessPulses
from ledgerpay.controller.session import LedgerSession, LedgerSessionFactory
from ledgerpay.controller.state import ControllerConfig, ControllerState, FormInputs, FundingReceipt
from ledgerpay.controller.withdrawal import (
    EXECUTE_ACTION,
    REQUEST_ACTION,
    WithdrawalCoordinator,
    WithdrawalPhase,
)
from ledgerpay.ledger.client import LedgerClient
from ledgerpay.ledger.errors import (
    ConfigurationError,
    LedgerError,
    OperationInFlight,
    SessionUnavailable,
    StaleResultError,
)
from ledgerpay.ledger.models import Balance, OperationOutcome, WithdrawalEligibility
from ledgerpay.notifications.ledger_events import LedgerEventNotifier
from ledgerpay.utils.events import ComponentEvent, EventEmitter
from ledgerpay.utils.generation import Generation
from ledgerpay.utils.scheduler import TimerGroup

logger = logging.getLogger(__name__)


class PaymentController:
    """Ledger payment and withdrawal lifecycle controller."""

    def __init__(
        self,
        client: Optional[LedgerClient],
        config: ControllerConfig,
        *,
        delegated_provider: Optional[DelegatedAccountProvider] = None,
        notifier: Optional[LedgerEventNotifier] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        on_transaction_complete: Optional[Callable[[OperationOutcome], None]] = None,
        on_balance_change: Optional[Callable[[Optional[Balance]], None]] = None,
    ):
        if not config.network:
            raise ConfigurationError("No ledger network configured")
        if get_network(config.network) is None:
            raise ConfigurationError(f"Unknown or unsupported network: {config.network}")

        self.config = config
        self.settings = settings or get_settings()
        self.on_transaction_complete = on_transaction_complete
        self.on_balance_change = on_balance_change
        self.events = EventEmitter("controller")

        self.binder = AccountBinder(
            delegated_provider,
            allow_delegated=config.allow_delegated,
            allow_self_custodied=config.allow_self_custodied,
            initial_source=config.initial_source,
        )
        self.sessions = LedgerSessionFactory(client)
        self.balance = BalanceTracker(self.settings.balance_refresh_interval)
        self.withdrawals = (
            WithdrawalCoordinator(clock) if clock else WithdrawalCoordinator()
        )
        self.deposits = DepositExecutor()
        self.notifier = notifier or LedgerEventNotifier(self.settings.ledger_webhook_url)

        self.errors = ErrorBanner(self.settings.error_display_seconds, self._publish)
        self.successes = SuccessPulses(self.settings.success_display_seconds, self._publish)
        self.inputs = FormInputs(deposit_for_address=config.preset_recipient_address or "")

        self._generation = Generation("account")
        self._timers = TimerGroup()
        self._session: Optional[LedgerSession] = None
        self._session_loading = False
        self._auto_refresh = config.auto_refresh
        self._funding_receipt: Optional[FundingReceipt] = None

        self.binder.events.subscribe(self._on_binder_event)
        self.balance.events.subscribe(self._on_component_event)
        self.withdrawals.events.subscribe(self._on_component_event)
        self.deposits.events.subscribe(self._on_component_event)

    # ======================
    # State surface
    # ======================

    @property
    def account(self) -> Optional[Account]:
        return self.binder.account

    @property
    def session(self) -> Optional[LedgerSession]:
        return self._session

    @property
    def balance_address(self) -> Optional[str]:
        """Address whose ledger balance is tracked."""
        if self.config.target_user_address:
            return self.config.target_user_address
        return self.account.address if self.account else None

    @property
    def state(self) -> ControllerState:
        in_flight = set(self.deposits.in_flight)
        if self.withdrawals.is_requesting:
            in_flight.add(REQUEST_ACTION)
        if self.withdrawals.is_executing:
            in_flight.add(EXECUTE_ACTION)

        advisory = self.withdrawals.advisory_eligibility()
        return ControllerState(
            account=self.account,
            account_source=self.binder.source,
            is_deriving_account=self.binder.is_deriving,
            session_ready=self._session is not None and self._session.valid,
            session_loading=self._session_loading,
            balance_address=self.balance_address,
            balance=self.balance.balance,
            is_loading_balance=self.balance.is_loading,
            auto_refresh=self._auto_refresh,
            withdrawal_phase=self.withdrawals.phase,
            withdrawal_request=self.withdrawals.request,
            withdrawal_eligibility=self.withdrawals.eligibility,
            advisory_time_remaining=advisory.time_remaining if advisory else None,
            security_delay=self.withdrawals.security_delay,
            is_checking_withdrawal=self.withdrawals.is_checking,
            in_flight=frozenset(in_flight),
            success_actions=self.successes.active,
            error=self.errors.message,
            inputs=replace(self.inputs),
            funding_receipt=self._funding_receipt,
            ledger_unit=self.config.ledger_unit,
        )

    def subscribe(self, listener: Callable[[ComponentEvent], None]) -> Callable[[], None]:
        """Be told whenever the state surface changes; read `state` for the snapshot."""
        return self.events.subscribe(listener)

    def _publish(self) -> None:
        self.events.emit("changed")

    def set_input(self, name: str, value: str) -> None:
        if not hasattr(self.inputs, name):
            raise AttributeError(f"Unknown input field: {name}")
        setattr(self.inputs, name, value)
        self._publish()

    def clear_error(self) -> None:
        self.errors.clear()

    def clear_funding_receipt(self) -> None:
        self._funding_receipt = None
        self._publish()

    def _surface(self, action: str, error: LedgerError) -> None:
        if isinstance(error, StaleResultError):
            logger.debug(f"{action} superseded by account change: {error}")
            return
        message = f"{action} failed: {error}"
        logger.error(message)
        self.errors.show(message)

    # ======================
    # Component events
    # ======================

    def _on_binder_event(self, event: ComponentEvent) -> None:
        account: Optional[Account] = event.payload
        if self._session is not None or self._session_loading:
            current = self._session.account.identity if self._session else None
            if account is None or account.identity != current:
                self._teardown()
        self._publish()

    def _on_component_event(self, event: ComponentEvent) -> None:
        if event.kind == "error" and event.error is not None:
            self._surface("Balance check", event.error)
        elif event.kind == "balance" and self.on_balance_change is not None:
            try:
                self.on_balance_change(event.payload)
            except Exception as e:
                logger.error(f"Balance change callback failed: {e}")
        self._publish()

    # ======================
    # Account lifecycle
    # ======================

    def _teardown(self) -> None:
        """Drop the session and every piece of state derived from it."""
        self._generation.advance()
        self._timers.cancel_all()
        self.balance.unbind()
        self.withdrawals.reset()
        self.deposits.bind(None)
        if self._session is not None:
            self._session.invalidate()
            self._session = None
        self._session_loading = False

    async def _activate(self, account: Account) -> Optional[LedgerSession]:
        """Acquire a session for the account and bring all components up."""
        self._teardown()
        stamp = self._generation.current
        self._session_loading = True
        self._publish()

        try:
            session = await self.sessions.acquire(account, stamp)
        except SessionUnavailable as e:
            if self._generation.is_current(stamp):
                self._session_loading = False
                self._surface("Ledger session", e)
                self._publish()
                raise
            return None

        if not self._generation.is_current(stamp):
            logger.debug(f"Discarding session for superseded account {account.address}")
            session.invalidate()
            return None

        self._session = session
        self._session_loading = False
        self.balance.bind(session, self.balance_address)
        self.withdrawals.bind(session)
        self.deposits.bind(session)
        logger.info(f"Ledger session ready for {account.address}")

        if self._auto_refresh:
            self.balance.start_auto_refresh()
        self._publish()

        if not self.config.fund_only:
            await self.load_withdrawal_status(raise_errors=False)
        return session

    async def switch_source(self, source: AccountSource) -> None:
        """Select the account source; the current account is dropped."""
        try:
            self.binder.switch_source(source)
        except ConfigurationError as e:
            self._surface("Switch account source", e)
            raise

    async def use_delegated(self, auth: AuthState) -> Optional[Account]:
        """Derive and activate the delegated account for the auth state.

        Returns:
            The active account, or None if a later switch superseded this call
        """
        self.errors.clear()
        try:
            account = await self.binder.bind_delegated(auth)
        except LedgerError as e:
            self._surface("Create delegated account", e)
            raise
        if account is None:
            return None
        await self._activate(account)
        return account

    async def use_self_custodied(self, account: Account) -> Account:
        """Activate a caller-supplied account."""
        self.errors.clear()
        try:
            self.binder.bind_self_custodied(account)
        except LedgerError as e:
            self._surface("Use account", e)
            raise
        await self._activate(account)
        return account

    async def create_self_custodied_account(self) -> Account:
        return await self.use_self_custodied(create_local_account())

    async def import_private_key(self, private_key: str) -> Account:
        try:
            account = account_from_private_key(private_key)
        except ValueError as e:
            error = ConfigurationError(f"Invalid private key: {e}")
            self._surface("Import account", error)
            raise error from e
        return await self.use_self_custodied(account)

    async def on_auth_changed(self, auth: AuthState) -> Optional[Account]:
        """React to the auth layer; only the delegated source depends on it."""
        if self.binder.source != AccountSource.DELEGATED:
            return self.account
        if not auth.has_credential:
            self.binder.invalidate("auth context lost")
            return None
        return await self.use_delegated(auth)

    async def retry_session(self) -> Optional[LedgerSession]:
        """Re-acquire the session for the current account."""
        account = self.account
        if account is None:
            raise SessionUnavailable("No account bound")
        return await self._activate(account)

    # ======================
    # Balance
    # ======================

    async def refresh_balance(self) -> Optional[Balance]:
        try:
            return await self.balance.refresh()
        except LedgerError as e:
            self._surface("Balance check", e)
            raise

    def set_auto_refresh(self, enabled: bool) -> None:
        self._auto_refresh = enabled
        if enabled and self._session is not None:
            self.balance.start_auto_refresh()
        else:
            self.balance.stop()
        self._publish()

    async def _deferred_balance_refresh(self, stamp: int) -> None:
        if not self._generation.is_current(stamp):
            return
        try:
            await self.balance.refresh()
        except LedgerError as e:
            self._surface("Balance check", e)

    # ======================
    # Shared success handling
    # ======================

    def _after_write(
        self,
        stamp: int,
        action_id: str,
        outcome: OperationOutcome,
        changed_address: str,
        then: Optional[Callable[[], object]] = None,
    ) -> None:
        """Success pulse, completion callback, ledger-changed event, deferred re-read."""
        if self.on_transaction_complete is not None:
            try:
                self.on_transaction_complete(outcome)
            except Exception as e:
                logger.error(f"Transaction callback failed: {e}")

        self.notifier.notify_ledger_changed(
            changed_address, action_id, outcome.transaction_reference
        )

        if not self._generation.is_current(stamp):
            logger.warning(f"{action_id} completed after account change; state not updated")
            return

        self.successes.pulse(action_id)
        self._timers.call_later(
            self.settings.settle_delay,
            then or (lambda: self._deferred_balance_refresh(stamp)),
            name=f"after-{action_id}",
        )
        self._publish()

    def _require_full_mode(self, action: str) -> None:
        if self.config.fund_only:
            error = ConfigurationError(f"{action} is not available in fund-only mode")
            self._surface(action, error)
            raise error

    # ======================
    # Deposits
    # ======================

    async def deposit_self(self, amount: Optional[str] = None) -> DepositReceipt:
        """Deposit into the account's own ledger balance (defaults to the input field)."""
        self._require_full_mode("Deposit")
        value = amount if amount is not None else self.inputs.deposit_amount
        stamp = self._generation.current
        self.errors.clear()

        try:
            receipt = await self.deposits.deposit_self(value)
        except LedgerError as e:
            self._surface("Deposit", e)
            raise

        if self._generation.is_current(stamp) and amount is None:
            self.inputs.deposit_amount = ""
        self._after_write(
            stamp, DEPOSIT_SELF, receipt.outcome,
            self.config.target_user_address or receipt.beneficiary,
        )
        return receipt

    async def deposit_for(
        self,
        target_address: Optional[str] = None,
        amount: Optional[str] = None,
    ) -> DepositReceipt:
        """Deposit into another address's ledger balance (defaults to the input fields)."""
        address = target_address if target_address is not None else self.inputs.deposit_for_address
        if not address and self.config.fund_only:
            address = self.config.target_user_address or ""
        value = amount if amount is not None else self.inputs.deposit_for_amount
        stamp = self._generation.current
        self.errors.clear()

        try:
            receipt = await self.deposits.deposit_for(address, value)
        except LedgerError as e:
            self._surface("Deposit for user", e)
            raise

        if self._generation.is_current(stamp):
            if amount is None:
                self.inputs.deposit_for_amount = ""
            if target_address is None:
                self.inputs.deposit_for_address = self.config.preset_recipient_address or ""
            if self.config.fund_only:
                tx = receipt.outcome.transaction_reference
                self._funding_receipt = FundingReceipt(
                    transaction_reference=tx,
                    explorer_url=get_explorer_tx_url(self.config.network, tx),
                )
        self._after_write(stamp, DEPOSIT_FOR_USER, receipt.outcome, receipt.beneficiary)
        return receipt

    # ======================
    # Withdrawals
    # ======================

    async def load_withdrawal_status(self, raise_errors: bool = True) -> Optional[WithdrawalPhase]:
        try:
            return await self.withdrawals.load_status()
        except LedgerError as e:
            if raise_errors:
                self._surface("Withdrawal status check", e)
                raise
            if isinstance(e, OperationInFlight):
                logger.debug("Withdrawal status already loading")
            else:
                self._surface("Withdrawal status check", e)
            return None

    async def _deferred_withdrawal_status(self, stamp: int) -> None:
        if self._generation.is_current(stamp):
            await self.load_withdrawal_status(raise_errors=False)

    async def check_withdrawal(self) -> Optional[WithdrawalEligibility]:
        """Authoritative eligibility check for the pending withdrawal."""
        try:
            return await self.withdrawals.check_eligibility()
        except LedgerError as e:
            self._surface("Withdrawal status check", e)
            raise

    def time_remaining(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        """Advisory countdown until the pending withdrawal may execute."""
        advisory = self.withdrawals.advisory_eligibility(now)
        return advisory.time_remaining if advisory else None

    async def request_withdraw(self, amount: Optional[str] = None) -> OperationOutcome:
        """Request a withdrawal (defaults to the input field)."""
        self._require_full_mode("Withdrawal request")
        value = amount if amount is not None else self.inputs.withdraw_amount
        stamp = self._generation.current
        address = self._session_address()
        self.errors.clear()

        try:
            outcome = await self.withdrawals.request_withdraw(value)
        except LedgerError as e:
            self._surface("Withdrawal request", e)
            raise

        if self._generation.is_current(stamp) and amount is None:
            self.inputs.withdraw_amount = ""
        self._after_write(
            stamp, REQUEST_ACTION, outcome, address,
            then=lambda: self._deferred_withdrawal_status(stamp),
        )
        return outcome

    async def execute_withdraw(self) -> OperationOutcome:
        """Execute the pending withdrawal once the service confirms the delay has passed."""
        self._require_full_mode("Withdrawal execution")
        stamp = self._generation.current
        address = self._session_address()
        self.errors.clear()

        try:
            outcome = await self.withdrawals.execute()
        except LedgerError as e:
            self._surface("Withdrawal execution", e)
            raise

        self._after_write(stamp, EXECUTE_ACTION, outcome, address)
        return outcome

    def _session_address(self) -> str:
        return self._session.address if self._session else ""

    # ======================
    # Teardown
    # ======================

    async def close(self) -> None:
        """Stop every timer and drop the session."""
        self._teardown()
        self.balance.close()
        self.errors.close()
        self.successes.close()
        await self.notifier.drain()
        logger.info("Payment controller closed")
