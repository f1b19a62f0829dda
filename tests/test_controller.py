"""End-to-end tests for the payment controller over the simulated ledger."""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from ledgerpay.accounts.base import AccountSource, AuthState
from ledgerpay.controller.controller import PaymentController
from ledgerpay.controller.state import ControllerConfig
from ledgerpay.controller.withdrawal import WithdrawalPhase
from ledgerpay.ledger.errors import (
    ConfigurationError,
    OperationFailure,
    OperationInFlight,
    SessionUnavailable,
    WithdrawalAlreadyPending,
    WithdrawalNotReady,
)
from ledgerpay.notifications.ledger_events import LedgerEventNotifier

from conftest import ADDRESS_A, ADDRESS_B

AUTH = AuthState(has_credential=True, public_key_id="0x04feed", credential="session-token")


class TestControllerConfig:
    """Tests for construction-time configuration."""

    def test_unknown_network(self, client, settings):
        with pytest.raises(ConfigurationError):
            PaymentController(client, ControllerConfig(network="mainnet-x"), settings=settings)

    def test_missing_network(self, client, settings):
        with pytest.raises(ConfigurationError):
            PaymentController(client, ControllerConfig(network=""), settings=settings)

    def test_no_sources_enabled(self, client, settings):
        config = ControllerConfig(
            network="naga-dev", allow_delegated=False, allow_self_custodied=False
        )

        with pytest.raises(ConfigurationError):
            PaymentController(client, config, settings=settings)

    def test_fund_only_requires_target(self):
        with pytest.raises(ValueError):
            ControllerConfig(network="naga-dev", fund_only=True)

    def test_invalid_target_address(self):
        with pytest.raises(ValueError):
            ControllerConfig(network="naga-dev", target_user_address="0x12")

    @pytest.mark.asyncio
    async def test_ledger_unit(self, controller):
        assert controller.state.ledger_unit == "tstLPX"


class TestAccountLifecycle:
    """Tests for binding accounts and sessions."""

    @pytest.mark.asyncio
    async def test_self_custodied_account_gets_session(self, controller, account_a):
        await controller.use_self_custodied(account_a)
        state = controller.state

        assert state.account == account_a
        assert state.session_ready
        assert state.security_delay.seconds == 3600
        assert state.withdrawal_phase == WithdrawalPhase.IDLE
        assert state.balance_address == ADDRESS_A

    @pytest.mark.asyncio
    async def test_delegated_account(self, controller):
        account = await controller.use_delegated(AUTH)

        assert account.source == AccountSource.DELEGATED
        assert controller.state.session_ready

    @pytest.mark.asyncio
    async def test_auth_loss_drops_account(self, controller):
        await controller.use_delegated(AUTH)

        await controller.on_auth_changed(AuthState(has_credential=False))

        assert controller.state.account is None
        assert not controller.state.session_ready

    @pytest.mark.asyncio
    async def test_session_unavailable_surfaced(self, controller, ledger, account_a):
        ledger.available = False

        with pytest.raises(SessionUnavailable):
            await controller.use_self_custodied(account_a)

        assert controller.state.account == account_a
        assert not controller.state.session_ready
        assert controller.state.error.startswith("Ledger session failed:")

        ledger.available = True
        await controller.retry_session()
        assert controller.state.session_ready

    @pytest.mark.asyncio
    async def test_no_client(self, config, settings, account_a):
        controller = PaymentController(None, config, settings=settings)

        with pytest.raises(SessionUnavailable):
            await controller.use_self_custodied(account_a)
        await controller.close()

    @pytest.mark.asyncio
    async def test_switch_source_drops_session(self, controller, account_a):
        await controller.use_self_custodied(account_a)

        await controller.switch_source(AccountSource.DELEGATED)

        assert controller.state.account is None
        assert controller.session is None

    @pytest.mark.asyncio
    async def test_account_switch_discards_stale_balance(
        self, controller, ledger, account_a, account_b
    ):
        ledger.credit(ADDRESS_A, "1")
        ledger.credit(ADDRESS_B, "5")
        await controller.use_self_custodied(account_a)
        ledger.latency = 0.05

        refresh_a = asyncio.create_task(controller.refresh_balance())
        await asyncio.sleep(0.01)
        await controller.use_self_custodied(account_b)

        assert await refresh_a is None
        assert controller.state.balance is None

        balance = await controller.refresh_balance()
        assert balance.total_balance.display == "5"
        assert controller.state.balance == balance

    @pytest.mark.asyncio
    async def test_account_switch_resets_withdrawal_state(
        self, controller, ledger, account_a, account_b
    ):
        ledger.credit(ADDRESS_A, "10")
        await controller.use_self_custodied(account_a)
        await controller.request_withdraw("1")
        assert controller.state.withdrawal_phase == WithdrawalPhase.PENDING

        await controller.use_self_custodied(account_b)

        assert controller.state.withdrawal_phase == WithdrawalPhase.IDLE
        assert controller.state.withdrawal_request is None

    @pytest.mark.asyncio
    async def test_pending_withdrawal_loaded_on_bind(self, controller, ledger, account_a, client):
        ledger.credit(ADDRESS_A, "10")
        manager = await client.get_payment_manager(account_a)
        await manager.request_withdraw("3")

        await controller.use_self_custodied(account_a)

        assert controller.state.withdrawal_phase == WithdrawalPhase.PENDING
        assert controller.state.withdrawal_request.amount == "3"


class TestDeposits:
    """Tests for deposits through the controller."""

    @pytest.mark.asyncio
    async def test_deposit_for_other_address(self, controller, ledger, account_a):
        """A deposit for addressB credits B and announces the change for B."""
        ledger.credit(ADDRESS_A, "10")
        changes = []
        controller.notifier.subscribe(changes.append)
        completed = MagicMock()
        controller.on_transaction_complete = completed
        await controller.use_self_custodied(account_a)

        controller.set_input("deposit_for_address", ADDRESS_B)
        controller.set_input("deposit_for_amount", "0.5")
        receipt = await controller.deposit_for()

        assert ledger.balance_of(ADDRESS_B).total_balance.display == "0.5"
        assert receipt.beneficiary == ADDRESS_B
        assert len(changes) == 1
        assert changes[0].address == ADDRESS_B
        assert changes[0].transaction_reference == receipt.outcome.transaction_reference
        completed.assert_called_once_with(receipt.outcome)

        state = controller.state
        assert "deposit-for-user" in state.success_actions
        assert state.inputs.deposit_for_amount == ""
        assert state.inputs.deposit_for_address == ""
        assert state.error == ""

    @pytest.mark.asyncio
    async def test_deposit_self_uses_input(self, controller, ledger, account_a):
        await controller.use_self_custodied(account_a)
        controller.set_input("deposit_amount", "2")

        await controller.deposit_self()

        assert ledger.balance_of(ADDRESS_A).total_balance.display == "2"
        assert controller.state.inputs.deposit_amount == ""
        assert "deposit" in controller.state.success_actions

    @pytest.mark.asyncio
    async def test_explicit_amount_keeps_input(self, controller, ledger, account_a):
        await controller.use_self_custodied(account_a)
        controller.set_input("deposit_amount", "7")

        await controller.deposit_self("2")

        assert ledger.balance_of(ADDRESS_A).total_balance.display == "2"
        assert controller.state.inputs.deposit_amount == "7"

    @pytest.mark.asyncio
    async def test_explicit_deposit_for_arguments_keep_inputs(self, controller, ledger, account_a):
        ledger.credit(ADDRESS_A, "10")
        await controller.use_self_custodied(account_a)
        controller.set_input("deposit_for_address", ADDRESS_A)
        controller.set_input("deposit_for_amount", "4")

        await controller.deposit_for(ADDRESS_B, "1")

        assert ledger.balance_of(ADDRESS_B).total_balance.display == "1"
        assert controller.state.inputs.deposit_for_address == ADDRESS_A
        assert controller.state.inputs.deposit_for_amount == "4"

    @pytest.mark.asyncio
    async def test_explicit_amount_clears_only_address_input(self, controller, ledger, account_a):
        await controller.use_self_custodied(account_a)
        controller.set_input("deposit_for_address", ADDRESS_B)
        controller.set_input("deposit_for_amount", "4")

        await controller.deposit_for(amount="1")

        assert ledger.balance_of(ADDRESS_B).total_balance.display == "1"
        assert controller.state.inputs.deposit_for_address == ""
        assert controller.state.inputs.deposit_for_amount == "4"

    @pytest.mark.asyncio
    async def test_invalid_amount_surfaced(self, controller, ledger, account_a):
        await controller.use_self_custodied(account_a)

        with pytest.raises(OperationFailure):
            await controller.deposit_self("0")

        assert controller.state.error.startswith("Deposit failed:")
        assert ledger.calls["deposit"] == 0

    @pytest.mark.asyncio
    async def test_double_submit_rejected(self, controller, ledger, account_a):
        await controller.use_self_custodied(account_a)
        ledger.latency = 0.02

        first = asyncio.create_task(controller.deposit_self("1"))
        await asyncio.sleep(0)
        assert controller.state.is_depositing

        with pytest.raises(OperationInFlight):
            await controller.deposit_self("1")

        await first
        assert ledger.calls["deposit"] == 1

    @pytest.mark.asyncio
    async def test_balance_refreshed_after_settle_delay(self, controller, ledger, account_a):
        controller.settings = controller.settings.model_copy(update={"settle_delay": 0.01})
        await controller.use_self_custodied(account_a)

        await controller.deposit_self("1")
        await asyncio.sleep(0.05)

        assert controller.state.balance.total_balance.display == "1"
        assert controller.state.balance_text == "1 tstLPX"

    @pytest.mark.asyncio
    async def test_balance_change_callback(self, controller, ledger, account_a):
        ledger.credit(ADDRESS_A, "4")
        on_balance = MagicMock()
        controller.on_balance_change = on_balance
        await controller.use_self_custodied(account_a)

        balance = await controller.refresh_balance()

        on_balance.assert_called_once_with(balance)

    @pytest.mark.asyncio
    async def test_error_banner_clears(self, controller, account_a):
        controller.errors.display_seconds = 0.01
        await controller.use_self_custodied(account_a)

        with pytest.raises(OperationFailure):
            await controller.deposit_self("")
        assert controller.state.error

        await asyncio.sleep(0.05)
        assert controller.state.error == ""


class TestWithdrawals:
    """Tests for the withdrawal flow through the controller."""

    @pytest.mark.asyncio
    async def test_withdrawal_after_security_delay(self, controller, ledger, clock, account_a):
        ledger.credit(ADDRESS_A, "10")
        await controller.use_self_custodied(account_a)

        await controller.request_withdraw("1")
        assert controller.time_remaining() == timedelta(seconds=3600)

        clock.advance(1800)
        with pytest.raises(WithdrawalNotReady):
            await controller.execute_withdraw()
        assert ledger.calls["withdraw"] == 0
        assert controller.state.error.startswith("Withdrawal execution failed:")

        clock.advance(1800)
        await controller.execute_withdraw()

        assert ledger.calls["withdraw"] == 1
        assert controller.state.withdrawal_phase == WithdrawalPhase.IDLE
        assert "execute-withdraw" in controller.state.success_actions

    @pytest.mark.asyncio
    async def test_duplicate_request_rejected(self, controller, ledger, account_a):
        ledger.credit(ADDRESS_A, "10")
        await controller.use_self_custodied(account_a)
        await controller.request_withdraw("1")

        with pytest.raises(WithdrawalAlreadyPending):
            await controller.request_withdraw("1")

        assert ledger.calls["request_withdraw"] == 1
        assert controller.state.error.startswith("Withdrawal request failed:")

    @pytest.mark.asyncio
    async def test_request_from_input_clears_it(self, controller, ledger, account_a):
        ledger.credit(ADDRESS_A, "10")
        await controller.use_self_custodied(account_a)
        controller.set_input("withdraw_amount", "1")

        await controller.request_withdraw()

        assert controller.state.withdrawal_request.amount == "1"
        assert controller.state.inputs.withdraw_amount == ""

    @pytest.mark.asyncio
    async def test_explicit_request_amount_keeps_input(self, controller, ledger, account_a):
        ledger.credit(ADDRESS_A, "10")
        await controller.use_self_custodied(account_a)
        controller.set_input("withdraw_amount", "3")

        await controller.request_withdraw("1")

        assert controller.state.withdrawal_request.amount == "1"
        assert controller.state.inputs.withdraw_amount == "3"


class TestFundOnly:
    """Tests for the fund-only flow."""

    @pytest.fixture
    def config(self) -> ControllerConfig:
        return ControllerConfig(
            network="naga-dev",
            target_user_address=ADDRESS_B,
            fund_only=True,
            auto_refresh=False,
        )

    @pytest.mark.asyncio
    async def test_funds_target_and_records_receipt(self, controller, ledger, account_a):
        ledger.credit(ADDRESS_A, "10")
        await controller.use_self_custodied(account_a)

        receipt = await controller.deposit_for(amount="2")

        assert receipt.beneficiary == ADDRESS_B
        assert controller.state.balance_address == ADDRESS_B
        funding = controller.state.funding_receipt
        assert funding.transaction_reference == receipt.outcome.transaction_reference
        assert funding.explorer_url.endswith(f"/tx/{funding.transaction_reference}")

    @pytest.mark.asyncio
    async def test_withdrawals_disabled(self, controller, account_a):
        await controller.use_self_custodied(account_a)

        with pytest.raises(ConfigurationError):
            await controller.request_withdraw("1")
        with pytest.raises(ConfigurationError):
            await controller.deposit_self("1")


class TestNotifications:
    """Tests for ledger-changed notifications."""

    @pytest.mark.asyncio
    async def test_observer_failure_does_not_fail_deposit(self, controller, ledger, account_a):
        def broken(event):
            raise RuntimeError("observer bug")

        controller.notifier.subscribe(broken)
        await controller.use_self_custodied(account_a)

        receipt = await controller.deposit_self("1")

        assert receipt.outcome.transaction_reference

    @pytest.mark.asyncio
    async def test_async_observer(self):
        notifier = LedgerEventNotifier()
        seen = []

        async def observer(event):
            seen.append(event.address)

        notifier.subscribe(observer)
        notifier.notify_ledger_changed(ADDRESS_A, "deposit", "0xabc")
        await notifier.drain()

        assert seen == [ADDRESS_A]
