"""Tests for the HTTP ledger gateway adapter."""

import json

import httpx
import pytest

from ledgerpay.accounts.base import AuthState
from ledgerpay.accounts.binder import AccountBinder
from ledgerpay.accounts.local import account_from_private_key
from ledgerpay.config import Settings
from ledgerpay.ledger.errors import (
    DerivationError,
    LedgerTimeout,
    OperationFailure,
    SessionUnavailable,
)
from ledgerpay.ledger.http import HttpDelegatedAccountProvider, HttpLedgerClient

from conftest import ADDRESS_B

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def gateway(routes: dict, seen: list = None) -> httpx.MockTransport:
    """Mock gateway answering (method, path) with a JSON body or a status/body pair."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        answer = routes.get((request.method, request.url.path))
        if answer is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, tuple):
            status, body = answer
            return httpx.Response(status, json=body)
        return httpx.Response(200, json=answer)

    return httpx.MockTransport(handler)


@pytest.fixture
def http_settings() -> Settings:
    return Settings(
        _env_file=None,
        dry_run=False,
        ledger_api_url="http://gateway.test",
        ledger_api_key="test-key",
        request_timeout=1.0,
    )


@pytest.fixture
def account():
    return account_from_private_key(PRIVATE_KEY)


class TestHttpLedgerClient:
    """Tests for HttpLedgerClient and HttpPaymentManager."""

    @pytest.mark.asyncio
    async def test_unreachable_gateway(self, http_settings, account):
        client = HttpLedgerClient(http_settings, transport=gateway({}))

        with pytest.raises(SessionUnavailable):
            await client.get_payment_manager(account)
        await client.close()

    @pytest.mark.asyncio
    async def test_balance(self, http_settings, account):
        routes = {
            ("GET", "/ledger/status"): {"ok": True},
            ("GET", f"/ledger/{account.address}/balance"): {
                "totalBalance": "2.0",
                "availableBalance": "1.5",
                "raw": {
                    "totalBalance": "2000000000000000000",
                    "availableBalance": "1500000000000000000",
                },
            },
        }
        seen = []
        client = HttpLedgerClient(http_settings, transport=gateway(routes, seen))
        manager = await client.get_payment_manager(account)

        balance = await manager.get_balance(account.address)

        assert balance.total_balance.raw == 2 * 10**18
        assert balance.available_balance.display == "1.5"
        assert seen[0].headers["x-api-key"] == "test-key"
        assert seen[0].url.params["network"] == "naga-dev"
        await client.close()

    @pytest.mark.asyncio
    async def test_inconsistent_balance_rejected(self, http_settings, account):
        routes = {
            ("GET", "/ledger/status"): {"ok": True},
            ("GET", f"/ledger/{account.address}/balance"): {
                "totalBalance": "1",
                "availableBalance": "2",
                "raw": {"totalBalance": "1", "availableBalance": "2"},
            },
        }
        client = HttpLedgerClient(http_settings, transport=gateway(routes))
        manager = await client.get_payment_manager(account)

        with pytest.raises(OperationFailure):
            await manager.get_balance(account.address)
        await client.close()

    @pytest.mark.asyncio
    async def test_deposit_for_user_is_signed(self, http_settings, account):
        routes = {
            ("GET", "/ledger/status"): {"ok": True},
            ("POST", f"/ledger/{account.address}/deposit-for"): {"transactionHash": "0xdead"},
        }
        seen = []
        client = HttpLedgerClient(http_settings, transport=gateway(routes, seen))
        manager = await client.get_payment_manager(account)

        outcome = await manager.deposit_for_user(ADDRESS_B, "0.5")

        request = seen[-1]
        assert outcome.transaction_reference == "0xdead"
        assert json.loads(request.content) == {"userAddress": ADDRESS_B, "amount": "0.5"}
        assert request.headers["X-Ledger-Account"] == account.address
        assert request.headers["X-Ledger-Signature"]
        await client.close()

    @pytest.mark.asyncio
    async def test_withdrawal_endpoints(self, http_settings, account):
        base = f"/ledger/{account.address}/withdrawals"
        routes = {
            ("GET", "/ledger/status"): {"ok": True},
            ("GET", "/ledger/withdraw-delay"): {"delaySeconds": 3600, "delayHours": "1"},
            ("GET", f"{base}/pending"): {"amount": "1", "timestamp": "1735689600", "isPending": True},
            ("GET", f"{base}/can-execute"): {"canExecute": False, "timeRemaining": "1800"},
        }
        client = HttpLedgerClient(http_settings, transport=gateway(routes))
        manager = await client.get_payment_manager(account)

        delay = await manager.get_withdraw_delay()
        request = await manager.get_withdraw_request(account.address)
        eligibility = await manager.can_execute_withdraw(account.address)

        assert delay.seconds == 3600
        assert request.pending
        assert request.requested_at.timestamp() == 1735689600
        assert not eligibility.can_execute
        assert eligibility.seconds_remaining == 1800
        await client.close()

    @pytest.mark.asyncio
    async def test_no_pending_request(self, http_settings, account):
        routes = {
            ("GET", "/ledger/status"): {"ok": True},
            ("GET", f"/ledger/{account.address}/withdrawals/pending"): {
                "amount": "0", "timestamp": "0", "isPending": False,
            },
        }
        client = HttpLedgerClient(http_settings, transport=gateway(routes))
        manager = await client.get_payment_manager(account)

        request = await manager.get_withdraw_request(account.address)

        assert not request.pending
        assert request.requested_at is None
        await client.close()

    @pytest.mark.asyncio
    async def test_rejection_detail(self, http_settings, account):
        routes = {
            ("GET", "/ledger/status"): {"ok": True},
            ("POST", f"/ledger/{account.address}/withdrawals/execute"): (
                400, {"error": "Security delay has not elapsed"}
            ),
        }
        client = HttpLedgerClient(http_settings, transport=gateway(routes))
        manager = await client.get_payment_manager(account)

        with pytest.raises(OperationFailure) as exc:
            await manager.withdraw("1")

        assert str(exc.value) == "Security delay has not elapsed"
        assert exc.value.operation == "withdraw"
        await client.close()

    @pytest.mark.asyncio
    async def test_timeout(self, http_settings, account):
        routes = {
            ("GET", "/ledger/status"): {"ok": True},
            ("POST", f"/ledger/{account.address}/deposit"): httpx.ReadTimeout("timed out"),
        }
        client = HttpLedgerClient(http_settings, transport=gateway(routes))
        manager = await client.get_payment_manager(account)

        with pytest.raises(LedgerTimeout):
            await manager.deposit("1")
        await client.close()


class TestHttpDelegatedAccountProvider:
    """Tests for gateway-backed delegated accounts."""

    @pytest.mark.asyncio
    async def test_derive(self, http_settings):
        routes = {("POST", "/accounts/delegated"): {"address": ADDRESS_B}}
        seen = []
        client = HttpLedgerClient(http_settings, transport=gateway(routes, seen))
        binder = AccountBinder(HttpDelegatedAccountProvider(client))

        account = await binder.bind_delegated(
            AuthState(has_credential=True, public_key_id="0x04ab", credential="token")
        )

        assert account.address == ADDRESS_B
        assert seen[0].headers["Authorization"] == "Bearer token"
        await client.close()

    @pytest.mark.asyncio
    async def test_derive_failure(self, http_settings):
        routes = {("POST", "/accounts/delegated"): (401, {"error": "expired session"})}
        client = HttpLedgerClient(http_settings, transport=gateway(routes))
        provider = HttpDelegatedAccountProvider(client)

        with pytest.raises(DerivationError):
            await provider.derive_account("0x04ab", "token")
        await client.close()


class TestLedgerFactory:
    """Tests for settings-driven client selection."""

    @pytest.mark.asyncio
    async def test_dry_run_uses_simulated_ledger(self):
        from ledgerpay.ledger.factory import get_delegated_provider, get_ledger_client, reset_ledger_client
        from ledgerpay.ledger.simulated import SimulatedDelegatedProvider, SimulatedLedgerClient

        await reset_ledger_client()
        client = get_ledger_client()

        assert isinstance(client, SimulatedLedgerClient)
        assert get_ledger_client() is client
        assert isinstance(get_delegated_provider(client), SimulatedDelegatedProvider)
        await reset_ledger_client()
