"""HTTP adapter for a ledger payment gateway.

Talks JSON to a gateway that fronts the on-chain payment contracts. Every
call carries the configured timeout; a call that does not answer in time
fails with LedgerTimeout instead of hanging.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
from eth_account.messages import encode_defunct

from ledgerpay.accounts.base import Account, AccountSource, DelegatedAccountProvider
from ledgerpay.config import Settings, get_settings
from ledgerpay.ledger.client import LedgerClient, PaymentManager
from ledgerpay.ledger.errors import (
    DerivationError,
    LedgerTimeout,
    OperationFailure,
    SessionUnavailable,
)
from ledgerpay.ledger.models import (
    Balance,
    OperationOutcome,
    SecurityDelay,
    WithdrawalEligibility,
    WithdrawalRequest,
)

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        return str(data.get("error") or data.get("message") or data)
    return str(data)


async def _call(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    operation: str,
    **kwargs: Any,
) -> Any:
    """Issue a gateway request and map transport errors onto the ledger taxonomy."""
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        logger.error(f"Ledger {operation} timed out: {e}")
        raise LedgerTimeout(f"{operation} timed out", operation) from e
    except httpx.HTTPError as e:
        logger.error(f"Ledger {operation} failed: {e}")
        raise OperationFailure(f"{operation} failed: {e}", operation) from e

    if response.status_code >= 400:
        detail = _error_detail(response)
        logger.error(f"Ledger {operation} rejected ({response.status_code}): {detail}")
        raise OperationFailure(detail, operation)

    if not response.content:
        return {}
    return response.json()


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, "", "0", 0):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class HttpPaymentManager(PaymentManager):
    """PaymentManager that forwards calls to the gateway."""

    def __init__(self, client: httpx.AsyncClient, account: Account):
        super().__init__(account)
        self._client = client

    def _signed(self, payload: dict) -> dict:
        """Attach the account address and, when possible, a signature over the body."""
        headers = {"X-Ledger-Account": self.address}
        signer = self.account.signer
        if signer is not None and hasattr(signer, "sign_message"):
            body = json.dumps(payload, sort_keys=True, separators=(",", ":"))
            signed = signer.sign_message(encode_defunct(text=body))
            headers["X-Ledger-Signature"] = signed.signature.hex()
        return {"json": payload, "headers": headers}

    async def get_balance(self, user_address: str) -> Balance:
        data = await _call(self._client, "GET", f"/ledger/{user_address}/balance", "get_balance")
        try:
            return Balance.from_service(data)
        except (KeyError, TypeError, ValueError) as e:
            raise OperationFailure(f"Invalid balance response: {e}", "get_balance") from e

    async def deposit(self, amount: str) -> OperationOutcome:
        data = await _call(
            self._client, "POST", f"/ledger/{self.address}/deposit", "deposit",
            **self._signed({"amount": amount}),
        )
        return OperationOutcome.model_validate(data)

    async def deposit_for_user(self, user_address: str, amount: str) -> OperationOutcome:
        data = await _call(
            self._client, "POST", f"/ledger/{self.address}/deposit-for", "deposit_for_user",
            **self._signed({"userAddress": user_address, "amount": amount}),
        )
        return OperationOutcome.model_validate(data)

    async def get_withdraw_delay(self) -> SecurityDelay:
        data = await _call(self._client, "GET", "/ledger/withdraw-delay", "get_withdraw_delay")
        return SecurityDelay(seconds=int(data["delaySeconds"]), hours=data["delayHours"])

    async def request_withdraw(self, amount: str) -> OperationOutcome:
        data = await _call(
            self._client, "POST", f"/ledger/{self.address}/withdrawals", "request_withdraw",
            **self._signed({"amount": amount}),
        )
        return OperationOutcome.model_validate(data)

    async def get_withdraw_request(self, user_address: str) -> WithdrawalRequest:
        data = await _call(
            self._client, "GET", f"/ledger/{user_address}/withdrawals/pending",
            "get_withdraw_request",
        )
        return WithdrawalRequest(
            amount=str(data.get("amount", "0")),
            requested_at=_parse_timestamp(data.get("timestamp")),
            pending=bool(data.get("isPending", False)),
        )

    async def can_execute_withdraw(self, user_address: str) -> WithdrawalEligibility:
        data = await _call(
            self._client, "GET", f"/ledger/{user_address}/withdrawals/can-execute",
            "can_execute_withdraw",
        )
        return WithdrawalEligibility(
            can_execute=bool(data.get("canExecute", False)),
            time_remaining=timedelta(seconds=int(data.get("timeRemaining", 0))),
        )

    async def withdraw(self, amount: str) -> OperationOutcome:
        data = await _call(
            self._client, "POST", f"/ledger/{self.address}/withdrawals/execute", "withdraw",
            **self._signed({"amount": amount}),
        )
        return OperationOutcome.model_validate(data)


class HttpLedgerClient(LedgerClient):
    """LedgerClient for a JSON ledger gateway.

    Docs for the gateway layout live alongside the gateway deployment; this
    client only assumes the endpoints used by HttpPaymentManager.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        headers = {"Accept": "application/json"}
        if self.settings.ledger_api_key:
            headers["x-api-key"] = self.settings.ledger_api_key
        self._client = httpx.AsyncClient(
            base_url=self.settings.ledger_api_url,
            timeout=self.settings.request_timeout,
            headers=headers,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "http"

    @property
    def http(self) -> httpx.AsyncClient:
        return self._client

    async def get_payment_manager(self, account: Account) -> PaymentManager:
        try:
            await _call(
                self._client, "GET", "/ledger/status", "get_payment_manager",
                params={"network": self.settings.network_name},
            )
        except OperationFailure as e:
            raise SessionUnavailable(f"Ledger gateway unavailable: {e}") from e
        return HttpPaymentManager(self._client, account)

    async def close(self) -> None:
        await self._client.aclose()


class HttpDelegatedAccountProvider(DelegatedAccountProvider):
    """Asks the gateway for the address of a delegated key."""

    def __init__(self, client: HttpLedgerClient):
        self._client = client

    async def derive_account(self, public_key_id: str, credential: Any) -> Account:
        headers = {}
        if isinstance(credential, str):
            headers["Authorization"] = f"Bearer {credential}"
        try:
            data = await _call(
                self._client.http, "POST", "/accounts/delegated", "derive_account",
                json={"publicKeyId": public_key_id}, headers=headers,
            )
        except OperationFailure as e:
            raise DerivationError(str(e)) from e

        address = data.get("address") if isinstance(data, dict) else None
        if not address:
            raise DerivationError("Gateway returned no address for delegated key")
        return Account(address=address, source=AccountSource.DELEGATED, signer=public_key_id)
