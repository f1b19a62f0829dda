"""Controller configuration and the state surface read by the presentation layer."""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ledgerpay.accounts.base import Account, AccountSource
from ledgerpay.chains import get_network
from ledgerpay.controller.withdrawal import WithdrawalPhase
from ledgerpay.formatting import QUICK_AMOUNTS, format_amount
from ledgerpay.ledger.models import (
    Balance,
    SecurityDelay,
    WithdrawalEligibility,
    WithdrawalRequest,
)


def _check_address(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if not value.startswith("0x") or len(value) != 42:
        raise ValueError("Invalid Ethereum address format")
    return value


class ControllerConfig(BaseModel):
    """Immutable inputs fixed when the controller is constructed."""

    model_config = ConfigDict(frozen=True)

    network: str = Field(..., description="Ledger network name (naga-dev, naga-test, ...)")
    allow_delegated: bool = Field(default=True, description="Allow delegated accounts")
    allow_self_custodied: bool = Field(default=True, description="Allow self-custodied accounts")
    initial_source: AccountSource = Field(
        default=AccountSource.DELEGATED, description="Account source selected at start"
    )
    target_user_address: Optional[str] = Field(
        None, description="Address whose balance is shown instead of the account's"
    )
    fund_only: bool = Field(
        default=False, description="Only allow depositing for the target address"
    )
    preset_recipient_address: Optional[str] = Field(
        None, description="Pre-filled recipient for deposit-for-user"
    )
    auto_refresh: bool = Field(default=True, description="Start balance auto-refresh")

    @field_validator("target_user_address", "preset_recipient_address")
    @classmethod
    def validate_address(cls, v: Optional[str]) -> Optional[str]:
        return _check_address(v)

    @model_validator(mode="after")
    def check_fund_only_target(self) -> "ControllerConfig":
        if self.fund_only and not (self.target_user_address or self.preset_recipient_address):
            raise ValueError("fund_only requires target_user_address or preset_recipient_address")
        return self

    @property
    def ledger_unit(self) -> str:
        network = get_network(self.network)
        return network.ledger_unit if network else "LITKEY"


@dataclass
class FormInputs:
    """User-entered values the actions draw from."""
    deposit_amount: str = ""
    deposit_for_address: str = ""
    deposit_for_amount: str = ""
    withdraw_amount: str = ""


@dataclass(frozen=True)
class FundingReceipt:
    """Successful funding of the target address (fund-only flow)."""
    transaction_reference: str
    explorer_url: Optional[str] = None


@dataclass(frozen=True)
class ControllerState:
    """Snapshot of everything the presentation layer renders."""
    account: Optional[Account] = None
    account_source: AccountSource = AccountSource.DELEGATED
    is_deriving_account: bool = False
    session_ready: bool = False
    session_loading: bool = False
    balance_address: Optional[str] = None
    balance: Optional[Balance] = None
    is_loading_balance: bool = False
    auto_refresh: bool = True
    withdrawal_phase: WithdrawalPhase = WithdrawalPhase.IDLE
    withdrawal_request: Optional[WithdrawalRequest] = None
    withdrawal_eligibility: Optional[WithdrawalEligibility] = None
    advisory_time_remaining: Optional[timedelta] = None
    security_delay: Optional[SecurityDelay] = None
    is_checking_withdrawal: bool = False
    in_flight: frozenset[str] = field(default_factory=frozenset)
    success_actions: frozenset[str] = field(default_factory=frozenset)
    error: str = ""
    inputs: FormInputs = field(default_factory=FormInputs)
    funding_receipt: Optional[FundingReceipt] = None
    ledger_unit: str = "LITKEY"
    quick_amounts: tuple[str, ...] = QUICK_AMOUNTS

    @property
    def balance_text(self) -> Optional[str]:
        """Available balance with its unit, e.g. "1.5 tstLPX"."""
        if self.balance is None:
            return None
        return format_amount(self.balance.available_balance.display, self.ledger_unit)

    @property
    def is_depositing(self) -> bool:
        return "deposit" in self.in_flight

    @property
    def is_depositing_for_user(self) -> bool:
        return "deposit-for-user" in self.in_flight

    @property
    def is_requesting_withdraw(self) -> bool:
        return "request-withdraw" in self.in_flight

    @property
    def is_executing_withdraw(self) -> bool:
        return "execute-withdraw" in self.in_flight
