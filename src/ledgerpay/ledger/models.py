"""Ledger data model.

Shapes returned by the remote ledger service. Balances are replaced
wholesale on every refresh and are never mutated in place.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


class BalanceAmount(BaseModel):
    """A ledger amount in human-readable and smallest-unit form."""

    model_config = ConfigDict(frozen=True)

    display: str = Field(..., description="Decimal string (e.g. '1.25')")
    raw: int = Field(..., ge=0, description="Exact amount in smallest units (wei)")


class Balance(BaseModel):
    """Ledger balance for a user address."""

    model_config = ConfigDict(frozen=True)

    total_balance: BalanceAmount
    available_balance: BalanceAmount

    @model_validator(mode="after")
    def check_available_within_total(self) -> "Balance":
        if self.available_balance.raw > self.total_balance.raw:
            raise ValueError(
                f"available balance {self.available_balance.display} exceeds "
                f"total balance {self.total_balance.display}"
            )
        return self

    @classmethod
    def from_service(cls, data: dict) -> "Balance":
        """Build from the service shape `{totalBalance, availableBalance, raw: {...}}`."""
        raw = data.get("raw") or {}
        return cls(
            total_balance=BalanceAmount(
                display=str(data["totalBalance"]), raw=int(raw["totalBalance"])
            ),
            available_balance=BalanceAmount(
                display=str(data["availableBalance"]), raw=int(raw["availableBalance"])
            ),
        )


class SecurityDelay(BaseModel):
    """Mandatory wait between a withdrawal request and its execution."""

    model_config = ConfigDict(frozen=True)

    seconds: int = Field(..., ge=0)
    hours: Decimal = Field(..., ge=0)

    @classmethod
    def from_seconds(cls, seconds: int) -> "SecurityDelay":
        return cls(seconds=seconds, hours=Decimal(seconds) / Decimal(3600))

    @property
    def duration(self) -> timedelta:
        return timedelta(seconds=self.seconds)


class WithdrawalRequest(BaseModel):
    """An outstanding (or absent) withdrawal request for an address."""

    model_config = ConfigDict(frozen=True)

    amount: str = Field(..., description="Requested amount as a decimal string")
    requested_at: Optional[datetime] = Field(
        None, description="When the request was recorded by the ledger"
    )
    pending: bool = False

    def eligible_at(self, delay: SecurityDelay) -> Optional[datetime]:
        """Earliest time the request may be executed, if known."""
        if self.requested_at is None:
            return None
        requested_at = self.requested_at
        if requested_at.tzinfo is None:
            requested_at = requested_at.replace(tzinfo=timezone.utc)
        return requested_at + delay.duration


class WithdrawalEligibility(BaseModel):
    """Whether a pending withdrawal may be executed now."""

    model_config = ConfigDict(frozen=True)

    can_execute: bool
    time_remaining: timedelta = timedelta(0)

    @property
    def seconds_remaining(self) -> int:
        return max(0, int(self.time_remaining.total_seconds()))


class OperationOutcome(BaseModel):
    """Result of a state-changing ledger call."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    transaction_reference: str = Field(
        default="",
        validation_alias=AliasChoices("transaction_reference", "transactionHash", "hash"),
    )

    @property
    def extra(self) -> dict[str, Any]:
        return dict(self.model_extra or {})
