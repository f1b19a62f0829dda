"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

# Set test environment
os.environ["LEDGERPAY_ENVIRONMENT"] = "test"
os.environ["LEDGERPAY_DRY_RUN"] = "true"
os.environ["LEDGERPAY_DEBUG"] = "true"

from ledgerpay.accounts.base import Account, AccountSource
from ledgerpay.accounts.local import create_local_account
from ledgerpay.config import Settings
from ledgerpay.controller.controller import PaymentController
from ledgerpay.controller.state import ControllerConfig
from ledgerpay.ledger.simulated import (
    SimulatedDelegatedProvider,
    SimulatedLedger,
    SimulatedLedgerClient,
)

ADDRESS_A = "0x1111111111111111111111111111111111111111"
ADDRESS_B = "0x2222222222222222222222222222222222222222"


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock) -> SimulatedLedger:
    """In-memory ledger with a one hour security delay."""
    return SimulatedLedger(delay_seconds=3600, clock=clock)


@pytest.fixture
def client(ledger) -> SimulatedLedgerClient:
    return SimulatedLedgerClient(ledger)


@pytest.fixture
def settings() -> Settings:
    """Settings with timers long enough not to fire during a test."""
    return Settings(
        dry_run=True,
        network_name="naga-dev",
        balance_refresh_interval=60.0,
        settle_delay=60.0,
        error_display_seconds=60.0,
        success_display_seconds=60.0,
    )


@pytest.fixture
def account_a() -> Account:
    return Account(address=ADDRESS_A, source=AccountSource.SELF_CUSTODIED)


@pytest.fixture
def account_b() -> Account:
    return Account(address=ADDRESS_B, source=AccountSource.SELF_CUSTODIED)


@pytest.fixture
def local_account() -> Account:
    return create_local_account()


@pytest.fixture
def delegated_provider() -> SimulatedDelegatedProvider:
    return SimulatedDelegatedProvider()


@pytest.fixture
def config() -> ControllerConfig:
    return ControllerConfig(network="naga-dev", auto_refresh=False)


@pytest_asyncio.fixture
async def controller(client, config, settings, clock, delegated_provider):
    """Controller over the simulated ledger; closed after the test."""
    ctrl = PaymentController(
        client,
        config,
        delegated_provider=delegated_provider,
        settings=settings,
        clock=clock,
    )
    yield ctrl
    await ctrl.close()
