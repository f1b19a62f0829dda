"""Ledger client factory.

The client is selected from settings:
- dry_run (default): in-memory SimulatedLedger
- otherwise: HttpLedgerClient against ledger_api_url
"""

import logging
from typing import Optional

from ledgerpay.accounts.base import DelegatedAccountProvider
from ledgerpay.config import get_settings
from ledgerpay.ledger.client import LedgerClient
from ledgerpay.ledger.http import HttpDelegatedAccountProvider, HttpLedgerClient
from ledgerpay.ledger.simulated import SimulatedDelegatedProvider, SimulatedLedgerClient

logger = logging.getLogger(__name__)

# Singleton instance
_client_instance: Optional[LedgerClient] = None


def get_ledger_client() -> LedgerClient:
    """Get the configured ledger client."""
    global _client_instance

    if _client_instance is not None:
        return _client_instance

    settings = get_settings()
    if settings.dry_run:
        logger.info("Using simulated ledger (dry run)")
        _client_instance = SimulatedLedgerClient()
    else:
        logger.info(f"Using ledger gateway at {settings.ledger_api_url} ({settings.network_name})")
        _client_instance = HttpLedgerClient(settings)

    return _client_instance


def get_delegated_provider(client: Optional[LedgerClient] = None) -> DelegatedAccountProvider:
    """Delegated account provider matching the ledger client."""
    client = client or get_ledger_client()
    if isinstance(client, HttpLedgerClient):
        return HttpDelegatedAccountProvider(client)
    return SimulatedDelegatedProvider()


async def reset_ledger_client() -> None:
    """Close and drop the client instance (useful for testing)."""
    global _client_instance
    if _client_instance is not None:
        await _client_instance.close()
    _client_instance = None
