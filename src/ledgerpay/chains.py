"""Chain and ledger network registry.

Ledger networks (naga-dev, naga-test, ...) settle on a ledger chain; the
chain entry supplies the explorer used for transaction links.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ChainConfig:
    """Explorer details for the chain a ledger network settles on."""

    name: str
    explorer_url: str
    identifier: str
    testnet: bool = False


@dataclass(frozen=True)
class LedgerNetwork:
    """A ledger network and the chain its payment contracts live on."""

    name: str
    chain: str
    testnet: bool

    @property
    def ledger_unit(self) -> str:
        return "tstLPX" if self.testnet else "LITKEY"


# ======================
# Chain Configurations
# ======================

CHAINS: dict[str, ChainConfig] = {
    "yellowstone": ChainConfig(
        name="Chronicle Yellowstone",
        explorer_url="https://yellowstone-explorer.litprotocol.com/",
        identifier="yellowstone",
        testnet=True,
    ),
}

NETWORKS: dict[str, LedgerNetwork] = {
    "naga-dev": LedgerNetwork(name="naga-dev", chain="yellowstone", testnet=True),
    "naga-test": LedgerNetwork(name="naga-test", chain="yellowstone", testnet=True),
    "naga": LedgerNetwork(name="naga", chain="yellowstone", testnet=False),
}


def get_chain(identifier: str) -> Optional[ChainConfig]:
    """Get chain configuration by identifier."""
    return CHAINS.get(identifier.lower())


def get_network(name: str) -> Optional[LedgerNetwork]:
    """Get ledger network by name."""
    return NETWORKS.get(name.lower())


def get_explorer_tx_url(network_name: str, tx_hash: str) -> Optional[str]:
    """Build an explorer link for a ledger transaction."""
    network = get_network(network_name)
    if not network or not tx_hash:
        return None
    chain = get_chain(network.chain)
    if not chain:
        return None
    return f"{chain.explorer_url.rstrip('/')}/tx/{tx_hash}"
