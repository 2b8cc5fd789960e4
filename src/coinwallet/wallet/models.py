"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coinwallet.wallet.bip32 import HDKey


@dataclass
class UTXO:
    """Unspent transaction output as stored in the ledger.

    `tx_hash` is in internal byte order (as it appears in a serialized
    outpoint). `key` and `script` are only filled in while preparing a spend
    and are never persisted.
    """

    tx_hash: bytes
    output_index: int
    value: int
    key: HDKey | None = field(default=None, repr=False, compare=False)
    script: bytes | None = field(default=None, repr=False, compare=False)

    @property
    def txid(self) -> str:
        """Transaction id in display (RPC) byte order."""
        return self.tx_hash[::-1].hex()

    @classmethod
    def from_txid(cls, txid: str, output_index: int, value: int) -> UTXO:
        """Build a UTXO from a display-order txid as reported by RPC/APIs."""
        return cls(tx_hash=bytes.fromhex(txid)[::-1], output_index=output_index, value=value)


@dataclass
class Send:
    """A payment to one recipient, in minor units."""

    address: str
    amount: int


@dataclass
class DiscoveryResult:
    """Outcome of one discovery pass over both chains."""

    last_index: int
    last_used: dict[int, int | None] = field(default_factory=dict)
    scanned: dict[int, int] = field(default_factory=dict)
    used_addresses: list[str] = field(default_factory=list)


@dataclass
class SpendSelection:
    """Result of input selection"""

    utxos: list[UTXO]
    total_value: int
