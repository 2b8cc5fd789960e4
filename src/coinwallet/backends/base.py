"""
Base blockchain data source interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from coinwallet.constants import COIN_DECIMALS
from coinwallet.wallet.models import UTXO


def to_minor_units(amount: float | int | str | Decimal, decimals: int = COIN_DECIMALS) -> int:
    """
    Convert a coin amount reported by an external API to integer minor units.

    Floats are converted through their shortest repr so that e.g. 0.1 BTC is
    exactly 10_000_000 sats; the result is rounded half-up to whole units.
    This is the only place where fractional amounts are handled.
    """
    if isinstance(amount, bool):
        raise ValueError(f"Invalid amount: {amount!r}")

    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e

    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")

    minor = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    if minor < 0:
        raise ValueError(f"Negative amount: {amount!r}")

    return int(minor)


class DataSource(ABC):
    """
    Abstract blockchain data source.

    Implementations answer two questions for the wallet: which outputs of an
    address are unspent, and broadcast this raw transaction. They must tell
    "address never used" (NoTransactionHistory) apart from "used but nothing
    unspent" (empty list) and from transport failures (QueryFailure).
    """

    @abstractmethod
    def get_unspent_outputs(self, address: str) -> list[UTXO]:
        """Get UTXOs for an address.

        Raises:
            NoTransactionHistory: the address was never part of a transaction
            QueryFailure: the backend could not be queried
        """

    @abstractmethod
    def broadcast_transaction(self, raw_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    def refresh(self) -> None:
        """Drop any cached per-request state. Called once per discovery pass."""

    def close(self) -> None:
        """Close backend connection"""
        pass
