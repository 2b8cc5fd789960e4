"""
Wallet exception hierarchy.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all wallet errors."""


class DerivationError(WalletError):
    """Raised when a child key cannot be derived at the requested index."""


class LedgerError(WalletError):
    """Raised on persisted ledger failures (storage or decoding)."""


class AccountNotFound(LedgerError):
    """Raised when an account namespace does not exist in the ledger file."""

    def __init__(self, account: str):
        super().__init__(f"account is not existed: {account}")
        self.account = account


class NoTransactionHistory(WalletError):
    """
    The address has never been part of a transaction.

    This is a control-flow signal consumed by the address scanner, not a failure.
    """

    def __init__(self, address: str):
        super().__init__(f"no transaction for the address {address}")
        self.address = address


class QueryFailure(WalletError):
    """Raised when the blockchain data source cannot answer a query."""

    def __init__(self, message: str):
        super().__init__(f"fail to query from server: {message}")
        self.message = message


class BroadcastError(QueryFailure):
    """Raised when a signed transaction could not be broadcast.

    The raw transaction is kept so the caller can retry broadcasting the very
    same transaction.
    """

    def __init__(self, raw_tx: str, message: str):
        super().__init__(message)
        self.raw_tx = raw_tx


class InsufficientFunds(WalletError):
    """Raised when the known UTXO set cannot cover a spend."""

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"not enough of coins in the wallet: need {requested}, have {available}"
        )
        self.requested = requested
        self.available = available

    @property
    def shortfall(self) -> int:
        return self.requested - self.available


class SigningError(WalletError):
    """Raised when an input cannot be signed with the selected keys."""


class InvalidAddress(WalletError, ValueError):
    """Raised for malformed addresses or addresses of another network."""
