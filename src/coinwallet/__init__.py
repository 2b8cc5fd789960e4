"""
coinwallet - HD multi-coin wallet core

Key derivation, gap-limited address discovery, a persisted UTXO ledger and
fee-balanced P2PKH spend construction for Bitcoin and Litecoin.
"""

__version__ = "0.1.0"

from coinwallet.constants import CoinType, NetworkType
from coinwallet.errors import (
    BroadcastError,
    InsufficientFunds,
    NoTransactionHistory,
    QueryFailure,
    WalletError,
)
from coinwallet.wallet.account import CoinAccount, Wallet
from coinwallet.wallet.models import UTXO, Send

__all__ = [
    "BroadcastError",
    "CoinAccount",
    "CoinType",
    "InsufficientFunds",
    "NetworkType",
    "NoTransactionHistory",
    "QueryFailure",
    "Send",
    "UTXO",
    "Wallet",
    "WalletError",
]
