"""
Coin, network and wallet policy constants.

Network parameters follow https://en.bitcoin.it/wiki/List_of_address_prefixes
and the SLIP-0044 coin indexes for the BIP44 `coin'` level.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CoinType(str, Enum):
    BTC = "BTC"
    LTC = "LTC"


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"


@dataclass(frozen=True)
class CoinParams:
    """Address and HD key version bytes for one coin on one network."""

    name: str
    address_header: int
    p2sh_header: int
    wif_header: int
    hd_private_key_id: bytes
    hd_public_key_id: bytes
    bip44_coin: int
    fee_per_kb: int


BITCOIN_MAIN = CoinParams(
    name="bitcoin",
    address_header=0,
    p2sh_header=5,
    wif_header=128,
    hd_private_key_id=bytes.fromhex("0488ade4"),
    hd_public_key_id=bytes.fromhex("0488b21e"),
    bip44_coin=0,
    fee_per_kb=20_000,
)

BITCOIN_TEST = CoinParams(
    name="bitcoin-testnet",
    address_header=111,
    p2sh_header=196,
    wif_header=239,
    hd_private_key_id=bytes.fromhex("04358394"),
    hd_public_key_id=bytes.fromhex("043587cf"),
    bip44_coin=0,
    fee_per_kb=20_000,
)

LITECOIN_MAIN = CoinParams(
    name="litecoin",
    address_header=48,
    p2sh_header=50,
    wif_header=176,
    hd_private_key_id=bytes.fromhex("0488ade4"),
    hd_public_key_id=bytes.fromhex("0488b21e"),
    bip44_coin=2,
    fee_per_kb=100_000,
)

LITECOIN_TEST = CoinParams(
    name="litecoin-testnet",
    address_header=111,
    p2sh_header=196,
    wif_header=239,
    hd_private_key_id=bytes.fromhex("04358394"),
    hd_public_key_id=bytes.fromhex("043587cf"),
    bip44_coin=2,
    fee_per_kb=100_000,
)

COIN_PARAMS: dict[CoinType, dict[NetworkType, CoinParams]] = {
    CoinType.BTC: {NetworkType.MAINNET: BITCOIN_MAIN, NetworkType.TESTNET: BITCOIN_TEST},
    CoinType.LTC: {NetworkType.MAINNET: LITECOIN_MAIN, NetworkType.TESTNET: LITECOIN_TEST},
}


def get_coin_params(coin: CoinType, network: NetworkType) -> CoinParams:
    """Look up the parameter set for a coin/network pair."""
    return COIN_PARAMS[CoinType(coin)][NetworkType(network)]


# BIP44 purpose level
BIP44_PURPOSE = 44

# Chain levels below the account key
EXTERNAL_CHAIN = 0
INTERNAL_CHAIN = 1

# Consecutive unused addresses scanned before a chain is considered exhausted.
# BIP44 recommends 20; the wallet data files in the wild were built with 5.
GAP_LIMIT = 5

# Smallest coin unit per whole coin (BTC and LTC both use 8 decimals)
COIN_DECIMALS = 8

# Serialized size of a P2PKH output: value(8) + script length(1) + script(25),
# rounded up by one byte. A change output worth less than the fee it costs to
# carry it is dropped.
CHANGE_OUTPUT_SIZE = 35

# Reserved ledger key for the last-used-index watermark
LAST_INDEX_KEY = b"lastIndex"
