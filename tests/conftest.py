"""
Shared fixtures for the wallet tests.
"""

from __future__ import annotations

import itertools
from pathlib import Path

import pytest

from coinwallet.backends.base import DataSource
from coinwallet.constants import CoinType, NetworkType
from coinwallet.errors import NoTransactionHistory, QueryFailure
from coinwallet.wallet.account import Wallet
from coinwallet.wallet.address import hash256
from coinwallet.wallet.models import UTXO
from coinwallet.wallet.signing import deserialize_transaction

SEED_HEX = "fded5e8970380eef15f742348d28511111366ae6a55188402b16c69922006fe6"

_hash_counter = itertools.count(1)


def make_utxo(value: int, output_index: int = 0) -> UTXO:
    """UTXO with a unique, made-up funding transaction hash."""
    tx_hash = hash256(next(_hash_counter).to_bytes(8, "big"))
    return UTXO(tx_hash=tx_hash, output_index=output_index, value=value)


class FakeDataSource(DataSource):
    """
    In-memory data source.

    `history` maps used addresses to their unspent outputs; any other address
    has never been part of a transaction.
    """

    def __init__(self, history: dict[str, list[UTXO]] | None = None):
        self.history: dict[str, list[UTXO]] = history or {}
        self.fail_on: set[str] = set()
        self.broadcast_error: str | None = None
        self.queried: list[str] = []
        self.broadcasts: list[str] = []
        self.refresh_count = 0
        self.closed = False

    def fund(self, address: str, *values: int) -> list[UTXO]:
        utxos = [make_utxo(value) for value in values]
        self.history.setdefault(address, []).extend(utxos)
        return utxos

    def mark_used(self, address: str) -> None:
        self.history.setdefault(address, [])

    def get_unspent_outputs(self, address: str) -> list[UTXO]:
        self.queried.append(address)
        if address in self.fail_on:
            raise QueryFailure(f"server unavailable for {address}")
        if address not in self.history:
            raise NoTransactionHistory(address)
        return [UTXO(u.tx_hash, u.output_index, u.value) for u in self.history[address]]

    def broadcast_transaction(self, raw_hex: str) -> str:
        if self.broadcast_error is not None:
            raise QueryFailure(self.broadcast_error)
        self.broadcasts.append(raw_hex)
        return deserialize_transaction(bytes.fromhex(raw_hex)).txid()

    def refresh(self) -> None:
        self.refresh_count += 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def seed() -> bytes:
    return bytes.fromhex(SEED_HEX)


@pytest.fixture
def ledger_path(tmp_path: Path) -> Path:
    return tmp_path / "wallet.lmdb"


@pytest.fixture
def wallet(seed: bytes, ledger_path: Path) -> Wallet:
    return Wallet(seed, ledger_path)


@pytest.fixture
def source() -> FakeDataSource:
    return FakeDataSource()


@pytest.fixture
def account(wallet: Wallet, source: FakeDataSource):
    """BTC testnet account 0 backed by the in-memory data source."""
    coin_account = wallet.coin_account(CoinType.BTC, NetworkType.TESTNET, 0, source=source)
    yield coin_account
    coin_account.close()


@pytest.fixture(name="make_utxo")
def make_utxo_fixture():
    return make_utxo
