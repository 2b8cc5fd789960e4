"""
Multi-coin HD wallet and its per-coin accounts.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from coinwallet.backends.base import DataSource
from coinwallet.constants import (
    BIP44_PURPOSE,
    EXTERNAL_CHAIN,
    GAP_LIMIT,
    INTERNAL_CHAIN,
    CoinType,
    NetworkType,
    get_coin_params,
)
from coinwallet.errors import QueryFailure
from coinwallet.wallet.bip32 import HARDENED_OFFSET, HDKey, mnemonic_to_seed
from coinwallet.wallet.ledger import UtxoLedger
from coinwallet.wallet.models import DiscoveryResult, Send
from coinwallet.wallet.scanner import AddressScanner
from coinwallet.wallet.tx_builder import BuiltTransaction, TransactionBuilder


class Wallet:
    """
    Seed holder. Hands out accounts that share one ledger file.

    Derivation path: m/44'/{coin}'/{account}'/{change}/{index}
    - coin: BIP44 coin index (0 = Bitcoin, 2 = Litecoin, same on testnets)
    - change: 0 (external/receive), 1 (internal/change)
    """

    def __init__(self, seed: bytes, data_file: str | Path):
        self.master_key = HDKey.from_seed(seed)
        self.data_file = Path(data_file)

    @classmethod
    def from_mnemonic(cls, mnemonic: str, data_file: str | Path, passphrase: str = "") -> Wallet:
        return cls(mnemonic_to_seed(mnemonic, passphrase), data_file)

    def coin_account(
        self,
        coin: CoinType,
        network: NetworkType,
        account: int = 0,
        source: DataSource | None = None,
        fee_per_kb: int | None = None,
        gap_limit: int = GAP_LIMIT,
        create: bool = True,
    ) -> CoinAccount:
        """Open (creating if needed) the account's ledger namespace."""
        if not 0 <= account < HARDENED_OFFSET:
            raise ValueError(f"Account index {account} out of range")

        params = get_coin_params(coin, network)
        account_key = (
            self.master_key.child(BIP44_PURPOSE, hardened=True)
            .child(params.bip44_coin, hardened=True)
            .child(account, hardened=True)
        )
        identifier = account_key.address(params)
        ledger = UtxoLedger(self.data_file, identifier, create=create)

        logger.info(f"Opened {coin.value} {network.value} account {account}")
        return CoinAccount(
            coin=coin,
            network=network,
            account_index=account,
            account_key=account_key,
            ledger=ledger,
            source=source,
            fee_per_kb=fee_per_kb,
            gap_limit=gap_limit,
        )


class CoinAccount:
    """
    One BIP44 account of one coin on one network.

    Its identifier is the P2PKH address of the account key; it names the
    account's namespace in the ledger file.
    """

    def __init__(
        self,
        coin: CoinType,
        network: NetworkType,
        account_index: int,
        account_key: HDKey,
        ledger: UtxoLedger,
        source: DataSource | None = None,
        fee_per_kb: int | None = None,
        gap_limit: int = GAP_LIMIT,
    ):
        self.coin = coin
        self.network = network
        self.account_index = account_index
        self.account_key = account_key
        self.params = get_coin_params(coin, network)
        self.identifier = account_key.address(self.params)
        self.ledger = ledger
        self.source = source
        self.fee_per_kb = self.params.fee_per_kb if fee_per_kb is None else fee_per_kb
        self.gap_limit = gap_limit

    def __str__(self) -> str:
        return self.identifier

    def __enter__(self) -> CoinAccount:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_source(self) -> DataSource:
        if self.source is None:
            raise QueryFailure("no data source is set")
        return self.source

    def _builder(self) -> TransactionBuilder:
        return TransactionBuilder(
            self.account_key, self.params, self.ledger, self.source, fee_per_kb=self.fee_per_kb
        )

    def key(self, index: int, change: bool = False) -> HDKey:
        chain = INTERNAL_CHAIN if change else EXTERNAL_CHAIN
        return self.account_key.child(chain).child(index)

    def address(self, index: int, change: bool = False) -> str:
        """Address at `index` on the external (or internal) chain."""
        return self.key(index, change).address(self.params)

    def new_external_address(self) -> str:
        """
        Receive address right after the watermark.

        Repeated calls return the same address until a discovery pass sees
        funds arrive at or beyond it.
        """
        return self.address(self.ledger.get_last_index() + 1)

    def new_change_address(self) -> str:
        return self._builder().change_address()

    def discover(self) -> DiscoveryResult:
        scanner = AddressScanner(
            self.account_key,
            self.params,
            self._require_source(),
            self.ledger,
            gap_limit=self.gap_limit,
        )
        return scanner.discover()

    def get_balance(self) -> int:
        """Sum of all stored UTXOs (as of the last discovery pass)."""
        return sum(u.value for utxos in self.ledger.get_all_utxos().values() for u in utxos)

    def build(
        self,
        sends: list[Send],
        aux_data: bytes | None = None,
        fee_per_kb: int | None = None,
    ) -> BuiltTransaction:
        """Build and sign without broadcasting."""
        return self._builder().build(sends, aux_data=aux_data, fee_per_kb=fee_per_kb)

    def send(
        self,
        sends: list[Send],
        aux_data: bytes | None = None,
        fee_per_kb: int | None = None,
    ) -> tuple[str, str]:
        """
        Spend stored UTXOs to `sends`. Returns (txid, raw transaction hex).

        Run discover() first so the stored UTXO set is current.
        """
        self._require_source()
        return self._builder().send(sends, aux_data=aux_data, fee_per_kb=fee_per_kb)

    def close(self) -> None:
        self.ledger.close()
        if self.source is not None:
            self.source.close()
