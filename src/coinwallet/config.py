"""
Configuration for the coin wallet.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from coinwallet.backends.base import DataSource
from coinwallet.constants import GAP_LIMIT, CoinType, NetworkType, get_coin_params


class BackendType(str, Enum):
    BITCOIND = "bitcoind"
    ESPLORA = "esplora"


class WalletConfig(BaseModel):
    """Configuration for one wallet account."""

    coin: CoinType = CoinType.BTC
    network: NetworkType = NetworkType.MAINNET
    account: int = Field(default=0, ge=0, lt=2**31, description="BIP44 account index")
    data_file: Path = Field(default=Path("coinwallet.lmdb"), description="Ledger file")

    # None = the coin's default fee rate
    fee_per_kb: int | None = Field(default=None, ge=0, description="Fee rate in minor units/kB")
    gap_limit: int = Field(default=GAP_LIMIT, ge=1)

    backend_type: BackendType = BackendType.BITCOIND
    backend_config: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def set_fee_default(self) -> WalletConfig:
        """If fee_per_kb is not set, use the coin's default rate."""
        if self.fee_per_kb is None:
            params = get_coin_params(self.coin, self.network)
            object.__setattr__(self, "fee_per_kb", params.fee_per_kb)
        return self


def create_backend(config: WalletConfig) -> DataSource:
    """Instantiate the data source selected by `config.backend_type`."""
    if config.backend_type == BackendType.ESPLORA:
        from coinwallet.backends.esplora import DEFAULT_ESPLORA_URLS, EsploraBackend

        options = dict(config.backend_config)
        default_url = DEFAULT_ESPLORA_URLS[config.coin.value.lower()][config.network.value]
        options.setdefault("base_url", default_url)
        return EsploraBackend(**options)

    from coinwallet.backends.bitcoin_core import BitcoindBackend

    return BitcoindBackend(**config.backend_config)
