"""
Esplora HTTP indexer data source (mempool.space, blockstream.info and
self-hosted electrs instances expose the same REST API).
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from coinwallet.backends.base import DataSource
from coinwallet.errors import NoTransactionHistory, QueryFailure
from coinwallet.wallet.models import UTXO

DEFAULT_TIMEOUT = 20.0

DEFAULT_ESPLORA_URLS = {
    "btc": {
        "mainnet": "https://mempool.space/api",
        "testnet": "https://mempool.space/testnet/api",
    },
    "ltc": {
        "mainnet": "https://litecoinspace.org/api",
        "testnet": "https://litecoinspace.org/testnet/api",
    },
}


class EsploraBackend(DataSource):
    """
    Data source using a third-party Esplora REST API.

    Amounts are reported as integer satoshis, so no unit conversion is needed.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_ESPLORA_URLS["btc"]["mainnet"],
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def _get(self, path: str) -> Any:
        try:
            response = self.client.get(path)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error(f"Esplora request failed: GET {path} - {e}")
            raise QueryFailure(f"GET {path}: {e}") from e
        except ValueError as e:
            raise QueryFailure(f"GET {path}: invalid JSON") from e

    def _has_history(self, address: str) -> bool:
        info = self._get(f"/address/{address}")
        try:
            tx_count = info["chain_stats"]["tx_count"] + info["mempool_stats"]["tx_count"]
        except (KeyError, TypeError) as e:
            raise QueryFailure(f"unexpected address info for {address}") from e
        return tx_count > 0

    def get_unspent_outputs(self, address: str) -> list[UTXO]:
        entries = self._get(f"/address/{address}/utxo")

        try:
            utxos = [UTXO.from_txid(e["txid"], e["vout"], int(e["value"])) for e in entries]
        except (KeyError, TypeError, ValueError) as e:
            raise QueryFailure(f"unexpected utxo list for {address}") from e

        if utxos:
            return utxos

        if not self._has_history(address):
            raise NoTransactionHistory(address)

        return []

    def broadcast_transaction(self, raw_hex: str) -> str:
        try:
            response = self.client.post("/tx", content=raw_hex)
        except httpx.HTTPError as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise QueryFailure(f"POST /tx: {e}") from e

        if response.is_error:
            logger.error(f"Failed to broadcast transaction: {response.text}")
            raise QueryFailure(f"{response.text} (HTTP {response.status_code})")

        txid = response.text.strip()
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    def close(self) -> None:
        self.client.close()
