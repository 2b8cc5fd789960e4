"""
bitcoind / litecoind JSON-RPC data source.
Uses a watch-only node wallet: addresses are imported without rescan and their
history is read back with listreceivedbyaddress / listunspent.
"""

from __future__ import annotations

import os
from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from coinwallet.backends.base import DataSource, to_minor_units
from coinwallet.errors import NoTransactionHistory, QueryFailure
from coinwallet.wallet.models import UTXO

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 60.0

# listunspent confirmation window
MIN_CONFIRMATIONS = 0
MAX_CONFIRMATIONS = 9_999_999

WATCH_LABEL = "coinwallet watched"

# Environment variable to enable sensitive logging (addresses, raw payloads)
# WARNING: Enabling this will log wallet addresses to the log
SENSITIVE_LOGGING = os.environ.get("SENSITIVE_LOGGING", "").lower() in ("1", "true", "yes")


class BitcoindBackend(DataSource):
    """
    Data source backed by a bitcoind-compatible daemon (Bitcoin Core, Litecoin Core).

    The set of addresses the node wallet knows about is snapshotted per
    discovery pass by refresh(); it is never shared between instances.
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:8332",
        rpc_user: str = "",
        rpc_password: str = "",
        timeout: float = DEFAULT_RPC_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.rpc_url = rpc_url.rstrip("/") + "/"
        self.rpc_user = rpc_user
        self.rpc_password = rpc_password
        self.client = httpx.Client(
            timeout=timeout, auth=(rpc_user, rpc_password), transport=transport
        )
        self._request_id = 0
        self._received: dict[str, list[str]] | None = None

    def _rpc_call(self, method: str, params: list | None = None) -> Any:
        """
        Make an RPC call to the daemon.

        Floats in the response are decoded as Decimal so amounts never pass
        through binary floating point.

        Raises:
            QueryFailure: On transport, HTTP or RPC errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "1.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            response = self.client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise QueryFailure(f"{method}: {e}") from e

        try:
            data = response.json(parse_float=Decimal)
        except ValueError as e:
            logger.error(f"RPC call returned invalid JSON: {method} (HTTP {response.status_code})")
            raise QueryFailure(f"{method}: HTTP {response.status_code}") from e

        if not isinstance(data, dict):
            raise QueryFailure(f"{method}: unexpected response (HTTP {response.status_code})")

        if data.get("error"):
            error_info = data["error"]
            error_code = error_info.get("code", "unknown")
            error_msg = error_info.get("message", str(error_info))
            raise QueryFailure(f"JSONRPC Error: {error_msg} (code: {error_code})")

        if response.is_error:
            raise QueryFailure(f"{method}: HTTP {response.status_code}")

        return data.get("result")

    def refresh(self) -> None:
        """Snapshot the addresses known to the node wallet and their txids."""
        result = self._rpc_call("listreceivedbyaddress", [0, True, True])

        received: dict[str, list[str]] = {}
        try:
            for entry in result or []:
                received[entry["address"]] = list(entry.get("txids", []))
        except (AttributeError, KeyError, TypeError) as e:
            raise QueryFailure("listreceivedbyaddress: unexpected entry") from e

        self._received = received
        logger.debug(f"Refreshed watched addresses: {len(received)} known to the node")

    def _import_address(self, address: str) -> None:
        if SENSITIVE_LOGGING:
            logger.debug(f"Importing watch-only address {address}")
        self._rpc_call("importaddress", [address, WATCH_LABEL, False])

    def _list_unspent(self, address: str) -> list[UTXO]:
        result = self._rpc_call("listunspent", [MIN_CONFIRMATIONS, MAX_CONFIRMATIONS, [address]])

        utxos: list[UTXO] = []
        try:
            for entry in result or []:
                value = to_minor_units(entry["amount"])
                if value == 0:
                    continue
                utxos.append(UTXO.from_txid(entry["txid"], entry["vout"], value))
        except (KeyError, TypeError, ValueError) as e:
            raise QueryFailure(f"unexpected unspent list for {address}") from e
        return utxos

    def get_unspent_outputs(self, address: str) -> list[UTXO]:
        if self._received is None:
            self.refresh()

        if address not in (self._received or {}):
            self._import_address(address)
            self.refresh()

        utxos = self._list_unspent(address)
        if utxos:
            return utxos

        # no unspent outputs, check whether the address was ever used
        if not (self._received or {}).get(address):
            raise NoTransactionHistory(address)

        return []

    def broadcast_transaction(self, raw_hex: str) -> str:
        try:
            txid = self._rpc_call("sendrawtransaction", [raw_hex])
        except QueryFailure as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise

        logger.info(f"Broadcast transaction: {txid}")
        return txid

    def close(self) -> None:
        self.client.close()
