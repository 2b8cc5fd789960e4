"""
Gap-limited address discovery (BIP44 account discovery).

https://github.com/bitcoin/bips/blob/master/bip-0044.mediawiki#account-discovery
"""

from __future__ import annotations

from loguru import logger

from coinwallet.backends.base import DataSource
from coinwallet.constants import EXTERNAL_CHAIN, GAP_LIMIT, INTERNAL_CHAIN, CoinParams
from coinwallet.errors import NoTransactionHistory
from coinwallet.wallet.bip32 import HDKey
from coinwallet.wallet.ledger import UtxoLedger
from coinwallet.wallet.models import DiscoveryResult


class AddressScanner:
    """
    Walks the external chain, then the internal chain, of one account.

    For each address in increasing index order the data source is asked for
    its unspent outputs:
    - no history: the gap counter grows, nothing is stored
    - history (with or without unspent outputs): the gap counter resets, the
      index becomes the chain's last used index and the address record in the
      ledger is replaced by the result
    - any other error aborts the pass; records already written are kept

    A chain ends once `gap_limit` consecutive addresses had no history.
    """

    def __init__(
        self,
        account_key: HDKey,
        params: CoinParams,
        source: DataSource,
        ledger: UtxoLedger,
        gap_limit: int = GAP_LIMIT,
    ):
        if gap_limit < 1:
            raise ValueError(f"gap_limit must be positive, got {gap_limit}")

        self.account_key = account_key
        self.params = params
        self.source = source
        self.ledger = ledger
        self.gap_limit = gap_limit

    def scan_chain(self, chain: int, result: DiscoveryResult) -> int | None:
        """Scan one chain from index 0. Returns its last used index, if any."""
        chain_key = self.account_key.child(chain)

        gap = 0
        index = 0
        last_used: int | None = None

        while gap < self.gap_limit:
            address = chain_key.child(index).address(self.params)

            try:
                utxos = self.source.get_unspent_outputs(address)
            except NoTransactionHistory:
                gap += 1
            else:
                gap = 0
                last_used = index
                self.ledger.set_utxos(address, utxos)
                result.used_addresses.append(address)
                logger.debug(
                    f"Discovered used address chain={chain} index={index}: "
                    f"{len(utxos)} unspent output(s)"
                )

            index += 1

        result.scanned[chain] = index
        result.last_used[chain] = last_used
        logger.debug(f"Chain {chain} scan done: scanned {index} addresses, last used {last_used}")
        return last_used

    def discover(self) -> DiscoveryResult:
        """
        Run a full discovery pass over both chains and update the watermark.

        The watermark becomes the highest used index over both chains and is
        never lowered below its stored value.
        """
        previous = self.ledger.get_last_index()
        result = DiscoveryResult(last_index=previous)

        self.source.refresh()

        last_index = previous
        for chain in (EXTERNAL_CHAIN, INTERNAL_CHAIN):
            last_used = self.scan_chain(chain, result)
            if last_used is not None and last_used > last_index:
                last_index = last_used

        self.ledger.set_last_index(last_index)
        result.last_index = last_index

        logger.info(
            f"Discovery complete: {len(result.used_addresses)} used address(es), "
            f"last index {last_index}"
        )
        return result
