"""
Blockchain data sources.

Available backends:
- BitcoindBackend: bitcoind/litecoind JSON-RPC with a watch-only node wallet
- EsploraBackend: Esplora REST API (mempool.space, blockstream.info, electrs)

Both implement the DataSource capability: get_unspent_outputs() and
broadcast_transaction().
"""

from coinwallet.backends.base import DataSource, to_minor_units
from coinwallet.backends.bitcoin_core import BitcoindBackend
from coinwallet.backends.esplora import EsploraBackend

__all__ = [
    "BitcoindBackend",
    "DataSource",
    "EsploraBackend",
    "to_minor_units",
]
