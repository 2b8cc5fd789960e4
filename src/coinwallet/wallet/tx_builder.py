"""
Spend transaction builder.

Builds a signed P2PKH transaction from the account's stored UTXOs:
- Inputs: stored UTXOs, change addresses first, in derivation order
- Outputs: optional change output (first), recipients, optional OP_RETURN data
- Fee: fee_per_kb applied to the signed transaction's own serialized size
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from coinwallet.backends.base import DataSource
from coinwallet.constants import CHANGE_OUTPUT_SIZE, EXTERNAL_CHAIN, INTERNAL_CHAIN, CoinParams
from coinwallet.errors import BroadcastError, InsufficientFunds, QueryFailure
from coinwallet.wallet.address import (
    address_to_scriptpubkey,
    hash160,
    null_data_script,
    p2pkh_script,
)
from coinwallet.wallet.bip32 import HDKey
from coinwallet.wallet.ledger import UtxoLedger
from coinwallet.wallet.models import UTXO, Send, SpendSelection
from coinwallet.wallet.signing import Transaction, TxInput, TxOutput, sign_transaction


@dataclass
class BuiltTransaction:
    """A signed transaction together with its accounting."""

    transaction: Transaction
    utxos: list[UTXO]
    total_input: int
    requested: int
    fee: int
    change: int
    change_address: str
    selection_rounds: int

    @property
    def raw_hex(self) -> str:
        return self.transaction.serialize().hex()

    @property
    def txid(self) -> str:
        return self.transaction.txid()


def change_threshold(fee_per_kb: int) -> int:
    """Smallest change worth returning: the fee cost of carrying a change output."""
    return CHANGE_OUTPUT_SIZE * fee_per_kb // 1000


def _inputs_for(utxos: list[UTXO]) -> list[TxInput]:
    return [TxInput(tx_hash=u.tx_hash, vout=u.output_index) for u in utxos]


class TransactionBuilder:
    """
    Builds, signs and broadcasts spends for one account.

    The fee depends on the transaction size and the size on how many inputs
    pay for the fee, so the builder iterates: size the signed transaction,
    derive fee and change from that size, pull in more inputs if the fee is not
    covered, and stop once the size no longer grows.
    """

    def __init__(
        self,
        account_key: HDKey,
        params: CoinParams,
        ledger: UtxoLedger,
        source: DataSource | None = None,
        fee_per_kb: int | None = None,
    ):
        self.account_key = account_key
        self.params = params
        self.ledger = ledger
        self.source = source
        self.fee_per_kb = params.fee_per_kb if fee_per_kb is None else fee_per_kb
        self._chain_keys: dict[int, HDKey] = {}

    def _chain_key(self, chain: int) -> HDKey:
        if chain not in self._chain_keys:
            self._chain_keys[chain] = self.account_key.child(chain)
        return self._chain_keys[chain]

    def change_address(self) -> str:
        """Internal-chain address right after the watermark (never used yet)."""
        index = self.ledger.get_last_index() + 1
        return self._chain_key(INTERNAL_CHAIN).child(index).address(self.params)

    def spendable_utxos(self) -> list[UTXO]:
        """
        Stored UTXOs in spending order, each annotated with its key and script.

        Internal (change) chain first, then external; ascending derivation
        index up to the watermark; stored order within an address.
        """
        stored = self.ledger.get_all_utxos()
        last_index = self.ledger.get_last_index()

        ordered: list[UTXO] = []
        for chain in (INTERNAL_CHAIN, EXTERNAL_CHAIN):
            chain_key = self._chain_key(chain)
            for index in range(last_index + 1):
                key = chain_key.child(index)
                utxos = stored.get(key.address(self.params))
                if not utxos:
                    continue

                script = p2pkh_script(hash160(key.public_key_bytes))
                for utxo in utxos:
                    utxo.key = key
                    utxo.script = script
                    ordered.append(utxo)

        return ordered

    @staticmethod
    def select_inputs(candidates: list[UTXO], target: int) -> SpendSelection:
        """Take candidates in order until their total reaches `target`."""
        selected: list[UTXO] = []
        total = 0

        for utxo in candidates:
            selected.append(utxo)
            total += utxo.value
            if total >= target:
                return SpendSelection(utxos=selected, total_value=total)

        raise InsufficientFunds(requested=target, available=total)

    def build(
        self,
        sends: list[Send],
        aux_data: bytes | None = None,
        fee_per_kb: int | None = None,
        change_address: str | None = None,
    ) -> BuiltTransaction:
        """
        Build and sign a transaction paying `sends`.

        Raises:
            InsufficientFunds: stored UTXOs cannot cover amounts plus fee
            InvalidAddress: a recipient address is not valid for this network
        """
        fee_per_kb = self.fee_per_kb if fee_per_kb is None else fee_per_kb
        if fee_per_kb < 0:
            raise ValueError(f"fee_per_kb must not be negative: {fee_per_kb}")
        for send in sends:
            if send.amount < 0:
                raise ValueError(f"Invalid amount {send.amount} for {send.address}")

        if change_address is None:
            change_address = self.change_address()

        requested = sum(send.amount for send in sends)
        outputs = [
            TxOutput(value=send.amount, script=address_to_scriptpubkey(send.address, self.params))
            for send in sends
        ]
        # custom data goes last
        if aux_data is not None:
            outputs.append(TxOutput(value=0, script=null_data_script(aux_data)))

        change_script = address_to_scriptpubkey(change_address, self.params)
        threshold = change_threshold(fee_per_kb)

        candidates = self.spendable_utxos()
        selection = self.select_inputs(candidates, requested)
        rounds = 1

        tx = Transaction(inputs=_inputs_for(selection.utxos), outputs=outputs)
        change_output: TxOutput | None = None
        # signatures are part of the size the fee is computed from
        sign_transaction(tx, selection.utxos)

        size_basis = 0
        fee = 0
        while True:
            size = tx.serialized_size()
            if size <= size_basis:
                break
            size_basis = size

            fee = size * fee_per_kb // 1000
            change = selection.total_value - requested - fee
            logger.debug(f"Estimate: size={size} fee={fee} change={change}")

            if change < 0:
                target = selection.total_value - change
                logger.debug(f"Fee not covered, selecting inputs for {target}")
                selection = self.select_inputs(candidates, target)
                rounds += 1
                tx.inputs = _inputs_for(selection.utxos)
                size_basis = 0
            elif change > threshold:
                if change_output is None:
                    change_output = TxOutput(value=0, script=change_script)
                    tx.outputs.insert(0, change_output)
                change_output.value = change
            elif change_output is not None:
                tx.outputs.pop(0)
                change_output = None

            sign_transaction(tx, selection.utxos)

        change_value = change_output.value if change_output is not None else 0
        fee_paid = selection.total_value - requested - change_value
        if change_output is None and fee_paid > fee:
            logger.warning(f"Dropping {fee_paid - fee} of change below {threshold}; added to fee")

        logger.info(
            f"Built transaction: {len(tx.inputs)} input(s), {len(tx.outputs)} output(s), "
            f"size {tx.serialized_size()}, fee {fee_paid}"
        )

        return BuiltTransaction(
            transaction=tx,
            utxos=selection.utxos,
            total_input=selection.total_value,
            requested=requested,
            fee=fee_paid,
            change=change_value,
            change_address=change_address,
            selection_rounds=rounds,
        )

    def send(
        self,
        sends: list[Send],
        aux_data: bytes | None = None,
        fee_per_kb: int | None = None,
    ) -> tuple[str, str]:
        """
        Build, sign and broadcast. Returns (txid, raw transaction hex).

        Raises:
            BroadcastError: the data source rejected the transaction; the
                signed transaction is available as `raw_tx`
        """
        if self.source is None:
            raise QueryFailure("no data source is set")

        built = self.build(sends, aux_data=aux_data, fee_per_kb=fee_per_kb)
        raw_tx = built.raw_hex

        try:
            txid = self.source.broadcast_transaction(raw_tx)
        except QueryFailure as e:
            logger.error(f"Unable to broadcast transaction {built.txid}: {e} (rawTx={raw_tx})")
            raise BroadcastError(raw_tx, e.message) from e

        return txid, raw_tx
