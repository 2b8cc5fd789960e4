"""
Tests for spend construction: input selection, fee convergence and change policy.
"""

import pytest

from coinwallet.constants import BITCOIN_MAIN
from coinwallet.errors import BroadcastError, InsufficientFunds, InvalidAddress, QueryFailure
from coinwallet.wallet.address import address_to_scriptpubkey, null_data_script
from coinwallet.wallet.bip32 import HDKey
from coinwallet.wallet.models import Send
from coinwallet.wallet.signing import deserialize_transaction
from coinwallet.wallet.tx_builder import TransactionBuilder, change_threshold


@pytest.fixture
def recipient(account):
    """An address of another wallet on the same network."""
    return HDKey.from_seed(b"\x42" * 32).derive("m/44'/0'/0'/0/0").address(account.params)


def _sync(account):
    account.discover()


def _size_fee(built, fee_per_kb):
    return built.transaction.serialized_size() * fee_per_kb // 1000


def test_single_input_with_change(account, source, recipient):
    """Spend 50000 of a 100000 output at 10000/kB: change goes to a fresh internal address."""
    funding = source.fund(account.address(0), 100_000)[0]
    _sync(account)

    built = account.build([Send(recipient, 50_000)], fee_per_kb=10_000)
    tx = built.transaction

    assert [(i.tx_hash, i.vout) for i in tx.inputs] == [(funding.tx_hash, 0)]
    assert len(tx.outputs) == 2

    change_address = account.address(1, change=True)
    assert built.change_address == change_address
    assert tx.outputs[0].script == address_to_scriptpubkey(change_address, account.params)
    assert tx.outputs[0].value == built.change == 100_000 - 50_000 - built.fee
    assert tx.outputs[1].value == 50_000
    assert tx.outputs[1].script == address_to_scriptpubkey(recipient, account.params)

    assert built.fee >= _size_fee(built, 10_000)
    assert built.selection_rounds == 1
    # building does not advance the watermark
    assert account.ledger.get_last_index() == 0


def test_insufficient_funds_nothing_broadcast(account, source, recipient):
    source.fund(account.address(0), 30_000)
    source.fund(account.address(1, change=True), 20_000)
    _sync(account)

    with pytest.raises(InsufficientFunds) as exc_info:
        account.send([Send(recipient, 60_000)])

    assert exc_info.value.available == 50_000
    assert exc_info.value.shortfall > 0
    assert source.broadcasts == []


def test_empty_ledger_is_insufficient(account, recipient):
    with pytest.raises(InsufficientFunds):
        account.build([Send(recipient, 1)])


def test_fee_exceeding_funds_is_insufficient(account, source, recipient):
    source.fund(account.address(0), 50_000)
    _sync(account)

    with pytest.raises(InsufficientFunds):
        account.build([Send(recipient, 49_990)], fee_per_kb=20_000)


def test_change_below_threshold_is_dropped(account, source, recipient):
    source.fund(account.address(0), 100_000)
    _sync(account)
    fee_per_kb = 20_000

    # a one-input, one-output transaction is about 192 bytes: ~300 left over
    amount = 100_000 - 192 * fee_per_kb // 1000 - 300
    built = account.build([Send(recipient, amount)], fee_per_kb=fee_per_kb)

    assert len(built.transaction.outputs) == 1
    assert built.change == 0
    assert built.fee == 100_000 - amount
    assert 0 < built.fee - _size_fee(built, fee_per_kb) <= change_threshold(fee_per_kb)


def test_change_above_threshold_is_kept(account, source, recipient):
    source.fund(account.address(0), 100_000)
    _sync(account)

    built = account.build([Send(recipient, 90_000)], fee_per_kb=20_000)

    assert len(built.transaction.outputs) == 2
    assert built.change > change_threshold(20_000)
    assert built.total_input == built.requested + built.fee + built.change


def test_fee_convergence_pulls_more_inputs(account, source, recipient):
    for index in range(4):
        source.fund(account.address(index), *[10_000] * 5)
    _sync(account)
    fee_per_kb = 20_000

    built = account.build([Send(recipient, 85_000)], fee_per_kb=fee_per_kb)

    # nine inputs cover the amount but not the fee for nine inputs
    assert len(built.transaction.inputs) > 9
    assert built.selection_rounds > 1
    assert built.selection_rounds <= 20 + 1
    assert built.fee >= _size_fee(built, fee_per_kb)
    assert built.total_input == built.requested + built.fee + built.change


def test_inputs_taken_from_change_chain_first(account, source, recipient):
    external = source.fund(account.address(0), 40_000)[0]
    internal = source.fund(account.address(1, change=True), 40_000)[0]
    _sync(account)

    built = account.build([Send(recipient, 50_000)], fee_per_kb=1_000)

    assert [i.tx_hash for i in built.transaction.inputs] == [internal.tx_hash, external.tx_hash]


def test_selection_follows_derivation_order(account, source, recipient):
    first = source.fund(account.address(0), 40_000)[0]
    source.fund(account.address(1), 40_000)
    _sync(account)

    built = account.build([Send(recipient, 10_000)], fee_per_kb=1_000)

    assert [i.tx_hash for i in built.transaction.inputs] == [first.tx_hash]


def test_change_address_follows_watermark(account, source, recipient):
    source.fund(account.address(3), 100_000)
    _sync(account)

    built = account.build([Send(recipient, 10_000)], fee_per_kb=1_000)

    assert built.change_address == account.address(4, change=True)


def test_aux_data_output_is_last(account, source, recipient):
    source.fund(account.address(0), 100_000)
    _sync(account)

    built = account.build([Send(recipient, 10_000)], aux_data=b"hello", fee_per_kb=10_000)
    outputs = built.transaction.outputs

    assert outputs[-1].value == 0
    assert outputs[-1].script == null_data_script(b"hello")
    assert outputs[1].value == 10_000


def test_data_only_transaction(account, source):
    source.fund(account.address(0), 100_000)
    _sync(account)

    built = account.build([], aux_data=bytes.fromhex("deadbeef"), fee_per_kb=10_000)

    assert built.requested == 0
    assert len(built.transaction.inputs) == 1
    assert built.transaction.outputs[-1].script == null_data_script(bytes.fromhex("deadbeef"))
    assert built.change == 100_000 - built.fee


def test_zero_fee_rate(account, source, recipient):
    source.fund(account.address(0), 100_000)
    _sync(account)

    built = account.build([Send(recipient, 60_000)], fee_per_kb=0)

    assert built.fee == 0
    assert built.change == 40_000


def test_default_fee_rate_is_coin_default(account, source, recipient):
    source.fund(account.address(0), 1_000_000)
    _sync(account)

    built = account.build([Send(recipient, 100_000)])

    assert built.fee >= _size_fee(built, account.params.fee_per_kb)
    assert built.fee > 0


def test_negative_amount_rejected(account, source, recipient):
    source.fund(account.address(0), 100_000)
    _sync(account)

    with pytest.raises(ValueError):
        account.build([Send(recipient, -1)])


def test_foreign_network_address_rejected(account, source):
    source.fund(account.address(0), 100_000)
    _sync(account)
    mainnet_address = HDKey.from_seed(b"\x42" * 32).address(BITCOIN_MAIN)

    with pytest.raises(InvalidAddress):
        account.build([Send(mainnet_address, 1_000)])


def test_send_broadcasts_signed_transaction(account, source, recipient):
    source.fund(account.address(0), 100_000)
    _sync(account)

    txid, raw_tx = account.send([Send(recipient, 50_000)], fee_per_kb=10_000)

    assert source.broadcasts == [raw_tx]
    tx = deserialize_transaction(bytes.fromhex(raw_tx))
    assert tx.txid() == txid
    assert all(inp.script_sig for inp in tx.inputs)


def test_broadcast_failure_keeps_raw_transaction(account, source, recipient):
    source.fund(account.address(0), 100_000)
    _sync(account)
    source.broadcast_error = "txn-mempool-conflict"

    with pytest.raises(BroadcastError) as exc_info:
        account.send([Send(recipient, 50_000)], fee_per_kb=10_000)

    error = exc_info.value
    assert isinstance(error.__cause__, QueryFailure)
    assert "txn-mempool-conflict" in str(error)
    tx = deserialize_transaction(bytes.fromhex(error.raw_tx))
    assert tx.outputs[1].value == 50_000


def test_select_inputs_takes_at_least_one(make_utxo):
    candidates = [make_utxo(1_000), make_utxo(2_000)]

    selection = TransactionBuilder.select_inputs(candidates, 0)

    assert selection.utxos == candidates[:1]
    assert selection.total_value == 1_000


def test_change_threshold():
    assert change_threshold(20_000) == 700
    assert change_threshold(100_000) == 3_500
    assert change_threshold(0) == 0
