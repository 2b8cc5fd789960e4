"""
Transaction serialization and signing utilities for P2PKH inputs.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from coinwallet.errors import SigningError
from coinwallet.wallet.address import hash160, hash256, p2pkh_script, push_data
from coinwallet.wallet.models import UTXO

SIGHASH_ALL = 1

TX_VERSION = 1
DEFAULT_SEQUENCE = 0xFFFFFFFF


@dataclass
class TxInput:
    tx_hash: bytes
    vout: int
    script_sig: bytes = b""
    sequence: int = DEFAULT_SEQUENCE


@dataclass
class TxOutput:
    value: int
    script: bytes


@dataclass
class Transaction:
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    version: int = TX_VERSION
    locktime: int = 0

    def serialize(self) -> bytes:
        return serialize_transaction(self)

    def serialized_size(self) -> int:
        return len(self.serialize())

    def txid(self) -> str:
        """Double SHA256 of the serialization, in display byte order."""
        return hash256(self.serialize())[::-1].hex()


def encode_varint(value: int) -> bytes:
    """Encode integer as Bitcoin CompactSize."""
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        return int.from_bytes(data[offset : offset + 2], "little"), offset + 2
    if first == 0xFE:
        return int.from_bytes(data[offset : offset + 4], "little"), offset + 4
    return int.from_bytes(data[offset : offset + 8], "little"), offset + 8


def serialize_input(inp: TxInput) -> bytes:
    result = inp.tx_hash + struct.pack("<I", inp.vout)
    result += encode_varint(len(inp.script_sig)) + inp.script_sig
    result += struct.pack("<I", inp.sequence)
    return result


def serialize_output(out: TxOutput) -> bytes:
    return struct.pack("<Q", out.value) + encode_varint(len(out.script)) + out.script


def serialize_transaction(tx: Transaction) -> bytes:
    """Serialize a legacy (non-witness) transaction."""
    result = struct.pack("<I", tx.version)

    result += encode_varint(len(tx.inputs))
    for inp in tx.inputs:
        result += serialize_input(inp)

    result += encode_varint(len(tx.outputs))
    for out in tx.outputs:
        result += serialize_output(out)

    result += struct.pack("<I", tx.locktime)
    return result


def deserialize_transaction(tx_bytes: bytes) -> Transaction:
    try:
        offset = 0
        version = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        offset += 4

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[TxInput] = []
        for _ in range(input_count):
            tx_hash = tx_bytes[offset : offset + 32]
            offset += 32
            vout = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
            offset += 4
            script_len, offset = read_varint(tx_bytes, offset)
            script_sig = tx_bytes[offset : offset + script_len]
            offset += script_len
            sequence = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
            offset += 4
            inputs.append(TxInput(tx_hash, vout, script_sig, sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOutput] = []
        for _ in range(output_count):
            value = struct.unpack("<Q", tx_bytes[offset : offset + 8])[0]
            offset += 8
            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len
            outputs.append(TxOutput(value, script))

        locktime = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        offset += 4
        if offset != len(tx_bytes):
            raise ValueError(f"{len(tx_bytes) - offset} trailing bytes")

        return Transaction(inputs, outputs, version, locktime)

    except (IndexError, struct.error, ValueError) as e:
        raise SigningError(f"Failed to parse transaction: {e}") from e


def compute_sighash_legacy(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """
    Legacy signature hash: the input being signed carries the previous
    output's locking script, every other input an empty script.
    """
    if input_index >= len(tx.inputs):
        raise SigningError("Input index out of range")

    inputs = [
        TxInput(
            inp.tx_hash,
            inp.vout,
            script_code if i == input_index else b"",
            inp.sequence,
        )
        for i, inp in enumerate(tx.inputs)
    ]
    preimage = serialize_transaction(Transaction(inputs, tx.outputs, tx.version, tx.locktime))
    preimage += struct.pack("<I", sighash_type)

    return hash256(preimage)


def create_p2pkh_script_sig(signature: bytes, pubkey_bytes: bytes) -> bytes:
    """<sig || sighash_type> <pubkey>"""
    return push_data(signature) + push_data(pubkey_bytes)


def sign_transaction(tx: Transaction, utxos: list[UTXO], sighash_type: int = SIGHASH_ALL) -> None:
    """
    Fill in the scriptSig of every input in place.

    `utxos[i]` is the output spent by `tx.inputs[i]` and must carry the signing
    key and the locking script of its address.
    """
    if len(utxos) != len(tx.inputs):
        raise SigningError(f"Have {len(utxos)} signing UTXOs for {len(tx.inputs)} inputs")

    script_sigs: list[bytes] = []
    for i, utxo in enumerate(utxos):
        if utxo.key is None or utxo.script is None:
            raise SigningError(f"No key for input {i} ({utxo.txid}:{utxo.output_index})")

        pubkey = utxo.key.public_key_bytes
        if p2pkh_script(hash160(pubkey)) != utxo.script:
            raise SigningError(f"Key does not match locking script of input {i}")

        sighash = compute_sighash_legacy(tx, i, utxo.script, sighash_type)
        signature = utxo.key.sign(sighash) + bytes([sighash_type])
        script_sigs.append(create_p2pkh_script_sig(signature, pubkey))

    for inp, script_sig in zip(tx.inputs, script_sigs, strict=True):
        inp.script_sig = script_sig
