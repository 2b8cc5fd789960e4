"""
Address and locking-script utilities for P2PKH wallets.
"""

from __future__ import annotations

import hashlib

import base58

from coinwallet.constants import CoinParams
from coinwallet.errors import InvalidAddress

OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_1NEGATE = 0x4F
OP_1 = 0x51
OP_RETURN = 0x6A
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def hash256(data: bytes) -> bytes:
    """SHA256(SHA256(data))"""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def pubkey_to_p2pkh_address(pubkey: bytes, params: CoinParams) -> str:
    """
    Convert a compressed public key to a base58check P2PKH address.

    Layout before base58: version(1) || HASH160(pubkey)(20) || checksum(4)
    """
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")

    payload = bytes([params.address_header]) + hash160(pubkey)
    return base58.b58encode_check(payload).decode("ascii")


def decode_address(address: str) -> tuple[int, bytes]:
    """Decode a base58check address into (version, 20-byte hash)."""
    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise InvalidAddress(f"Invalid address {address!r}: {e}") from e

    if len(decoded) != 21:
        raise InvalidAddress(f"address bytes length: {len(decoded)} expected: 21")

    return decoded[0], decoded[1:]


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    """OP_DUP OP_HASH160 <20-byte-hash> OP_EQUALVERIFY OP_CHECKSIG"""
    return bytes([OP_DUP, OP_HASH160, 0x14]) + pubkey_hash + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def p2sh_script(script_hash: bytes) -> bytes:
    """OP_HASH160 <20-byte-hash> OP_EQUAL"""
    return bytes([OP_HASH160, 0x14]) + script_hash + bytes([OP_EQUAL])


def address_to_scriptpubkey(address: str, params: CoinParams) -> bytes:
    """
    Convert an address of the given network to its locking script.

    Supports P2PKH and P2SH addresses. An address whose version byte belongs to
    another network is rejected.
    """
    version, payload = decode_address(address)

    if version == params.address_header:
        return p2pkh_script(payload)
    if version == params.p2sh_header:
        return p2sh_script(payload)

    raise InvalidAddress(f"address version: {version} is invalid for {params.name}")


def push_data(data: bytes) -> bytes:
    """Encode a minimal (canonical) data push."""
    length = len(data)
    if length == 0:
        return bytes([OP_0])
    if length == 1 and 1 <= data[0] <= 16:
        return bytes([OP_1 + data[0] - 1])
    if length == 1 and data[0] == 0x81:
        return bytes([OP_1NEGATE])
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    raise ValueError(f"Data push too large: {length} bytes")


def null_data_script(data: bytes) -> bytes:
    """OP_RETURN <data> (provably unspendable data carrier output)"""
    return bytes([OP_RETURN]) + push_data(data)
