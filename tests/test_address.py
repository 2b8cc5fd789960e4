"""
Tests for address encoding and locking scripts.
"""

import base58
import pytest

from coinwallet.constants import BITCOIN_MAIN, BITCOIN_TEST, LITECOIN_MAIN
from coinwallet.errors import InvalidAddress
from coinwallet.wallet.address import (
    address_to_scriptpubkey,
    decode_address,
    hash160,
    null_data_script,
    p2pkh_script,
    p2sh_script,
    pubkey_to_p2pkh_address,
    push_data,
)

# secp256k1 generator point G, i.e. the public key of private key 1
GENERATOR_PUBKEY = bytes.fromhex(
    "0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
)


class TestP2PKHAddress:
    def test_hash160(self):
        assert hash160(GENERATOR_PUBKEY).hex() == "751e76e8199196d454941c45d1b3a323f1433bd6"

    def test_bitcoin_mainnet(self):
        address = pubkey_to_p2pkh_address(GENERATOR_PUBKEY, BITCOIN_MAIN)
        assert address == "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"

    def test_network_prefixes(self):
        assert pubkey_to_p2pkh_address(GENERATOR_PUBKEY, BITCOIN_TEST)[0] in "mn"
        assert pubkey_to_p2pkh_address(GENERATOR_PUBKEY, LITECOIN_MAIN)[0] == "L"

    def test_decode_roundtrip(self):
        address = pubkey_to_p2pkh_address(GENERATOR_PUBKEY, BITCOIN_TEST)
        version, payload = decode_address(address)
        assert version == BITCOIN_TEST.address_header
        assert payload == hash160(GENERATOR_PUBKEY)

    def test_rejects_uncompressed_pubkey(self):
        with pytest.raises(ValueError):
            pubkey_to_p2pkh_address(b"\x04" + b"\x00" * 64, BITCOIN_MAIN)


class TestDecodeAddress:
    def test_bad_checksum(self):
        address = "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMJ"
        with pytest.raises(InvalidAddress):
            decode_address(address)

    def test_wrong_length(self):
        address = base58.b58encode_check(b"\x00" + b"\x11" * 19).decode()
        with pytest.raises(InvalidAddress, match="expected: 21"):
            decode_address(address)

    def test_invalid_address_is_value_error(self):
        with pytest.raises(ValueError):
            decode_address("not-an-address")


class TestScripts:
    def test_p2pkh_script_for_address(self):
        script = address_to_scriptpubkey("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", BITCOIN_MAIN)
        assert script == p2pkh_script(hash160(GENERATOR_PUBKEY))
        assert script.hex() == "76a914751e76e8199196d454941c45d1b3a323f1433bd688ac"

    def test_p2sh_script_for_address(self):
        script_hash = b"\x22" * 20
        address = base58.b58encode_check(bytes([BITCOIN_MAIN.p2sh_header]) + script_hash).decode()
        assert address_to_scriptpubkey(address, BITCOIN_MAIN) == p2sh_script(script_hash)

    def test_foreign_network_rejected(self):
        with pytest.raises(InvalidAddress):
            address_to_scriptpubkey("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", BITCOIN_TEST)

    def test_null_data_script(self):
        assert null_data_script(b"hello") == b"\x6a\x05hello"

    def test_push_data_sizes(self):
        assert push_data(b"\xaa" * 75)[0] == 75
        assert push_data(b"\xaa" * 76)[:2] == b"\x4c\x4c"
        assert push_data(b"\xaa" * 256)[:3] == b"\x4d\x00\x01"
