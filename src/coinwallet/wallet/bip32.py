"""
BIP32 HD key derivation for coin accounts.
Implements BIP44 (legacy P2PKH) derivation paths.
"""

from __future__ import annotations

import hashlib
import hmac

import base58
from coincurve import PrivateKey, PublicKey

from coinwallet.constants import CoinParams
from coinwallet.errors import DerivationError
from coinwallet.wallet.address import hash160, pubkey_to_p2pkh_address

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED_OFFSET = 0x80000000
MAX_INDEX = 0xFFFFFFFF


class HDKey:
    """
    Hierarchical Deterministic Key.
    Implements BIP32 private derivation. Instances are never mutated: every
    derivation returns a new key.
    """

    def __init__(
        self,
        private_key: PrivateKey,
        chain_code: bytes,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_number: int = 0,
    ):
        self._private_key = private_key
        self._public_key = private_key.public_key
        self.chain_code = chain_code
        self.depth = depth
        self.parent_fingerprint = parent_fingerprint
        self.child_number = child_number

    @property
    def private_key(self) -> PrivateKey:
        """Return the coincurve PrivateKey instance."""
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        """Return the coincurve PublicKey instance."""
        return self._public_key

    @property
    def public_key_bytes(self) -> bytes:
        """Compressed SEC public key (33 bytes)."""
        return self._public_key.format(compressed=True)

    @property
    def fingerprint(self) -> bytes:
        """First four bytes of HASH160 of the public key."""
        return hash160(self.public_key_bytes)[:4]

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed"""
        if not 16 <= len(seed) <= 64:
            raise ValueError(f"Seed must be 16 to 64 bytes, got {len(seed)}")

        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        key_int = int.from_bytes(key_bytes, "big")
        if key_int == 0 or key_int >= SECP256K1_N:
            raise DerivationError("Invalid master key")

        return cls(PrivateKey(key_bytes), chain_code, depth=0)

    def derive(self, path: str) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/44'/0'/0'/0/1")
        ' indicates hardened derivation
        """
        if not path.startswith("m"):
            raise ValueError("Path must start with 'm'")

        parts = path.split("/")[1:]
        key = self

        for part in parts:
            if not part:
                continue

            hardened = part.endswith("'") or part.endswith("h")
            index = int(part.rstrip("'h"))
            key = key.child(index, hardened=hardened)

        return key

    def child(self, index: int, hardened: bool = False) -> HDKey:
        """Derive the child key at `index` (hardened adds 2^31)."""
        if hardened:
            if not 0 <= index < HARDENED_OFFSET:
                raise DerivationError(f"Hardened index out of range: {index}")
            index += HARDENED_OFFSET
        elif not 0 <= index <= MAX_INDEX:
            raise DerivationError(f"Child index out of range: {index}")

        return self._derive_child(index)

    def _derive_child(self, index: int) -> HDKey:
        """Derive a child key at the given raw index"""
        hardened = index >= HARDENED_OFFSET

        if hardened:
            priv_bytes = self._private_key.secret
            data = b"\x00" + priv_bytes + index.to_bytes(4, "big")
        else:
            data = self.public_key_bytes + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        offset_int = int.from_bytes(key_offset, "big")
        if offset_int >= SECP256K1_N:
            raise DerivationError(f"Invalid child key at index {index}")

        parent_key_int = int.from_bytes(self._private_key.secret, "big")
        child_key_int = (parent_key_int + offset_int) % SECP256K1_N

        if child_key_int == 0:
            raise DerivationError(f"Invalid child key at index {index}")

        child_private_key = PrivateKey(child_key_int.to_bytes(32, "big"))

        return HDKey(
            child_private_key,
            child_chain,
            depth=self.depth + 1,
            parent_fingerprint=self.fingerprint,
            child_number=index,
        )

    def get_private_key_bytes(self) -> bytes:
        """Get private key as 32 bytes"""
        return self._private_key.secret

    def address(self, params: CoinParams) -> str:
        """Get P2PKH address for this key"""
        return pubkey_to_p2pkh_address(self.public_key_bytes, params)

    def _serialize(self, version: bytes, key_data: bytes) -> str:
        payload = (
            version
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.child_number.to_bytes(4, "big")
            + self.chain_code
            + key_data
        )
        return base58.b58encode_check(payload).decode("ascii")

    def extended_private_key(self, params: CoinParams) -> str:
        """Serialize as xprv/tprv using the network's HD private key ID."""
        return self._serialize(params.hd_private_key_id, b"\x00" + self.get_private_key_bytes())

    def extended_public_key(self, params: CoinParams) -> str:
        """Serialize as xpub/tpub using the network's HD public key ID."""
        return self._serialize(params.hd_public_key_id, self.public_key_bytes)

    def sign(self, message_hash: bytes) -> bytes:
        """Sign a 32-byte digest (DER, deterministic RFC 6979 nonce)."""
        return self._private_key.sign(message_hash, hasher=None)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert BIP39 mnemonic to seed.
    The wordlist checksum is not validated.
    """
    from hashlib import pbkdf2_hmac

    mnemonic_bytes = mnemonic.encode("utf-8")
    salt = ("mnemonic" + passphrase).encode("utf-8")

    seed = pbkdf2_hmac("sha512", mnemonic_bytes, salt, 2048, dklen=64)
    return seed
