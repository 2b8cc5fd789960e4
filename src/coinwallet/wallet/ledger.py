"""
Persisted UTXO ledger.

One LMDB file holds any number of accounts. Every account identifier is a
named database (its namespace); inside it each address maps to the packed list
of its unspent outputs, and the reserved key `lastIndex` holds the last-used
derivation index watermark.
"""

from __future__ import annotations

from pathlib import Path
from types import TracebackType

import lmdb
from loguru import logger

from coinwallet.constants import LAST_INDEX_KEY
from coinwallet.errors import AccountNotFound, LedgerError
from coinwallet.wallet.models import UTXO

# Upper bound for the memory map; LMDB grows the file lazily up to this size
DEFAULT_MAP_SIZE = 64 * 1024 * 1024

# Maximum number of account namespaces per ledger file
DEFAULT_MAX_ACCOUNTS = 128

MAX_VARINT_BYTES = 9
MAX_U64 = 0xFFFFFFFFFFFFFFFF


def encode_varint64(value: int) -> bytes:
    """
    Encode an unsigned 64-bit integer as a variable-length integer.

    Little-endian groups of 7 bits with the high bit as continuation flag.
    After eight continuation bytes the ninth byte carries a full 8 bits.
    """
    if not 0 <= value <= MAX_U64:
        raise ValueError(f"Value out of uint64 range: {value}")

    result = bytearray()
    for _ in range(MAX_VARINT_BYTES - 1):
        if value < 0x80:
            break
        result.append((value & 0x7F) | 0x80)
        value >>= 7
    result.append(value)
    return bytes(result)


def decode_varint64(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a varint at `offset`. Returns (value, new_offset)."""
    value = 0
    shift = 0
    for i in range(MAX_VARINT_BYTES):
        if offset >= len(data):
            raise LedgerError("truncated varint")
        byte = data[offset]
        offset += 1

        if i == MAX_VARINT_BYTES - 1:
            value |= byte << shift
            return value, offset

        value |= (byte & 0x7F) << shift
        if byte < 0x80:
            return value, offset
        shift += 7

    raise LedgerError("invalid varint")  # pragma: no cover


def pack_utxos(utxos: list[UTXO]) -> bytes:
    """Serialize a UTXO list: varint(len(hash)) || hash || varint(index) || varint(value)"""
    packed = bytearray()
    for utxo in utxos:
        packed += encode_varint64(len(utxo.tx_hash))
        packed += utxo.tx_hash
        packed += encode_varint64(utxo.output_index)
        packed += encode_varint64(utxo.value)
    return bytes(packed)


def unpack_utxos(data: bytes) -> list[UTXO]:
    """Exact inverse of pack_utxos. An empty buffer is an empty list."""
    utxos: list[UTXO] = []
    offset = 0
    while offset < len(data):
        hash_len, offset = decode_varint64(data, offset)
        if offset + hash_len > len(data):
            raise LedgerError("truncated transaction hash")
        tx_hash = bytes(data[offset : offset + hash_len])
        offset += hash_len

        output_index, offset = decode_varint64(data, offset)
        value, offset = decode_varint64(data, offset)

        utxos.append(UTXO(tx_hash=tx_hash, output_index=output_index, value=value))

    return utxos


class UtxoLedger:
    """
    UTXO store scoped to one account namespace.

    Records are replaced wholesale per address; storing an empty list removes
    the address from the ledger.
    """

    def __init__(
        self,
        path: str | Path,
        account: str,
        create: bool = True,
        map_size: int = DEFAULT_MAP_SIZE,
    ):
        self.path = Path(path)
        self.account = account

        try:
            self._env: lmdb.Environment | None = lmdb.open(
                str(self.path),
                subdir=False,
                max_dbs=DEFAULT_MAX_ACCOUNTS,
                map_size=map_size,
            )
        except lmdb.Error as e:
            raise LedgerError(f"Failed to open ledger {self.path}: {e}") from e

        try:
            self._db = self._env.open_db(account.encode("utf-8"), create=create)
        except lmdb.NotFoundError as e:
            self._env.close()
            self._env = None
            raise AccountNotFound(account) from e
        except lmdb.Error as e:
            self._env.close()
            self._env = None
            raise LedgerError(f"Failed to open account {account}: {e}") from e

        logger.debug(f"Opened ledger {self.path} for account {account}")

    def __enter__(self) -> UtxoLedger:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._env is None

    def _environment(self) -> lmdb.Environment:
        if self._env is None:
            raise LedgerError(f"Ledger for account {self.account} is closed")
        return self._env

    def get_last_index(self) -> int:
        """Return the last-used index watermark (0 if never stored)."""
        with self._environment().begin(db=self._db) as txn:
            raw = txn.get(LAST_INDEX_KEY)
        if not raw:
            return 0
        index, _ = decode_varint64(raw)
        return index

    def set_last_index(self, index: int) -> None:
        with self._environment().begin(write=True, db=self._db) as txn:
            txn.put(LAST_INDEX_KEY, encode_varint64(index))

    def get_utxos(self, address: str) -> list[UTXO]:
        with self._environment().begin(db=self._db) as txn:
            raw = txn.get(address.encode("utf-8"))
        if raw is None:
            return []
        return unpack_utxos(raw)

    def set_utxos(self, address: str, utxos: list[UTXO]) -> None:
        """Replace the UTXO set of an address; an empty set deletes the record."""
        key = address.encode("utf-8")
        with self._environment().begin(write=True, db=self._db) as txn:
            if utxos:
                txn.put(key, pack_utxos(utxos))
            else:
                txn.delete(key)

    def get_all_utxos(self) -> dict[str, list[UTXO]]:
        """Snapshot of every address record in the namespace."""
        result: dict[str, list[UTXO]] = {}
        with self._environment().begin(db=self._db) as txn:
            for key, value in txn.cursor():
                if key == LAST_INDEX_KEY:
                    continue
                result[bytes(key).decode("utf-8")] = unpack_utxos(value)
        return result

    def close(self) -> None:
        """Release the underlying storage handle."""
        if self._env is not None:
            self._env.close()
            self._env = None
            logger.debug(f"Closed ledger {self.path} for account {self.account}")
