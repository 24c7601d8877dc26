"""
Persisted encrypted vector store.

Layout: a 5-byte magic header followed by self-delimited records, each an
8-byte big-endian payload length and the engine's serialized ciphertext.
The format only has to survive a single run: the store is written once,
streamed once per query and deleted afterwards.
"""
import logging
import os
import pickle
import struct
import tempfile
from pathlib import Path
from typing import Any, BinaryIO, Iterable, Iterator, Optional, Union

import numpy as np

from blindmatch.engine.base import HomomorphicEngine
from blindmatch.shared.codec import VectorCodec
from blindmatch.shared.errors import RecordDecodeError, StoreError

logger = logging.getLogger(__name__)

MAGIC = b"BMST\x01"
_LENGTH = struct.Struct(">Q")

PathLike = Union[str, Path]


class EncryptedStoreWriter:
    """
    Encrypts vectors one at a time and appends them to a store file.

    The store is first written to `<path>.partial` and only renamed into
    place once every record is on disk, so a failed write never leaves a
    file that looks valid.
    """

    def __init__(
        self,
        engine: HomomorphicEngine,
        public_key: Any,
        codec: Optional[VectorCodec] = None,
    ):
        self.engine = engine
        self.public_key = public_key
        self.codec = codec or VectorCodec(engine.slot_count)

    def write(self, vectors: Iterable[np.ndarray], path: PathLike) -> int:
        """
        Encrypt and persist vectors.

        Args:
            vectors: Iterable of plaintext vectors (consumed lazily)
            path: Destination store path

        Returns:
            Number of records written
        """
        path = Path(path)
        partial = path.with_name(path.name + ".partial")
        count = 0
        completed = False

        try:
            with open(partial, "wb") as f:
                f.write(MAGIC)
                for vector in vectors:
                    ct = self.engine.encrypt(self.public_key, self.codec.encode(vector))
                    self._write_record(f, self._serialize(ct, count))
                    count += 1
            os.replace(partial, path)
            completed = True
        except OSError as e:
            raise StoreError(f"Failed to write encrypted store {path}: {e}") from e
        finally:
            if not completed:
                _discard(partial)

        logger.info("Database encrypted to %s (%d records)", path, count)
        return count

    def _serialize(self, ciphertext: Any, index: int) -> bytes:
        try:
            return self.engine.serialize(ciphertext)
        except (pickle.PicklingError, RuntimeError, TypeError, ValueError) as e:
            raise StoreError(f"Serialization failed for vector {index}: {e}") from e

    @staticmethod
    def _write_record(f: BinaryIO, payload: bytes) -> None:
        f.write(_LENGTH.pack(len(payload)))
        f.write(payload)


class EncryptedStoreReader:
    """
    Lazy, forward-only stream of ciphertexts from a store file.

    Holds at most one record in memory. Iterating again reopens the file
    from the beginning. A truncated or undecodable record ends the stream
    early: everything read before it is kept and `truncated` is set.
    """

    def __init__(self, path: PathLike, engine: HomomorphicEngine):
        self.path = Path(path)
        self.engine = engine
        self.records_read = 0
        self.truncated = False

    def __iter__(self) -> Iterator[Any]:
        f = self._open()
        self.records_read = 0
        self.truncated = False
        return self._records(f)

    def count_records(self) -> int:
        """
        Count complete record frames without deserializing them.

        An upper bound on what iteration yields: a frame can still hold an
        undecodable payload.
        """
        with self._open() as f:
            size = os.fstat(f.fileno()).st_size
            count = 0
            while True:
                prefix = f.read(_LENGTH.size)
                if len(prefix) < _LENGTH.size:
                    return count
                (length,) = _LENGTH.unpack(prefix)
                if length > size - f.tell():
                    return count
                f.seek(length, os.SEEK_CUR)
                count += 1

    def _open(self) -> BinaryIO:
        try:
            f = open(self.path, "rb")
        except OSError as e:
            raise StoreError(f"Cannot open database file: {self.path}") from e

        try:
            header = f.read(len(MAGIC))
        except OSError as e:
            f.close()
            raise StoreError(f"Cannot read database file: {self.path}") from e
        if header != MAGIC:
            f.close()
            raise StoreError(f"{self.path} is not an encrypted vector store")
        return f

    def _records(self, f: BinaryIO) -> Iterator[Any]:
        with f:
            size = os.fstat(f.fileno()).st_size
            while True:
                prefix = f.read(_LENGTH.size)
                if not prefix:
                    return
                if len(prefix) < _LENGTH.size:
                    self._stop("truncated record header")
                    return

                (length,) = _LENGTH.unpack(prefix)
                remaining = size - f.tell()
                if length > remaining:
                    self._stop(f"record {self.records_read} claims {length} bytes, "
                               f"{remaining} left in file")
                    return

                payload = f.read(length)
                if len(payload) < length:
                    self._stop(f"record {self.records_read} truncated "
                               f"({len(payload)}/{length} bytes)")
                    return

                try:
                    ciphertext = self.engine.deserialize(payload)
                except RecordDecodeError as e:
                    self._stop(f"record {self.records_read} unreadable: {e}")
                    return

                self.records_read += 1
                yield ciphertext

    def _stop(self, reason: str) -> None:
        self.truncated = True
        logger.warning(
            "Stopped reading %s after %d records: %s",
            self.path, self.records_read, reason,
        )


def default_store_path(directory: Optional[PathLike] = None) -> Path:
    """Reserve a fresh temporary file name for an encrypted store."""
    fd, name = tempfile.mkstemp(prefix="blindmatch_", suffix=".bin", dir=directory)
    os.close(fd)
    return Path(name)


def remove_store(path: PathLike) -> bool:
    """
    Delete a store file.

    Returns:
        True if the file was removed, False if removal failed (logged)
    """
    try:
        os.remove(path)
    except OSError as e:
        logger.warning("Could not delete temporary file %s: %s", path, e)
        return False
    return True


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove partial store %s: %s", path, e)
