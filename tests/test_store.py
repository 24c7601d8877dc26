"""Tests for the persisted encrypted store."""
import logging
import os
import pickle

import pytest
import numpy as np

from blindmatch.server.store import (
    MAGIC,
    EncryptedStoreReader,
    EncryptedStoreWriter,
    default_store_path,
    remove_store,
)
from blindmatch.shared.errors import StoreError
from blindmatch.shared.utils import generate_random_vectors


def write_store(engine, keys, path, num_vectors=5, dim=8):
    vectors = generate_random_vectors(num_vectors, dim, seed=42)
    count = EncryptedStoreWriter(engine, keys.public_key).write(iter(vectors), path)
    return vectors, count


class TestStoreRoundtrip:
    """Test writing and streaming back ciphertexts."""

    def test_write_and_read(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        vectors, count = write_store(engine, keys, path)

        reader = EncryptedStoreReader(path, engine)
        records = list(reader)

        assert count == 5
        assert len(records) == 5
        assert reader.records_read == 5
        assert not reader.truncated
        for vector, ct in zip(vectors, records):
            np.testing.assert_allclose(engine.decrypt(keys.secret_key, ct, 8), vector)

    def test_order_preserved(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        vectors = np.eye(8)[:6]
        EncryptedStoreWriter(engine, keys.public_key).write(vectors, path)

        hot = [int(np.argmax(engine.decrypt(keys.secret_key, ct, 8)))
               for ct in EncryptedStoreReader(path, engine)]

        assert hot == [0, 1, 2, 3, 4, 5]

    def test_empty_store(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        count = EncryptedStoreWriter(engine, keys.public_key).write([], path)

        assert count == 0
        assert list(EncryptedStoreReader(path, engine)) == []

    def test_reiterate(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        write_store(engine, keys, path, num_vectors=3)
        reader = EncryptedStoreReader(path, engine)

        assert len(list(reader)) == 3
        assert len(list(reader)) == 3


class TestStoreFailures:
    """Test error handling and truncation tolerance."""

    def test_missing_file(self, engine, tmp_path):
        reader = EncryptedStoreReader(tmp_path / "missing.bin", engine)
        with pytest.raises(StoreError):
            iter(reader)

    def test_bad_header(self, engine, tmp_path):
        path = tmp_path / "store.bin"
        path.write_bytes(b"JUNK!" + b"\x00" * 16)

        with pytest.raises(StoreError, match="not an encrypted vector store"):
            list(EncryptedStoreReader(path, engine))

    def test_truncated_tail(self, engine, keys, tmp_path, caplog):
        path = tmp_path / "store.bin"
        write_store(engine, keys, path, num_vectors=4)
        data = path.read_bytes()
        path.write_bytes(data[:-10])

        reader = EncryptedStoreReader(path, engine)
        with caplog.at_level(logging.WARNING):
            records = list(reader)

        assert len(records) == 3
        assert reader.truncated
        assert "Stopped reading" in caplog.text

    def test_truncated_length_prefix(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        write_store(engine, keys, path, num_vectors=2)
        path.write_bytes(path.read_bytes() + b"\x00\x01")

        reader = EncryptedStoreReader(path, engine)

        assert len(list(reader)) == 2
        assert reader.truncated

    def test_oversized_length_prefix(self, engine, keys, tmp_path, caplog):
        path = tmp_path / "store.bin"
        write_store(engine, keys, path, num_vectors=2)
        with open(path, "ab") as f:
            f.write((2 ** 62).to_bytes(8, "big") + b"junk")

        reader = EncryptedStoreReader(path, engine)
        with caplog.at_level(logging.WARNING):
            records = list(reader)

        assert len(records) == 2
        assert reader.truncated
        assert "left in file" in caplog.text

    def test_undecodable_record(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        write_store(engine, keys, path, num_vectors=2)
        garbage = pickle.dumps({"unexpected": 1})
        with open(path, "ab") as f:
            f.write(len(garbage).to_bytes(8, "big") + garbage)

        reader = EncryptedStoreReader(path, engine)

        assert len(list(reader)) == 2
        assert reader.truncated

    def test_record_referencing_unknown_module(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        write_store(engine, keys, path, num_vectors=2)
        garbage = b"cno_such_module_xyz\nthing\n."
        with open(path, "ab") as f:
            f.write(len(garbage).to_bytes(8, "big") + garbage)

        reader = EncryptedStoreReader(path, engine)

        assert len(list(reader)) == 2
        assert reader.truncated

    def test_failed_write_leaves_nothing(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        vectors = [np.ones(8), np.ones(16)]

        with pytest.raises(ValueError):
            EncryptedStoreWriter(engine, keys.public_key).write(vectors, path)

        assert not path.exists()
        assert not (tmp_path / "store.bin.partial").exists()

    def test_unwritable_directory(self, engine, keys, tmp_path):
        path = tmp_path / "missing_dir" / "store.bin"

        with pytest.raises(StoreError):
            EncryptedStoreWriter(engine, keys.public_key).write([np.ones(8)], path)



class TestStoreCounting:
    """Test counting record frames without decoding them."""

    def test_count_records(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        write_store(engine, keys, path, num_vectors=5)

        assert EncryptedStoreReader(path, engine).count_records() == 5

    def test_count_empty_store(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        EncryptedStoreWriter(engine, keys.public_key).write([], path)

        assert EncryptedStoreReader(path, engine).count_records() == 0

    def test_count_stops_at_truncated_tail(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        write_store(engine, keys, path, num_vectors=4)
        path.write_bytes(path.read_bytes()[:-10])

        assert EncryptedStoreReader(path, engine).count_records() == 3

    def test_count_ignores_oversized_length_prefix(self, engine, keys, tmp_path):
        path = tmp_path / "store.bin"
        write_store(engine, keys, path, num_vectors=2)
        with open(path, "ab") as f:
            f.write((2 ** 62).to_bytes(8, "big") + b"junk")

        assert EncryptedStoreReader(path, engine).count_records() == 2

    def test_count_bad_header(self, engine, tmp_path):
        path = tmp_path / "store.bin"
        path.write_bytes(b"JUNK!")

        with pytest.raises(StoreError):
            EncryptedStoreReader(path, engine).count_records()


class TestStoreFiles:
    """Test temporary store lifecycle helpers."""

    def test_default_store_path(self, tmp_path):
        path = default_store_path(tmp_path)

        assert path.parent == tmp_path
        assert path.name.startswith("blindmatch_")
        assert path.suffix == ".bin"
        assert path.exists()

    def test_written_file_has_magic(self, engine, keys, tmp_path):
        path = default_store_path(tmp_path)
        write_store(engine, keys, path, num_vectors=1)

        assert path.read_bytes().startswith(MAGIC)

    def test_remove_store(self, tmp_path):
        path = tmp_path / "store.bin"
        path.write_bytes(MAGIC)

        assert remove_store(path)
        assert not os.path.exists(path)

    def test_remove_missing_store_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            assert not remove_store(tmp_path / "missing.bin")
        assert "Could not delete temporary file" in caplog.text
