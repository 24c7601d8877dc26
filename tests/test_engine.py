"""Tests for the simulated engine and backend selection."""
import pickle

import pytest
import numpy as np

from blindmatch.engine import SimulatedEngine, create_engine
from blindmatch.shared.config import PipelineConfig
from blindmatch.shared.errors import (
    ConfigurationError,
    DepthBudgetExceededError,
    RecordDecodeError,
)


class TestSimulatedEngine:
    """Test level rules and key checks."""

    def test_encrypt_decrypt(self, engine, keys):
        ct = engine.encrypt(keys.public_key, [0.5, -0.25, 1.0])
        values = engine.decrypt(keys.secret_key, ct, 4)

        assert values == [0.5, -0.25, 1.0, 0.0]
        assert engine.get_level(ct) == 0

    def test_levels(self, engine, keys):
        a = engine.encrypt(keys.public_key, [1.0, 2.0])
        b = engine.mult(a, 2.0)

        assert engine.get_level(b) == 1
        assert engine.get_level(engine.add(a, b)) == 1
        assert engine.get_level(engine.sub(b, a)) == 1
        assert engine.get_level(engine.rotate(b, 1)) == 1
        assert engine.get_level(engine.mult(a, b)) == 2

    def test_rotate_is_cyclic_left(self, engine, keys):
        ct = engine.encrypt(keys.public_key, list(range(8)))
        rotated = engine.decrypt(keys.secret_key, engine.rotate(ct, 2), 8)

        assert rotated == [2, 3, 4, 5, 6, 7, 0, 1]

    def test_depth_budget_enforced(self):
        small = SimulatedEngine(depth_budget=2, slot_count=8, noise_std=0.0)
        key_pair = small.key_gen()
        ct = small.encrypt(key_pair.public_key, [1.0])
        ct = small.mult(ct, 1.0)

        with pytest.raises(DepthBudgetExceededError):
            small.mult(ct, 1.0)

    def test_rotation_requires_key(self, engine):
        key_pair = engine.key_gen()
        ct = engine.encrypt(key_pair.public_key, [1.0])

        with pytest.raises(ValueError, match="rotation key"):
            engine.rotate(ct, 3)

    def test_mult_requires_key(self, engine):
        key_pair = engine.key_gen()
        ct = engine.encrypt(key_pair.public_key, [1.0])

        with pytest.raises(ValueError, match="multiplication key"):
            engine.mult(ct, ct)

    def test_wrong_secret_key(self, engine, keys):
        other = engine.key_gen()
        ct = engine.encrypt(keys.public_key, [1.0])

        with pytest.raises(ValueError):
            engine.decrypt(other.secret_key, ct, 1)

    def test_serialize_roundtrip(self, engine, keys):
        ct = engine.mult(engine.encrypt(keys.public_key, [0.1, 0.2]), 3.0)
        restored = engine.deserialize(engine.serialize(ct))

        assert engine.get_level(restored) == 1
        np.testing.assert_allclose(
            engine.decrypt(keys.secret_key, restored, 2), [0.3, 0.6]
        )

    def test_deserialize_garbage(self, engine):
        with pytest.raises(RecordDecodeError):
            engine.deserialize(b"not a ciphertext")

    @pytest.mark.parametrize("data", [
        b"cno_such_module_xyz\nthing\n.",
        b"cbuiltins\nno_such_attribute\n.",
    ])
    def test_deserialize_unresolvable_global(self, engine, data):
        with pytest.raises(RecordDecodeError):
            engine.deserialize(data)

    def test_deserialize_infinite_level(self, engine):
        data = pickle.dumps({"values": np.zeros(8), "level": float("inf"), "key_id": 1})

        with pytest.raises(RecordDecodeError):
            engine.deserialize(data)

    def test_deserialize_wrong_slot_count(self, engine, keys):
        other = SimulatedEngine(depth_budget=30, slot_count=16, noise_std=0.0)
        key_pair = other.key_gen()
        data = other.serialize(other.encrypt(key_pair.public_key, [1.0]))

        with pytest.raises(RecordDecodeError, match="shape"):
            engine.deserialize(data)


class TestCreateEngine:
    """Test backend selection."""

    def test_simulated(self):
        config = PipelineConfig(backend="simulated", vec_dim=100, mult_depth=12)
        engine = create_engine(config)

        assert engine.name == "simulated"
        assert engine.slot_count == 128
        assert engine.depth_budget == 12

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            create_engine(PipelineConfig(backend="simulated"), backend="paillier")
