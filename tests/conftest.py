"""Shared fixtures: a noiseless simulated engine with evaluation keys."""
import pytest

from blindmatch.engine import SimulatedEngine


@pytest.fixture
def engine():
    return SimulatedEngine(depth_budget=30, slot_count=8, noise_std=0.0)


@pytest.fixture
def keys(engine):
    key_pair = engine.key_gen()
    engine.eval_mult_key_gen(key_pair.secret_key)
    engine.eval_rotate_key_gen(key_pair.secret_key, [1, 2, 4])
    return key_pair
