"""Homomorphic engine backends."""
from blindmatch.engine.base import HomomorphicEngine, KeyPair
from blindmatch.engine.simulated import SimulatedEngine, SimulatedCiphertext
from blindmatch.shared.config import PipelineConfig
from blindmatch.shared.errors import ConfigurationError


def create_engine(config: PipelineConfig, backend: str = None) -> HomomorphicEngine:
    """
    Create the engine named by backend (defaults to config.backend).

    Args:
        config: Pipeline configuration (depth budget, slot count)
        backend: "openfhe" or "simulated"

    Returns:
        HomomorphicEngine instance
    """
    backend = backend or config.backend
    if backend == "openfhe":
        from blindmatch.engine.openfhe_engine import OpenFHEEngine
        return OpenFHEEngine(config.mult_depth, config.slot_count)
    if backend == "simulated":
        return SimulatedEngine(config.mult_depth, config.slot_count, seed=config.seed)
    raise ConfigurationError(f"Unknown engine backend: {backend!r}")


__all__ = [
    "HomomorphicEngine",
    "KeyPair",
    "SimulatedEngine",
    "SimulatedCiphertext",
    "create_engine",
]
