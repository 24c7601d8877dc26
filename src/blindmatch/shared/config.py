"""
Pipeline configuration.
"""
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from blindmatch.shared.errors import ConfigurationError


BACKENDS = ("openfhe", "simulated")
INTER_BATCH_MODES = ("sequential", "hierarchical")


@dataclass(frozen=True)
class PipelineConfig:
    """
    Immutable configuration shared by every pipeline component.

    Attributes:
        mult_depth: Multiplicative depth budget L of the scheme
        num_vectors: Database size N
        vec_dim: Vector dimension D
        batch_size: Streaming batch size B
        threshold: Decision threshold tau
        num_parties: Number of key-share holders n
        threshold_t: Shares required to decrypt t
        depth_margin: Levels reserved below L before switching to the fallback operator
        fallback_bias: Bias k of the linear fallback blend (0 = pure average)
        sign_coefficients: (c1, c3) of the odd sign polynomial c1*x + c3*x^3
        inter_batch: How batch results are merged ("sequential" or "hierarchical")
        workers: Threads used to evaluate similarities within a batch
        seed: Seed for database vector generation
        query_seed: Seed for query vector generation
        backend: Homomorphic engine backend ("openfhe" or "simulated")
        store_dir: Directory for the temporary encrypted store (None = system temp)
    """
    mult_depth: int = 30
    num_vectors: int = 50
    vec_dim: int = 512
    batch_size: int = 512
    threshold: float = 0.85
    num_parties: int = 3
    threshold_t: int = 2
    depth_margin: int = 3
    fallback_bias: float = 0.0
    sign_coefficients: Tuple[float, float] = field(default=(1.5, -0.5))
    inter_batch: str = "sequential"
    workers: int = 1
    seed: Optional[int] = 42
    query_seed: Optional[int] = 42
    backend: str = "openfhe"
    store_dir: Optional[str] = None

    def __post_init__(self):
        if self.mult_depth < 1:
            raise ConfigurationError(f"mult_depth must be positive, got {self.mult_depth}")
        if self.num_vectors < 0:
            raise ConfigurationError(f"num_vectors must be >= 0, got {self.num_vectors}")
        if self.vec_dim < 1:
            raise ConfigurationError(f"vec_dim must be positive, got {self.vec_dim}")
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if not 1 <= self.threshold_t <= self.num_parties:
            raise ConfigurationError(
                f"Need 1 <= t <= n, got t={self.threshold_t}, n={self.num_parties}"
            )
        if self.depth_margin < 1 or self.depth_margin >= self.mult_depth:
            raise ConfigurationError(
                f"depth_margin must be in [1, {self.mult_depth - 1}], got {self.depth_margin}"
            )
        if not 0.0 <= self.fallback_bias <= 0.5:
            raise ConfigurationError(
                f"fallback_bias must be in [0, 0.5], got {self.fallback_bias}"
            )
        if len(self.sign_coefficients) != 2:
            raise ConfigurationError("sign_coefficients must be a (c1, c3) pair")
        if self.inter_batch not in INTER_BATCH_MODES:
            raise ConfigurationError(
                f"inter_batch must be one of {INTER_BATCH_MODES}, got {self.inter_batch!r}"
            )
        if self.workers < 1:
            raise ConfigurationError(f"workers must be positive, got {self.workers}")
        for name in ("seed", "query_seed"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value}")
        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"backend must be one of {BACKENDS}, got {self.backend!r}"
            )

    @property
    def slot_count(self) -> int:
        """Smallest power of two that holds one packed vector."""
        slots = 1
        while slots < self.vec_dim:
            slots <<= 1
        return slots

    def with_overrides(self, **changes) -> "PipelineConfig":
        """Return a copy with some fields replaced (re-validated)."""
        return replace(self, **changes)
