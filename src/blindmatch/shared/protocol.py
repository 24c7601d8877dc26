"""
Data containers passed between pipeline stages.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from enum import Enum


class Decision(Enum):
    """Outcome of the threshold check."""
    UNIQUE = "UNIQUE"            # no stored vector is close to the query
    NOT_UNIQUE = "NOT UNIQUE"    # a near-duplicate exists

    @classmethod
    def from_flag(cls, is_unique: bool) -> "Decision":
        return cls.UNIQUE if is_unique else cls.NOT_UNIQUE


@dataclass(frozen=True)
class KeyMaterial:
    """
    Keys produced once at system initialization.

    The server only ever needs public_key (evaluation keys live inside the
    engine). secret_key_shares are generated per party but, as in the
    demonstration setting, decryption uses simulation_secret_key.
    """
    public_key: Any
    simulation_secret_key: Any
    secret_key_shares: Tuple[Any, ...] = ()
    threshold_t: int = 1

    @property
    def num_parties(self) -> int:
        return len(self.secret_key_shares)


@dataclass
class ReductionStats:
    """Counters describing how a reduction spent its depth budget."""
    high_fidelity_combines: int = 0
    fallback_combines: int = 0
    max_level: int = 0

    @property
    def total_combines(self) -> int:
        return self.high_fidelity_combines + self.fallback_combines


@dataclass
class StreamResult:
    """Encrypted maximum plus bookkeeping from one streaming pass."""
    encrypted_max: Any
    vectors_processed: int
    num_batches: int
    final_level: int
    truncated: bool = False
    stats: ReductionStats = field(default_factory=ReductionStats)


@dataclass
class VerificationReport:
    """Result of a full verification run."""
    plaintext_max: float
    plaintext_argmax: int
    encrypted_result: float
    is_unique: bool
    threshold: float
    vectors_processed: int
    num_batches: int
    final_level: int
    depth_budget: int
    truncated: bool = False
    stats: ReductionStats = field(default_factory=ReductionStats)
    timing: Dict[str, float] = field(default_factory=dict)
    planned_max_level: Optional[int] = None

    @property
    def decision(self) -> Decision:
        return Decision.from_flag(self.is_unique)

    @property
    def absolute_error(self) -> float:
        return abs(self.plaintext_max - self.encrypted_result)

    @property
    def relative_error(self) -> float:
        """Relative error in percent."""
        return self.absolute_error / (abs(self.plaintext_max) + 1e-10) * 100

    @property
    def accuracy(self) -> float:
        return 100.0 - self.relative_error

    def __str__(self) -> str:
        return (
            f"Plaintext Max Similarity:  {self.plaintext_max:.8f} (index {self.plaintext_argmax})\n"
            f"Encrypted Result:          {self.encrypted_result:.8f}\n"
            f"Absolute Error:            {self.absolute_error:.4e}\n"
            f"Relative Error:            {self.relative_error:.2f}%\n"
            f"Accuracy:                  {self.accuracy:.2f}%\n"
            f"Vectors Processed:         {self.vectors_processed} in {self.num_batches} batches\n"
            f"Final Level:               {self.final_level}/{self.depth_budget}\n"
            f"Combines (poly/fallback):  {self.stats.high_fidelity_combines}/"
            f"{self.stats.fallback_combines}\n"
            f"Decision:                  {self.decision.value} (Threshold: {self.threshold})"
        )
