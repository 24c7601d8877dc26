"""Shared configuration, protocol definitions and utilities."""
from blindmatch.shared.config import PipelineConfig
from blindmatch.shared.codec import VectorCodec
from blindmatch.shared.errors import (
    BlindMatchError,
    ConfigurationError,
    DepthBudgetError,
    DepthBudgetExceededError,
    EmptyDatabaseError,
    RecordDecodeError,
    StoreError,
)
from blindmatch.shared.protocol import (
    Decision,
    KeyMaterial,
    ReductionStats,
    StreamResult,
    VerificationReport,
)
from blindmatch.shared.utils import (
    generate_random_vectors,
    normalize_vectors,
    compute_plaintext_similarity,
    plaintext_max_similarity,
    Timer,
)

__all__ = [
    "PipelineConfig",
    "VectorCodec",
    "BlindMatchError",
    "ConfigurationError",
    "DepthBudgetError",
    "DepthBudgetExceededError",
    "EmptyDatabaseError",
    "RecordDecodeError",
    "StoreError",
    "Decision",
    "KeyMaterial",
    "ReductionStats",
    "StreamResult",
    "VerificationReport",
    "generate_random_vectors",
    "normalize_vectors",
    "compute_plaintext_similarity",
    "plaintext_max_similarity",
    "Timer",
]
