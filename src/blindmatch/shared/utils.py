"""
Shared utility functions.
"""
import numpy as np
from typing import Optional, Tuple
import time


def generate_random_vectors(
    num_vectors: int,
    dimension: int,
    normalize: bool = True,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Generate random test vectors.

    Draws from a standard normal distribution with a private generator, so
    two calls with the same seed return the same vectors.

    Args:
        num_vectors: Number of vectors to generate
        dimension: Dimension of each vector
        normalize: Whether to L2-normalize vectors
        seed: Random seed for reproducibility

    Returns:
        Array of shape (num_vectors, dimension)
    """
    rng = np.random.default_rng(seed)
    vectors = rng.standard_normal((num_vectors, dimension))

    if normalize:
        vectors = normalize_vectors(vectors)

    return vectors


def normalize_vectors(vectors: np.ndarray) -> np.ndarray:
    """
    L2-normalize vectors.

    Args:
        vectors: Array of shape (n, d)

    Returns:
        Normalized vectors of same shape
    """
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms = np.where(norms < 1e-10, 1, norms)  # Avoid division by zero
    return vectors / norms


def compute_plaintext_similarity(
    query: np.ndarray,
    vectors: np.ndarray
) -> np.ndarray:
    """
    Compute dot product similarities in plaintext (for verification).

    Args:
        query: Query vector of shape (d,) or (1, d)
        vectors: Database vectors of shape (n, d)

    Returns:
        Similarity scores of shape (n,)
    """
    query = query.reshape(1, -1) if query.ndim == 1 else query
    return (vectors @ query.T).flatten()


def plaintext_max_similarity(
    query: np.ndarray,
    vectors: np.ndarray,
) -> Tuple[float, int]:
    """
    Plaintext baseline: best similarity and the index where it occurs.

    Only used as a correctness oracle, never on the protected path.
    """
    if len(vectors) == 0:
        raise ValueError("Cannot compute a maximum over an empty database")
    scores = compute_plaintext_similarity(query, vectors)
    index = int(np.argmax(scores))
    return float(scores[index]), index


class Timer:
    """Context manager for timing operations."""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: Optional[float] = None
        self.elapsed: Optional[float] = None

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        self.elapsed = time.perf_counter() - self.start_time

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed time in milliseconds."""
        if self.elapsed is None:
            if self.start_time is not None:
                return (time.perf_counter() - self.start_time) * 1000
            return 0.0
        return self.elapsed * 1000
