"""Server-side components: encrypted store, similarity and maximum reduction."""
from blindmatch.server.compute import SimilarityEvaluator, StreamingMaxComputation
from blindmatch.server.reducer import (
    DepthBudgetStrategy,
    DepthPlanner,
    HighFidelityMax,
    LinearBlend,
    MaxReducer,
    tournament,
)
from blindmatch.server.store import (
    EncryptedStoreReader,
    EncryptedStoreWriter,
    default_store_path,
    remove_store,
)

__all__ = [
    "SimilarityEvaluator",
    "StreamingMaxComputation",
    "DepthBudgetStrategy",
    "DepthPlanner",
    "HighFidelityMax",
    "LinearBlend",
    "MaxReducer",
    "tournament",
    "EncryptedStoreReader",
    "EncryptedStoreWriter",
    "default_store_path",
    "remove_store",
]
