"""
Server-side encrypted computation.

The server computes encrypted similarities and their encrypted
approximate maximum without seeing:
- The query vector (it's encrypted)
- Any database vector (they're encrypted at rest)
- Any similarity score or the maximum (results stay encrypted)

Only public material is used: the engine with its evaluation keys.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

from blindmatch.engine.base import HomomorphicEngine
from blindmatch.server.reducer import MaxReducer
from blindmatch.server.store import EncryptedStoreReader
from blindmatch.shared.config import PipelineConfig
from blindmatch.shared.errors import EmptyDatabaseError
from blindmatch.shared.protocol import StreamResult
from blindmatch.shared.utils import Timer

logger = logging.getLogger(__name__)


class SimilarityEvaluator:
    """
    Encrypted cosine similarity of unit vectors.

    Elementwise product (one level), then ceil(log2(D)) rotate-and-add
    steps fold the D slots into slot 0. Both ciphertexts must pack vectors
    of the same dimension D; slots past D must be zero.
    """

    LEVEL_COST = 1

    def __init__(self, engine: HomomorphicEngine, vec_dim: int):
        self.engine = engine
        self.vec_dim = vec_dim
        self._shifts = self.rotation_indices()

    def rotation_indices(self) -> List[int]:
        """Rotation shifts the evaluator needs keys for."""
        limit = min(self.vec_dim, self.engine.slot_count)
        shifts = []
        shift = 1
        while shift < limit:
            shifts.append(shift)
            shift <<= 1
        return shifts

    def similarity(self, query: Any, entry: Any) -> Any:
        total = self.engine.mult(query, entry)
        for shift in self._shifts:
            total = self.engine.add(total, self.engine.rotate(total, shift))
        return total

    def evaluate_many(
        self,
        query: Any,
        entries: Sequence[Any],
        workers: int = 1,
    ) -> List[Any]:
        """
        Compute similarities for independent entries, preserving order.

        Args:
            query: Encrypted query
            entries: Encrypted database vectors
            workers: Threads to use (1 = sequential)
        """
        if workers <= 1 or len(entries) <= 1:
            return [self.similarity(query, entry) for entry in entries]

        with ThreadPoolExecutor(max_workers=min(workers, len(entries))) as executor:
            return list(executor.map(lambda entry: self.similarity(query, entry), entries))


class StreamingMaxComputation:
    """
    Streams a store, scores each entry and reduces scores batch by batch.

    At most `batch_size` scores (plus up to `workers` pending entries) are
    held in memory at any time.
    """

    def __init__(
        self,
        engine: HomomorphicEngine,
        config: PipelineConfig,
        evaluator: Optional[SimilarityEvaluator] = None,
    ):
        self.engine = engine
        self.config = config
        self.evaluator = evaluator or SimilarityEvaluator(engine, config.vec_dim)

    def run(self, store_path: Union[str, Path], encrypted_query: Any) -> StreamResult:
        """
        Compute the encrypted approximate maximum similarity.

        Args:
            store_path: Encrypted store written by EncryptedStoreWriter
            encrypted_query: Encrypted query vector

        Returns:
            StreamResult holding the encrypted maximum

        Raises:
            StoreError: If the store cannot be opened
            EmptyDatabaseError: If no record could be read
        """
        batch_size = self.config.batch_size
        workers = self.config.workers
        reader = EncryptedStoreReader(store_path, self.engine)
        reducer = MaxReducer.from_config(self.engine, self.config)
        merger = reducer.new_merger()

        batch: List[Any] = []
        pending: List[Any] = []
        count = 0

        def flush_pending() -> None:
            batch.extend(self.evaluator.evaluate_many(encrypted_query, pending, workers))
            pending.clear()

        def reduce_batch() -> None:
            merger.push(reducer.reduce_batch(batch))
            batch.clear()
            logger.info("  - Processed %d vectors (%d batches)", count, merger.count)

        logger.info("Computing maximum similarity via polynomial approximation...")
        with Timer() as t:
            for entry in reader:
                pending.append(entry)
                count += 1
                if len(pending) >= min(workers, batch_size - len(batch)):
                    flush_pending()
                if len(batch) == batch_size:
                    reduce_batch()

            if pending:
                flush_pending()
            if batch:
                reduce_batch()

        if merger.count == 0:
            raise EmptyDatabaseError(f"No encrypted vectors could be read from {store_path}")

        encrypted_max = merger.result()
        final_level = self.engine.get_level(encrypted_max)
        logger.info(
            "Computation complete. Processed %d vectors in %d batches (%.0fms, level %d/%d)",
            count, merger.count, t.elapsed_ms, final_level, self.engine.depth_budget,
        )

        return StreamResult(
            encrypted_max=encrypted_max,
            vectors_processed=count,
            num_batches=merger.count,
            final_level=final_level,
            truncated=reader.truncated,
            stats=reducer.stats,
        )
