"""
Verification pipeline orchestration.

Coordinates the full flow:
1. Depth preflight
2. Plaintext baseline (correctness oracle only)
3. Encrypt database to the streaming store
4. Encrypt query
5. Server streams, scores and reduces to an encrypted maximum
6. Threshold decision
7. Remove the temporary store
"""
import logging
from typing import Optional

import numpy as np

from blindmatch.client.crypto import ThresholdCryptoClient, generate_key_material
from blindmatch.client.decision import ThresholdDecider
from blindmatch.engine import create_engine
from blindmatch.engine.base import HomomorphicEngine
from blindmatch.server.compute import SimilarityEvaluator, StreamingMaxComputation
from blindmatch.server.reducer import DepthBudgetStrategy, DepthPlanner
from blindmatch.server.store import EncryptedStoreWriter, default_store_path, remove_store
from blindmatch.shared.config import PipelineConfig
from blindmatch.shared.errors import ConfigurationError
from blindmatch.shared.protocol import VerificationReport
from blindmatch.shared.utils import Timer, generate_random_vectors, plaintext_max_similarity

logger = logging.getLogger(__name__)


class VerificationPipeline:
    """
    End-to-end driver for one query against one database.

    Key material, the engine and the configuration are created once and
    passed explicitly to every component.
    """

    def __init__(self, config: PipelineConfig, engine: Optional[HomomorphicEngine] = None):
        """
        Args:
            config: Pipeline configuration
            engine: Engine to use (default: created from config.backend)
        """
        self.config = config
        self.engine = engine or create_engine(config)
        self.evaluator = SimilarityEvaluator(self.engine, config.vec_dim)
        self.planner = DepthPlanner(
            DepthBudgetStrategy.from_config(config),
            inter_batch=config.inter_batch,
            score_level=SimilarityEvaluator.LEVEL_COST,
        )
        self.keys = generate_key_material(self.engine, config, self.evaluator.rotation_indices())
        self.crypto = ThresholdCryptoClient(self.engine, self.keys)
        self.computation = StreamingMaxComputation(self.engine, config, self.evaluator)
        self.decider = ThresholdDecider(self.crypto, config.threshold)

    def run(self, database: np.ndarray, query: np.ndarray) -> VerificationReport:
        """
        Decide whether query is a near-duplicate of any database vector.

        Args:
            database: Unit-normalized vectors of shape (N, D)
            query: Unit-normalized vector of shape (D,)

        Returns:
            VerificationReport

        Raises:
            EmptyDatabaseError: If the database is empty
            DepthBudgetError: If the depth budget cannot fit the reduction
            StoreError: If the encrypted store cannot be written or opened
        """
        database = np.asarray(database, dtype=np.float64)
        query = np.asarray(query, dtype=np.float64).ravel()
        num_vectors = len(database)
        self._check_dimensions(database, query)
        timing = {}

        with Timer() as t:
            planned_level = self.planner.preflight(num_vectors, self.config.batch_size)
        timing["preflight_ms"] = t.elapsed_ms

        logger.info("Computing plaintext baseline...")
        with Timer() as t:
            plaintext_max, plaintext_argmax = plaintext_max_similarity(query, database)
        timing["plaintext_ms"] = t.elapsed_ms
        logger.info(
            "* Plaintext max similarity: %.8f at index %d", plaintext_max, plaintext_argmax
        )

        store_path = default_store_path(self.config.store_dir)
        try:
            logger.info("Encrypting database to file (streaming)...")
            with Timer() as t:
                EncryptedStoreWriter(self.engine, self.crypto.public_key, self.crypto.codec).write(
                    iter(database), store_path
                )
            timing["encrypt_db_ms"] = t.elapsed_ms

            with Timer() as t:
                encrypted_query = self.crypto.encrypt_vector(query)
            timing["encrypt_query_ms"] = t.elapsed_ms

            logger.info("Running encrypted pipeline...")
            with Timer() as t:
                stream = self.computation.run(store_path, encrypted_query)
            timing["server_compute_ms"] = t.elapsed_ms

            with Timer() as t:
                is_unique = self.decider.decide(stream.encrypted_max)
            timing["decrypt_ms"] = t.elapsed_ms
        finally:
            remove_store(store_path)

        timing["total_ms"] = sum(timing.values())

        return VerificationReport(
            plaintext_max=plaintext_max,
            plaintext_argmax=plaintext_argmax,
            encrypted_result=self.decider.last_value,
            is_unique=is_unique,
            threshold=self.config.threshold,
            vectors_processed=stream.vectors_processed,
            num_batches=stream.num_batches,
            final_level=stream.final_level,
            depth_budget=self.engine.depth_budget,
            truncated=stream.truncated,
            stats=stream.stats,
            timing=timing,
            planned_max_level=planned_level,
        )

    def _check_dimensions(self, database: np.ndarray, query: np.ndarray) -> None:
        if len(query) != self.config.vec_dim:
            raise ConfigurationError(
                f"Query has dimension {len(query)}, expected {self.config.vec_dim}"
            )
        if len(database) and (database.ndim != 2 or database.shape[1] != self.config.vec_dim):
            raise ConfigurationError(
                f"Database has shape {database.shape}, expected (N, {self.config.vec_dim})"
            )


def run_verification(
    config: PipelineConfig,
    engine: Optional[HomomorphicEngine] = None,
) -> VerificationReport:
    """
    Generate test vectors from the configured seeds and run the pipeline.

    With equal seeds the query reproduces database entry 0, so the default
    configuration exercises the NOT UNIQUE path.
    """
    logger.info(
        "Generating %d unit-normalized %dD vectors...", config.num_vectors, config.vec_dim
    )
    database = generate_random_vectors(config.num_vectors, config.vec_dim, seed=config.seed)
    query = generate_random_vectors(1, config.vec_dim, seed=config.query_seed)[0]

    pipeline = VerificationPipeline(config, engine)
    return pipeline.run(database, query)
