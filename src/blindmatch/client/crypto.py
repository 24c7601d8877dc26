"""
Key-holder side cryptographic operations.

Threshold decryption is simulated: n per-party secret key shares are
generated, but decryption uses one aggregate key held for demonstration.
A real deployment would have each party produce a partial decryption
from its share and combine t of them, never materializing that key.
"""
import logging
from typing import Any, List, Optional, Sequence, Union

import numpy as np

from blindmatch.engine.base import HomomorphicEngine
from blindmatch.shared.codec import VectorCodec
from blindmatch.shared.config import PipelineConfig
from blindmatch.shared.protocol import KeyMaterial

logger = logging.getLogger(__name__)


def generate_key_material(
    engine: HomomorphicEngine,
    config: PipelineConfig,
    rotation_indices: Sequence[int],
) -> KeyMaterial:
    """
    Generate the public key, evaluation keys and simulated key shares.

    Evaluation (multiplication and rotation) keys are registered with the
    engine, which the server uses read-only from then on.

    Args:
        engine: Homomorphic engine
        config: Pipeline configuration (party count n, threshold t)
        rotation_indices: Rotation shifts needed by the similarity evaluator

    Returns:
        KeyMaterial instance
    """
    logger.info(
        "Generating threshold key structure (%d-out-of-%d)...",
        config.threshold_t, config.num_parties,
    )
    main = engine.key_gen()
    engine.eval_mult_key_gen(main.secret_key)
    engine.eval_rotate_key_gen(main.secret_key, rotation_indices)

    shares = []
    for party in range(config.num_parties):
        shares.append(engine.key_gen().secret_key)
        logger.info("  - Generated secret key share for party %d (simulated)", party + 1)
    logger.info("Key generation complete")

    return KeyMaterial(
        public_key=main.public_key,
        simulation_secret_key=main.secret_key,
        secret_key_shares=tuple(shares),
        threshold_t=config.threshold_t,
    )


class ThresholdCryptoClient:
    """
    Client-side cryptographic operations.

    Responsible for:
    - Encrypting query (and database) vectors under the public key
    - Decrypting the final result (simulated t-of-n threshold decryption)
    """

    def __init__(
        self,
        engine: HomomorphicEngine,
        keys: KeyMaterial,
        codec: Optional[VectorCodec] = None,
    ):
        self.engine = engine
        self.keys = keys
        self.codec = codec or VectorCodec(engine.slot_count)

    @property
    def public_key(self) -> Any:
        return self.keys.public_key

    @property
    def has_decryption_authority(self) -> bool:
        return self.keys.simulation_secret_key is not None

    def encrypt_vector(self, vector: Union[List[float], np.ndarray]) -> Any:
        """
        Encrypt a vector under the public key.

        Args:
            vector: Unit-normalized vector of dimension D

        Returns:
            Encrypted packed vector
        """
        ct = self.engine.encrypt(self.public_key, self.codec.encode(vector))
        logger.debug("Vector encrypted (level: %d)", self.engine.get_level(ct))
        return ct

    def decrypt_score(self, encrypted_score: Any) -> float:
        """
        Decrypt slot 0 of an encrypted score.

        An empty plaintext decodes as 0.0 with a warning.

        Args:
            encrypted_score: Encrypted similarity or maximum

        Returns:
            Decrypted value
        """
        if not self.has_decryption_authority:
            raise ValueError("Cannot decrypt without the decryption key shares")

        logger.info(
            "Simulating threshold decryption (%d-of-%d, level %d/%d)...",
            self.keys.threshold_t, self.keys.num_parties,
            self.engine.get_level(encrypted_score), self.engine.depth_budget,
        )
        values = self.engine.decrypt(self.keys.simulation_secret_key, encrypted_score, 1)
        if len(values) == 0:
            logger.warning("Decryption resulted in an empty plaintext")
            return 0.0

        result = float(self.codec.decode(values, 1)[0])
        logger.info("  - Decrypted value: %.8f", result)
        return result

    def public_only(self) -> "ThresholdCryptoClient":
        """Copy of this client without decryption capability (server side)."""
        keys = KeyMaterial(
            public_key=self.keys.public_key,
            simulation_secret_key=None,
            threshold_t=self.keys.threshold_t,
        )
        return ThresholdCryptoClient(self.engine, keys, self.codec)
