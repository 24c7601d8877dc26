"""
Threshold decision stage.
"""
import logging
from typing import Any

from blindmatch.client.crypto import ThresholdCryptoClient
from blindmatch.shared.protocol import Decision

logger = logging.getLogger(__name__)


class ThresholdDecider:
    """
    Turns the encrypted maximum into a uniqueness decision.

    v < threshold: no stored vector is close to the query (UNIQUE).
    v >= threshold: a near-duplicate exists (NOT UNIQUE).
    """

    def __init__(self, crypto: ThresholdCryptoClient, threshold: float):
        self.crypto = crypto
        self.threshold = threshold
        self.last_value = None

    def is_unique(self, value: float) -> bool:
        return value < self.threshold

    def decide(self, encrypted_result: Any) -> bool:
        """
        Decrypt the final result and compare it to the threshold.

        Args:
            encrypted_result: Encrypted approximate maximum similarity

        Returns:
            True if the query is unique
        """
        value = self.crypto.decrypt_score(encrypted_result)
        self.last_value = value
        unique = self.is_unique(value)
        logger.info(
            "Threshold check: %.8f %s %s -> %s",
            value, "<" if unique else ">=", self.threshold,
            Decision.from_flag(unique).value,
        )
        return unique
