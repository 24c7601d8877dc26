"""
Vector codec: dense vectors <-> packed slot representation.
"""
import numpy as np
from typing import List, Optional, Sequence, Union


class VectorCodec:
    """
    Packs coordinate i of a vector into slot i.

    Slots beyond the vector dimension are zero, which the similarity
    evaluator relies on when it folds slots with rotations.
    """

    def __init__(self, slot_count: Optional[int] = None):
        self.slot_count = slot_count

    def encode(self, vector: Union[Sequence[float], np.ndarray]) -> List[float]:
        """
        Encode a vector into a slot packing.

        Args:
            vector: Dense vector of length D

        Returns:
            List of slot values, zero-padded to slot_count when set
        """
        values = np.asarray(vector, dtype=np.float64).ravel()
        if self.slot_count is None:
            return values.tolist()

        if len(values) > self.slot_count:
            raise ValueError(
                f"Vector of length {len(values)} does not fit in {self.slot_count} slots"
            )
        packed = np.zeros(self.slot_count, dtype=np.float64)
        packed[:len(values)] = values
        return packed.tolist()

    def decode(self, packing: Sequence, keep_slots: int) -> np.ndarray:
        """
        Decode the first keep_slots slots of a packing.

        Args:
            packing: Slot values (may be complex after CKKS decryption)
            keep_slots: Number of leading slots to keep

        Returns:
            Real-valued array of length <= keep_slots
        """
        values = np.asarray(packing)[:keep_slots]
        if np.iscomplexobj(values):
            values = values.real
        return values.astype(np.float64)
