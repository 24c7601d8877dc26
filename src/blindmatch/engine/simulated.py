"""
Level-tracking simulated engine.

Performs the slot arithmetic of a CKKS-style scheme in plaintext numpy
arrays while enforcing the same level and key rules as a real backend.
It provides NO security: it exists so the reduction logic can be tested
and dry-run without lattice cryptography.
"""
import itertools
import pickle
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Set

import numpy as np

from blindmatch.engine.base import HomomorphicEngine, KeyPair, Operand
from blindmatch.shared.errors import DepthBudgetExceededError, RecordDecodeError


@dataclass(frozen=True)
class SimulatedKey:
    key_id: int
    kind: str  # "public" or "secret"


@dataclass(frozen=True)
class SimulatedCiphertext:
    """Slot values plus the level and the key they are bound to."""
    values: np.ndarray
    level: int
    key_id: int

    def __post_init__(self):
        self.values.setflags(write=False)


_SCALAR_TYPES = (int, float, np.integer, np.floating)


class SimulatedEngine(HomomorphicEngine):
    """
    Numpy engine following the HomomorphicEngine level rules.

    Any operation that would produce a level >= depth_budget raises
    DepthBudgetExceededError instead of returning garbage.
    """

    def __init__(
        self,
        depth_budget: int,
        slot_count: int,
        noise_std: float = 1e-7,
        seed: Optional[int] = 0,
    ):
        """
        Args:
            depth_budget: Multiplicative depth budget L
            slot_count: Slots per ciphertext
            noise_std: Std of Gaussian noise added on encryption and per mult
            seed: Seed for the noise generator
        """
        self._depth_budget = depth_budget
        self._slot_count = slot_count
        self.noise_std = noise_std
        self._rng = np.random.default_rng(seed)
        self._key_ids = itertools.count(1)
        self._mult_keys: Set[int] = set()
        self._rotation_keys: Set[int] = set()
        self.mult_count = 0

    @property
    def depth_budget(self) -> int:
        return self._depth_budget

    @property
    def slot_count(self) -> int:
        return self._slot_count

    @property
    def name(self) -> str:
        return "simulated"

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------
    def key_gen(self) -> KeyPair:
        key_id = next(self._key_ids)
        return KeyPair(SimulatedKey(key_id, "public"), SimulatedKey(key_id, "secret"))

    def eval_mult_key_gen(self, secret_key: SimulatedKey) -> None:
        self._mult_keys.add(secret_key.key_id)

    def eval_rotate_key_gen(self, secret_key: SimulatedKey, indices: Iterable[int]) -> None:
        self._rotation_keys.update(int(i) % self._slot_count for i in indices)

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------
    def encrypt(self, public_key: SimulatedKey, packing: Sequence[float]) -> SimulatedCiphertext:
        values = np.asarray(packing, dtype=np.float64)
        if len(values) > self._slot_count:
            raise ValueError(
                f"Packing of length {len(values)} exceeds {self._slot_count} slots"
            )
        slots = np.zeros(self._slot_count, dtype=np.float64)
        slots[:len(values)] = values
        return SimulatedCiphertext(self._noisy(slots), 0, public_key.key_id)

    def decrypt(self, secret_key: SimulatedKey, ciphertext: SimulatedCiphertext, length: int) -> List[float]:
        if secret_key.kind != "secret" or secret_key.key_id != ciphertext.key_id:
            raise ValueError("Secret key does not match the ciphertext's public key")
        return ciphertext.values[:length].tolist()

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------
    def add(self, a: SimulatedCiphertext, b: Operand) -> SimulatedCiphertext:
        if isinstance(b, _SCALAR_TYPES):
            return SimulatedCiphertext(a.values + float(b), a.level, a.key_id)
        self._check_compatible(a, b)
        return SimulatedCiphertext(a.values + b.values, max(a.level, b.level), a.key_id)

    def sub(self, a: SimulatedCiphertext, b: Operand) -> SimulatedCiphertext:
        if isinstance(b, _SCALAR_TYPES):
            return SimulatedCiphertext(a.values - float(b), a.level, a.key_id)
        self._check_compatible(a, b)
        return SimulatedCiphertext(a.values - b.values, max(a.level, b.level), a.key_id)

    def mult(self, a: SimulatedCiphertext, b: Operand) -> SimulatedCiphertext:
        if isinstance(b, _SCALAR_TYPES):
            values = a.values * float(b)
            level = a.level + 1
        else:
            self._check_compatible(a, b)
            if a.key_id not in self._mult_keys:
                raise ValueError("No multiplication key; call eval_mult_key_gen first")
            values = a.values * b.values
            level = max(a.level, b.level) + 1

        if level >= self._depth_budget:
            raise DepthBudgetExceededError(
                f"Multiplication would reach level {level} with depth budget {self._depth_budget}"
            )
        self.mult_count += 1
        return SimulatedCiphertext(self._noisy(values), level, a.key_id)

    def rotate(self, ciphertext: SimulatedCiphertext, shift: int) -> SimulatedCiphertext:
        norm = shift % self._slot_count
        if norm and norm not in self._rotation_keys:
            raise ValueError(f"No rotation key for shift {shift}")
        return SimulatedCiphertext(
            np.roll(ciphertext.values, -norm), ciphertext.level, ciphertext.key_id
        )

    def get_level(self, ciphertext: SimulatedCiphertext) -> int:
        return ciphertext.level

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def serialize(self, ciphertext: SimulatedCiphertext) -> bytes:
        return pickle.dumps(
            {
                "values": np.asarray(ciphertext.values),
                "level": ciphertext.level,
                "key_id": ciphertext.key_id,
            },
            protocol=pickle.HIGHEST_PROTOCOL,
        )

    def deserialize(self, data: bytes) -> SimulatedCiphertext:
        try:
            payload = pickle.loads(data)
            values = np.array(payload["values"], dtype=np.float64)
            level, key_id = int(payload["level"]), int(payload["key_id"])
        except (pickle.UnpicklingError, EOFError, KeyError, TypeError, ValueError,
                AttributeError, IndexError, ImportError, OverflowError, MemoryError) as e:
            raise RecordDecodeError(f"Malformed ciphertext record: {e}") from e

        if values.shape != (self._slot_count,):
            raise RecordDecodeError(
                f"Record has shape {values.shape}, expected ({self._slot_count},)"
            )
        return SimulatedCiphertext(values, level, key_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def make_ciphertext(
        self,
        public_key: SimulatedKey,
        packing: Sequence[float],
        level: int,
    ) -> SimulatedCiphertext:
        """Encrypt directly at a given level (for tests that inject levels)."""
        ct = self.encrypt(public_key, packing)
        return SimulatedCiphertext(ct.values, level, ct.key_id)

    def _noisy(self, values: np.ndarray) -> np.ndarray:
        if self.noise_std <= 0:
            return values
        return values + self._rng.normal(0.0, self.noise_std, size=values.shape)

    @staticmethod
    def _check_compatible(a: Any, b: Any) -> None:
        if not isinstance(b, SimulatedCiphertext):
            raise TypeError(f"Unsupported operand type: {type(b).__name__}")
        if a.key_id != b.key_id:
            raise ValueError("Ciphertexts were encrypted under different keys")
