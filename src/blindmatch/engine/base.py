"""
Homomorphic Computation Engine capability surface.

Everything above this layer treats ciphertexts, keys and plaintexts as
opaque handles. Ciphertexts are never mutated in place: every operation
returns a new handle, so a handle can be shared read-only.
"""
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, NamedTuple, Sequence, Union


class KeyPair(NamedTuple):
    public_key: Any
    secret_key: Any


Operand = Union[Any, float]


class HomomorphicEngine(ABC):
    """
    Abstract base class for engine implementations.

    Level rules every backend follows:
    - mult (ciphertext x ciphertext or ciphertext x scalar) consumes one level
    - add, sub and rotate consume none
    - a binary operation starts from the higher of its operands' levels
    """

    @property
    @abstractmethod
    def depth_budget(self) -> int:
        """Multiplicative depth budget L."""
        pass

    @property
    @abstractmethod
    def slot_count(self) -> int:
        """Number of packed slots per ciphertext."""
        pass

    @abstractmethod
    def key_gen(self) -> KeyPair:
        pass

    @abstractmethod
    def eval_mult_key_gen(self, secret_key: Any) -> None:
        pass

    @abstractmethod
    def eval_rotate_key_gen(self, secret_key: Any, indices: Iterable[int]) -> None:
        pass

    @abstractmethod
    def encrypt(self, public_key: Any, packing: Sequence[float]) -> Any:
        pass

    @abstractmethod
    def decrypt(self, secret_key: Any, ciphertext: Any, length: int) -> List[float]:
        """Decrypt and return the first `length` slot values (may be empty)."""
        pass

    @abstractmethod
    def add(self, a: Any, b: Operand) -> Any:
        pass

    @abstractmethod
    def sub(self, a: Any, b: Operand) -> Any:
        pass

    @abstractmethod
    def mult(self, a: Any, b: Operand) -> Any:
        pass

    @abstractmethod
    def rotate(self, ciphertext: Any, shift: int) -> Any:
        """Cyclic left shift: slot i of the result holds slot i + shift."""
        pass

    @abstractmethod
    def get_level(self, ciphertext: Any) -> int:
        pass

    @abstractmethod
    def serialize(self, ciphertext: Any) -> bytes:
        pass

    @abstractmethod
    def deserialize(self, data: bytes) -> Any:
        """Rebuild a ciphertext; raises RecordDecodeError on malformed data."""
        pass

    @property
    def name(self) -> str:
        return type(self).__name__
