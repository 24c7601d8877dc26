"""
CKKS engine backed by OpenFHE (openfhe-python).
"""
import logging
from typing import Any, Iterable, List, Sequence

from blindmatch.engine.base import HomomorphicEngine, KeyPair, Operand
from blindmatch.shared.errors import RecordDecodeError

logger = logging.getLogger(__name__)


class OpenFHEEngine(HomomorphicEngine):
    """
    CKKS-RNS crypto context with leveled SHE and multiparty features enabled.

    The crypto context itself is public material: it holds the evaluation
    (multiplication and rotation) keys but never a secret key.
    """

    FIRST_MOD_SIZE = 60
    SCALING_MOD_SIZE = 50

    def __init__(self, mult_depth: int, slot_count: int):
        """
        Args:
            mult_depth: Multiplicative depth budget L
            slot_count: CKKS batch size (power of two, >= vector dimension)
        """
        try:
            import openfhe
        except ImportError:
            raise ImportError(
                "openfhe is required for the CKKS backend. "
                "Install with: pip install openfhe"
            )

        self._fhe = openfhe
        self._depth_budget = mult_depth
        self._slot_count = slot_count

        parameters = openfhe.CCParamsCKKSRNS()
        parameters.SetMultiplicativeDepth(mult_depth)
        parameters.SetFirstModSize(self.FIRST_MOD_SIZE)
        parameters.SetScalingModSize(self.SCALING_MOD_SIZE)
        parameters.SetBatchSize(slot_count)
        parameters.SetSecurityLevel(openfhe.HEStd_128_classic)
        parameters.SetKeySwitchTechnique(openfhe.HYBRID)
        parameters.SetScalingTechnique(openfhe.FLEXIBLEAUTO)

        self.cc = openfhe.GenCryptoContext(parameters)
        for feature in ("PKE", "KEYSWITCH", "LEVELEDSHE", "ADVANCEDSHE", "MULTIPARTY"):
            self.cc.Enable(getattr(openfhe.PKESchemeFeature, feature))

        logger.info(
            "CKKS context created: ring dimension %d, depth budget %d, scaling mod %d bits",
            self.cc.GetRingDimension(), mult_depth, self.SCALING_MOD_SIZE,
        )

    @property
    def depth_budget(self) -> int:
        return self._depth_budget

    @property
    def slot_count(self) -> int:
        return self._slot_count

    @property
    def name(self) -> str:
        return "openfhe"

    @property
    def ring_dimension(self) -> int:
        return self.cc.GetRingDimension()

    def key_gen(self) -> KeyPair:
        kp = self.cc.KeyGen()
        return KeyPair(kp.publicKey, kp.secretKey)

    def eval_mult_key_gen(self, secret_key: Any) -> None:
        self.cc.EvalMultKeyGen(secret_key)

    def eval_rotate_key_gen(self, secret_key: Any, indices: Iterable[int]) -> None:
        self.cc.EvalRotateKeyGen(secret_key, list(indices))

    def encrypt(self, public_key: Any, packing: Sequence[float]) -> Any:
        plaintext = self.cc.MakeCKKSPackedPlaintext(list(packing))
        return self.cc.Encrypt(public_key, plaintext)

    def decrypt(self, secret_key: Any, ciphertext: Any, length: int) -> List[float]:
        plaintext = self.cc.Decrypt(ciphertext, secret_key)
        plaintext.SetLength(length)
        return list(plaintext.GetRealPackedValue())

    def add(self, a: Any, b: Operand) -> Any:
        return self.cc.EvalAdd(a, b)

    def sub(self, a: Any, b: Operand) -> Any:
        return self.cc.EvalSub(a, b)

    def mult(self, a: Any, b: Operand) -> Any:
        return self.cc.EvalMult(a, b)

    def rotate(self, ciphertext: Any, shift: int) -> Any:
        return self.cc.EvalRotate(ciphertext, shift)

    def get_level(self, ciphertext: Any) -> int:
        return ciphertext.GetLevel()

    def serialize(self, ciphertext: Any) -> bytes:
        return self._fhe.Serialize(ciphertext, self._fhe.BINARY)

    def deserialize(self, data: bytes) -> Any:
        try:
            return self._fhe.DeserializeCiphertextString(data, self._fhe.BINARY)
        except (RuntimeError, ValueError, TypeError) as e:
            raise RecordDecodeError(f"Malformed ciphertext record: {e}") from e
