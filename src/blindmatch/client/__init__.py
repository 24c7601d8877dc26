"""Key-holder components: key material, decryption and the pipeline driver."""
from blindmatch.client.crypto import ThresholdCryptoClient, generate_key_material
from blindmatch.client.decision import ThresholdDecider
from blindmatch.client.search import VerificationPipeline, run_verification

__all__ = [
    "ThresholdCryptoClient",
    "generate_key_material",
    "ThresholdDecider",
    "VerificationPipeline",
    "run_verification",
]
