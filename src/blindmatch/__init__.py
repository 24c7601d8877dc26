"""
blindmatch: Privacy-preserving biometric near-duplicate detection.

A server holds an encrypted database of unit-normalized feature vectors
and an encrypted query. It computes:
1. Encrypted similarity: one multiplication + rotate-and-add slot folding
2. Encrypted approximate maximum: depth-budget-aware tournament reduction

Only the final scalar is decrypted (simulated t-of-n threshold decryption)
and compared against a threshold.

The server NEVER sees a plaintext vector or an intermediate score.
"""

__version__ = "0.1.0"
