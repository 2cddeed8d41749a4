"""CryptoGateway Port Interface.

Contract: Symmetric encrypt/decrypt against an external KMS. One call per
secret, no local key material, no state kept between calls.

The key reference is opaque and passed through untouched.
"""

from __future__ import annotations

from typing import Protocol


class CryptoGateway(Protocol):
    def encrypt_symmetric(self, key_ref: str, plaintext: bytes) -> bytes: ...

    """
    Encrypt `plaintext` with the key identified by `key_ref`.
    Raises CryptoUnavailableError when the KMS cannot be reached and
    CryptoRejectedError when the key is unknown or access is denied.
    """

    def decrypt_symmetric(self, key_ref: str, ciphertext: bytes) -> bytes: ...

    """
    Decrypt `ciphertext` previously produced by encrypt_symmetric.
    Same failure kinds as encrypt_symmetric.
    """
