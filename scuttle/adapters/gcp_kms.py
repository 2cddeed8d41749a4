"""Google Cloud KMS CryptoGateway adapter.

Key references are full CryptoKey resource names, for example
    projects/PROJECT_ID/locations/global/keyRings/RING_ID/cryptoKeys/KEY_ID

Errors from google-api-core / google-auth are mapped onto the two failure
kinds of the CryptoGateway port.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, NoReturn, Optional

from google.api_core import exceptions as core_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import kms

from scuttle.errors.errors import CryptoRejectedError, CryptoUnavailableError

_LOGGER = logging.getLogger(__name__)

_UNAVAILABLE = (
    core_exceptions.ServerError,
    core_exceptions.TooManyRequests,
    core_exceptions.RetryError,
    auth_exceptions.DefaultCredentialsError,
    auth_exceptions.TransportError,
    auth_exceptions.RefreshError,
)
_REJECTED = (core_exceptions.ClientError,)


class GcpKmsGateway:
    def __init__(
        self,
        client: Optional[Any] = None,
        client_factory: Callable[[], Any] = kms.KeyManagementServiceClient,
    ) -> None:
        """
        `client` may be injected (tests); otherwise one KeyManagementServiceClient
        is created on first use and reused for the rest of the invocation.
        """
        self._client = client
        self._client_factory = client_factory

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = self._client_factory()
            except _UNAVAILABLE as e:
                _raise_mapped(e, operation="connect", key_ref=None)
        return self._client

    def encrypt_symmetric(self, key_ref: str, plaintext: bytes) -> bytes:
        client = self._get_client()
        try:
            response = client.encrypt(request={"name": key_ref, "plaintext": plaintext})
        except _UNAVAILABLE + _REJECTED as e:
            _raise_mapped(e, operation="encrypt", key_ref=key_ref)
        _LOGGER.debug("kms_encrypt", extra={"event": "kms_encrypt", "key_ref": key_ref})
        return bytes(response.ciphertext)

    def decrypt_symmetric(self, key_ref: str, ciphertext: bytes) -> bytes:
        client = self._get_client()
        try:
            response = client.decrypt(request={"name": key_ref, "ciphertext": ciphertext})
        except _UNAVAILABLE + _REJECTED as e:
            _raise_mapped(e, operation="decrypt", key_ref=key_ref)
        _LOGGER.debug("kms_decrypt", extra={"event": "kms_decrypt", "key_ref": key_ref})
        return bytes(response.plaintext)


def _raise_mapped(error: Exception, *, operation: str, key_ref: Optional[str]) -> NoReturn:
    details = {"operation": operation, "cause": type(error).__name__}
    if isinstance(error, _UNAVAILABLE):
        raise CryptoUnavailableError(
            f"Cloud KMS unavailable during {operation}: {error}",
            key_ref=key_ref,
            details=details,
        ) from error
    raise CryptoRejectedError(
        f"Cloud KMS rejected {operation}: {error}",
        key_ref=key_ref,
        details=details,
    ) from error
