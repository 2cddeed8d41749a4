"""
Exceptions for the secret store.

Exception hierarchy:
- ScuttleError (base)
  - UsageError: missing or invalid operator input
  - CorruptStoreError: store document cannot be parsed or validated
  - CryptoError: KMS call failed
    - CryptoUnavailableError: KMS could not be reached
    - CryptoRejectedError: key reference invalid or unauthorized
  - LaunchError: child process could not be started

Every error is terminal for the invocation; nothing here is retried.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional


class ScuttleError(Exception):
    """Base exception for all secret store errors."""

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class UsageError(ScuttleError):
    """Raised for bad operator input, before any side effect."""


class CorruptStoreError(ScuttleError):
    """Raised when the store document exists but cannot be trusted."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[Path] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.path = path
        details = details or {}
        if path is not None:
            details["path"] = str(path)
        super().__init__(message, details=details)


class CryptoError(ScuttleError):
    """Raised when an encrypt or decrypt call to the KMS fails."""

    def __init__(
        self,
        message: str,
        *,
        key_ref: Optional[str] = None,
        secret_name: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.key_ref = key_ref
        self.secret_name = secret_name
        details = details or {}
        if key_ref:
            details["key_ref"] = key_ref
        if secret_name:
            details["secret_name"] = secret_name
        super().__init__(message, details=details)


class CryptoUnavailableError(CryptoError):
    """The KMS could not be reached (network, deadline, credentials)."""


class CryptoRejectedError(CryptoError):
    """The KMS refused the request (unknown key, permission denied, bad input)."""


class LaunchError(ScuttleError):
    """Raised when the child command cannot be started."""

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.command = command
        details = details or {}
        if command:
            details["command"] = command
        super().__init__(message, details=details)
