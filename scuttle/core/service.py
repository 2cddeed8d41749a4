"""
SecretService: the add / rm / list / run operations.

Composes a RecordStore (persistence), a CryptoGateway (KMS), a ProcessLauncher
and a Clock. Everything that varies per invocation (key reference, inherited
environment, decrypt policy) is passed in as an argument; nothing here reads
os.environ.

Per invocation: at most one store load, at most one save, KMS calls made
sequentially, one per secret.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Mapping, Sequence

from scuttle.config.configs import DecryptFailurePolicy
from scuttle.core.models import SecretRecord, SecretStore, normalize_name
from scuttle.errors.errors import CryptoError, CryptoRejectedError, UsageError
from scuttle.ports.clock import Clock
from scuttle.ports.crypto_gateway import CryptoGateway
from scuttle.ports.process_launcher import ProcessLauncher
from scuttle.ports.record_store import RecordStore
from scuttle.ports.telemetry import Telemetry

_LOGGER = logging.getLogger(__name__)


class SecretService:
    def __init__(
        self,
        store: RecordStore,
        gateway: CryptoGateway,
        launcher: ProcessLauncher,
        clock: Clock,
        telemetry: Telemetry,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._launcher = launcher
        self._clock = clock
        self._telemetry = telemetry

    # --- add / rm / list ------------------------------------------------------------------------

    def add(self, name: str, value: str | bytes, *, key_ref: str) -> SecretRecord:
        """
        Encrypt `value` with `key_ref` and store it under the upper-cased `name`,
        replacing any previous secret of that name.

        The store is only written after the KMS returned a ciphertext: a failed
        encryption leaves the document untouched.
        """
        secret_name = _checked_name(name)
        key_ref = _checked_key_ref(key_ref)
        plaintext = value.encode("utf-8") if isinstance(value, str) else bytes(value)

        store = self._store.load()

        try:
            ciphertext = self._gateway.encrypt_symmetric(key_ref, plaintext)
        except CryptoError as e:
            _tag_secret(e, secret_name)
            self._telemetry.log(
                "secret_add_failed", secret_name=secret_name, error=type(e).__name__
            )
            raise

        record = SecretRecord(
            name=secret_name,
            ciphertext=base64.b64encode(ciphertext).decode("ascii"),
            created=self._clock.now(),
        )
        replaced = store.get(secret_name) is not None
        if replaced:
            _LOGGER.info("Removing entry %s", secret_name)

        self._store.save(store.upsert(record))

        _LOGGER.debug(
            "secret_added",
            extra={"event": "secret_added", "secret_name": secret_name, "replaced": replaced},
        )
        self._telemetry.log("secret_added", secret_name=secret_name, replaced=replaced)
        return record

    def remove(self, name: str) -> bool:
        """Remove `name` (case-insensitive). Returns False, without writing, if it was absent."""
        secret_name = _checked_name(name)
        store = self._store.load()
        updated = store.remove(secret_name)

        removed = len(updated) != len(store)
        if removed:
            _LOGGER.info("Removing entry %s", secret_name)
            self._store.save(updated)
        else:
            _LOGGER.debug(
                "secret_absent",
                extra={"event": "secret_absent", "secret_name": secret_name},
            )

        self._telemetry.log("secret_removed", secret_name=secret_name, removed=removed)
        return removed

    def list(self) -> list[str]:
        """Sorted secret names. Does not touch the KMS."""
        names = self._store.load().names()
        self._telemetry.log("secrets_listed", count=len(names))
        return names

    # --- run ------------------------------------------------------------------------------------

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        key_ref: str,
        base_env: Mapping[str, str],
        on_decrypt_error: DecryptFailurePolicy = DecryptFailurePolicy.FAIL,
    ) -> int:
        """
        Decrypt every stored secret and run `command args...` with them exported
        on top of `base_env`. Returns the child's exit status.
        """
        if not command:
            raise UsageError("A command to run is required")
        key_ref = _checked_key_ref(key_ref)

        store = self._store.load()
        secret_env, skipped = self.decrypt_all(store, key_ref, on_decrypt_error)

        self._telemetry.log(
            "run_started",
            target=command,
            secrets=sorted(secret_env),
            skipped=skipped,
        )
        status = self._launcher.launch(command, list(args), base_env, secret_env)
        self._telemetry.log("run_finished", target=command, exit_status=status)
        return status

    def decrypt_all(
        self,
        store: SecretStore,
        key_ref: str,
        on_decrypt_error: DecryptFailurePolicy = DecryptFailurePolicy.FAIL,
    ) -> tuple[dict[str, str], list[str]]:
        """Return (NAME -> plaintext, names skipped under the SKIP policy)."""
        secret_env: dict[str, str] = {}
        skipped: list[str] = []
        for record in store:
            try:
                secret_env[record.name] = self._decrypt_record(record, key_ref)
            except CryptoError as e:
                if on_decrypt_error is not DecryptFailurePolicy.SKIP:
                    raise
                _LOGGER.warning(
                    "Skipping secret %s: %s",
                    record.name,
                    e,
                    extra={"event": "secret_skipped", "secret_name": record.name},
                )
                skipped.append(record.name)
        return secret_env, skipped

    def _decrypt_record(self, record: SecretRecord, key_ref: str) -> str:
        try:
            ciphertext = base64.b64decode(record.ciphertext, validate=True)
        except binascii.Error as e:
            raise CryptoRejectedError(
                f"Stored cypher for {record.name} is not valid base64",
                key_ref=key_ref,
                secret_name=record.name,
            ) from e

        try:
            plaintext = self._gateway.decrypt_symmetric(key_ref, ciphertext)
        except CryptoError as e:
            _tag_secret(e, record.name)
            raise

        # surrogateescape round-trips arbitrary bytes through os-level env encoding
        return plaintext.decode("utf-8", errors="surrogateescape")


def _checked_name(name: str) -> str:
    try:
        return normalize_name(name)
    except ValueError as e:
        raise UsageError(f"Invalid secret name: {e}") from e


def _checked_key_ref(key_ref: str) -> str:
    if not key_ref or not key_ref.strip():
        raise UsageError("A KMS key reference is required")
    return key_ref


def _tag_secret(error: CryptoError, secret_name: str) -> None:
    if error.secret_name is None:
        error.secret_name = secret_name
        error.details["secret_name"] = secret_name
