from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import pytest

from scuttle.adapters.json_store import JsonFileRecordStore
from scuttle.core.service import SecretService
from scuttle.errors.errors import CryptoRejectedError, CryptoUnavailableError

FIXED_NOW = datetime(2019, 5, 1, 18, 1, 27, 189242, tzinfo=timezone.utc)
KEY = "projects/test/locations/global/keyRings/ring/cryptoKeys/key"


class FakeKms:
    """
    In-memory stand-in for the KMS. Ciphertext embeds the key reference, so
    decrypting with a different key is rejected like the real service would.
    """

    def __init__(self, valid_keys: Sequence[str] = (KEY,)) -> None:
        self.valid_keys = set(valid_keys)
        self.unavailable = False
        self.poisoned: set[bytes] = set()
        self.calls: List[Tuple[str, str]] = []

    def _check(self, op: str, key_ref: str) -> None:
        self.calls.append((op, key_ref))
        if self.unavailable:
            raise CryptoUnavailableError("fake kms is down", key_ref=key_ref)
        if key_ref not in self.valid_keys:
            raise CryptoRejectedError("unknown key", key_ref=key_ref)

    def encrypt_symmetric(self, key_ref: str, plaintext: bytes) -> bytes:
        self._check("encrypt", key_ref)
        return b"kms:" + key_ref.encode() + b"|" + plaintext[::-1]

    def decrypt_symmetric(self, key_ref: str, ciphertext: bytes) -> bytes:
        self._check("decrypt", key_ref)
        if ciphertext in self.poisoned:
            raise CryptoRejectedError("ciphertext corrupted", key_ref=key_ref)
        prefix = b"kms:" + key_ref.encode() + b"|"
        if not ciphertext.startswith(prefix):
            raise CryptoRejectedError("ciphertext was produced by another key", key_ref=key_ref)
        return ciphertext[len(prefix) :][::-1]


@dataclass
class FixedClock:
    current: datetime = FIXED_NOW

    def now(self) -> datetime:
        return self.current


@dataclass
class RecordingLauncher:
    exit_status: int = 0
    launches: List[Dict[str, Any]] = field(default_factory=list)

    def launch(
        self,
        command: str,
        args: Sequence[str],
        base_env: Mapping[str, str],
        secret_env: Mapping[str, str],
    ) -> int:
        self.launches.append(
            {
                "command": command,
                "args": list(args),
                "base_env": dict(base_env),
                "secret_env": dict(secret_env),
            }
        )
        return self.exit_status


@dataclass
class StubTelemetry:
    events: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)

    def log(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> List[str]:
        return [event for event, _ in self.events]


@pytest.fixture
def kms() -> FakeKms:
    return FakeKms()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def launcher() -> RecordingLauncher:
    return RecordingLauncher()


@pytest.fixture
def telemetry() -> StubTelemetry:
    return StubTelemetry()


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / ".scuttle.json"


@pytest.fixture
def record_store(store_path: Path) -> JsonFileRecordStore:
    return JsonFileRecordStore(store_path)


@pytest.fixture
def service(
    record_store: JsonFileRecordStore,
    kms: FakeKms,
    launcher: RecordingLauncher,
    clock: FixedClock,
    telemetry: StubTelemetry,
) -> SecretService:
    return SecretService(
        store=record_store,
        gateway=kms,
        launcher=launcher,
        clock=clock,
        telemetry=telemetry,
    )
