"""RecordStore Port Interface.

Contract: Load and persist the whole secret store as one document.
"""

from __future__ import annotations

from typing import Protocol

from scuttle.core.models import SecretStore


class RecordStore(Protocol):
    def load(self) -> SecretStore: ...
    def save(self, store: SecretStore) -> None: ...

    """
    load() returns an empty store when nothing has been persisted yet and
    raises CorruptStoreError when the document exists but is malformed.

    save() replaces the persisted document with `store` in a single step.
    A failed save leaves the previous document in place.
    """
