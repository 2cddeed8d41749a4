from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict, Field, field_validator

"""
Secret records and the in-memory store they live in.

SecretStore is immutable: every mutation returns a new store, the
RecordStore port decides when it is persisted.
"""

# RFC 3339 timestamps written with nanosecond precision; datetime keeps micros.
_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")
_FORBIDDEN_NAME_CHARS = ("=", "\x00")


def normalize_name(name: str) -> str:
    """
    Upper-case a secret name and check it can be used as an environment variable.
    Raises ValueError on empty names or names containing '=' or NUL.
    """
    normalized = str(name).strip().upper()
    if not normalized:
        raise ValueError("secret name must be a non-empty string")
    for ch in _FORBIDDEN_NAME_CHARS:
        if ch in normalized:
            raise ValueError(f"secret name {normalized!r} contains forbidden character {ch!r}")
    return normalized


class SecretRecord(BaseModel):
    """One KMS-encrypted secret. `ciphertext` is base64 text and is never decoded here."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str = Field(description="Upper-cased secret name, also the env var name")
    ciphertext: str = Field(alias="cypher", description="base64 of the KMS ciphertext")
    created: datetime = Field(description="Time of the last write")

    @field_validator("name", mode="before")
    @classmethod
    def _normalize_name(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("secret name must be a string")
        return normalize_name(value)

    @field_validator("created", mode="before")
    @classmethod
    def _truncate_fraction(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value
        # lax datetime parsing would otherwise take epoch numbers
        if not isinstance(value, str) or not _ISO_DATE.match(value):
            raise ValueError("created must be an RFC 3339 timestamp")
        return _EXCESS_FRACTION.sub(r"\1", value, count=1)


@dataclass(frozen=True)
class SecretStore:
    records: tuple[SecretRecord, ...] = ()

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[SecretRecord]:
        return iter(self.records)

    def get(self, name: str) -> SecretRecord | None:
        wanted = normalize_name(name)
        for record in self.records:
            if record.name == wanted:
                return record
        return None

    def upsert(self, record: SecretRecord) -> SecretStore:
        """
        Replace any record with the same name, then append `record`.
        The replaced slot is filled with the last record, so order is only
        preserved for records that were not displaced.
        """
        records = _swap_remove(list(self.records), record.name)
        records.append(record)
        return SecretStore(records=tuple(records))

    def remove(self, name: str) -> SecretStore:
        """Drop every record named `name` (case-insensitive). Absent names are a no-op."""
        return SecretStore(records=tuple(_swap_remove(list(self.records), normalize_name(name))))

    def names(self) -> list[str]:
        return sorted(record.name for record in self.records)


def _swap_remove(records: list[SecretRecord], name: str) -> list[SecretRecord]:
    i = 0
    while i < len(records):
        if records[i].name == name:
            # move last element into slot i, then truncate
            records[i] = records[-1]
            records.pop()
        else:
            i += 1
    return records
