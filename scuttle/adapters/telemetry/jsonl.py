"""JSON Lines Telemetry adapter.

Appends one structured JSON object per audit event to a file. Fields whose
name looks sensitive are replaced with a redaction token before writing.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

from scuttle.ports.clock import Clock


class JsonlTelemetry:
    _REDACTION_TOKEN = "***REDACTED***"
    _DEFAULT_SECRET_KEYS = frozenset(
        {
            "value",
            "plaintext",
            "ciphertext",
            "cypher",
            "secret",
            "password",
            "token",
        }
    )

    def __init__(
        self,
        invocation_id: str,
        command: str,
        sink_path: Path,
        clock: Clock,
        secret_keys: Iterable[str] = _DEFAULT_SECRET_KEYS,
    ) -> None:
        self._invocation_id = str(invocation_id)
        self._command = str(command)
        self._sink_path = sink_path if isinstance(sink_path, Path) else Path(sink_path)
        self._clock = clock
        self._secret_keys = frozenset(secret_keys)

    def log(self, event: str, **fields: Any) -> None:
        if not event:
            raise ValueError("Telemetry event name must be non-empty")

        sanitized_fields, redacted = self._sanitize_fields(fields)

        record: dict[str, Any] = {
            "event": event,
            "ts_utc": self._clock.now().isoformat(),
            "invocation_id": self._invocation_id,
            "command": self._command,
            **sanitized_fields,
        }
        if redacted:
            record["redacted_fields"] = sorted(redacted)

        self._write_record(record)

    def _sanitize_fields(self, fields: Mapping[str, Any]) -> tuple[dict[str, Any], set[str]]:
        sanitized: dict[str, Any] = {}
        redacted: set[str] = set()
        for key, value in fields.items():
            if key in self._secret_keys:
                sanitized[key] = self._REDACTION_TOKEN
                redacted.add(key)
            else:
                sanitized[key] = value

        return sanitized, redacted

    def _write_record(self, record: Mapping[str, Any]) -> None:
        payload = json.dumps(
            record, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str
        )
        self._sink_path.parent.mkdir(parents=True, exist_ok=True)
        with self._sink_path.open("a", encoding="utf-8") as handle:
            handle.write(payload + "\n")


class NullTelemetry:
    """Telemetry sink used when no audit log is configured."""

    def log(self, event: str, **fields: Any) -> None:
        return None
