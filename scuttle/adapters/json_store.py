"""JSON file RecordStore adapter.

Keeps the whole secret store in a single JSON array on the local filesystem:

    [{"name": "A_SECRET", "cypher": "<base64>", "created": "2019-05-01T13:01:27.189242-05:00"}]

Writes go to a temporary file in the same directory which then replaces the
document, so a crash mid-write never truncates existing records.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path

import orjson
from pydantic import TypeAdapter, ValidationError

from scuttle.core.models import SecretRecord, SecretStore
from scuttle.errors.errors import CorruptStoreError
from scuttle.utils.utility import validation_error_parser

_LOGGER = logging.getLogger(__name__)

_RECORDS: TypeAdapter[list[SecretRecord]] = TypeAdapter(list[SecretRecord])


def parse_document(raw: bytes, path: Path | None = None) -> SecretStore:
    """Validate a store document. Anything short of a clean parse is CorruptStoreError."""
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise CorruptStoreError(f"Store document is not valid JSON: {e}", path=path) from e

    if data is None:
        return SecretStore()
    if not isinstance(data, list):
        raise CorruptStoreError(
            "Store document must be a JSON array of records",
            path=path,
            details={"found": type(data).__name__},
        )

    try:
        records = _RECORDS.validate_python(data)
    except ValidationError as e:
        raise CorruptStoreError(
            f"Store document has {e.error_count()} invalid record field(s)",
            path=path,
            details={"errors": validation_error_parser(e, component="store")},
        ) from e

    seen: set[str] = set()
    for record in records:
        if record.name in seen:
            raise CorruptStoreError(
                f"Store document contains duplicate secret {record.name}", path=path
            )
        seen.add(record.name)

    return SecretStore(records=tuple(records))


def render_document(store: SecretStore) -> bytes:
    payload = _RECORDS.dump_python(list(store.records), mode="json", by_alias=True)
    return orjson.dumps(payload, option=orjson.OPT_INDENT_2) + b"\n"


class JsonFileRecordStore:
    FILE_MODE = 0o600

    def __init__(self, path: Path | str) -> None:
        self._path = path if isinstance(path, Path) else Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SecretStore:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            _LOGGER.debug(
                "store_missing",
                extra={"event": "store_missing", "path": str(self._path)},
            )
            return SecretStore()

        store = parse_document(raw, path=self._path)
        _LOGGER.debug(
            "store_loaded",
            extra={"event": "store_loaded", "path": str(self._path), "records": len(store)},
        )
        return store

    def save(self, store: SecretStore) -> None:
        payload = render_document(store)
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)

        # owner read/write only, same directory so os.replace stays atomic
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, self.FILE_MODE)
            os.replace(tmp_name, self._path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise

        _LOGGER.debug(
            "store_saved",
            extra={"event": "store_saved", "path": str(self._path), "records": len(store)},
        )
