"""Telemetry Port Interface.

Contract: Log structured audit events. Implementations must never receive
secret plaintext; callers pass names and outcomes only.
"""
from __future__ import annotations
from typing import Protocol, Any

class Telemetry(Protocol):
    def log(self, event: str, **fields: Any) -> None: ...
