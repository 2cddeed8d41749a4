"""ProcessLauncher Port Interface.

Contract: Run one command with a merged environment and inherited stdio,
block until it exits and return its exit status.
"""

from __future__ import annotations

from typing import Mapping, Protocol, Sequence


class ProcessLauncher(Protocol):
    def launch(
        self,
        command: str,
        args: Sequence[str],
        base_env: Mapping[str, str],
        secret_env: Mapping[str, str],
    ) -> int: ...
