from __future__ import annotations

import contextlib
import logging
import signal
import subprocess
import threading
from typing import Iterator, Mapping, Sequence

from scuttle.errors.errors import LaunchError

_LOGGER = logging.getLogger(__name__)


def merge_env(base_env: Mapping[str, str], secret_env: Mapping[str, str]) -> dict[str, str]:
    """base_env overlaid with secret_env; a secret wins over an inherited variable."""
    env = dict(base_env)
    for name, value in secret_env.items():
        if name in env:
            _LOGGER.debug(
                "env_overridden",
                extra={"event": "env_overridden", "name": name},
            )
        env[name] = value
    return env


class SubprocessLauncher:
    """Run the child with inherited stdin/stdout/stderr and wait for it."""

    def launch(
        self,
        command: str,
        args: Sequence[str],
        base_env: Mapping[str, str],
        secret_env: Mapping[str, str],
    ) -> int:
        env = merge_env(base_env, secret_env)
        argv = [command, *args]
        _LOGGER.debug(
            "launch",
            extra={
                "event": "launch",
                "command": command,
                "argc": len(args),
                "secrets": sorted(secret_env),
            },
        )
        try:
            # stdio=None: the child writes straight to our terminal/pipes
            proc = subprocess.Popen(argv, env=env)
        except OSError as e:
            raise LaunchError(
                f"Cannot start {command!r}: {e.strerror or e}",
                command=command,
                details={"errno": e.errno},
            ) from e
        except ValueError as e:
            # e.g. embedded NUL byte in an environment value
            raise LaunchError(f"Cannot start {command!r}: {e}", command=command) from e

        # Ctrl-C reaches the whole process group; the child decides how to stop
        with _ignoring_sigint():
            returncode = proc.wait()
        return exit_status(returncode)


@contextlib.contextmanager
def _ignoring_sigint() -> Iterator[None]:
    # installed after Popen so the child does not inherit SIG_IGN
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def exit_status(returncode: int) -> int:
    """Shell convention: a child killed by signal N reports 128 + N."""
    if returncode < 0:
        return 128 + (-returncode)
    return returncode
