"""sctl CLI entrypoint.

Subcommands: add, rm, list, run.

    sctl add DB_PASS hunter2 --key projects/p/locations/global/keyRings/r/cryptoKeys/k
    sctl list
    sctl run --key ... ./manage.py migrate
    sctl rm db_pass

The key reference defaults to $SCTL_KEY. Diagnostics go to stderr; `list`
output goes to stdout. `run` exits with the child's status.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from scuttle.adapters.gcp_kms import GcpKmsGateway
from scuttle.adapters.json_store import JsonFileRecordStore
from scuttle.adapters.subprocess_launcher import SubprocessLauncher
from scuttle.adapters.telemetry.jsonl import JsonlTelemetry, NullTelemetry
from scuttle.config.configs import (
    APP_NAME,
    APP_VERSION,
    ENV_VARS,
    DecryptFailurePolicy,
    ScuttleConfig,
    resolve_config,
)
from scuttle.core.service import SecretService
from scuttle.errors.errors import ScuttleError
from scuttle.ports.clock import Clock
from scuttle.ports.crypto_gateway import CryptoGateway
from scuttle.ports.process_launcher import ProcessLauncher
from scuttle.ports.telemetry import Telemetry

_LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class SystemClock:
    """Clock adapter that returns the current UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Invocation:
    """Everything a command handler may look at besides the service."""

    config: ScuttleConfig
    args: argparse.Namespace
    environ: Mapping[str, str]


Handler = Callable[[SecretService, Invocation], int]


def build_parser() -> argparse.ArgumentParser:
    """
    Return the top-level CLI argument parser.
    """
    p = argparse.ArgumentParser(prog=APP_NAME, description="Manage secrets encrypted by KMS")
    p.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    p.add_argument("--debug", action="store_true", help="Enable debug messages")
    p.add_argument(
        "--store",
        dest="store_path",
        type=Path,
        default=None,
        help=f"Secret store document (default: ${ENV_VARS['store_path']} or .scuttle.json)",
    )
    p.add_argument(
        "--audit-log",
        dest="audit_log",
        type=Path,
        default=None,
        help=f"Append JSONL audit events here (default: ${ENV_VARS['audit_log']})",
    )
    sub = p.add_subparsers(dest="command", required=True)

    def add_key(sp: argparse.ArgumentParser) -> None:
        """Add the KMS key reference flag."""
        sp.add_argument(
            "--key",
            dest="key_ref",
            default=None,
            help=f"GCloud KMS Key URI (default: ${ENV_VARS['key_ref']})",
        )

    # add
    add = sub.add_parser(
        "add",
        help="add secret",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="A VALUE starting with '-' must follow '--', e.g. sctl add --key KEY NAME -- -value",
    )
    add_key(add)
    add.add_argument("name", metavar="NAME", help="Secret name (stored upper-cased)")
    add.add_argument(
        "value", metavar="VALUE", help="Secret value (put '--' before a value starting with '-')"
    )

    # rm
    rm = sub.add_parser("rm", help="rm a secret")
    rm.add_argument("name", metavar="NAME", help="Secret name (case-insensitive)")

    # list
    sub.add_parser("list", help="list known secrets")

    # run
    run = sub.add_parser("run", help="run a command with secrets exported as env")
    add_key(run)
    run.add_argument(
        "--on-decrypt-error",
        dest="on_decrypt_error",
        choices=[policy.value for policy in DecryptFailurePolicy],
        default=None,
        help=f"fail (default) or skip secrets that cannot be decrypted "
        f"(default: ${ENV_VARS['on_decrypt_error']})",
    )
    run.add_argument("target", metavar="COMMAND", help="Command to execute")
    run.add_argument("args", metavar="ARGS", nargs=argparse.REMAINDER, help="Command arguments")
    return p


# --- command handlers ---------------------------------------------------------------------------


def cmd_add(service: SecretService, inv: Invocation) -> int:
    service.add(inv.args.name, inv.args.value, key_ref=inv.config.require_key_ref())
    return 0


def cmd_rm(service: SecretService, inv: Invocation) -> int:
    service.remove(inv.args.name)
    return 0


def cmd_list(service: SecretService, inv: Invocation) -> int:
    for name in service.list():
        print(name)
    return 0


def cmd_run(service: SecretService, inv: Invocation) -> int:
    key_ref = inv.config.require_key_ref()
    # nothing of ours may sit in the buffer once the child shares stdout
    sys.stdout.flush()
    return service.run(
        inv.args.target,
        inv.args.args,
        key_ref=key_ref,
        base_env=dict(inv.environ),
        on_decrypt_error=inv.config.on_decrypt_error,
    )


COMMANDS: Mapping[str, Handler] = {
    "add": cmd_add,
    "rm": cmd_rm,
    "list": cmd_list,
    "run": cmd_run,
}


# --- wiring -------------------------------------------------------------------------------------


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    logging.getLogger("scuttle").setLevel(level)


def build_service(
    config: ScuttleConfig,
    command: str,
    *,
    gateway_factory: Optional[Callable[[], CryptoGateway]] = None,
    launcher: Optional[ProcessLauncher] = None,
    clock: Optional[Clock] = None,
) -> SecretService:
    """Assemble the service from config. Every collaborator can be swapped (tests)."""
    clock = clock if clock is not None else SystemClock()
    telemetry: Telemetry
    if config.audit_log is not None:
        telemetry = JsonlTelemetry(
            invocation_id=str(uuid.uuid4()),
            command=command,
            sink_path=config.audit_log,
            clock=clock,
        )
    else:
        telemetry = NullTelemetry()

    gateway = gateway_factory() if gateway_factory is not None else GcpKmsGateway()
    return SecretService(
        store=JsonFileRecordStore(config.store_path),
        gateway=gateway,
        launcher=launcher if launcher is not None else SubprocessLauncher(),
        clock=clock,
        telemetry=telemetry,
    )


def main(
    argv: list[str] | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    **service_overrides: Any,
) -> int:
    """CLI entrypoint wrapper compatible with setuptools scripts."""
    parser = build_parser()
    args = parser.parse_args(argv)
    environ = os.environ if environ is None else environ
    configure_logging(args.debug)

    try:
        config = resolve_config(vars(args), environ)
        service = build_service(config, args.command, **service_overrides)
        handler = COMMANDS[args.command]
        return handler(service, Invocation(config=config, args=args, environ=environ))
    except ScuttleError as e:
        _LOGGER.error("%s", e)
        return 1
    except OSError as e:
        _LOGGER.error("%s: %s", type(e).__name__, e)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
