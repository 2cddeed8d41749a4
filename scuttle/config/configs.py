from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from scuttle.errors.errors import UsageError
from scuttle.utils.utility import layer_merge, validation_error_parser

"""
Invocation configuration.

Layers (lowest to highest precedence): defaults -> environment -> CLI flags.
Core code never reads the environment; it receives a resolved ScuttleConfig
(or values taken from it) as explicit arguments.
"""

APP_NAME = "sctl"
APP_VERSION = "0.1.4"
ENV_PREFIX = "SCTL_"
DEFAULT_STORE_PATH = Path(".scuttle.json")

# config field -> environment variable
ENV_VARS: dict[str, str] = {
    "key_ref": f"{ENV_PREFIX}KEY",
    "store_path": f"{ENV_PREFIX}STORE",
    "audit_log": f"{ENV_PREFIX}AUDIT_LOG",
    "on_decrypt_error": f"{ENV_PREFIX}ON_DECRYPT_ERROR",
}


class DecryptFailurePolicy(str, Enum):
    """What `run` does when one secret cannot be decrypted."""

    FAIL = "fail"  # abort before launching
    SKIP = "skip"  # warn, drop the secret, launch anyway


class ScuttleConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    key_ref: Optional[str] = Field(default=None, description="KMS key reference")
    store_path: Path = Field(default=DEFAULT_STORE_PATH, description="Store document path")
    audit_log: Optional[Path] = Field(default=None, description="JSONL audit trail path")
    on_decrypt_error: DecryptFailurePolicy = Field(
        default=DecryptFailurePolicy.FAIL, description="Policy for per-secret decrypt failures"
    )
    debug: bool = Field(default=False, description="Verbose logging")

    def require_key_ref(self) -> str:
        if not self.key_ref:
            raise UsageError(
                f"A KMS key reference is required: pass --key or set {ENV_VARS['key_ref']}"
            )
        return self.key_ref


def env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    """Pick the SCTL_* variables out of `environ`. Empty values count as unset."""
    layer: dict[str, Any] = {}
    for field_name, var in ENV_VARS.items():
        value = environ.get(var)
        if value:
            layer[field_name] = value
    return layer


def resolve_config(cli_values: Mapping[str, Any], environ: Mapping[str, str]) -> ScuttleConfig:
    """
    Merge defaults, environment and CLI values into a validated ScuttleConfig.
    Unknown CLI keys are ignored so a whole argparse namespace can be passed in.
    """
    cli_layer = {k: v for k, v in cli_values.items() if k in ScuttleConfig.model_fields}
    merged = layer_merge(env_layer(environ), cli_layer)
    try:
        return ScuttleConfig(**merged)
    except ValidationError as e:
        errors = validation_error_parser(e, component="config")
        paths = ", ".join(sorted({err["path"] for err in errors}))
        raise UsageError(f"Invalid configuration: {paths}", details={"errors": errors}) from e
