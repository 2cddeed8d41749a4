from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError


def layer_merge(*layers: Mapping[str, Any]) -> dict[str, Any]:
    """Flat precedence merge: later layers win, None values never override."""
    out: dict[str, Any] = {}
    for layer in layers:
        for k, v in layer.items():
            if v is not None:
                out[k] = v
    return out


def validation_error_parser(error: ValidationError, component: str) -> list[dict[str, str]]:
    parsed_error = [
        {
            "component": component,
            "path": ".".join(map(str, err["loc"])),
            "message": err["msg"],
            "error_type": err["type"],
        }
        for err in error.errors(include_input=False)
    ]
    return parsed_error
