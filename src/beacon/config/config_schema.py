"""JSON Schema-based validation for beacon YAML configuration.

This module holds the configuration schema and validates parsed YAML against
it with jsonschema (Draft 2020-12), after expanding ``${VAR}`` placeholders.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator, ValidationError

logger = logging.getLogger(__name__)

_NAME = {"type": "string", "minLength": 1}
_SECONDS = {"type": "number", "minimum": 0}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "beacon configuration",
    "type": "object",
    "additionalProperties": False,
    "required": ["discovery"],
    "properties": {
        "discovery": {
            "type": "object",
            "additionalProperties": False,
            "required": ["node"],
            "properties": {
                "service": _NAME,
                "domain": {"type": "string"},
                "node": _NAME,
                "hostname": {"type": ["string", "null"]},
                "multicast": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "group": _NAME,
                        "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                        "interface": _NAME,
                        "loopback": {"type": "boolean"},
                        "recv_buffer": {"type": "integer", "minimum": 512},
                        "poll_interval": {"type": "number", "exclusiveMinimum": 0},
                    },
                },
            },
        },
        "peers": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "names": {"type": "array", "items": _NAME},
                "file": {"type": ["string", "null"]},
            },
        },
        "advertiser": {
            "type": "object",
            "additionalProperties": False,
            "properties": {"module": {"type": ["string", "null"]}},
        },
        "supervisor": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "max_restarts": {"type": "integer", "minimum": 0},
                "restart_window_seconds": _SECONDS,
                "backoff_base_seconds": _SECONDS,
                "backoff_max_seconds": _SECONDS,
            },
        },
        "logging": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "level": {
                    "type": "string",
                    "enum": [
                        "debug",
                        "info",
                        "warn",
                        "warning",
                        "error",
                        "crit",
                        "critical",
                    ],
                },
                "stderr": {"type": "boolean"},
                "file": {"type": ["string", "null"]},
                "syslog": {"type": ["boolean", "object"]},
            },
        },
    },
}

_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def _normalize_variables_for_validation(cfg: Dict[str, Any]) -> None:
    """Brief: Expand top-level ``variables`` into the config and remove the group.

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).

    Outputs:
      - None.

    Behavior:
      - Replaces ``${KEY}`` occurrences inside strings.
      - If a string value is exactly ``${KEY}`` the value is replaced with the
        variable's YAML value (list/dict/int/etc.).
      - The ``variables`` group itself is removed after expansion so JSON
        Schema validation does not reject it.
      - Cycles in variables raise ValueError.
    """

    variables = cfg.get("variables")
    if variables is None:
        cfg.pop("variables", None)
        return
    if not isinstance(variables, dict):
        raise ValueError("config.variables must be a mapping when present")

    for k in variables.keys():
        if not isinstance(k, str) or not re.fullmatch(r"[A-Z_][A-Z0-9_]*", k):
            raise ValueError(f"config.variables key {k!r} must match [A-Z_][A-Z0-9_]*")

    resolved: Dict[str, Any] = {}

    def _resolve_var(key: str, stack: List[str]) -> Any:
        if key in resolved:
            return resolved[key]
        if key in stack:
            cycle = " -> ".join(stack + [key])
            raise ValueError(f"config.variables contains a cycle: {cycle}")
        stack.append(key)
        value = _expand_obj(variables[key], stack)
        stack.pop()
        resolved[key] = value
        return value

    def _expand_string(text: str, stack: List[str]) -> Any:
        whole = _VAR_PATTERN.fullmatch(text)
        if whole and whole.group(1) in variables:
            return copy.deepcopy(_resolve_var(whole.group(1), stack))

        def _repl(match: "re.Match[str]") -> str:
            key = match.group(1)
            if key not in variables:
                return match.group(0)
            v = _resolve_var(key, stack)
            if isinstance(v, bool):
                return "true" if v else "false"
            if v is None:
                return "null"
            if isinstance(v, (int, float, str)):
                return str(v)
            return json.dumps(v)

        return _VAR_PATTERN.sub(_repl, text)

    def _expand_obj(obj: Any, stack: List[str]) -> Any:
        if isinstance(obj, str):
            return _expand_string(obj, stack)
        if isinstance(obj, list):
            return [_expand_obj(item, stack) for item in obj]
        if isinstance(obj, dict):
            return {k: _expand_obj(v, stack) for k, v in obj.items()}
        return obj

    for key in list(variables.keys()):
        _resolve_var(key, [])

    for top_key in list(cfg.keys()):
        if top_key == "variables":
            continue
        cfg[top_key] = _expand_obj(cfg[top_key], [])
    cfg.pop("variables", None)


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    """Brief: Format jsonschema validation errors into a human-readable string.

    Inputs:
      - errors: List of jsonschema.ValidationError instances.
      - config_path: Optional path to the YAML config being validated.

    Outputs:
      - String suitable for display in logs or CLI output.
    """

    lines: List[str] = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        schema_path = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {instance_path}: {err.message} (schema: {schema_path})")
    return "\n".join(lines)


def _split_extra_property_errors(
    errors: List[ValidationError],
) -> tuple[List[ValidationError], List[ValidationError]]:
    extra: List[ValidationError] = []
    other: List[ValidationError] = []
    for err in errors:
        if getattr(err, "validator", None) == "additionalProperties":
            extra.append(err)
        else:
            other.append(err)
    return extra, other


def validate_config(
    cfg: Dict[str, Any],
    *,
    config_path: Optional[str] = None,
    unknown_keys: str = "error",
) -> None:
    """Brief: Validate a parsed YAML configuration mapping against CONFIG_SCHEMA.

    Inputs:
      - cfg: Dict loaded from YAML (mutated: variables are expanded).
      - config_path: Optional path of the YAML file, used in error messages.
      - unknown_keys: "ignore", "warn" or "error" (default) for keys the
        schema does not describe.

    Outputs:
      - None on success.

    Raises:
      - ValueError: when validation fails. The message lists every offending
        instance path.

    Example:
      >>> validate_config({"discovery": {"node": "worker1"}})
    """

    if unknown_keys not in {"ignore", "warn", "error"}:
        raise ValueError(
            f"unknown_keys policy must be 'ignore', 'warn', or 'error', got {unknown_keys!r}"
        )

    _normalize_variables_for_validation(cfg)

    validator = Draft202012Validator(CONFIG_SCHEMA)
    all_errors = sorted(validator.iter_errors(cfg), key=lambda e: [str(p) for p in e.path])
    if not all_errors:
        return None

    extra_errors, other_errors = _split_extra_property_errors(all_errors)
    if other_errors:
        raise ValueError(
            _format_errors(other_errors + extra_errors, config_path=config_path)
        )

    message = _format_errors(extra_errors, config_path=config_path)
    if unknown_keys == "ignore":
        return None
    if unknown_keys == "warn":
        logger.warning(message)
        return None
    raise ValueError(message)
