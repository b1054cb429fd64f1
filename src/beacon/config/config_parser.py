"""Configuration parsing and normalization helpers for beacon.

Brief:
  This module contains the configuration-parsing utilities used by the CLI
  entrypoint. It centralizes:
    - reading YAML config files
    - merging variables from config/env/CLI
    - JSON Schema validation (including variable expansion performed by
      validate_config)
    - typed pydantic models for each config section

Inputs:
  - YAML config dicts and paths

Outputs:
  - Validated config dicts and BeaconConfig instances
"""

from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

from .config_schema import validate_config


class MulticastConfig(BaseModel):
    """Brief: Typed configuration for the multicast socket provider.

    Inputs:
      - group / port: mDNS multicast group and UDP port.
      - interface: Interface address used to join the group.
      - loopback: Receive our own multicast traffic.
      - recv_buffer: Maximum datagram size.
      - poll_interval: Receive timeout used to notice shutdown requests.

    Outputs:
      - MulticastConfig instance.
    """

    group: str = "224.0.0.251"
    port: int = Field(default=5353, ge=1, le=65535)
    interface: str = "0.0.0.0"
    loopback: bool = True
    recv_buffer: int = Field(default=9000, ge=512)
    poll_interval: float = Field(default=0.5, gt=0)


class DiscoveryConfig(BaseModel):
    service: str = "_beacon._tcp"
    domain: str = ".local"
    node: str
    hostname: Optional[str] = None
    multicast: MulticastConfig = Field(default_factory=MulticastConfig)


class PeersConfig(BaseModel):
    names: List[str] = Field(default_factory=list)
    file: Optional[str] = None


class AdvertiserConfig(BaseModel):
    module: Optional[str] = None


class SupervisorConfig(BaseModel):
    """Brief: Restart policy for the discovery service.

    Inputs:
      - max_restarts: Restarts tolerated within restart_window_seconds.
      - restart_window_seconds: Sliding window for the restart count.
      - backoff_base_seconds / backoff_max_seconds: Restart delay bounds.

    Outputs:
      - SupervisorConfig instance.
    """

    max_restarts: int = Field(default=5, ge=0)
    restart_window_seconds: float = Field(default=60.0, ge=0)
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=30.0, ge=0)


class BeaconConfig(BaseModel):
    discovery: DiscoveryConfig
    peers: PeersConfig = Field(default_factory=PeersConfig)
    advertiser: AdvertiserConfig = Field(default_factory=AdvertiserConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)


def _is_var_key(key: str) -> bool:
    """Return True when key is ALL_UPPERCASE and matches [A-Z_][A-Z0-9_]*."""
    return bool(key) and bool(re.fullmatch(r"[A-Z_][A-Z0-9_]*", key))


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse a CLI/environment variable value as YAML.

    Inputs:
      - text: String containing YAML scalar/list/dict.

    Outputs:
      - Any: Parsed value (falls back to original string on parse errors).
    """

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def parse_config_variables(
    cfg: Dict[str, Any],
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Merge config/environment/CLI variables into cfg['variables'].

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).
      - cli_vars: Optional list of CLI `KEY=YAML` assignments.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: The merged variables mapping stored back onto cfg['variables'].

    Precedence:
      - CLI (-v/--var) overrides environment overrides config-file variables.

    Example:
      >>> cfg = {'variables': {'NODE': 'a'}}
      >>> parse_config_variables(cfg, cli_vars=['NODE=b'], environ={})['NODE']
      'b'
    """

    base = cfg.get("variables")
    if base is None:
        merged: Dict[str, Any] = {}
    elif isinstance(base, dict):
        merged = dict(base)
    else:
        raise ValueError("config.variables must be a mapping when present")

    env = dict(os.environ) if environ is None else environ
    for k, v in env.items():
        if isinstance(k, str) and _is_var_key(k):
            merged[k] = _parse_yaml_value(str(v))

    for assignment in cli_vars or []:
        if "=" not in assignment:
            raise ValueError(
                "Invalid -v/--var value (expected KEY=YAML), got: %r" % assignment
            )
        k, raw = assignment.split("=", 1)
        k = k.strip()
        if not _is_var_key(k):
            raise ValueError(
                "Invalid variable name %r (must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*)"
                % k
            )
        merged[k] = _parse_yaml_value(raw)

    cfg["variables"] = merged
    return merged


def parse_config_file(
    config_path: str,
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Read, variable-merge, and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.
      - cli_vars: Optional list of CLI `KEY=YAML` assignments (from -v/--var).
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: Parsed and validated configuration mapping.

    Raises:
      - ValueError: When schema validation fails or variables are invalid.
      - OSError: When the file cannot be read.
    """

    with open(config_path, "r") as f:
        cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    parse_config_variables(cfg, cli_vars=list(cli_vars or []), environ=environ)
    validate_config(cfg, config_path=config_path)
    return cfg


def load_config(
    config_path: str,
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> BeaconConfig:
    """Parse, validate and materialize a config file as a BeaconConfig."""
    cfg = parse_config_file(config_path, cli_vars=cli_vars, environ=environ)
    return BeaconConfig(**cfg)
