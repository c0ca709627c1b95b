"""Loading of the nsguard YAML config file.

Brief:
  Reads the file, folds environment and -v/--var overrides into the
  ``vars`` group, then hands the mapping to validate_config() which expands
  the variables and checks it against the JSON Schema. Also extracts the
  optional HTTP listener block.
"""

from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

import yaml

from .config_schema import validate_config

DEFAULT_HTTP_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 5380

_VAR_KEY = re.compile(r"[A-Z_][A-Z0-9_]*")


def _is_var_key(key: str) -> bool:
    """Brief: Validate whether a string is a supported variable key name.

    Inputs:
      - key: Candidate variable name.

    Outputs:
      - bool: True when the name matches [A-Z_][A-Z0-9_]*.
    """

    return bool(key) and bool(_VAR_KEY.fullmatch(key))


def _parse_yaml_value(text: str) -> Any:
    """Parse a CLI/environment variable value as YAML, falling back to the raw string."""

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
    """Brief: Merge config/environment/CLI variables into cfg['vars'].

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).
      - cli_vars: Optional list of CLI `KEY=YAML` assignments.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: The merged variables mapping stored back onto cfg['vars'].

    Precedence:
      - CLI (-v/--var) overrides environment overrides config-file variables.

    Notes:
      - Only environment variables already declared in the config file's
        vars block are taken over, so unrelated process environment does not
        leak into the config.

    Example:
      >>> cfg = {'vars': {'TTL': 100}}
      >>> parse_config_variables(cfg, cli_vars=['TTL=300'], environ={})['TTL']
      300
    """

    base = cfg.get("vars", cfg.get("variables"))
    if base is None:
        merged: Dict[str, Any] = {}
    elif isinstance(base, dict):
        merged = dict(base)
    else:
        raise ValueError("config.vars must be a mapping when present")

    env = os.environ if environ is None else environ
    for k in list(merged.keys()):
        if isinstance(k, str) and _is_var_key(k) and k in env:
            merged[k] = _parse_yaml_value(str(env[k]))

    for assignment in cli_vars or []:
        if "=" not in assignment:
            raise ValueError(
                "Invalid -v/--var value (expected KEY=YAML), got: %r" % assignment
            )
        k, raw = assignment.split("=", 1)
        k = k.strip()
        if not _is_var_key(k):
            raise ValueError(
                "Invalid variable name %r (must match [A-Z_][A-Z0-9_]*)" % k
            )
        merged[k] = _parse_yaml_value(raw)

    cfg.pop("variables", None)
    cfg["vars"] = merged
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
      - dict: Parsed configuration mapping with variables expanded.

    Raises:
      - ValueError: When schema validation fails or variables are invalid.
      - OSError: When the file cannot be read.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    parse_config_variables(cfg, cli_vars=list(cli_vars or []), environ=environ)
    validate_config(cfg, config_path=config_path)
    return cfg


def get_http_listener(cfg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Brief: Return {'host', 'port'} for the HTTP adapter, or None when disabled.

    Inputs:
      - cfg: Validated configuration mapping.

    Outputs:
      - dict with host/port when ``server.http`` is present and not disabled.

    Example:
      >>> get_http_listener({"server": {"http": {"port": 8080}}})
      {'host': '127.0.0.1', 'port': 8080}
      >>> get_http_listener({}) is None
      True
    """

    server_cfg = cfg.get("server") or {}
    web_cfg = server_cfg.get("http")
    if not isinstance(web_cfg, dict):
        return None
    # Presence of the block enables the listener unless enabled: false.
    if not bool(web_cfg.get("enabled", True)):
        return None
    return {
        "host": str(web_cfg.get("host", DEFAULT_HTTP_HOST)),
        "port": int(web_cfg.get("port", DEFAULT_HTTP_PORT)),
    }
