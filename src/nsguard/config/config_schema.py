"""JSON Schema validation for the nsguard YAML configuration.

The schema lives in ``assets/config-schema.json``. Before validating, the
top-level ``vars`` group is expanded into the rest of the document and gate
host/type lists are lowercased, so the validated mapping is exactly what the
service consumes.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import SchemaError

logger = logging.getLogger(__name__)

UNKNOWN_KEY_POLICIES = ("ignore", "warn", "error")

_VAR_NAME = re.compile(r"[A-Z_][A-Z0-9_]*")
_VAR_REF = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")
_EXTRA_KEY_VALIDATORS = frozenset({"additionalProperties", "unevaluatedProperties"})


class _VarExpander:
    """Brief: Resolve ``vars`` entries (which may reference each other) and
    substitute them into arbitrary YAML values.

    Inputs:
      - variables: mapping of KEY -> YAML value.

    Outputs:
      - _VarExpander; call expand(value) on any config subtree.

    Notes:
      - ``"$KEY"`` or ``"${KEY}"`` as a whole string is replaced by the
        variable's value itself (list, dict, int, ...); a list value named
        as a list item is spliced into the surrounding list.
      - ``${KEY}`` inside a longer string is replaced by its text form.
      - Unknown references are left untouched; cycles raise ValueError.
    """

    def __init__(self, variables: Dict[str, Any]) -> None:
        self._raw = variables
        self._done: Dict[str, Any] = {}

    def _lookup(self, key: str, chain: Tuple[str, ...]) -> Any:
        if key in self._done:
            return self._done[key]
        if key in chain:
            raise ValueError(
                "config.vars contains a cycle: " + " -> ".join(chain + (key,))
            )
        value = self._expand(self._raw[key], chain + (key,))
        self._done[key] = value
        return value

    def _whole_ref(self, text: str) -> Optional[str]:
        if text.startswith("${") and text.endswith("}"):
            name = text[2:-1]
        elif text.startswith("$"):
            name = text[1:]
        else:
            return None
        return name if name in self._raw else None

    @staticmethod
    def _as_text(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if value is None:
            return "null"
        if isinstance(value, (int, float, str)):
            return str(value)
        return json.dumps(value)

    def _expand(self, value: Any, chain: Tuple[str, ...]) -> Any:
        if isinstance(value, dict):
            return {k: self._expand(v, chain) for k, v in value.items()}
        if isinstance(value, list):
            items: List[Any] = []
            for item in value:
                expanded = self._expand(item, chain)
                spliced = (
                    isinstance(item, str)
                    and self._whole_ref(item) is not None
                    and isinstance(expanded, list)
                )
                if spliced:
                    items.extend(expanded)
                else:
                    items.append(expanded)
            return items
        if not isinstance(value, str):
            return value

        name = self._whole_ref(value)
        if name is not None:
            return copy.deepcopy(self._lookup(name, chain))

        def _sub(match: "re.Match[str]") -> str:
            ref = match.group(1)
            if ref not in self._raw:
                return match.group(0)
            return self._as_text(self._lookup(ref, chain))

        return _VAR_REF.sub(_sub, value)

    def resolve_all(self) -> None:
        for key in self._raw:
            self._lookup(key, ())

    def expand(self, value: Any) -> Any:
        return self._expand(value, ())


def _normalize_variables_for_validation(cfg: Dict[str, Any]) -> None:
    """Brief: Expand ``vars`` (alias ``variables``) into cfg and drop the group.

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).

    Outputs:
      - None.

    Raises:
      - ValueError: when the group is not a mapping, a key is not
        UPPER_SNAKE_CASE, or variables reference each other in a cycle.
    """

    group = "vars" if "vars" in cfg else "variables"
    variables = cfg.pop(group, None)
    cfg.pop("variables", None)
    if variables is None:
        return
    if not isinstance(variables, dict):
        raise ValueError(f"config.{group} must be a mapping when present")

    for key in variables:
        if not isinstance(key, str) or not _VAR_NAME.fullmatch(key):
            raise ValueError(f"config.vars key {key!r} must match [A-Z_][A-Z0-9_]*")

    expander = _VarExpander(variables)
    expander.resolve_all()
    for top_key in list(cfg):
        cfg[top_key] = expander.expand(cfg[top_key])


def _normalize_gate_config_for_validation(cfg: Dict[str, Any]) -> None:
    """Lowercase and strip trailing dots from gate.skip_hosts / gate.resource_types."""

    gate_cfg = cfg.get("gate")
    if not isinstance(gate_cfg, dict):
        return
    for key in ("skip_hosts", "resource_types"):
        values = gate_cfg.get(key)
        if isinstance(values, list):
            gate_cfg[key] = [
                v.strip().rstrip(".").lower() if isinstance(v, str) else v
                for v in values
            ]


def get_default_schema_path() -> Path:
    """Brief: Locate ``assets/config-schema.json``.

    Inputs:
      - None.

    Outputs:
      - Path in the nearest ancestor directory holding the file (a source
        checkout), otherwise where the project root would keep it.
    """

    here = Path(__file__).resolve()
    for ancestor in here.parents:
        candidate = ancestor / "assets" / "config-schema.json"
        if candidate.is_file():
            return candidate
    return here.parents[3] / "assets" / "config-schema.json"


def _load_validator(schema_path: Path) -> Optional[Draft202012Validator]:
    """Return a validator for schema_path, or None (with a warning) if unusable."""

    if not schema_path.is_file():
        logger.warning(
            "Configuration schema file %s not found; skipping JSON Schema validation",
            schema_path,
        )
        return None
    try:
        with schema_path.open("r", encoding="utf-8") as f:
            schema = json.load(f)
        Draft202012Validator.check_schema(schema)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        logger.warning(
            "Cannot use configuration schema %s (%s); skipping JSON Schema validation",
            schema_path,
            exc,
        )
        return None
    return Draft202012Validator(schema)


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    """Render validation errors one per line, prefixed with the config source."""

    lines = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    for err in errors:
        where = "/".join(str(p) for p in err.path) or "<root>"
        rule = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {where}: {err.message} (schema: {rule})")
    return "\n".join(lines)


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = "./config/config.yaml",
    unknown_keys: str = "warn",
) -> None:
    """Brief: Normalize cfg in place and validate it against the JSON Schema.

    Inputs:
      - cfg: Top-level configuration mapping loaded from YAML.
      - schema_path: Explicit schema file; defaults to get_default_schema_path().
      - config_path: Source path used only in error messages.
      - unknown_keys: Policy for keys the schema does not describe:
        "ignore", "warn" (default) or "error".

    Outputs:
      - None on success.

    Raises:
      - ValueError: on type/range violations, on unknown keys when the
        policy is "error", or on an invalid ``vars`` group.

    Example:
      >>> cfg = {"vars": {"T": 800}, "resolver": {"timeout_ms": "${T}"}}
      >>> validate_config(cfg)
      >>> cfg
      {'resolver': {'timeout_ms': 800}}
    """
    if unknown_keys not in UNKNOWN_KEY_POLICIES:
        raise ValueError(
            f"unknown_keys policy must be one of {UNKNOWN_KEY_POLICIES}, got {unknown_keys!r}"
        )

    _normalize_variables_for_validation(cfg)
    _normalize_gate_config_for_validation(cfg)

    validator = _load_validator(schema_path or get_default_schema_path())
    if validator is None:
        return

    errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
    extra = [e for e in errors if e.validator in _EXTRA_KEY_VALIDATORS]
    other = [e for e in errors if e.validator not in _EXTRA_KEY_VALIDATORS]
    if other:
        raise ValueError(_format_errors(other + extra, config_path=config_path))
    if not extra or unknown_keys == "ignore":
        return

    message = _format_errors(extra, config_path=config_path)
    if unknown_keys == "error":
        raise ValueError(message)
    logger.warning(message)
