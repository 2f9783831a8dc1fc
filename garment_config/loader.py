"""
Configuration Loader (``garment_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``garment_config.schema`` dataclasses.  Runtime callers go through
``garment_config.get_active_config()``; this module is its parsing half.

Architecture position
---------------------
**Config layer**.  No dependency on the kernel.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* A section that is absent falls back to the schema defaults; a key that is
  present with the wrong type is an error, never a silent default.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value types or unknown keys  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from garment_config.schema import (
    DatabaseSettings,
    GarmentConfig,
    LoggingSettings,
    WashMappingDef,
    WorkflowSettings,
)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' must be a mapping, got {type(value).__name__}")
    return value


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {sorted(unknown)}")


def _typed(section: str, data: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    if key not in data or data[key] is None:
        return default
    value = data[key]
    # bool is an int subclass; keep them apart.
    if kind is int and isinstance(value, bool) or not isinstance(value, kind):
        raise ValueError(
            f"'{section}.{key}' must be {kind.__name__}, got {type(value).__name__}"
        )
    return value


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    _check_keys("database", data, {"url", "echo", "pool_size", "max_overflow", "pool_timeout"})
    settings = DatabaseSettings(
        url=_typed("database", data, "url", str, defaults.url),
        echo=_typed("database", data, "echo", bool, defaults.echo),
        pool_size=_typed("database", data, "pool_size", int, defaults.pool_size),
        max_overflow=_typed("database", data, "max_overflow", int, defaults.max_overflow),
        pool_timeout=_typed("database", data, "pool_timeout", int, defaults.pool_timeout),
    )
    if settings.pool_size < 1 or settings.max_overflow < 0 or settings.pool_timeout < 1:
        raise ValueError("database pool settings must be positive")
    return settings


def parse_workflow(data: dict[str, Any]) -> WorkflowSettings:
    defaults = WorkflowSettings()
    _check_keys(
        "workflow", data,
        {"post_wash_location", "strict_quantity_reconciliation", "enforce_step_graphs"},
    )
    location = _typed("workflow", data, "post_wash_location", str, defaults.post_wash_location)
    if not location.strip():
        raise ValueError("'workflow.post_wash_location' must not be empty")
    return WorkflowSettings(
        post_wash_location=location,
        strict_quantity_reconciliation=_typed(
            "workflow", data, "strict_quantity_reconciliation", bool,
            defaults.strict_quantity_reconciliation,
        ),
        enforce_step_graphs=_typed(
            "workflow", data, "enforce_step_graphs", bool, defaults.enforce_step_graphs,
        ),
    )


def parse_wash_mapping(code: Any, data: Any) -> WashMappingDef:
    if not isinstance(code, str) or not code:
        raise ValueError(f"Wash mapping code must be a non-empty string, got {code!r}")
    if not isinstance(data, dict):
        raise ValueError(f"Wash mapping '{code}' must be a mapping")
    _check_keys(f"wash_mappings.{code}", data, {"base", "shade"})
    base = data.get("base")
    shade = data.get("shade")
    if not isinstance(base, str) or not base:
        raise ValueError(f"Wash mapping '{code}' needs a string 'base'")
    if shade not in ("light", "dark"):
        raise ValueError(f"Wash mapping '{code}' shade must be 'light' or 'dark'")
    return WashMappingDef(code=code, base=base, shade=shade)


def parse_logging(data: dict[str, Any]) -> LoggingSettings:
    _check_keys("logging", data, {"level"})
    level = _typed("logging", data, "level", str, LoggingSettings().level).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"'logging.level' must be one of {sorted(_LOG_LEVELS)}")
    return LoggingSettings(level=level)


def parse_config(data: dict[str, Any], source: str | None = None) -> GarmentConfig:
    """Parse a raw configuration document into a ``GarmentConfig``."""
    _check_keys("<root>", data, {"database", "workflow", "wash_mappings", "logging"})
    mappings = tuple(
        parse_wash_mapping(code, body)
        for code, body in sorted(_section(data, "wash_mappings").items())
    )
    return GarmentConfig(
        database=parse_database(_section(data, "database")),
        workflow=parse_workflow(_section(data, "workflow")),
        wash_mappings=mappings,
        logging=parse_logging(_section(data, "logging")),
        source=source,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
