"""
Configuration entrypoint (``garment_config``).

Responsibility
--------------
Single public entrypoint for runtime configuration.  Every service that
needs database, workflow or logging settings obtains them through
``get_active_config()``, which loads a YAML document, validates it and
returns a frozen ``GarmentConfig``.

Architecture position
---------------------
**Config layer**, above the kernel.  ``garment_config.bridges`` converts the
result into kernel inputs (``WorkflowPolicy``, engine initialization); the
kernel itself never imports this package.

Invariants enforced
-------------------
* The returned ``GarmentConfig`` is immutable.
* Every load emits a ``GARMENT_CONFIG_TRACE`` log record carrying the
  SHA-256 checksum of the source document, so the active configuration can
  be matched to a version-controlled file.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError``.
* Malformed YAML  -> ``yaml.YAMLError``.
* Wrong value types, unknown keys  -> ``ValueError``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from garment_config.loader import load_yaml_file, parse_config
from garment_config.schema import (
    DatabaseSettings,
    GarmentConfig,
    LoggingSettings,
    WashMappingDef,
    WorkflowSettings,
)

_logger = logging.getLogger("garment_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> GarmentConfig:
    """
    Load, validate and return the active configuration.

    Args:
        config_path: YAML file to load.  Defaults to the packaged
            ``defaults.yaml``.

    Returns:
        GarmentConfig -- frozen, with ``checksum`` set.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path), source=str(path))

    _logger.info(
        "GARMENT_CONFIG_TRACE",
        extra={
            "trace_type": "GARMENT_CONFIG_TRACE",
            "source": config.source,
            "checksum": config.checksum,
            "database_dialect": config.database.url.split(":", 1)[0],
            "strict_quantity_reconciliation": config.workflow.strict_quantity_reconciliation,
            "enforce_step_graphs": config.workflow.enforce_step_graphs,
            "wash_mapping_count": len(config.wash_mappings),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DatabaseSettings",
    "GarmentConfig",
    "LoggingSettings",
    "WashMappingDef",
    "WorkflowSettings",
    "get_active_config",
]
