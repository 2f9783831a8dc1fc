"""
GarmentConfig schema.

Typed, frozen view of the YAML configuration.  The loader parses raw YAML
into these types; ``garment_config.bridges`` turns them into the kernel's
runtime inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings passed to ``init_engine_from_url``."""

    url: str = "sqlite:///garment.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WashMappingDef:
    """A finished wash code and the raw base it is produced from."""

    code: str
    base: str
    shade: str


@dataclass(frozen=True)
class WorkflowSettings:
    post_wash_location: str = "POST_WASH_STAGING"
    strict_quantity_reconciliation: bool = True
    enforce_step_graphs: bool = False


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GarmentConfig:
    """The complete, validated configuration.

    ``checksum`` is the SHA-256 of the canonical JSON form of the source
    YAML and identifies the configuration in the trace log.
    """

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    wash_mappings: tuple[WashMappingDef, ...] = ()
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    source: str | None = None
    checksum: str = ""
