"""
Config -> Kernel Bridges.

Functions that convert a ``GarmentConfig`` into kernel-compatible inputs.
These live in garment_config (the producer) because the kernel must NEVER
import garment_config.

Usage:
    from garment_config import get_active_config
    from garment_config.bridges import build_workflow_policy, init_database

    config = get_active_config()
    init_database(config)
    engine = WorkflowEngine(get_session_factory(), policy=build_workflow_policy(config))
"""

from __future__ import annotations

from sqlalchemy.engine import Engine

from garment_config.schema import GarmentConfig
from garment_kernel.db.engine import init_engine_from_url
from garment_kernel.domain.policy import WorkflowPolicy
from garment_kernel.domain.sku import DEFAULT_WASH_MAPPINGS, WashMapping
from garment_kernel.logging_config import configure_logging


def build_wash_mappings(config: GarmentConfig) -> dict[str, WashMapping]:
    """Wash code table for the SKU codec; the built-in table when none is configured."""
    if not config.wash_mappings:
        return dict(DEFAULT_WASH_MAPPINGS)
    return {
        m.code: WashMapping(code=m.code, base=m.base, shade=m.shade)
        for m in config.wash_mappings
    }


def build_workflow_policy(config: GarmentConfig) -> WorkflowPolicy:
    workflow = config.workflow
    return WorkflowPolicy(
        post_wash_location=workflow.post_wash_location,
        strict_quantity_reconciliation=workflow.strict_quantity_reconciliation,
        enforce_step_graphs=workflow.enforce_step_graphs,
        wash_mappings=build_wash_mappings(config),
    )


def init_database(config: GarmentConfig, *, database_url: str | None = None) -> Engine:
    """Configure logging at the configured level and initialize the engine.

    ``database_url`` overrides the configured URL (tests, one-off scripts).
    """
    configure_logging(level=config.logging.level)
    db = config.database
    return init_engine_from_url(
        database_url or db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
    )
