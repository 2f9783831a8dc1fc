"""
WorkflowPolicy -- runtime knobs for the workflow engine.

The kernel never reads configuration files.  ``garment_config.bridges``
builds a ``WorkflowPolicy`` from the active configuration; callers that do
not care get the defaults below.
"""

from dataclasses import dataclass, field

from garment_kernel.domain.sku import DEFAULT_WASH_MAPPINGS, WashMapping


@dataclass(frozen=True)
class WorkflowPolicy:
    """Engine behavior switches.

    Attributes:
        post_wash_location: Location assigned to items when a wash completes.
        strict_quantity_reconciliation: Require cutting fan-out to match the
            requested quantities exactly (see ``plan_sew_fanout``).
        enforce_step_graphs: Reject actions whose timeline step does not
            follow the last recorded step in the type's named step graph.
        wash_mappings: Finished wash code -> raw base mapping.
    """

    post_wash_location: str = "POST_WASH_STAGING"
    strict_quantity_reconciliation: bool = True
    enforce_step_graphs: bool = False
    wash_mappings: dict[str, WashMapping] = field(
        default_factory=lambda: dict(DEFAULT_WASH_MAPPINGS)
    )
