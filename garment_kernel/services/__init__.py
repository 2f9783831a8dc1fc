"""Services for the garment kernel (write side)."""

from garment_kernel.services.event_logger import DomainEventLogger, EventRefs
from garment_kernel.services.inventory_repository import InventoryRepository
from garment_kernel.services.inventory_service import InventoryService
from garment_kernel.services.notification_dispatcher import (
    NotificationDispatcher,
    NotificationService,
)
from garment_kernel.services.request_repository import RequestRepository
from garment_kernel.services.stage_handlers import (
    StageHandlerRegistry,
    default_stage_handlers,
)
from garment_kernel.services.step_validators import (
    StepValidatorRegistry,
    default_step_validators,
)
from garment_kernel.services.timeline_recorder import TimelineRecorder
from garment_kernel.services.workflow_engine import WorkflowEngine

__all__ = [
    "DomainEventLogger",
    "EventRefs",
    "InventoryRepository",
    "InventoryService",
    "NotificationDispatcher",
    "NotificationService",
    "RequestRepository",
    "StageHandlerRegistry",
    "StepValidatorRegistry",
    "TimelineRecorder",
    "WorkflowEngine",
    "default_stage_handlers",
    "default_step_validators",
]
