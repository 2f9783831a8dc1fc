"""ORM models for the garment kernel."""

from garment_kernel.models.batch import ProductionBatch
from garment_kernel.models.domain_event import DomainEvent, DomainEventType
from garment_kernel.models.inventory import Bin, InventoryItem
from garment_kernel.models.notification import Notification
from garment_kernel.models.order import Order
from garment_kernel.models.request import Request
from garment_kernel.models.timeline import TimelineEntry

__all__ = [
    "Bin",
    "DomainEvent",
    "DomainEventType",
    "InventoryItem",
    "Notification",
    "Order",
    "ProductionBatch",
    "Request",
    "TimelineEntry",
]
