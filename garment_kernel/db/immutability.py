"""
ORM-level immutability enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here intercept them and raise
ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable                         | Rule
----------------|----------------------------------------|-------------------------
TimelineEntry   | ALWAYS (from creation)                 | audit trail is append-only
DomainEvent     | ALWAYS (from creation)                 | event log is append-only
Request         | After status = COMPLETED or FAILED     | terminal status is final
InventoryItem   | Never deleted                          | items are only re-statused

The Request check looks at the status as it was loaded (attribute history),
so the transition INTO a terminal status is allowed and any change after it
is blocked.

===============================================================================
USAGE
===============================================================================

    from garment_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from garment_kernel.exceptions import ImmutabilityViolationError
from garment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id, reason: str) -> ImmutabilityViolationError:
    logger.warning(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(entity_type, str(entity_id), reason)


def _check_timeline_entry_update(mapper, connection, target):
    raise _blocked("TimelineEntry", target.id, "timeline entries are append-only")


def _check_timeline_entry_delete(mapper, connection, target):
    raise _blocked("TimelineEntry", target.id, "timeline entries cannot be deleted")


def _check_domain_event_update(mapper, connection, target):
    raise _blocked("DomainEvent", target.id, "domain events are append-only")


def _check_domain_event_delete(mapper, connection, target):
    raise _blocked("DomainEvent", target.id, "domain events cannot be deleted")


def _check_request_update(mapper, connection, target):
    from garment_kernel.domain.request_lifecycle import (
        TERMINAL_REQUEST_STATUSES,
        RequestStatus,
    )

    history = inspect(target).attrs.status.history
    loaded_status = RequestStatus(
        history.deleted[0] if history.deleted else target.status
    )
    if loaded_status in TERMINAL_REQUEST_STATUSES:
        raise _blocked(
            "Request",
            target.id,
            f"request is {loaded_status.value} and cannot change",
        )


def _check_request_delete(mapper, connection, target):
    raise _blocked("Request", target.id, "requests cannot be deleted")


def _check_item_delete(mapper, connection, target):
    raise _blocked("InventoryItem", target.id, "items cannot be deleted")


def _listeners():
    from garment_kernel.models.domain_event import DomainEvent
    from garment_kernel.models.inventory import InventoryItem
    from garment_kernel.models.request import Request
    from garment_kernel.models.timeline import TimelineEntry

    return (
        (TimelineEntry, "before_update", _check_timeline_entry_update),
        (TimelineEntry, "before_delete", _check_timeline_entry_delete),
        (DomainEvent, "before_update", _check_domain_event_update),
        (DomainEvent, "before_delete", _check_domain_event_delete),
        (Request, "before_update", _check_request_update),
        (Request, "before_delete", _check_request_delete),
        (InventoryItem, "before_delete", _check_item_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for model, identifier, fn in _listeners():
        if not event.contains(model, identifier, fn):
            event.listen(model, identifier, fn)


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners. FOR TESTING ONLY."""
    for model, identifier, fn in _listeners():
        if event.contains(model, identifier, fn):
            event.remove(model, identifier, fn)
