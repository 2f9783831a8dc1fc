"""
Best-effort notifications and domain events.

Notification and event writes happen in savepoints after the transition's
state is flushed.  Their failure is logged and reported as an undelivered
side effect; the transition itself still commits.  Item intake writes its
creation event the same way.
"""

from uuid import uuid4

import pytest
from sqlalchemy import text

from garment_kernel.domain.dtos import SideEffectKind
from garment_kernel.domain.request_lifecycle import RequestStatus, RequestType
from garment_kernel.exceptions import NotificationNotFoundError
from garment_kernel.models.domain_event import DomainEventType
from garment_kernel.services.event_logger import DomainEventLogger
from garment_kernel.services.inventory_service import InventoryService

OPERATOR = "op1"


class _BrokenDispatcher:
    def __init__(self, session, clock):
        pass

    def enqueue(self, user_id, message, metadata=None, *, request_id=None,
                notification_type="REQUEST_ASSIGNED"):
        raise RuntimeError("notification backend down")


class _BadSQLDispatcher:
    """Fails with a real database error inside the savepoint."""

    def __init__(self, session, clock):
        self.session = session

    def enqueue(self, user_id, message, metadata=None, *, request_id=None,
                notification_type="REQUEST_ASSIGNED"):
        self.session.execute(text("INSERT INTO missing_inbox (user_id) VALUES (:u)"), {"u": user_id})


class _BrokenEventLogger:
    def __init__(self, session, clock):
        pass

    def record(self, event_type, refs, data=None):
        raise RuntimeError("event log unavailable")


class _BadSQLEventLogger:
    """Fails with a real database error inside the savepoint."""

    def __init__(self, session, clock):
        self.session = session

    def record(self, event_type, refs, data=None):
        self.session.execute(text("INSERT INTO missing_events (kind) VALUES (:k)"),
                             {"k": event_type.value})


def _events_for(session_factory, request_id):
    with session_factory() as session:
        return DomainEventLogger(session).list_events(request_id=request_id)


class TestNotificationFailures:

    @pytest.mark.parametrize("factory", [_BrokenDispatcher, _BadSQLDispatcher])
    def test_assignment_survives_dispatch_failure(
        self, make_engine, make_request, inventory_service, captured_logs, factory,
    ):
        engine = make_engine(dispatcher_factory=factory)
        sew = make_request(RequestType.SEW)

        result = engine.transition(sew.id, "assign", OPERATOR, {"assigned_to": "op2"})

        assert result.request.assigned_to == "op2"
        (effect,) = result.effects_of(SideEffectKind.NOTIFICATION_ENQUEUED)
        assert effect.delivered is False
        assert effect.detail["user_id"] == "op2"
        assert engine.get_request(sew.id).request.assigned_to == "op2"
        assert inventory_service.list_notifications("op2") == []
        warnings = [r for r in captured_logs() if r["message"] == "notification_dispatch_failed"]
        assert warnings[0]["level"] == "WARNING"

    def test_events_still_recorded_when_dispatch_fails(
        self, make_engine, make_request, session_factory,
    ):
        engine = make_engine(dispatcher_factory=_BadSQLDispatcher)
        sew = make_request(RequestType.SEW)

        engine.transition(sew.id, "assign", OPERATOR, {"assigned_to": "op2"})

        types = [e.event_type for e in _events_for(session_factory, sew.id)]
        assert DomainEventType.REQUEST_ASSIGNED in types


class TestEventFailures:

    def test_completion_survives_event_log_failure(
        self, make_engine, make_request, session_factory,
    ):
        engine = make_engine(event_logger_factory=_BrokenEventLogger)
        sew = make_request(RequestType.SEW)

        result = engine.transition(sew.id, "complete", OPERATOR, {})

        assert result.request.status == RequestStatus.COMPLETED
        events = result.effects_of(SideEffectKind.EVENT_RECORDED)
        assert events
        assert all(not e.delivered for e in events)
        assert {e.detail["event_type"] for e in events} == {"REQUEST_UPDATED"}
        # Only the creation event, written by the default logger, exists.
        recorded = _events_for(session_factory, sew.id)
        assert [e.event_type for e in recorded] == [DomainEventType.REQUEST_CREATED]


class TestIntakeEventFailures:

    @pytest.mark.parametrize("factory", [_BrokenEventLogger, _BadSQLEventLogger])
    def test_intake_survives_event_log_failure(
        self, session_factory, deterministic_clock, make_bin, captured_logs, factory,
    ):
        service = InventoryService(
            session_factory, deterministic_clock, event_logger_factory=factory,
        )
        shelf = make_bin("INTAKE-01", capacity=2)

        item = service.register_item("JN01-32-SLM-30-RAW", OPERATOR, bin_id=shelf.id)

        assert service.get_item(item.id).bin_id == shelf.id
        assert service.get_bin(shelf.id).current_count == 1
        with session_factory() as session:
            assert DomainEventLogger(session).list_events(item_id=item.id) == []
        (warning,) = [r for r in captured_logs() if r["message"] == "event_record_failed"]
        assert warning["level"] == "WARNING"
        assert warning["event_type"] == "ITEM_CREATED"

    def test_intake_records_creation_event(self, make_item, session_factory):
        item = make_item()

        with session_factory() as session:
            (event,) = DomainEventLogger(session).list_events(item_id=item.id)
        assert event.event_type == DomainEventType.ITEM_CREATED
        assert event.data["sku"] == item.sku


class TestDeliveredEffects:

    def test_transition_records_update_event(self, workflow_engine, make_request, session_factory):
        sew = make_request(RequestType.SEW)

        result = workflow_engine.transition(sew.id, "start", OPERATOR, {})

        assert all(e.delivered for e in result.side_effects)
        updated = [
            e for e in _events_for(session_factory, sew.id)
            if e.event_type == DomainEventType.REQUEST_UPDATED
        ]
        assert updated[0].data == {
            "action": "start",
            "step": "SEW_STARTED",
            "from_status": "PENDING",
            "to_status": "IN_PROGRESS",
        }
        assert updated[0].actor_id == OPERATOR


class TestNotificationInbox:

    def test_assign_then_read(self, workflow_engine, make_request, inventory_service):
        sew = make_request(RequestType.SEW)
        workflow_engine.transition(sew.id, "assign", None, {"assigned_to": "op3"})

        (note,) = inventory_service.list_notifications("op3", unread_only=True)
        assert note.message == "You have been assigned a new SEW request"
        assert note.request_id == sew.id
        assert note.is_read is False

        read = inventory_service.mark_notification_read(note.id)

        assert read.is_read is True
        assert inventory_service.list_notifications("op3", unread_only=True) == []
        assert len(inventory_service.list_notifications("op3")) == 1

    def test_reassignment_notifies_new_assignee(
        self, workflow_engine, make_request, inventory_service,
    ):
        sew = make_request(RequestType.SEW, assigned_to="op3")
        workflow_engine.transition(sew.id, "assign", OPERATOR, {"assigned_to": "op4"})

        assert len(inventory_service.list_notifications("op3")) == 1
        assert len(inventory_service.list_notifications("op4")) == 1

    def test_mark_unknown_notification(self, inventory_service):
        with pytest.raises(NotificationNotFoundError):
            inventory_service.mark_notification_read(uuid4())
