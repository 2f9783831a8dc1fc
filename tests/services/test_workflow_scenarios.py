"""
End-to-end workflow scenarios through WorkflowEngine.

Covers:
- Cutting fan-out into one SEW request per cut unit
- The full pipeline PATTERN -> CUTTING -> SEW -> WASH -> QC -> FINISHING -> PACKING
- WASH gates and SKU rewriting
- The QC failure branch into RECOVERY, and both recovery resolutions
- Action/actor/status rejection paths
"""

import pytest

from garment_kernel.domain.dtos import RequestFilter, SideEffectKind
from garment_kernel.domain.policy import WorkflowPolicy
from garment_kernel.domain.request_lifecycle import (
    ItemStage,
    ItemSubStatus,
    RequestStatus,
    RequestType,
)
from garment_kernel.exceptions import (
    ActiveRequestConflictError,
    InvalidTransitionError,
    ItemMismatchError,
    PreconditionFailedError,
    SkuMismatchError,
    UnknownActionError,
    ValidationError,
)

OPERATOR = "op1"
FIXED_NOW = "2024-01-01T12:00:00+00:00"


def _wash_to_completion(run_steps, wash_id, item, bin_code):
    return run_steps(wash_id, [
        ("validate_item", {"qr_code": item.qr_code}),
        ("start", {"wash_type": "stone", "temperature": 40}),
        ("assign_bin", {"bin_code": bin_code}),
        ("complete", {}),
    ])


class TestCuttingFanout:
    """CUTTING complete creates one SEW request per cut unit."""

    def test_complete_spawns_one_sew_per_unit(self, workflow_engine, make_request):
        cutting = make_request(
            RequestType.CUTTING, metadata={"skus": [{"sku": "A", "quantity": 2}]},
        )

        result = workflow_engine.transition(cutting.id, "complete", OPERATOR, {})

        assert result.request.status == RequestStatus.COMPLETED
        assert len(result.spawned_request_ids) == 2
        sews = [workflow_engine.get_request(i).request for i in result.spawned_request_ids]
        assert [s.type for s in sews] == [RequestType.SEW, RequestType.SEW]
        assert [s.metadata["unit_number"] for s in sews] == [1, 2]
        for sew in sews:
            assert sew.status == RequestStatus.PENDING
            assert sew.metadata["cutting_request_id"] == str(cutting.id)
            assert sew.metadata["total_units"] == 2
            assert sew.metadata["sku"] == "A"
        assert result.request.metadata["sew_request_ids"] == [str(s.id) for s in sews]

    def test_spawn_keys_derive_from_parent(self, workflow_engine, make_request):
        cutting = make_request(
            RequestType.CUTTING, metadata={"skus": [{"sku": "A", "quantity": 2}]},
        )
        result = workflow_engine.transition(cutting.id, "complete", OPERATOR, {})

        keys = sorted(
            workflow_engine.get_request(i).request.idempotency_key
            for i in result.spawned_request_ids
        )
        assert keys == [
            f"workflow:CUTTING.complete:{cutting.id}:1",
            f"workflow:CUTTING.complete:{cutting.id}:2",
        ]

    def test_replayed_completion_is_rejected_without_new_children(
        self, workflow_engine, make_request,
    ):
        cutting = make_request(
            RequestType.CUTTING, metadata={"skus": [{"sku": "A", "quantity": 2}]},
        )
        workflow_engine.transition(cutting.id, "complete", OPERATOR, {})

        with pytest.raises(InvalidTransitionError):
            workflow_engine.transition(cutting.id, "complete", OPERATOR, {})

        sews = workflow_engine.list_requests(RequestFilter(type=RequestType.SEW))
        assert len(sews) == 2

    def test_direct_completion_stamps_start_and_end(self, workflow_engine, make_request):
        cutting = make_request(
            RequestType.CUTTING, metadata={"skus": [{"sku": "A", "quantity": 1}]},
        )
        result = workflow_engine.transition(cutting.id, "complete", OPERATOR, {})

        assert result.request.metadata["started_at"] == FIXED_NOW
        assert result.request.metadata["completed_at"] == FIXED_NOW

    def test_pieces_cut_mismatch_rolls_back(self, workflow_engine, make_request):
        cutting = make_request(
            RequestType.CUTTING, metadata={"skus": [{"sku": "A", "quantity": 2}]},
        )

        with pytest.raises(ValidationError):
            workflow_engine.transition(cutting.id, "complete", OPERATOR, {"pieces_cut": 3})

        assert workflow_engine.get_request(cutting.id).request.status == RequestStatus.PENDING
        assert workflow_engine.list_requests(RequestFilter(type=RequestType.SEW)) == []

    def test_loose_reconciliation_skips_empty_lines(self, make_engine, make_request):
        engine = make_engine(policy=WorkflowPolicy(strict_quantity_reconciliation=False))
        cutting = make_request(
            RequestType.CUTTING,
            metadata={"skus": [{"sku": "A", "quantity": 0}, {"sku": "B", "quantity": 1}]},
        )

        result = engine.transition(cutting.id, "complete", OPERATOR, {"pieces_cut": 7})

        assert len(result.spawned_request_ids) == 1


class TestFullPipeline:
    """One garment from pattern to packed."""

    def test_pattern_to_packed(
        self, workflow_engine, make_request, make_bin, inventory_service, run_steps,
    ):
        wash_bin = make_bin("WASH-01", capacity=5)
        pattern = make_request(
            RequestType.PATTERN, metadata={"sku": "JN01-32-SLM-30-RAW", "quantity": 1},
        )

        pattern_result = workflow_engine.transition(pattern.id, "complete", OPERATOR, {})
        created = pattern_result.effects_of(SideEffectKind.ITEMS_CREATED)
        assert created[0].detail["count"] == 1
        (cutting_id,) = pattern_result.spawned_request_ids

        cutting_result = workflow_engine.transition(
            cutting_id, "complete", OPERATOR, {"pieces_cut": 1, "target_wash": "STA"},
        )
        (sew_id,) = cutting_result.spawned_request_ids
        sew = workflow_engine.get_request(sew_id)
        assert sew.item is not None
        assert sew.item.status1 == ItemStage.SEW.value
        assert sew.item.status2 == ItemSubStatus.PENDING.value

        sew_result = workflow_engine.transition(sew_id, "complete", OPERATOR, {})
        (wash_id,) = sew_result.spawned_request_ids
        item = inventory_service.get_item(sew.item.id)
        assert (item.status1, item.status2) == ("WASH", "PENDING")

        wash_result = _wash_to_completion(run_steps, wash_id, item, wash_bin.code)
        (qc_id,) = wash_result.spawned_request_ids

        qc_result = run_steps(qc_id, [
            ("record_measurements", {"measurements": [{"name": "waist", "value": 32}]}),
            ("complete", {"passed": True}),
        ])
        assert qc_result.request.status == RequestStatus.COMPLETED
        (finishing_id,) = qc_result.spawned_request_ids

        finishing_result = run_steps(finishing_id, [
            ("start", {}),
            ("complete", {"hem_length": 32}),
        ])
        (packing_id,) = finishing_result.spawned_request_ids

        packing_result = run_steps(packing_id, [
            ("start", {}),
            ("complete", {"package_id": "PKG-1"}),
        ])
        assert packing_result.request.status == RequestStatus.COMPLETED
        assert packing_result.spawned_request_ids == ()

        item = inventory_service.get_item(item.id)
        assert item.sku == "JN01-32-SLM-32-STA"
        assert (item.status1, item.status2) == ("PACKED", "READY_TO_SHIP")
        assert item.bin_id is None
        assert inventory_service.get_bin(wash_bin.id).current_count == 0

    def test_sew_without_item_spawns_nothing(self, workflow_engine, make_request):
        cutting = make_request(
            RequestType.CUTTING, metadata={"skus": [{"sku": "A", "quantity": 1}]},
        )
        (sew_id,) = workflow_engine.transition(
            cutting.id, "complete", OPERATOR, {},
        ).spawned_request_ids

        result = workflow_engine.transition(sew_id, "complete", OPERATOR, {"target_wash": "STA"})

        assert result.request.status == RequestStatus.COMPLETED
        assert result.spawned_request_ids == ()
        assert result.request.metadata["target_wash"] == "STA"


class TestWashStage:
    """WASH gates, bin assignment and the SKU rewrite."""

    @pytest.fixture
    def washable(self, make_item, make_request):
        item = make_item(status1=ItemStage.WASH, status2=ItemSubStatus.PENDING)
        wash = make_request(RequestType.WASH, item_id=item.id, metadata={"target_wash": "STA"})
        return item, wash

    def test_complete_rewrites_sku_and_stages_item(
        self, washable, make_bin, run_steps, inventory_service,
    ):
        item, wash = washable
        wash_bin = make_bin(capacity=2)

        result = _wash_to_completion(run_steps, wash.id, item, wash_bin.code)

        assert result.request.metadata["previous_sku"] == "JN01-32-SLM-30-RAW"
        assert result.request.metadata["new_sku"] == "JN01-32-SLM-30-STA"
        assert result.request.metadata["wash_data"]["completed_at"] == FIXED_NOW
        updated = inventory_service.get_item(item.id)
        assert updated.sku == "JN01-32-SLM-30-STA"
        assert (updated.status1, updated.status2) == ("QC", "PENDING")
        assert updated.location == "POST_WASH_STAGING"
        assert updated.bin_id is None
        assert inventory_service.get_bin(wash_bin.id).current_count == 0

    def test_assign_bin_places_item(self, washable, make_bin, run_steps, inventory_service):
        item, wash = washable
        wash_bin = make_bin(capacity=2)

        run_steps(wash.id, [
            ("validate_item", {"qr_code": item.qr_code}),
            ("start", {"wash_type": "stone", "temperature": 40}),
            ("assign_bin", {"bin_id": str(wash_bin.id)}),
        ])

        updated = inventory_service.get_item(item.id)
        assert (updated.status1, updated.status2) == ("WASH", "IN_BIN")
        assert updated.bin_id == wash_bin.id
        assert updated.location == wash_bin.code
        assert inventory_service.get_bin(wash_bin.id).current_count == 1

    def test_start_requires_item_validation(self, washable, workflow_engine):
        _, wash = washable

        with pytest.raises(PreconditionFailedError) as exc_info:
            workflow_engine.transition(
                wash.id, "start", OPERATOR, {"wash_type": "stone", "temperature": 40},
            )

        assert exc_info.value.requirement == "item_validation.validated_at"

    def test_wrong_garment_scanned(self, washable, workflow_engine):
        _, wash = washable

        with pytest.raises(ItemMismatchError):
            workflow_engine.transition(wash.id, "validate_item", OPERATOR, {"qr_code": "QR-OTHER"})

    def test_wash_base_mismatch_rolls_back(
        self, make_item, make_request, make_bin, run_steps, inventory_service,
    ):
        item = make_item(status1=ItemStage.WASH, status2=ItemSubStatus.PENDING)
        wash = make_request(RequestType.WASH, item_id=item.id, metadata={"target_wash": "ONX"})
        wash_bin = make_bin(capacity=2)
        run_steps(wash.id, [
            ("validate_item", {"qr_code": item.qr_code}),
            ("start", {"wash_type": "stone", "temperature": 40}),
            ("assign_bin", {"bin_code": wash_bin.code}),
        ])

        with pytest.raises(SkuMismatchError):
            run_steps(wash.id, [("complete", {})])

        updated = inventory_service.get_item(item.id)
        assert updated.sku == "JN01-32-SLM-30-RAW"
        assert updated.bin_id == wash_bin.id
        assert inventory_service.get_bin(wash_bin.id).current_count == 1

    def test_timeline_records_every_step(self, washable, make_bin, run_steps, workflow_engine):
        item, wash = washable
        wash_bin = make_bin(capacity=2)
        _wash_to_completion(run_steps, wash.id, item, wash_bin.code)

        timeline = workflow_engine.get_timeline(wash.id)

        assert [e.step for e in timeline] == [
            "CREATED", "ITEM_VALIDATION", "WASH_STARTED", "BIN_ASSIGNMENT", "WASH_COMPLETE",
        ]
        assert [e.seq for e in timeline] == [1, 2, 3, 4, 5]
        assert timeline[-1].status == RequestStatus.COMPLETED
        assert timeline[1].operator_id == "op-test"


class TestQualityControl:
    """QC outcomes and the RECOVERY branch."""

    @pytest.fixture
    def qc_request(self, make_item, make_request):
        item = make_item("JN01-32-SLM-30-STA", status1=ItemStage.QC, status2=ItemSubStatus.PENDING)
        qc = make_request(RequestType.QC, item_id=item.id)
        return item, qc

    def test_measurements_start_the_inspection(self, qc_request, workflow_engine, inventory_service):
        item, qc = qc_request

        result = workflow_engine.transition(
            qc.id, "record_measurements", OPERATOR,
            {"measurements": [{"name": "waist", "value": 32}]},
        )

        assert result.request.status == RequestStatus.IN_PROGRESS
        assert result.request.metadata["measurements"][0]["recorded_by"] == OPERATOR
        updated = inventory_service.get_item(item.id)
        assert (updated.status1, updated.status2) == ("QC", "IN_PROGRESS")

    def test_measurements_accumulate(self, qc_request, run_steps):
        _, qc = qc_request

        result = run_steps(qc.id, [
            ("record_measurements", {"measurements": [{"name": "waist", "value": 32}]}),
            ("record_measurements", {"measurements": [{"name": "inseam", "value": 30}]}),
        ])

        assert [m["name"] for m in result.request.metadata["measurements"]] == ["waist", "inseam"]

    def test_failed_inspection_spawns_recovery(
        self, qc_request, run_steps, workflow_engine, inventory_service,
    ):
        item, qc = qc_request

        result = run_steps(qc.id, [
            ("record_measurements", {"measurements": [{"name": "waist", "value": 31}]}),
            ("record_defects", {"defects": [{"type": "stain"}]}),
            ("complete", {"passed": False, "defects": [{"type": "hole"}]}),
        ])

        assert result.request.status == RequestStatus.FAILED
        assert result.request.metadata["passed"] is False
        (recovery_id,) = result.spawned_request_ids
        recovery = workflow_engine.get_request(recovery_id).request
        assert recovery.type == RequestType.RECOVERY
        assert [d["type"] for d in recovery.metadata["defects"]] == ["stain", "hole"]
        assert recovery.metadata["qc_request_id"] == str(qc.id)
        updated = inventory_service.get_item(item.id)
        assert (updated.status1, updated.status2) == ("RECOVERY", "DEFECTIVE")

    def test_complete_requires_inspection_started(self, qc_request, workflow_engine):
        _, qc = qc_request

        with pytest.raises(InvalidTransitionError):
            workflow_engine.transition(qc.id, "complete", OPERATOR, {"passed": True})

    def test_repaired_garment_returns_to_qc(
        self, qc_request, run_steps, workflow_engine, inventory_service,
    ):
        item, qc = qc_request
        failed = run_steps(qc.id, [
            ("record_measurements", {"measurements": [{"name": "waist", "value": 31}]}),
            ("complete", {"passed": False, "defects": [{"type": "hole"}]}),
        ])
        (recovery_id,) = failed.spawned_request_ids

        result = run_steps(recovery_id, [("start", {}), ("complete", {"resolution": "REPAIRED"})])

        (new_qc_id,) = result.spawned_request_ids
        new_qc = workflow_engine.get_request(new_qc_id).request
        assert new_qc.type == RequestType.QC
        assert new_qc.metadata["recovery_request_id"] == str(recovery_id)
        updated = inventory_service.get_item(item.id)
        assert (updated.status1, updated.status2) == ("QC", "PENDING")

    def test_scrapped_garment_leaves_its_bin(
        self, make_bin, make_item, make_request, run_steps, inventory_service,
    ):
        shelf = make_bin(capacity=3)
        item = make_item(
            status1=ItemStage.RECOVERY, status2=ItemSubStatus.DEFECTIVE, bin_id=shelf.id,
        )
        recovery = make_request(RequestType.RECOVERY, item_id=item.id)

        result = run_steps(recovery.id, [("start", {}), ("complete", {"resolution": "SCRAPPED"})])

        assert result.spawned_request_ids == ()
        updated = inventory_service.get_item(item.id)
        assert (updated.status1, updated.status2) == ("RECOVERY", "SCRAPPED")
        assert updated.bin_id is None
        assert inventory_service.get_bin(shelf.id).current_count == 0


class TestFinishingHem:
    """A hem changes the length segment of the sku; bins follow the sku."""

    HEMMED_FROM = "STY-32-SLM-34-STA"

    def _finish(self, workflow_engine, make_request, item, payload):
        finishing = make_request(RequestType.FINISHING, item_id=item.id)
        workflow_engine.transition(finishing.id, "start", OPERATOR, {})
        return workflow_engine.transition(finishing.id, "complete", OPERATOR, payload)

    def test_hem_moves_item_out_of_restricted_bin(
        self, workflow_engine, make_item, make_request, make_bin, inventory_service,
    ):
        restricted = make_bin("LEN-34", sku_restriction=self.HEMMED_FROM)
        item = make_item(
            self.HEMMED_FROM,
            status1=ItemStage.FINISHING,
            status2=ItemSubStatus.PENDING,
            bin_id=restricted.id,
        )
        assert inventory_service.get_bin(restricted.id).current_count == 1

        result = self._finish(workflow_engine, make_request, item, {"hem_length": 30})

        item = inventory_service.get_item(item.id)
        assert item.sku == "STY-32-SLM-30-STA"
        assert item.bin_id is None
        assert item.location is None
        assert inventory_service.get_bin(restricted.id).current_count == 0
        bin_effects = [e for e in result.side_effects if e.kind == SideEffectKind.BIN_UPDATED]
        assert [e.detail["change"] for e in bin_effects] == [-1]

    def test_hem_keeps_item_in_unrestricted_bin(
        self, workflow_engine, make_item, make_request, make_bin, inventory_service,
    ):
        open_bin = make_bin("FIN-OPEN")
        item = make_item(
            self.HEMMED_FROM,
            status1=ItemStage.FINISHING,
            status2=ItemSubStatus.PENDING,
            bin_id=open_bin.id,
        )

        self._finish(workflow_engine, make_request, item, {"hem_length": 30})

        item = inventory_service.get_item(item.id)
        assert item.sku == "STY-32-SLM-30-STA"
        assert item.bin_id == open_bin.id
        assert inventory_service.get_bin(open_bin.id).current_count == 1

    def test_unchanged_length_keeps_restricted_bin(
        self, workflow_engine, make_item, make_request, make_bin, inventory_service,
    ):
        restricted = make_bin("LEN-34-B", sku_restriction=self.HEMMED_FROM)
        item = make_item(
            self.HEMMED_FROM,
            status1=ItemStage.FINISHING,
            status2=ItemSubStatus.PENDING,
            bin_id=restricted.id,
        )

        self._finish(workflow_engine, make_request, item, {"hem_length": 34})

        item = inventory_service.get_item(item.id)
        assert item.bin_id == restricted.id
        assert inventory_service.get_bin(restricted.id).current_count == 1


class TestRejectedTransitions:
    """Errors raised before anything is written."""

    def test_unknown_action(self, workflow_engine, make_request):
        sew = make_request(RequestType.SEW)

        with pytest.raises(UnknownActionError) as exc_info:
            workflow_engine.transition(sew.id, "record_defects", OPERATOR, {})

        assert exc_info.value.code == "UNKNOWN_ACTION"

    def test_actor_required(self, workflow_engine, make_request):
        sew = make_request(RequestType.SEW)

        with pytest.raises(ValidationError) as exc_info:
            workflow_engine.transition(sew.id, "start", None, {})

        assert exc_info.value.field == "actor"

    def test_assign_without_actor(self, workflow_engine, make_request):
        sew = make_request(RequestType.SEW)

        result = workflow_engine.transition(sew.id, "assign", None, {"assigned_to": "op2"})

        assert result.request.assigned_to == "op2"
        assert result.request.status == RequestStatus.PENDING
        assert result.request.metadata["assigned_at"] == FIXED_NOW

    def test_finishing_cannot_complete_from_pending(
        self, workflow_engine, make_item, make_request,
    ):
        item = make_item(status1=ItemStage.FINISHING, status2=ItemSubStatus.PENDING)
        finishing = make_request(RequestType.FINISHING, item_id=item.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            workflow_engine.transition(finishing.id, "complete", OPERATOR, {})

        assert exc_info.value.current_status == "PENDING"

    def test_closed_request_rejects_every_action(self, workflow_engine, make_request):
        sew = make_request(RequestType.SEW)
        workflow_engine.transition(sew.id, "complete", OPERATOR, {})

        for action, payload in (("assign", {"assigned_to": "op2"}), ("start", {})):
            with pytest.raises(InvalidTransitionError):
                workflow_engine.transition(sew.id, action, OPERATOR, payload)

    def test_unexpected_payload_field(self, workflow_engine, make_request):
        sew = make_request(RequestType.SEW)

        with pytest.raises(ValidationError):
            workflow_engine.transition(sew.id, "start", OPERATOR, {"speed": "fast"})

    def test_second_active_request_for_item_rejected(self, workflow_engine, make_item, make_request):
        item = make_item()
        first = make_request(RequestType.MOVE, item_id=item.id)
        workflow_engine.transition(first.id, "start", OPERATOR, {})

        with pytest.raises(ActiveRequestConflictError):
            make_request(RequestType.MOVE, item_id=item.id)


class TestReads:

    def test_get_request_includes_item_and_timeline(self, workflow_engine, make_item, make_request):
        item = make_item(status1=ItemStage.FINISHING, status2=ItemSubStatus.PENDING)
        finishing = make_request(RequestType.FINISHING, item_id=item.id)
        workflow_engine.transition(finishing.id, "start", OPERATOR, {"notes": "line 4"})

        detail = workflow_engine.get_request(finishing.id)

        assert detail.item.id == item.id
        assert detail.order is None
        assert [e.step for e in detail.timeline] == ["CREATED", "FINISHING_STARTED"]
        assert detail.timeline[-1].metadata["notes"] == "line 4"

    def test_list_requests_filters(self, workflow_engine, make_request):
        make_request(RequestType.SEW, assigned_to="op2")
        make_request(RequestType.SEW)
        make_request(RequestType.CUTTING, metadata={"skus": [{"sku": "A", "quantity": 1}]})

        assert len(workflow_engine.list_requests()) == 3
        assert len(workflow_engine.list_requests(RequestFilter(type=RequestType.SEW))) == 2
        assigned = workflow_engine.list_requests(RequestFilter(assigned_to="op2"))
        assert [r.assigned_to for r in assigned] == ["op2"]
        assert len(workflow_engine.list_requests(RequestFilter(limit=1))) == 1
