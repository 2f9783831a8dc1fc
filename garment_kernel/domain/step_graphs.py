"""
Named step graphs for request types with sub-steps finer than the status enum.

A graph maps the last recorded timeline step to the steps allowed next.
``ASSIGNED`` entries can appear anywhere in a history and are skipped when
looking up the last step (see ``TimelineRecorder.is_transition_allowed``).
"""

from garment_kernel.domain.request_lifecycle import (
    ASSIGNED_STEP,
    CREATED_STEP,
    RequestType,
)

StepGraph = dict[str, frozenset[str]]

CUTTING_STEPS: StepGraph = {
    CREATED_STEP: frozenset({"MATERIAL_VALIDATION"}),
    "MATERIAL_VALIDATION": frozenset({"MATERIAL_VALIDATION", "CUTTING_PROCESS"}),
    "CUTTING_PROCESS": frozenset({"CUTTING_COMPLETE"}),
    "CUTTING_COMPLETE": frozenset(),
}

MOVE_STEPS: StepGraph = {
    CREATED_STEP: frozenset({"MOVE_STARTED"}),
    "MOVE_STARTED": frozenset({"ITEM_SCAN"}),
    "ITEM_SCAN": frozenset({"ITEM_SCAN", "DESTINATION_SCAN"}),
    "DESTINATION_SCAN": frozenset({"DESTINATION_SCAN", "MOVE_COMPLETE"}),
    "MOVE_COMPLETE": frozenset(),
}

STEP_GRAPHS: dict[RequestType, StepGraph] = {
    RequestType.CUTTING: CUTTING_STEPS,
    RequestType.MOVE: MOVE_STEPS,
}

# Steps that never participate in graph ordering.
UNORDERED_STEPS: frozenset[str] = frozenset({ASSIGNED_STEP})
