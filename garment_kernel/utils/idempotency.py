"""
Idempotency key generation utilities.

Keys make request creation at-most-once per intent.  Callers pass their own
key to ``WorkflowEngine.create_request``; requests spawned by a transition
get a deterministic key derived from the parent, so a replayed completion
can never fan out twice.
"""

from uuid import UUID


def generate_idempotency_key(
    producer: str,
    event_type: str,
    event_id: UUID | str,
) -> str:
    """
    Generate an idempotency key.

    Format: producer:event_type:event_id

    Example:
        >>> generate_idempotency_key("workflow", "CUTTING.complete", f"{rid}:1")
        "workflow:CUTTING.complete:550e8400-e29b-41d4-a716-446655440000:1"
    """
    return f"{producer}:{event_type}:{event_id}"


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Parse an idempotency key into (producer, event_type, event_id).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], parts[2]
