"""
Garment Kernel - request workflow engine for garment manufacturing.

Tracks inventory items through the production pipeline with:
- Typed request lifecycle (PENDING -> IN_PROGRESS -> COMPLETED | FAILED)
- Atomic transitions with downstream request fan-out
- Bin capacity and QR identity gates
- Immutable per-request timeline
"""

__version__ = "0.1.0"
