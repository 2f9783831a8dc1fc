"""
BaseService -- abstract base for kernel services that touch the database.

Responsibility:
    Provides the common constructor and session-handling contract for the
    repositories, recorders and dispatchers in ``garment_kernel/services/``.
    Every one of them receives a SQLAlchemy ``Session`` and persists via
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  The workflow
    engine and the inventory service own transactions; everything that
    inherits from BaseService runs inside one of them.

Failure modes:
    - A subclass that commits or rolls back on its own breaks the
      all-or-nothing guarantee of a transition: a failure in a later step
      could no longer undo the earlier writes.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from garment_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session):
        self.session = session
