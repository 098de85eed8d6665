"""
BaseService -- abstract base for all kernel and module services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service that writes.  Concrete services receive a SQLAlchemy
    ``Session`` and use ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback the outer transaction.
      Savepoints they open themselves (``begin_nested``) they also close.
      The caller (ProcureRuntime or the test harness) owns commit/rollback.

Failure modes:
    - A subclass that calls ``session.commit()`` breaks the atomicity of
      multi-row workflow operations.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide cached configuration reads -- those belong to
          ``ConfigurationProvider``.
    """

    def __init__(self, session: Session):
        self.session = session
