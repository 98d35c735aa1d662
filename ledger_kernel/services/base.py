"""
BaseService -- abstract base for all ledger services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write service.  Services receive a SQLAlchemy ``Session`` that
    they use via ``session.flush()`` -- never ``session.commit()``.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  ``LedgerService`` (or a test
    harness) owns commit/rollback.

Failure modes:
    - A subclass calling ``session.commit()`` breaks the atomicity of a
      receive -> settle -> reconcile unit of work.
"""

from abc import ABC
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.utils.scope import ensure_business


class BaseService(ABC):
    """
    Abstract base class for all ledger services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session

    def _ensure_business(
        self,
        entity_type: str,
        entity_id: UUID,
        owner_business_id: UUID,
        business_id: UUID,
    ) -> None:
        ensure_business(entity_type, entity_id, owner_business_id, business_id)
