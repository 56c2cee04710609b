"""
BaseService -- abstract base for ledger services.

Responsibility:
    Common constructor and session-handling contract.  Services persist with
    ``session.flush()`` and never call ``session.commit()``; the caller owns
    the transaction.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction.
      Each logical ledger change is wrapped in a SAVEPOINT so that a failing
      change leaves no partial event set behind, even when the caller keeps
      its transaction open.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for services that write.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only methods; those live in selectors/.
    """

    def __init__(self, session: Session):
        self.session = session
