"""
Module: contract_ledger.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Architecture position: Ledger > Selectors.  May import from db/, models/ and
    domain/values.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but never
      call session.add(), session.delete(), session.commit() or
      session.flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances, so results can be cached and shared across sessions.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
