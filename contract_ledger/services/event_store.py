"""
EventStore -- the only writer of contract_state_events rows.

Responsibility:
    Inserts ledger events inside the caller's transaction, allocates their
    sequence numbers, stamps created_at from the injected clock, and
    invalidates the contract's read cache synchronously (and again when the
    owning transaction ends).

Architecture position:
    Ledger > Services.  Called by ContractStateEventService and the
    maintenance services; never by collaborators directly.

Invariants enforced:
    - Append-only: there is no update or delete method.  ``annotate_event``
      merges bookkeeping metadata and nothing else; the immutability
      listeners reject any other field change.
    - Supersession exclusivity: UNIQUE(supersedes_event_id).  A violation at
      flush time is reported as EventAlreadySupersededError.

Failure modes:
    - EventNotFoundError from annotate_event / get_row.
    - EventAlreadySupersededError when the unique index rejects a second
      superseder.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from contract_ledger.cache import ContractCache
from contract_ledger.db.types import ensure_utc, to_decimal
from contract_ledger.domain.clock import Clock, SystemClock
from contract_ledger.domain.values import StateEventType, TriggerRef
from contract_ledger.exceptions import (
    EventAlreadySupersededError,
    EventNotFoundError,
)
from contract_ledger.logging_config import LogContext, get_logger
from contract_ledger.models.state_event import ContractStateEvent
from contract_ledger.services.base import BaseService
from contract_ledger.services.sequence_service import SequenceService

logger = get_logger("services.event_store")

SUPERSEDES_CONSTRAINT = "uq_state_event_supersedes"


def violates_supersedes_constraint(exc: IntegrityError) -> bool:
    """True when ``exc`` is the UNIQUE(supersedes_event_id) violation."""
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint is not None:
        return constraint == SUPERSEDES_CONSTRAINT
    # SQLite reports columns: "UNIQUE constraint failed: <table>.supersedes_event_id"
    message = str(exc.orig)
    return "UNIQUE" in message and "supersedes_event_id" in message


def jsonable(value: Any) -> Any:
    """Convert metadata values to JSON-safe primitives (Decimal as str)."""
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class NewStateEvent:
    """Input for EventStore.create_event."""

    contract_id: UUID
    event_type: StateEventType
    triggered_by: TriggerRef
    amount_delta: Decimal
    effective_from: datetime
    specification_id: UUID | None = None
    supersedes_event_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_by_id: UUID | None = None


class EventStore(BaseService):
    """Append-only persistence for ContractStateEvent."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        cache: ContractCache | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._cache = cache
        self._sequences = sequence_service or SequenceService(session)

    def create_event(self, data: NewStateEvent) -> ContractStateEvent:
        """
        Insert one event and flush.

        Postconditions:
            - The row is flushed with a fresh ``seq`` and ``created_at``.
            - The cache entry for ``data.contract_id`` is invalidated.
        """
        event = ContractStateEvent(
            contract_id=data.contract_id,
            event_type=data.event_type,
            triggered_by_kind=data.triggered_by.kind,
            triggered_by_id=data.triggered_by.id,
            specification_id=data.specification_id,
            amount_delta=to_decimal(data.amount_delta),
            effective_from=ensure_utc(data.effective_from),
            supersedes_event_id=data.supersedes_event_id,
            event_metadata=jsonable(data.metadata or {}),
            seq=self._sequences.next_value(
                SequenceService.state_event_sequence(data.contract_id)
            ),
            created_at=self._clock.now(),
            created_by_id=data.created_by_id or _context_actor_id(),
        )
        self.session.add(event)

        try:
            self.session.flush()
        except IntegrityError as exc:
            if data.supersedes_event_id is None or not violates_supersedes_constraint(exc):
                raise
            raise EventAlreadySupersededError(
                str(data.supersedes_event_id)
            ) from exc

        self._invalidate(data.contract_id)

        logger.info(
            "state_event_created",
            extra={
                "event_id": str(event.id),
                "contract_id": str(event.contract_id),
                "event_type": event.event_type.value,
                "amount_delta": str(event.amount_delta),
                "triggered_by": str(data.triggered_by),
                "supersedes_event_id": (
                    str(event.supersedes_event_id)
                    if event.supersedes_event_id
                    else None
                ),
                "seq": event.seq,
            },
        )
        return event

    def annotate_event(self, event_id: UUID, metadata: dict[str, Any]) -> ContractStateEvent:
        """
        Merge bookkeeping keys into an event's metadata.

        Amount, type, contract and supersession link are never touched.
        Existing keys are overwritten by ``metadata``.
        """
        event = self.get_row(event_id)
        merged = dict(event.event_metadata or {})
        merged.update(jsonable(metadata))
        event.event_metadata = merged
        self.session.flush()

        self._invalidate(event.contract_id)

        logger.info(
            "state_event_annotated",
            extra={
                "event_id": str(event.id),
                "contract_id": str(event.contract_id),
                "keys": sorted(metadata),
            },
        )
        return event

    def get_row(self, event_id: UUID) -> ContractStateEvent:
        """Load the ORM row.  Raises EventNotFoundError."""
        event = self.session.execute(
            select(ContractStateEvent).where(ContractStateEvent.id == event_id)
        ).scalar_one_or_none()
        if event is None:
            raise EventNotFoundError(str(event_id))
        return event

    def _invalidate(self, contract_id: UUID) -> None:
        if self._cache is None:
            return
        self._cache.invalidate(contract_id)
        self._cache.invalidate_on_transaction_end(self.session, contract_id)


def _context_actor_id() -> UUID | None:
    actor = LogContext.get_all().get("actor_id")
    if not actor:
        return None
    try:
        return UUID(str(actor))
    except ValueError:
        return None
