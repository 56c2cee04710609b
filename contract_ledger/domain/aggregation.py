"""
Pure aggregation over ledger events.

Functions here take already-loaded events (ORM rows or StateEventDTOs; only
attribute access is used) and never touch the database, so the calculator,
the live read path and historical reads share one definition of "total" and
"active specification".
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from contract_ledger.db.types import ZERO
from contract_ledger.domain.values import ContractStateSnapshot, StateEventType


def event_order_key(event: Any) -> tuple:
    """Chronological order: effective date, then creation time, then seq."""
    return (event.effective_from, event.created_at, event.seq)


def is_amount_affecting(event: Any) -> bool:
    return StateEventType(event.event_type).affects_amount


def total_amount(events: Iterable[Any]) -> Decimal:
    """Sum of deltas over amount-affecting events.  Payments never count."""
    total = ZERO
    for event in events:
        if is_amount_affecting(event):
            total += event.amount_delta
    return total


def resolve_active_specification(events: Sequence[Any]) -> UUID | None:
    """
    Specification currently in force.

    Precedence: the latest AMENDED event that carries a specification, else
    the CREATED event's specification, else None.
    """
    ordered = sorted(events, key=event_order_key)

    for event in reversed(ordered):
        if event.event_type == StateEventType.AMENDED and event.specification_id:
            return event.specification_id

    for event in ordered:
        if event.event_type == StateEventType.CREATED:
            return event.specification_id

    return None


def latest_event(
    events: Iterable[Any],
    exclude_types: Iterable[StateEventType] = (),
) -> Any | None:
    """Most recent event by chronological order, skipping ``exclude_types``."""
    excluded = set(exclude_types)
    candidates = [e for e in events if e.event_type not in excluded]
    if not candidates:
        return None
    return max(candidates, key=event_order_key)


def drift(computed: Decimal, stored: Decimal | None) -> Decimal:
    """Absolute difference between the ledger total and a stored total."""
    return abs(computed - (stored if stored is not None else ZERO))


def is_effective_by(event: Any, as_of: datetime) -> bool:
    return event.effective_from <= as_of


def build_snapshot(
    contract_id: UUID,
    events: Iterable[Any],
    as_of: datetime | None = None,
) -> ContractStateSnapshot:
    """
    Aggregate a contract's events (each carrying ``is_active``).

    The total counts every amount-affecting event: a superseded event and
    its SUPERSEDED counter-event net to zero.  The specification and the
    reported event set come from active events only.
    """
    ordered = sorted(events, key=event_order_key)
    active = tuple(e for e in ordered if e.is_active)
    return ContractStateSnapshot(
        contract_id=contract_id,
        total_amount=total_amount(ordered),
        active_specification_id=resolve_active_specification(active),
        active_events=active,
        as_of_date=as_of,
    )
