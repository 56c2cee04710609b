"""
ORM-level append-only enforcement for the contract ledger.

ContractStateEvent rows are the unit of truth.  Once flushed, they may never
be deleted, and only bookkeeping metadata may change.  Invalidating an event
means appending a SUPERSEDED event, never editing the original.

    session.flush()
         |
         v
    [before_update] --> _check_state_event_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_state_event_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected fields:

Field                 | Mutable after insert
----------------------|---------------------
contract_id           | no
event_type            | no
triggered_by_kind/_id | no
specification_id      | no
amount_delta          | no
effective_from        | no
supersedes_event_id   | no
seq                   | no
created_at            | no
created_by_id         | no
event_metadata        | yes (merged by EventStore.annotate_event)

Bulk ``UPDATE``/``DELETE`` statements bypass ORM events.  Ledger code never
issues them against contract_state_events.

Usage:

    from contract_ledger.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent; init_engine_from_url calls it

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect

from contract_ledger.exceptions import ImmutabilityViolationError
from contract_ledger.logging_config import get_logger

logger = get_logger("db.immutability")

STATE_EVENT_MUTABLE_FIELDS = frozenset({"event_metadata"})


def _check_state_event_immutability(mapper, connection, target):
    """Reject changes to any field other than event_metadata."""
    from contract_ledger.models.state_event import ContractStateEvent

    if not isinstance(target, ContractStateEvent):
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in STATE_EVENT_MUTABLE_FIELDS:
            continue
        if attr.history.has_changes():
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "ContractStateEvent",
                    "entity_id": str(target.id),
                    "operation": "UPDATE",
                    "field": attr.key,
                },
            )
            raise ImmutabilityViolationError(
                entity_type="ContractStateEvent",
                entity_id=str(target.id),
                reason=f"Cannot modify field '{attr.key}' on a ledger event",
            )


def _check_state_event_delete(mapper, connection, target):
    from contract_ledger.models.state_event import ContractStateEvent

    if not isinstance(target, ContractStateEvent):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ContractStateEvent",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ContractStateEvent",
        entity_id=str(target.id),
        reason="Ledger events cannot be deleted; append a superseding event",
    )


def register_immutability_listeners():
    """Register the ContractStateEvent listeners (safe to call repeatedly)."""
    from contract_ledger.models.state_event import ContractStateEvent

    for event_name, listener_fn in (
        ("before_update", _check_state_event_immutability),
        ("before_delete", _check_state_event_delete),
    ):
        if not event.contains(ContractStateEvent, event_name, listener_fn):
            event.listen(ContractStateEvent, event_name, listener_fn)

    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """Remove the listeners.  Tests only."""
    from contract_ledger.models.state_event import ContractStateEvent

    _safe_remove_listener(
        ContractStateEvent, "before_update", _check_state_event_immutability
    )
    _safe_remove_listener(ContractStateEvent, "before_delete", _check_state_event_delete)
