"""
Value objects shared by the ledger's models, services and selectors.

Everything here is immutable.  DTOs returned by selectors and the state
calculator are frozen so they can be handed out of the process-wide cache
without a caller being able to corrupt a cached value.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class StateEventType(str, Enum):
    """Kinds of ledger events."""

    CREATED = "created"
    AMENDED = "amended"
    SUPERSEDED = "superseded"
    SUPPLEMENTARY_AGREEMENT_CREATED = "supplementary_agreement_created"
    PAYMENT_CREATED = "payment_created"

    @property
    def affects_amount(self) -> bool:
        """Payments are recorded but never change the contract value."""
        return self is not StateEventType.PAYMENT_CREATED


class TriggerKind(str, Enum):
    """Closed set of business objects that can cause a ledger event."""

    CONTRACT = "contract"
    SUPPLEMENTARY_AGREEMENT = "supplementary_agreement"
    PERFORMANCE_ACT = "performance_act"
    PAYMENT = "payment"


@dataclass(frozen=True, slots=True)
class TriggerRef:
    """
    Immutable reference to the document that caused an event.

    Self-describing pointer (kind + id), so the event table needs no
    polymorphic foreign key.
    """

    kind: TriggerKind
    id: UUID

    def __post_init__(self) -> None:
        if not isinstance(self.kind, TriggerKind):
            raise ValueError(f"kind must be TriggerKind, got {type(self.kind)}")

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @classmethod
    def parse(cls, ref_string: str) -> TriggerRef:
        """
        Parse a string representation back to TriggerRef.

        Format: "kind:uuid"
        """
        try:
            kind_str, id_str = ref_string.split(":", 1)
            return cls(kind=TriggerKind(kind_str), id=UUID(id_str))
        except (ValueError, KeyError) as e:
            raise ValueError(f"Invalid trigger ref string: {ref_string}") from e

    @classmethod
    def contract(cls, contract_id: UUID) -> TriggerRef:
        return cls(TriggerKind.CONTRACT, contract_id)

    @classmethod
    def supplementary_agreement(cls, agreement_id: UUID) -> TriggerRef:
        return cls(TriggerKind.SUPPLEMENTARY_AGREEMENT, agreement_id)

    @classmethod
    def performance_act(cls, act_id: UUID) -> TriggerRef:
        return cls(TriggerKind.PERFORMANCE_ACT, act_id)

    @classmethod
    def payment(cls, payment_id: UUID) -> TriggerRef:
        return cls(TriggerKind.PAYMENT, payment_id)


# Collaborator documents.  The ledger never loads these itself; callers pass
# what they already hold.


@dataclass(frozen=True)
class AgreementInfo:
    """Supplementary agreement as far as the ledger is concerned."""

    id: UUID
    number: str
    agreement_date: datetime
    change_amount: Decimal = Decimal("0")
    supersede_agreement_ids: tuple[UUID, ...] = ()
    subject_changes: str | None = None


@dataclass(frozen=True)
class PaymentInfo:
    id: UUID
    amount: Decimal
    payment_date: datetime
    payment_type: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class StateEventDTO:
    """Read-only view of a ContractStateEvent."""

    id: UUID
    contract_id: UUID
    event_type: StateEventType
    triggered_by: TriggerRef
    specification_id: UUID | None
    amount_delta: Decimal
    effective_from: datetime
    supersedes_event_id: UUID | None
    metadata: Mapping[str, Any]
    seq: int
    created_at: datetime
    created_by_id: UUID | None
    is_active: bool = True

    @property
    def affects_amount(self) -> bool:
        return self.event_type.affects_amount


@dataclass(frozen=True)
class CurrentStateDTO:
    """Read-only view of a ContractCurrentState row."""

    contract_id: UUID
    active_specification_id: UUID | None
    current_total_amount: Decimal
    active_event_ids: tuple[UUID, ...]
    calculated_at: datetime
    ledger_version: int


@dataclass(frozen=True)
class ContractStateSnapshot:
    """
    Aggregate computed from the active events of a contract.

    ``as_of_date`` is the moment the snapshot describes: ``now`` for live
    reads, the requested instant for historical ones.
    """

    contract_id: UUID
    total_amount: Decimal
    active_specification_id: UUID | None
    active_events: tuple[StateEventDTO, ...] = field(default_factory=tuple)
    as_of_date: datetime | None = None

    @property
    def active_event_ids(self) -> tuple[UUID, ...]:
        return tuple(e.id for e in self.active_events)
