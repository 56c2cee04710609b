"""
Module: contract_ledger.models.state_event
Responsibility: ORM persistence for ContractStateEvent -- the unit of truth
    from which every contract total and active specification is derived.
Architecture position: Ledger > Models.  May import from db/ and domain
    value enums only.

Invariants enforced:
    - Append-only: the ORM listeners in db/immutability.py reject changes to
      contract_id, event_type, amount_delta, triggered_by_*, effective_from,
      supersedes_event_id, seq and created_at, and reject every DELETE.
    - Supersession exclusivity: UNIQUE(supersedes_event_id).  NULLs do not
      collide, so only superseding rows participate.
    - seq is unique and strictly increasing within a contract (allocated by
      SequenceService).

An event is *active* iff no other row has supersedes_event_id == its id.
Activity is therefore derived, never stored.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Enum as SAEnum,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from contract_ledger.db.base import TrackedBase, UUIDString
from contract_ledger.db.types import MoneyType, UTCDateTime
from contract_ledger.domain.values import StateEventType, TriggerKind, TriggerRef


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class ContractStateEvent(TrackedBase):
    """
    One signed, immutable change to a contract's amount or specification.

    Contract:
        Rows are inserted by EventStore only.  Once flushed, only
        ``event_metadata`` may change (bookkeeping annotations).

    Non-goals:
        - Does not know whether it is active; that is a query concern
          (StateEventSelector).
    """

    __tablename__ = "contract_state_events"

    __table_args__ = (
        UniqueConstraint("supersedes_event_id", name="uq_state_event_supersedes"),
        UniqueConstraint("contract_id", "seq", name="uq_state_event_contract_seq"),
        Index("idx_state_event_contract_effective", "contract_id", "effective_from"),
        Index("idx_state_event_contract_type", "contract_id", "event_type"),
        Index(
            "idx_state_event_trigger",
            "contract_id",
            "triggered_by_kind",
            "triggered_by_id",
        ),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("contracts.id"),
        nullable=False,
    )

    event_type: Mapped[StateEventType] = mapped_column(
        SAEnum(
            StateEventType,
            native_enum=False,
            length=40,
            values_callable=_enum_values,
            name="state_event_type",
        ),
        nullable=False,
    )

    triggered_by_kind: Mapped[TriggerKind] = mapped_column(
        SAEnum(
            TriggerKind,
            native_enum=False,
            length=40,
            values_callable=_enum_values,
            name="trigger_kind",
        ),
        nullable=False,
    )

    triggered_by_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    specification_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    amount_delta: Mapped[Decimal] = mapped_column(
        MoneyType(),
        nullable=False,
    )

    # Business-effective time; may precede created_at (backdated agreements)
    effective_from: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    supersedes_event_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("contract_state_events.id"),
        nullable=True,
    )

    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    @property
    def triggered_by(self) -> TriggerRef:
        return TriggerRef(self.triggered_by_kind, self.triggered_by_id)

    @property
    def affects_amount(self) -> bool:
        return self.event_type.affects_amount

    def __repr__(self) -> str:
        return (
            f"<ContractStateEvent {self.event_type.value} "
            f"delta={self.amount_delta} seq={self.seq}>"
        )
