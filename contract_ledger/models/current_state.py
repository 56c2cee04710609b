"""
Module: contract_ledger.models.current_state
Responsibility: Materialized projection of a contract's ledger -- one row per
    contract holding the last computed total, active specification and the
    active event id set used to compute them.
Architecture position: Ledger > Models.

This table is a cache, not a source of truth.  It is written only by
StateCalculator.recalculate_contract_state() and may be dropped and rebuilt
at any time.  A missing row simply triggers a rebuild.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, BigInteger, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from contract_ledger.db.base import Base, UUIDString
from contract_ledger.db.types import MoneyType, UTCDateTime


class ContractCurrentState(Base):
    """Cached aggregate for one contract (1:1 via unique contract_id)."""

    __tablename__ = "contract_current_states"

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("contracts.id"),
        nullable=False,
        unique=True,
    )

    active_specification_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    current_total_amount: Mapped[Decimal] = mapped_column(
        MoneyType(),
        nullable=False,
    )

    # Event ids (as strings) in aggregation order
    active_event_ids: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    calculated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    # Contract.ledger_version observed when this row was computed
    ledger_version: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return (
            f"<ContractCurrentState {self.contract_id} "
            f"total={self.current_total_amount} v{self.ledger_version}>"
        )
