"""
Module: contract_ledger.models.contract
Responsibility: The ledger-facing slice of the contract aggregate.
Architecture position: Ledger > Models.  May import from db/ only.

The full contract (parties, projects, allocations, documents) belongs to the
contract management collaborator.  The ledger only needs the fields listed
here:

    - ``total_amount``: denormalized total, written back by callers after
      ledger writes and compared against the ledger on every live read.
    - ``contract_date``: effective date of the CREATED event.
    - ``event_sourcing_enabled``: legacy contracts never consult the ledger.
    - ``ledger_version``: monotonic counter bumped once per logical ledger
      change.  The UPDATE that bumps it is the per-contract write lock.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from contract_ledger.db.base import Base
from contract_ledger.db.types import MoneyType, UTCDateTime


class Contract(Base):
    """Commercial contract as seen by the ledger."""

    __tablename__ = "contracts"

    number: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    contract_date: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    # Denormalized, mutable; reconciled against the ledger
    total_amount: Mapped[Decimal] = mapped_column(
        MoneyType(),
        nullable=False,
        default=Decimal("0"),
    )

    event_sourcing_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    ledger_version: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    def uses_event_sourcing(self) -> bool:
        """False for legacy contracts whose total is edited directly."""
        return bool(self.event_sourcing_enabled)

    def __repr__(self) -> str:
        return f"<Contract {self.number} total={self.total_amount}>"
