"""
Module: contract_ledger.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the UUID primary key convention, the type annotation map for
    consistent column types, and the TrackedBase mixin for audit fields.
Architecture position: Ledger > DB.  Lowest-level import target within the
    package.  MUST NOT import from models/, services/, selectors/ or domain/.

Conventions:
    - UUID primary keys generated with uuid4, stored as String(36).
    - Decimal maps to MoneyType (exact on every backend).
    - datetime maps to UTCDateTime (always timezone-aware UTC).
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from contract_ledger.db.types import MoneyType, UTCDateTime


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Converts between Python UUID objects and their 36-character string
    representation transparently.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Every model gets a uuid4 primary key; the type_annotation_map keeps
    column types identical across the schema.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: MoneyType(),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with creation timestamp and actor.

    ``created_at`` is assigned by the writing service from its injected
    clock, so ordering by it is deterministic under test.  ``created_by_id``
    is nullable: system jobs (batch backfill, reconciliation) have no user.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


UUID = PyUUID
