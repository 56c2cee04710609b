"""Database layer - engine, base classes, types, and immutability."""

from contract_ledger.db.base import UUID, Base, TrackedBase, UUIDString
from contract_ledger.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from contract_ledger.db.types import MoneyType, UTCDateTime

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "MoneyType",
    "UTCDateTime",
]
