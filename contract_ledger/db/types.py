"""
Module: contract_ledger.db.types
Responsibility: Column types and helpers for monetary amounts and timestamps.
    Centralizes precision and timezone handling so that every model and
    service uses identical definitions.
Architecture position: Ledger > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

No floats anywhere in the ledger.  All monetary amounts are Decimal.
"""

from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator

MONEY_PRECISION = 38
MONEY_SCALE = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


class MoneyType(TypeDecorator):
    """
    Exact decimal amount.

    Numeric(38, 9) on PostgreSQL.  SQLite has no exact decimal storage, so
    there the value is persisted as its canonical string and parsed back,
    which keeps round-trips exact.
    """

    impl = Numeric(MONEY_PRECISION, MONEY_SCALE)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(MONEY_PRECISION, MONEY_SCALE))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = to_decimal(value)
        if dialect.name == "sqlite":
            return str(amount)
        return amount

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value))


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp normalized to UTC.

    Naive datetimes coming back from backends without timezone support are
    interpreted as UTC.  Naive datetimes passed in are assumed to be UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_decimal(value: Any) -> Decimal:
    """
    Convert an amount to Decimal without passing through binary floats.

    Raises:
        TypeError: If value is a float (floats cannot hold money exactly).
        decimal.InvalidOperation: If value is not numeric.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Boolean is not a monetary amount")
    if isinstance(value, float):
        raise TypeError(
            f"Float amounts are not accepted ({value!r}); pass Decimal or str"
        )
    return Decimal(str(value))


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to the given number of decimal places."""
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=rounding)


def as_of_instant(value: date | datetime) -> datetime:
    """
    Normalize an "as of" argument to an aware UTC instant.

    A bare date means the end of that day in UTC, so events effective at any
    time on that day are included.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime.combine(value, time.max, tzinfo=timezone.utc)
