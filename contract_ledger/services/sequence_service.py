"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers for ledger events, one
    counter per contract.  The ``seq`` column is the last ordering
    tiebreaker after effective_from and created_at, so two events of a
    contract written within the same clock tick still have a total order.
    The per-contract counter row is only locked by writers that already hold
    that contract's write lock, so contracts never queue on each other.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value.  MAX(seq) + 1 is never used.
    - Transactional: an allocation is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via savepoint
      rollback and retry).
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from contract_ledger.logging_config import get_logger
from contract_ledger.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller controls boundaries.
    """

    STATE_EVENT = "state_event"

    @classmethod
    def state_event_sequence(cls, contract_id) -> str:
        """Counter name for the events of ``contract_id``."""
        return f"{cls.STATE_EVENT}:{contract_id}"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment it and
        return the new value (always > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  Another writer may create the row concurrently; the
            # savepoint keeps the caller's work intact if we lose that race.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name
            )
        ).scalar_one_or_none()
