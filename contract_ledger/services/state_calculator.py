"""
StateCalculator -- turns a contract's events into its one authoritative
projection and maintains the materialized ContractCurrentState row.

Responsibility:
    - recalculate_contract_state: fresh aggregation, upsert of the
      projection row, cache invalidation.
    - get_current_state: read-through cache over the projection, rebuilding
      when the row is missing, older than the staleness threshold, or
      computed at an older ledger_version than the contract's.
    - get_state_at_date: historical aggregation, never cached.
    - recalculate_all_contracts / recalculate_contract: batch maintenance,
      one SAVEPOINT per contract.

Architecture position:
    Ledger > Services.  Reads through StateEventSelector; aggregation rules
    live in domain/aggregation.py.

Invariants enforced:
    - ContractCurrentState is written only here.
    - current_total_amount == Σ amount_delta over the contract's
      amount-affecting events (payments never count; a superseded event and
      its counter-event net to zero).

Failure modes:
    - ContractNotFoundError from recalculate_contract.
    - Batch runs never raise for a single contract: the failure is logged,
      the contract's SAVEPOINT rolled back, and the batch continues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from contract_ledger.cache import ContractCache
from contract_ledger.config import LedgerConfig
from contract_ledger.db.types import as_of_instant
from contract_ledger.domain.aggregation import build_snapshot
from contract_ledger.domain.clock import Clock, SystemClock
from contract_ledger.domain.values import ContractStateSnapshot, CurrentStateDTO
from contract_ledger.exceptions import ContractNotFoundError
from contract_ledger.logging_config import get_logger
from contract_ledger.models.contract import Contract
from contract_ledger.models.current_state import ContractCurrentState
from contract_ledger.selectors.state_event_selector import StateEventSelector
from contract_ledger.services.base import BaseService
from contract_ledger.services.contract_lock import ContractLockService

logger = get_logger("services.state_calculator")


@dataclass(frozen=True)
class RecalculationFailure:
    contract_id: UUID
    error_code: str
    error_message: str


@dataclass(frozen=True)
class BatchRecalculationResult:
    """Outcome of a maintenance recomputation run."""

    total: int
    succeeded: int
    failures: tuple[RecalculationFailure, ...] = field(default_factory=tuple)

    @property
    def failed(self) -> int:
        return len(self.failures)


class StateCalculator(BaseService):
    """
    Aggregation plus materialized projection management.

    Guarantees:
        - Two consecutive recalculations with no intervening write yield
          the same total, specification and active id set; only
          calculated_at moves.
        - Values returned by get_current_state are frozen DTOs and may be
          shared through the cache.
    """

    CACHE_NAMESPACE = "current_state"

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        cache: ContractCache | None = None,
        config: LedgerConfig | None = None,
        selector: StateEventSelector | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._cache = cache
        self._config = config or LedgerConfig()
        self._selector = selector or StateEventSelector(
            session, cache=cache, cache_ttl=self._config.cache_ttl_seconds
        )
        self._locks = ContractLockService(session)

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def recalculate_contract_state(self, contract: Contract) -> ContractCurrentState:
        """Recompute from the event log and upsert the projection row."""
        state = self._rebuild(contract)
        if self._cache is not None:
            self._cache.invalidate(contract.id)
            self._cache.invalidate_on_transaction_end(self.session, contract.id)
        return state

    def _rebuild(self, contract: Contract) -> ContractCurrentState:
        now = self._clock.now()

        with self.session.begin_nested():
            version = self._locks.lock_for_read(contract.id)
            events = self._selector.find_by_contract(contract.id, use_cache=False)
            snapshot = build_snapshot(contract.id, events, as_of=now)

            state = self._load_state(contract.id)
            if state is None:
                state = ContractCurrentState(contract_id=contract.id)
                self.session.add(state)

            state.active_specification_id = snapshot.active_specification_id
            state.current_total_amount = snapshot.total_amount
            state.active_event_ids = [str(i) for i in snapshot.active_event_ids]
            state.calculated_at = now
            state.ledger_version = version
            self.session.flush()

        logger.info(
            "contract_state_recalculated",
            extra={
                "contract_id": str(contract.id),
                "total_amount": str(snapshot.total_amount),
                "active_events": len(snapshot.active_events),
                "ledger_version": version,
            },
        )
        return state

    def get_current_state(
        self,
        contract: Contract,
        force_recalculate: bool = False,
    ) -> CurrentStateDTO:
        """
        Cached projection for ``contract``.

        ``force_recalculate`` bypasses the cache; use it whenever the value
        feeds a calculation or is shown right after a write.
        """
        if force_recalculate:
            return self._to_dto(self.recalculate_contract_state(contract))

        if self._cache is None:
            state = self._load_or_rebuild(contract)
        else:
            state = self._cache.get_or_compute(
                contract.id,
                self._config.cache_ttl_seconds,
                lambda: self._load_or_rebuild(contract),
                namespace=self.CACHE_NAMESPACE,
            )

        if self._is_expired(state.calculated_at):
            logger.debug(
                "contract_state_stale",
                extra={
                    "contract_id": str(contract.id),
                    "calculated_at": state.calculated_at.isoformat(),
                },
            )
            return self._to_dto(self.recalculate_contract_state(contract))
        return state

    def get_state_at_date(
        self,
        contract: Contract,
        as_of: date | datetime,
    ) -> ContractStateSnapshot:
        """Aggregate as of ``as_of`` (a bare date means end of that day, UTC)."""
        instant = as_of_instant(as_of)
        events = self._selector.find_effective_events(contract.id, instant)
        return build_snapshot(contract.id, events, as_of=instant)

    # ------------------------------------------------------------------
    # Batch maintenance
    # ------------------------------------------------------------------

    def recalculate_contract(self, contract_id: UUID) -> ContractCurrentState:
        contract = self.session.get(Contract, contract_id)
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return self.recalculate_contract_state(contract)

    def recalculate_all_contracts(self) -> BatchRecalculationResult:
        """Rebuild every event-sourced contract; failures are isolated."""
        contract_ids = self.session.execute(
            select(Contract.id)
            .where(Contract.event_sourcing_enabled.is_(True))
            .order_by(Contract.number, Contract.id)
        ).scalars().all()

        logger.info("batch_recalculation_started", extra={"contracts": len(contract_ids)})

        succeeded = 0
        failures: list[RecalculationFailure] = []
        for contract_id in contract_ids:
            savepoint = self.session.begin_nested()
            try:
                self.recalculate_contract(contract_id)
                savepoint.commit()
                succeeded += 1
            except Exception as exc:
                savepoint.rollback()
                code = getattr(exc, "code", "UNHANDLED_EXCEPTION")
                failures.append(RecalculationFailure(contract_id, code, str(exc)))
                logger.error(
                    "contract_recalculation_failed",
                    extra={
                        "contract_id": str(contract_id),
                        "error_code": code,
                        "error": str(exc),
                    },
                )

        result = BatchRecalculationResult(
            total=len(contract_ids),
            succeeded=succeeded,
            failures=tuple(failures),
        )
        logger.info(
            "batch_recalculation_completed",
            extra={
                "total": result.total,
                "succeeded": result.succeeded,
                "failed": result.failed,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_state(self, contract_id: UUID) -> ContractCurrentState | None:
        return self.session.execute(
            select(ContractCurrentState)
            .where(ContractCurrentState.contract_id == contract_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _load_or_rebuild(self, contract: Contract) -> CurrentStateDTO:
        state = self._load_state(contract.id)
        current_version = self.session.execute(
            select(Contract.ledger_version).where(Contract.id == contract.id)
        ).scalar_one_or_none()
        if current_version is None:
            raise ContractNotFoundError(str(contract.id))

        if (
            state is None
            or state.ledger_version != current_version
            or self._is_expired(state.calculated_at)
        ):
            # runs inside the cache miss; the rebuilt value is the one being stored
            state = self._rebuild(contract)
            if self._cache is not None:
                self._cache.invalidate_on_transaction_end(self.session, contract.id)
        return self._to_dto(state)

    def _is_expired(self, calculated_at: datetime) -> bool:
        threshold = timedelta(seconds=self._config.staleness_threshold_seconds)
        return self._clock.now() - calculated_at > threshold

    @staticmethod
    def _to_dto(state: ContractCurrentState) -> CurrentStateDTO:
        return CurrentStateDTO(
            contract_id=state.contract_id,
            active_specification_id=state.active_specification_id,
            current_total_amount=state.current_total_amount,
            active_event_ids=tuple(UUID(i) for i in state.active_event_ids),
            calculated_at=state.calculated_at,
            ledger_version=state.ledger_version,
        )
