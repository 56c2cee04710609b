"""
ContractStateEventService -- the ledger API.

Responsibility:
    The only component allowed to originate ledger events.  Translates each
    business occurrence (contract creation, amendment, supersession,
    supplementary agreement, payment) into one or more ContractStateEvent
    rows, and serves current and historical state reads.

Architecture position:
    Ledger > Services.  Called by collaborators (contract management,
    agreement application, payment posting) and the maintenance CLI.
    Composes EventStore, StateEventSelector, StateCalculator and
    ContractLockService.

Invariants enforced:
    - Atomic logical change: every public write runs in its own SAVEPOINT
      whose first statement is the contract write lock.  A domain error
      rolls back every event of the change; the caller's transaction
      survives.
    - Per-contract serialization: the write lock is held until the caller's
      transaction ends, so concurrent amendments cannot lose updates.
    - Supersession: only active events can be superseded, and only by an
      event of the same contract.
    - Payments never change the contract total.

Failure modes:
    - LegacyContractError: ledger write on a contract without event
      sourcing.
    - EventAlreadySupersededError (ALREADY_SUPERSEDED).
    - NoActiveEventsFoundError (NO_ACTIVE_EVENTS_FOUND).
    - EventContractMismatchError, EventNotFoundError.
    - DuplicateCreatedEventError: second CREATED event for a contract.

Audit relevance:
    Every event is logged as ``state_event_created`` by EventStore.  A drift
    between the ledger total and ``contract.total_amount`` is logged as
    ``contract_total_mismatch`` and never silently corrected on read.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from contract_ledger.cache import ContractCache
from contract_ledger.config import LedgerConfig
from contract_ledger.db.types import ensure_utc, to_decimal
from contract_ledger.domain.aggregation import (
    build_snapshot,
    drift,
    latest_event,
    total_amount,
)
from contract_ledger.domain.clock import Clock, SystemClock
from contract_ledger.domain.describe import describe_event
from contract_ledger.domain.values import (
    AgreementInfo,
    ContractStateSnapshot,
    PaymentInfo,
    StateEventDTO,
    StateEventType,
    TriggerKind,
    TriggerRef,
)
from contract_ledger.exceptions import (
    DuplicateCreatedEventError,
    EventAlreadySupersededError,
    EventContractMismatchError,
    LegacyContractError,
    NoActiveEventsFoundError,
)
from contract_ledger.logging_config import LogContext, get_logger
from contract_ledger.models.contract import Contract
from contract_ledger.models.state_event import ContractStateEvent
from contract_ledger.selectors.state_event_selector import StateEventSelector
from contract_ledger.services.base import BaseService
from contract_ledger.services.contract_lock import ContractLockService
from contract_ledger.services.event_store import EventStore, NewStateEvent
from contract_ledger.services.state_calculator import StateCalculator

logger = get_logger("services.state_event")


@dataclass(frozen=True)
class TimelineEntry:
    """One timeline row for audit display."""

    event: StateEventDTO
    description: str


class ContractStateEventService(BaseService):
    """
    Write-side orchestrator and read facade of the contract ledger.

    Contract:
        Public write methods return the flushed ORM events they created.
        Nothing is committed; the caller owns the transaction.

    Non-goals:
        - Does NOT update ``contract.total_amount`` as a side effect of
          writes.  Callers persist the new total with
          ``sync_contract_total`` (or their own logic) after the change.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        cache: ContractCache | None = None,
        config: LedgerConfig | None = None,
        actor_id: UUID | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._config = config or LedgerConfig()
        self._cache = cache
        self._actor_id = actor_id

        self.selector = StateEventSelector(
            session, cache=cache, cache_ttl=self._config.cache_ttl_seconds
        )
        self.store = EventStore(session, clock=self._clock, cache=cache)
        self.calculator = StateCalculator(
            session,
            clock=self._clock,
            cache=cache,
            config=self._config,
            selector=self.selector,
        )
        self._locks = ContractLockService(session)

    @property
    def config(self) -> LedgerConfig:
        return self._config

    # ------------------------------------------------------------------
    # Transaction scaffolding
    # ------------------------------------------------------------------

    @contextmanager
    def _logical_change(self, contract: Contract, operation: str) -> Iterator[None]:
        """SAVEPOINT + contract write lock around one logical change."""
        if not contract.uses_event_sourcing():
            raise LegacyContractError(str(contract.id))

        with LogContext.bind(contract_id=str(contract.id)):
            try:
                with self.session.begin_nested():
                    self._locks.lock_for_write(contract)
                    yield
            except Exception:
                logger.warning(
                    "ledger_change_rolled_back",
                    extra={"operation": operation, "contract_id": str(contract.id)},
                    exc_info=True,
                )
                raise

    def _new_event(self, **kwargs: Any) -> ContractStateEvent:
        kwargs.setdefault("created_by_id", self._actor_id)
        return self.store.create_event(NewStateEvent(**kwargs))

    def _ledger_total(self, contract_id: UUID) -> Decimal:
        return total_amount(self.selector.find_by_contract(contract_id, use_cache=False))

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_contract_created_event(
        self,
        contract: Contract,
        specification_id: UUID | None = None,
    ) -> ContractStateEvent:
        """
        Open the ledger: one CREATED event carrying the initial total,
        effective at the contract date (or now when the contract has none).
        """
        with self._logical_change(contract, "create_contract_created_event"):
            existing = self.selector.get_latest_event_by_type(
                contract.id, StateEventType.CREATED
            )
            if existing is not None:
                raise DuplicateCreatedEventError(str(contract.id), str(existing.id))

            amount = to_decimal(contract.total_amount or 0)
            event = self._new_event(
                contract_id=contract.id,
                event_type=StateEventType.CREATED,
                triggered_by=TriggerRef.contract(contract.id),
                amount_delta=amount,
                effective_from=contract.contract_date or self._clock.now(),
                specification_id=specification_id,
                metadata={
                    "total_amount": amount,
                    "contract_number": contract.number,
                    "specification_id": specification_id,
                },
            )
        return event

    # ------------------------------------------------------------------
    # Amendment and supersession
    # ------------------------------------------------------------------

    def create_amended_event(
        self,
        contract: Contract,
        specification_id: UUID | None,
        amount_delta: Decimal | int | str,
        triggered_by: TriggerRef | None = None,
        effective_from: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ContractStateEvent:
        """One AMENDED event with an arbitrary signed delta."""
        with self._logical_change(contract, "create_amended_event"):
            event = self._amend(
                contract,
                specification_id,
                amount_delta,
                triggered_by,
                effective_from,
                metadata,
            )
        return event

    def create_superseded_event(
        self,
        contract: Contract,
        target_event: ContractStateEvent | StateEventDTO,
        triggered_by: TriggerRef | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ContractStateEvent:
        """
        Invalidate ``target_event`` with one SUPERSEDED event carrying the
        negated delta.

        Raises:
            EventAlreadySupersededError: target is no longer active.
            EventContractMismatchError: target belongs to another contract.
        """
        with self._logical_change(contract, "create_superseded_event"):
            event = self._supersede(contract, target_event.id, triggered_by, metadata)
        return event

    def create_amendment_with_supersede(
        self,
        contract: Contract,
        agreement: AgreementInfo,
        previous_active_event: ContractStateEvent | StateEventDTO | None = None,
        new_specification_id: UUID | None = None,
        new_amount: Decimal | int | str | None = None,
    ) -> list[ContractStateEvent]:
        """
        Supersede the previous active event (given, or the contract's latest
        active amount event) and, when a new specification or amount is
        given, append the agreement's AMENDED event.
        """
        events: list[ContractStateEvent] = []
        trigger = TriggerRef.supplementary_agreement(agreement.id)
        reason = {
            "reason": f"Superseded by supplementary agreement {agreement.number}",
            "superseding_agreement_id": agreement.id,
            "superseding_agreement_number": agreement.number,
        }

        with self._logical_change(contract, "create_amendment_with_supersede"):
            if previous_active_event is not None:
                target_id = previous_active_event.id
            else:
                active = self.selector.find_active_events(contract.id, use_cache=False)
                latest = latest_event(
                    active,
                    exclude_types=(
                        StateEventType.PAYMENT_CREATED,
                        StateEventType.SUPERSEDED,
                    ),
                )
                target_id = latest.id if latest is not None else None

            if target_id is not None:
                events.append(self._supersede(contract, target_id, trigger, reason))

            if new_specification_id is not None or new_amount is not None:
                amount = new_amount if new_amount is not None else agreement.change_amount
                events.append(
                    self._amend(
                        contract,
                        new_specification_id,
                        amount,
                        trigger,
                        agreement.agreement_date,
                        {
                            "agreement_id": agreement.id,
                            "agreement_number": agreement.number,
                        },
                    )
                )
        return events

    def supersede_agreements_without_amount_change(
        self,
        contract: Contract,
        agreement: AgreementInfo,
        agreement_ids: Sequence[UUID],
    ) -> list[ContractStateEvent]:
        """
        Invalidate the events of earlier agreements while keeping the
        contract total unchanged.

        Emits one SUPERSEDED per matched active event plus exactly one
        compensating AMENDED event whose delta is the sum of the matched
        deltas.

        Raises:
            NoActiveEventsFoundError: no active amount-affecting event was
                triggered by any of ``agreement_ids``.
        """
        wanted = {UUID(str(i)) for i in agreement_ids}
        trigger = TriggerRef.supplementary_agreement(agreement.id)
        events: list[ContractStateEvent] = []

        with self._logical_change(contract, "supersede_agreements_without_amount_change"):
            active = self.selector.find_active_events(contract.id, use_cache=False)
            matched = [
                e
                for e in active
                if e.affects_amount
                and e.triggered_by.kind is TriggerKind.SUPPLEMENTARY_AGREEMENT
                and e.triggered_by.id in wanted
            ]
            if not matched:
                raise NoActiveEventsFoundError(
                    str(contract.id), sorted(str(i) for i in wanted)
                )

            now = self._clock.now()
            for target in matched:
                events.append(
                    self._supersede(
                        contract,
                        target.id,
                        trigger,
                        {
                            "reason": (
                                f"Superseded by supplementary agreement "
                                f"{agreement.number} without amount change"
                            ),
                            "superseding_agreement_id": agreement.id,
                            "superseding_agreement_number": agreement.number,
                            "superseded_agreement_id": target.triggered_by.id,
                        },
                        effective_from=now,
                    )
                )

            compensation = sum((e.amount_delta for e in matched), Decimal("0"))
            compensation_from = max([now, *(ensure_utc(e.effective_from) for e in matched)])
            events.append(
                self._amend(
                    contract,
                    None,
                    compensation,
                    trigger,
                    compensation_from,
                    {
                        "is_compensating": True,
                        "agreement_id": agreement.id,
                        "agreement_number": agreement.number,
                        "superseded_agreement_ids": sorted(str(i) for i in wanted),
                        "superseded_events_count": len(matched),
                        "reason": "Compensates superseded agreement events",
                    },
                )
            )

        logger.info(
            "agreements_superseded_total_preserved",
            extra={
                "contract_id": str(contract.id),
                "agreement_id": str(agreement.id),
                "superseded_events": len(matched),
                "compensation": str(compensation),
            },
        )
        return events

    # ------------------------------------------------------------------
    # Document postings
    # ------------------------------------------------------------------

    def create_supplementary_agreement_event(
        self,
        contract: Contract,
        agreement: AgreementInfo,
    ) -> ContractStateEvent:
        with self._logical_change(contract, "create_supplementary_agreement_event"):
            event = self._new_event(
                contract_id=contract.id,
                event_type=StateEventType.SUPPLEMENTARY_AGREEMENT_CREATED,
                triggered_by=TriggerRef.supplementary_agreement(agreement.id),
                amount_delta=to_decimal(agreement.change_amount or 0),
                effective_from=agreement.agreement_date or self._clock.now(),
                metadata={
                    "agreement_id": agreement.id,
                    "agreement_number": agreement.number,
                    "change_amount": agreement.change_amount,
                    "subject_changes": agreement.subject_changes,
                },
            )
        return event

    def create_payment_event(
        self,
        contract: Contract,
        payment: PaymentInfo,
    ) -> ContractStateEvent:
        """Record a payment.  Its delta never enters the contract total."""
        with self._logical_change(contract, "create_payment_event"):
            event = self._new_event(
                contract_id=contract.id,
                event_type=StateEventType.PAYMENT_CREATED,
                triggered_by=TriggerRef.payment(payment.id),
                amount_delta=to_decimal(payment.amount or 0),
                effective_from=payment.payment_date or self._clock.now(),
                metadata={
                    "payment_id": payment.id,
                    "payment_type": payment.payment_type,
                    "amount": payment.amount,
                    "description": payment.description,
                },
            )
        return event

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_current_state(self, contract: Contract) -> ContractStateSnapshot:
        """
        Fresh state straight from the event log (never from the cache).

        The computed total is compared with ``contract.total_amount``; a
        difference above the configured epsilon is logged as
        ``contract_total_mismatch`` and returned as computed.
        """
        now = self._clock.now()
        if not contract.uses_event_sourcing():
            return ContractStateSnapshot(
                contract_id=contract.id,
                total_amount=to_decimal(contract.total_amount or 0),
                active_specification_id=None,
                active_events=(),
                as_of_date=now,
            )

        events = self.selector.find_by_contract(contract.id, use_cache=False)
        snapshot = build_snapshot(contract.id, events, as_of=now)

        difference = drift(snapshot.total_amount, contract.total_amount)
        if difference > self._config.amount_epsilon:
            logger.warning(
                "contract_total_mismatch",
                extra={
                    "contract_id": str(contract.id),
                    "computed_total": str(snapshot.total_amount),
                    "stored_total": str(contract.total_amount),
                    "difference": str(difference),
                },
            )
        return snapshot

    def get_state_at_date(
        self,
        contract: Contract,
        as_of: date | datetime,
    ) -> ContractStateSnapshot:
        return self.calculator.get_state_at_date(contract, as_of)

    def get_timeline(
        self,
        contract: Contract,
        as_of_date: date | datetime | None = None,
    ) -> tuple[StateEventDTO, ...]:
        """Full history, active and superseded, chronological."""
        return self.selector.get_timeline(contract.id, as_of_date)

    def get_timeline_entries(
        self,
        contract: Contract,
        as_of_date: date | datetime | None = None,
    ) -> list[TimelineEntry]:
        """Timeline with a human-readable description per event."""
        timeline = self.get_timeline(contract, as_of_date)
        by_id = {e.id: e for e in timeline}
        return [
            TimelineEntry(
                event=e,
                description=describe_event(e, by_id.get(e.supersedes_event_id)),
            )
            for e in timeline
        ]

    def sync_contract_total(self, contract: Contract) -> Decimal:
        """Write the ledger total back onto ``contract.total_amount``."""
        if not contract.uses_event_sourcing():
            raise LegacyContractError(str(contract.id))

        with self.session.begin_nested():
            self._locks.lock_for_read(contract.id)
            computed = self._ledger_total(contract.id)
            previous = contract.total_amount
            contract.total_amount = computed
            self.session.flush()

        logger.info(
            "contract_total_synced",
            extra={
                "contract_id": str(contract.id),
                "previous_total": str(previous),
                "total_amount": str(computed),
            },
        )
        return computed

    # ------------------------------------------------------------------
    # Building blocks (run inside an open logical change)
    # ------------------------------------------------------------------

    def _amend(
        self,
        contract: Contract,
        specification_id: UUID | None,
        amount_delta: Decimal | int | str,
        triggered_by: TriggerRef | None,
        effective_from: datetime | None,
        metadata: dict[str, Any] | None,
    ) -> ContractStateEvent:
        delta = to_decimal(amount_delta)
        old_total = self._ledger_total(contract.id)
        meta: dict[str, Any] = {
            "specification_id": specification_id,
            "amount_delta": delta,
            "old_total_amount": old_total,
            "new_total_amount": old_total + delta,
        }
        meta.update(metadata or {})
        return self._new_event(
            contract_id=contract.id,
            event_type=StateEventType.AMENDED,
            triggered_by=triggered_by or TriggerRef.contract(contract.id),
            amount_delta=delta,
            effective_from=effective_from or self._clock.now(),
            specification_id=specification_id,
            metadata=meta,
        )

    def _supersede(
        self,
        contract: Contract,
        target_id: UUID,
        triggered_by: TriggerRef | None,
        metadata: dict[str, Any] | None,
        effective_from: datetime | None = None,
    ) -> ContractStateEvent:
        target = self.store.get_row(target_id)
        if target.contract_id != contract.id:
            raise EventContractMismatchError(
                str(target_id), str(contract.id), str(target.contract_id)
            )

        superseders = self.selector.find_superseding_events(target_id)
        if superseders:
            raise EventAlreadySupersededError(str(target_id), str(superseders[0].id))

        # the pair nets to zero from the moment the target is in force
        effective = max(
            ensure_utc(effective_from or self._clock.now()),
            ensure_utc(target.effective_from),
        )

        meta: dict[str, Any] = {
            "superseded_event_id": target.id,
            "reason": "Superseded",
            "previous_specification_id": target.specification_id,
        }
        meta.update(metadata or {})
        return self._new_event(
            contract_id=contract.id,
            event_type=StateEventType.SUPERSEDED,
            triggered_by=triggered_by or TriggerRef.contract(contract.id),
            amount_delta=-target.amount_delta,
            effective_from=effective,
            supersedes_event_id=target.id,
            metadata=meta,
        )
