"""
Module: contract_ledger.selectors.state_event_selector
Responsibility: Read-side queries over contract_state_events: by contract,
    active-only, as of a date, by type, by trigger, superseding chains and
    the full audit timeline.
Architecture position: Ledger > Selectors.  Consumed by StateCalculator,
    ContractStateEventService and the maintenance services.

Activity:
    An event is active iff no row has ``supersedes_event_id`` equal to its
    id.  For historical reads ("as of" D) only superseding rows with
    ``effective_from <= D`` count, so a supersession made in March does not
    reach back into a February snapshot.

Caching:
    ``find_by_contract`` and ``find_active_events`` read through the
    ContractCache (namespace per query) when one is supplied.  Write paths
    pass ``use_cache=False``: a value that feeds a write is always read from
    the database.  Historical and single-event queries are never cached.
"""

from datetime import date, datetime
from types import MappingProxyType
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session, aliased

from contract_ledger.cache import ContractCache
from contract_ledger.db.types import as_of_instant
from contract_ledger.domain.values import StateEventDTO, StateEventType, TriggerRef
from contract_ledger.exceptions import EventNotFoundError
from contract_ledger.models.state_event import ContractStateEvent
from contract_ledger.selectors.base import BaseSelector


def _superseded_clause(as_of: datetime | None = None):
    """Correlated EXISTS: some row supersedes ContractStateEvent."""
    superseding = aliased(ContractStateEvent)
    conditions = [superseding.supersedes_event_id == ContractStateEvent.id]
    if as_of is not None:
        conditions.append(superseding.effective_from <= as_of)
    return exists().where(*conditions)


def _chronological():
    return (
        ContractStateEvent.effective_from,
        ContractStateEvent.created_at,
        ContractStateEvent.seq,
    )


class StateEventSelector(BaseSelector):
    """
    Query layer over ContractStateEvent.

    Guarantees:
        - Every returned DTO carries ``is_active`` computed in the same
          query (or the same row set) as the event itself.
        - Active queries are ordered by (effective_from, created_at, seq);
          ``find_by_contract`` by (created_at, seq).
    """

    def __init__(
        self,
        session: Session,
        cache: ContractCache | None = None,
        cache_ttl: float = 300,
    ):
        super().__init__(session)
        self._cache = cache
        self._cache_ttl = cache_ttl

    @staticmethod
    def to_dto(event: ContractStateEvent, is_active: bool = True) -> StateEventDTO:
        """Convert an ORM row to its read-only DTO."""
        return StateEventDTO(
            id=event.id,
            contract_id=event.contract_id,
            event_type=StateEventType(event.event_type),
            triggered_by=event.triggered_by,
            specification_id=event.specification_id,
            amount_delta=event.amount_delta,
            effective_from=event.effective_from,
            supersedes_event_id=event.supersedes_event_id,
            metadata=MappingProxyType(dict(event.event_metadata or {})),
            seq=event.seq,
            created_at=event.created_at,
            created_by_id=event.created_by_id,
            is_active=bool(is_active),
        )

    def _cached(self, contract_id, namespace, fn, use_cache):
        if self._cache is None or not use_cache:
            return fn()
        return self._cache.get_or_compute(
            contract_id, self._cache_ttl, fn, namespace=namespace
        )

    def _select_with_activity(self, as_of: datetime | None = None):
        active = (~_superseded_clause(as_of)).label("is_active")
        return select(ContractStateEvent, active)

    def _rows_to_dtos(self, rows) -> tuple[StateEventDTO, ...]:
        return tuple(self.to_dto(event, is_active) for event, is_active in rows)

    # ------------------------------------------------------------------
    # Contract-scoped queries
    # ------------------------------------------------------------------

    def find_by_contract(
        self,
        contract_id: UUID,
        use_cache: bool = True,
    ) -> tuple[StateEventDTO, ...]:
        """All events of a contract, active and superseded, oldest first."""

        def load():
            rows = self.session.execute(
                self._select_with_activity()
                .where(ContractStateEvent.contract_id == contract_id)
                .order_by(ContractStateEvent.created_at, ContractStateEvent.seq)
            ).all()
            return self._rows_to_dtos(rows)

        return self._cached(contract_id, "events", load, use_cache)

    def find_active_events(
        self,
        contract_id: UUID,
        use_cache: bool = True,
    ) -> tuple[StateEventDTO, ...]:
        """Active events of a contract in chronological order."""

        def load():
            events = self.session.execute(
                select(ContractStateEvent)
                .where(
                    ContractStateEvent.contract_id == contract_id,
                    ~_superseded_clause(),
                )
                .order_by(*_chronological())
            ).scalars().all()
            return tuple(self.to_dto(e, True) for e in events)

        return self._cached(contract_id, "active_events", load, use_cache)

    def find_active_events_as_of_date(
        self,
        contract_id: UUID,
        as_of: date | datetime,
    ) -> tuple[StateEventDTO, ...]:
        """
        Events effective by ``as_of`` and not superseded by then.

        A bare date covers the whole day (end of day, UTC).
        """
        instant = as_of_instant(as_of)
        events = self.session.execute(
            select(ContractStateEvent)
            .where(
                ContractStateEvent.contract_id == contract_id,
                ContractStateEvent.effective_from <= instant,
                ~_superseded_clause(instant),
            )
            .order_by(*_chronological())
        ).scalars().all()
        return tuple(self.to_dto(e, True) for e in events)

    def find_effective_events(
        self,
        contract_id: UUID,
        as_of: date | datetime,
    ) -> tuple[StateEventDTO, ...]:
        """
        Every event effective by ``as_of`` (active or not), with activity
        evaluated as of that instant.  Input for historical aggregation.
        """
        instant = as_of_instant(as_of)
        rows = self.session.execute(
            self._select_with_activity(instant)
            .where(
                ContractStateEvent.contract_id == contract_id,
                ContractStateEvent.effective_from <= instant,
            )
            .order_by(*_chronological())
        ).all()
        return self._rows_to_dtos(rows)

    def find_by_type(
        self,
        contract_id: UUID,
        event_type: StateEventType,
    ) -> tuple[StateEventDTO, ...]:
        rows = self.session.execute(
            self._select_with_activity()
            .where(
                ContractStateEvent.contract_id == contract_id,
                ContractStateEvent.event_type == event_type,
            )
            .order_by(*_chronological())
        ).all()
        return self._rows_to_dtos(rows)

    def get_latest_event_by_type(
        self,
        contract_id: UUID,
        event_type: StateEventType,
    ) -> StateEventDTO | None:
        row = self.session.execute(
            self._select_with_activity()
            .where(
                ContractStateEvent.contract_id == contract_id,
                ContractStateEvent.event_type == event_type,
            )
            .order_by(*(col.desc() for col in _chronological()))
            .limit(1)
        ).first()
        if row is None:
            return None
        return self.to_dto(*row)

    def find_by_trigger(
        self,
        contract_id: UUID,
        trigger: TriggerRef,
        event_type: StateEventType | None = None,
    ) -> tuple[StateEventDTO, ...]:
        """Events of a contract caused by the given document."""
        query = self._select_with_activity().where(
            ContractStateEvent.contract_id == contract_id,
            ContractStateEvent.triggered_by_kind == trigger.kind,
            ContractStateEvent.triggered_by_id == trigger.id,
        )
        if event_type is not None:
            query = query.where(ContractStateEvent.event_type == event_type)
        rows = self.session.execute(query.order_by(*_chronological())).all()
        return self._rows_to_dtos(rows)

    def get_timeline(
        self,
        contract_id: UUID,
        as_of_date: date | datetime | None = None,
    ) -> tuple[StateEventDTO, ...]:
        """
        Full history for audit display, chronological.

        With ``as_of_date`` the history is cut to events both recorded
        (created_at) and effective by then, and ``is_active`` reflects only
        supersessions inside that window.
        """
        if as_of_date is None:
            rows = self.session.execute(
                self._select_with_activity()
                .where(ContractStateEvent.contract_id == contract_id)
                .order_by(*_chronological())
            ).all()
            return self._rows_to_dtos(rows)

        instant = as_of_instant(as_of_date)
        events = self.session.execute(
            select(ContractStateEvent)
            .where(
                ContractStateEvent.contract_id == contract_id,
                ContractStateEvent.created_at <= instant,
                ContractStateEvent.effective_from <= instant,
            )
            .order_by(*_chronological())
        ).scalars().all()

        superseded_ids = {
            e.supersedes_event_id for e in events if e.supersedes_event_id is not None
        }
        return tuple(self.to_dto(e, e.id not in superseded_ids) for e in events)

    # ------------------------------------------------------------------
    # Event-scoped queries
    # ------------------------------------------------------------------

    def find_superseding_events(self, event_id: UUID) -> tuple[StateEventDTO, ...]:
        """Events whose supersedes_event_id is ``event_id`` (at most one)."""
        rows = self.session.execute(
            self._select_with_activity()
            .where(ContractStateEvent.supersedes_event_id == event_id)
            .order_by(ContractStateEvent.seq)
        ).all()
        return self._rows_to_dtos(rows)

    def find_event(self, event_id: UUID) -> StateEventDTO | None:
        row = self.session.execute(
            self._select_with_activity().where(ContractStateEvent.id == event_id)
        ).first()
        if row is None:
            return None
        return self.to_dto(*row)

    def get_event(self, event_id: UUID) -> StateEventDTO:
        """
        Raises:
            EventNotFoundError: If no event has this id.
        """
        dto = self.find_event(event_id)
        if dto is None:
            raise EventNotFoundError(str(event_id))
        return dto

    def is_active(self, event_id: UUID) -> bool:
        return not self.session.execute(
            select(
                exists().where(ContractStateEvent.supersedes_event_id == event_id)
            )
        ).scalar()
