"""
StateEventSelector query tests.

Tests cover:
- Ordering of full and active event lists
- Activity flags for superseded events
- Historical (as of) activity and effective-date filtering
- Trigger lookups and the audit timeline
- Read-through caching and write invalidation
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from contract_ledger.domain.values import StateEventType, TriggerRef
from contract_ledger.exceptions import EventNotFoundError


@pytest.fixture
def history(ledger, created_contract, agreement_factory, payment_factory, deterministic_clock):
    """
    CREATED 2024-01-10 (+1,000,000)
    AMENDED 2024-03-01 (+50,000, agreement 1)
    PAYMENT 2024-04-01 (100,000)
    SUPERSEDED 2024-06-01 (-50,000, reverses the amendment)
    """
    contract = created_contract
    agreement = agreement_factory(number="1", change_amount="50000")
    amendment = ledger.create_amended_event(
        contract,
        None,
        Decimal("50000"),
        triggered_by=TriggerRef.supplementary_agreement(agreement.id),
        effective_from=agreement.agreement_date,
    )
    payment = ledger.create_payment_event(contract, payment_factory())
    deterministic_clock.advance(60)
    reversal = ledger.create_superseded_event(contract, amendment)
    return {
        "contract": contract,
        "agreement": agreement,
        "amendment": amendment,
        "payment": payment,
        "reversal": reversal,
    }


class TestContractQueries:
    def test_find_by_contract_returns_everything_in_write_order(self, ledger, history):
        events = ledger.selector.find_by_contract(history["contract"].id)
        assert [e.event_type for e in events] == [
            StateEventType.CREATED,
            StateEventType.AMENDED,
            StateEventType.PAYMENT_CREATED,
            StateEventType.SUPERSEDED,
        ]
        assert [e.seq for e in events] == sorted(e.seq for e in events)

    def test_superseded_event_is_flagged_inactive(self, ledger, history):
        events = {e.id: e for e in ledger.selector.find_by_contract(history["contract"].id)}
        assert events[history["amendment"].id].is_active is False
        assert events[history["reversal"].id].is_active is True

    def test_find_active_events_excludes_superseded(self, ledger, history):
        active = ledger.selector.find_active_events(history["contract"].id)
        assert history["amendment"].id not in {e.id for e in active}
        assert [e.effective_from for e in active] == sorted(e.effective_from for e in active)

    def test_find_by_type_and_latest(self, ledger, history):
        contract_id = history["contract"].id
        amended = ledger.selector.find_by_type(contract_id, StateEventType.AMENDED)
        assert [e.id for e in amended] == [history["amendment"].id]

        latest = ledger.selector.get_latest_event_by_type(contract_id, StateEventType.SUPERSEDED)
        assert latest.id == history["reversal"].id
        assert ledger.selector.get_latest_event_by_type(
            uuid4(), StateEventType.CREATED
        ) is None

    def test_find_by_trigger(self, ledger, history):
        trigger = TriggerRef.supplementary_agreement(history["agreement"].id)
        events = ledger.selector.find_by_trigger(history["contract"].id, trigger)
        assert [e.id for e in events] == [history["amendment"].id]
        assert events[0].triggered_by == trigger

        only_payments = ledger.selector.find_by_trigger(
            history["contract"].id, trigger, StateEventType.PAYMENT_CREATED
        )
        assert only_payments == ()


class TestHistoricalQueries:
    def test_supersession_does_not_reach_back_in_time(self, ledger, history):
        contract_id = history["contract"].id

        in_march = ledger.selector.find_active_events_as_of_date(contract_id, date(2024, 3, 15))
        assert history["amendment"].id in {e.id for e in in_march}

        in_june = ledger.selector.find_active_events_as_of_date(
            contract_id, datetime(2024, 6, 1, 13, 0, tzinfo=timezone.utc)
        )
        assert history["amendment"].id not in {e.id for e in in_june}

    def test_events_after_the_date_are_excluded(self, ledger, history):
        february = ledger.selector.find_effective_events(history["contract"].id, date(2024, 2, 1))
        assert [e.event_type for e in february] == [StateEventType.CREATED]

    def test_bare_date_includes_the_whole_day(self, ledger, history):
        on_the_day = ledger.selector.find_effective_events(history["contract"].id, date(2024, 3, 1))
        assert history["amendment"].id in {e.id for e in on_the_day}


class TestTimeline:
    def test_full_timeline_is_chronological(self, ledger, history):
        timeline = ledger.selector.get_timeline(history["contract"].id)
        assert [e.id for e in timeline] == [
            ledger.selector.get_latest_event_by_type(
                history["contract"].id, StateEventType.CREATED
            ).id,
            history["amendment"].id,
            history["payment"].id,
            history["reversal"].id,
        ]

    def test_timeline_as_of_cuts_history(self, ledger, history):
        timeline = ledger.selector.get_timeline(
            history["contract"].id, datetime(2024, 6, 1, 12, 0, 30, tzinfo=timezone.utc)
        )
        # the reversal was recorded a minute later
        assert history["reversal"].id not in {e.id for e in timeline}
        flags = {e.id: e.is_active for e in timeline}
        assert flags[history["amendment"].id] is True


class TestSingleEvent:
    def test_superseding_chain(self, ledger, history):
        chain = ledger.selector.find_superseding_events(history["amendment"].id)
        assert [e.id for e in chain] == [history["reversal"].id]
        assert ledger.selector.is_active(history["amendment"].id) is False
        assert ledger.selector.is_active(history["reversal"].id) is True

    def test_get_event(self, ledger, history):
        dto = ledger.selector.get_event(history["payment"].id)
        assert dto.amount_delta == Decimal("100000")
        assert dto.affects_amount is False

    def test_get_event_unknown(self, ledger):
        with pytest.raises(EventNotFoundError):
            ledger.selector.get_event(uuid4())

    def test_dto_metadata_is_read_only(self, ledger, history):
        dto = ledger.selector.get_event(history["amendment"].id)
        with pytest.raises(TypeError):
            dto.metadata["reason"] = "tampered"


class TestCaching:
    def test_cached_until_next_write(self, ledger, created_contract, contract_cache):
        first = ledger.selector.find_active_events(created_contract.id)
        second = ledger.selector.find_active_events(created_contract.id)
        assert first is second

        ledger.create_amended_event(created_contract, None, Decimal("1"))

        third = ledger.selector.find_active_events(created_contract.id)
        assert third is not first
        assert len(third) == 2

    def test_write_paths_bypass_cache(self, ledger, created_contract, contract_cache):
        ledger.selector.find_active_events(created_contract.id)
        hits = contract_cache.hits
        ledger.selector.find_active_events(created_contract.id, use_cache=False)
        assert contract_cache.hits == hits
