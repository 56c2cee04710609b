"""SequenceService: monotonic counters inside the caller's transaction."""

from decimal import Decimal

from contract_ledger.services.sequence_service import SequenceService


def test_first_value_is_one(session):
    sequences = SequenceService(session)
    assert sequences.current_value("test_first") is None
    assert sequences.next_value("test_first") == 1
    assert sequences.current_value("test_first") == 1


def test_values_strictly_increase(session):
    sequences = SequenceService(session)
    values = [sequences.next_value("test_increase") for _ in range(5)]
    assert values == [1, 2, 3, 4, 5]


def test_counters_are_independent(session):
    sequences = SequenceService(session)
    sequences.next_value("test_a")
    sequences.next_value("test_a")
    assert sequences.next_value("test_b") == 1
    assert sequences.current_value("test_a") == 2


def test_state_events_take_consecutive_seq(ledger, created_contract):
    first = ledger.create_amended_event(created_contract, None, Decimal("1"))
    second = ledger.create_amended_event(created_contract, None, Decimal("2"))
    assert second.seq == first.seq + 1
    name = SequenceService.state_event_sequence(created_contract.id)
    assert SequenceService(ledger.session).current_value(name) == second.seq


def test_state_event_seq_is_per_contract(ledger, created_contract, make_contract):
    other = make_contract()
    created = ledger.create_contract_created_event(other)
    amendment = ledger.create_amended_event(other, None, Decimal("5"))

    # the other contract's counter starts from its own first event
    assert (created.seq, amendment.seq) == (1, 2)
    assert ledger.create_amended_event(created_contract, None, Decimal("1")).seq == 2


def test_rolled_back_allocation_is_reused(session):
    sequences = SequenceService(session)
    sequences.next_value("test_rollback")

    savepoint = session.begin_nested()
    sequences.next_value("test_rollback")
    savepoint.rollback()

    assert sequences.next_value("test_rollback") == 2
