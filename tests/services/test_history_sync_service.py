"""Backfill of document events for contracts migrated to event sourcing."""

from decimal import Decimal

import pytest

from contract_ledger.domain.values import StateEventType
from contract_ledger.services.history_sync_service import HistorySyncService


@pytest.fixture
def history_sync(ledger):
    return HistorySyncService(ledger)


def test_missing_documents_are_recorded(history_sync, ledger, created_contract, agreement_factory, payment_factory):
    agreements = [
        agreement_factory(number="1", change_amount="10000"),
        agreement_factory(number="2", change_amount="-2500"),
    ]
    payments = [payment_factory(amount="5000")]

    stats = history_sync.sync_contract(created_contract, agreements, payments)

    assert stats.agreements_processed == 2
    assert stats.agreements_created == 2
    assert stats.payments_created == 1
    assert stats.events_created == 3

    events = ledger.selector.find_by_contract(created_contract.id)
    assert [e.event_type for e in events].count(StateEventType.SUPPLEMENTARY_AGREEMENT_CREATED) == 2
    assert ledger.get_current_state(created_contract).total_amount == Decimal("1007500")


def test_second_run_is_idempotent(history_sync, created_contract, agreement_factory, payment_factory):
    agreements = [agreement_factory(number="1", change_amount="10000")]
    payments = [payment_factory()]
    history_sync.sync_contract(created_contract, agreements, payments)

    stats = history_sync.sync_contract(created_contract, agreements, payments)

    assert stats.events_created == 0
    assert stats.agreements_skipped == 1
    assert stats.payments_skipped == 1


def test_documents_already_in_the_ledger_are_skipped(history_sync, ledger, created_contract, agreement_factory):
    agreement = agreement_factory(number="4", change_amount="300")
    # the agreement already triggered an amendment, not a posting
    ledger.create_amendment_with_supersede(created_contract, agreement, new_amount=Decimal("300"))

    stats = history_sync.sync_contract(created_contract, agreements=[agreement])

    assert stats.agreements_skipped == 1
    assert stats.agreements_created == 0


def test_dry_run_reports_without_writing(history_sync, ledger, created_contract, agreement_factory):
    stats = history_sync.sync_contract(
        created_contract, agreements=[agreement_factory()], dry_run=True
    )

    assert stats.dry_run is True
    assert stats.agreements_created == 1
    assert len(ledger.selector.find_by_contract(created_contract.id)) == 1


def test_legacy_contract_skipped(history_sync, make_contract, agreement_factory):
    legacy = make_contract(event_sourcing_enabled=False)

    stats = history_sync.sync_contract(legacy, agreements=[agreement_factory()])

    assert stats.legacy_skipped is True
    assert stats.agreements_processed == 0
