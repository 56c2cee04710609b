"""
ReconciliationService -- detect and correct drift between the ledger total
and the denormalized ``contracts.total_amount``.

Responsibility:
    ``check_contract`` compares the two totals.  ``reconcile_contract``
    brings the ledger in line with the stored total by appending one
    corrective AMENDED event (metadata ``is_correction``); existing events
    are never edited.

Architecture position:
    Ledger > Services.  Driven by the ``check-drift`` CLI command.

Failure modes:
    - LegacyContractError from reconcile_contract on a legacy contract.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from contract_ledger.db.types import ZERO, to_decimal
from contract_ledger.domain.aggregation import drift
from contract_ledger.domain.values import TriggerRef
from contract_ledger.exceptions import LegacyContractError
from contract_ledger.logging_config import get_logger
from contract_ledger.models.contract import Contract
from contract_ledger.services.state_event_service import ContractStateEventService

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class DriftReport:
    contract_id: UUID
    contract_number: str
    computed_total: Decimal
    stored_total: Decimal
    difference: Decimal
    has_drift: bool


@dataclass(frozen=True)
class ReconciliationResult:
    report: DriftReport
    applied: bool
    corrective_event_id: UUID | None = None


class ReconciliationService:
    """Drift detection and append-only correction."""

    def __init__(self, ledger: ContractStateEventService, epsilon: Decimal | None = None):
        self._ledger = ledger
        self._epsilon = epsilon if epsilon is not None else ledger.config.amount_epsilon

    def check_contract(self, contract: Contract) -> DriftReport:
        computed = self._ledger.get_current_state(contract).total_amount
        stored = to_decimal(contract.total_amount if contract.total_amount is not None else ZERO)
        difference = drift(computed, stored)
        return DriftReport(
            contract_id=contract.id,
            contract_number=contract.number,
            computed_total=computed,
            stored_total=stored,
            difference=difference,
            has_drift=difference > self._epsilon,
        )

    def check_all(self, contract_id: UUID | None = None) -> list[DriftReport]:
        """Reports for every event-sourced contract (or just ``contract_id``)."""
        query = select(Contract).where(Contract.event_sourcing_enabled.is_(True))
        if contract_id is not None:
            query = query.where(Contract.id == contract_id)
        contracts = self._ledger.session.execute(
            query.order_by(Contract.number, Contract.id)
        ).scalars().all()
        return [self.check_contract(c) for c in contracts]

    def reconcile_contract(self, contract: Contract, apply: bool = True) -> ReconciliationResult:
        """
        Append a corrective event when the ledger drifts from the stored
        total.  ``apply=False`` only reports.
        """
        if not contract.uses_event_sourcing():
            raise LegacyContractError(str(contract.id))

        report = self.check_contract(contract)
        if not report.has_drift or not apply:
            return ReconciliationResult(report=report, applied=False)

        correction = report.stored_total - report.computed_total
        event = self._ledger.create_amended_event(
            contract,
            specification_id=None,
            amount_delta=correction,
            triggered_by=TriggerRef.contract(contract.id),
            metadata={
                "is_correction": True,
                "reason": "Ledger realigned with stored contract total",
                "computed_total": report.computed_total,
                "stored_total": report.stored_total,
            },
        )

        logger.warning(
            "contract_drift_corrected",
            extra={
                "contract_id": str(contract.id),
                "computed_total": str(report.computed_total),
                "stored_total": str(report.stored_total),
                "correction": str(correction),
                "event_id": str(event.id),
            },
        )
        return ReconciliationResult(
            report=report,
            applied=True,
            corrective_event_id=event.id,
        )
