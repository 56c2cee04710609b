"""
HistorySyncService -- backfill ledger events for documents recorded before
the contract moved to event sourcing.

Responsibility:
    For each supplementary agreement and payment handed in by the caller,
    create the missing SUPPLEMENTARY_AGREEMENT_CREATED / PAYMENT_CREATED
    event.  A document that already triggered any event of the contract is
    skipped, so repeated runs are idempotent.

Failure modes:
    - Legacy contracts are skipped (reported, not raised).
    - Errors from the ledger service propagate; each document is written in
      its own logical change, so earlier documents of the run stay applied
      in the caller's transaction.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from contract_ledger.domain.values import AgreementInfo, PaymentInfo, TriggerRef
from contract_ledger.logging_config import get_logger
from contract_ledger.models.contract import Contract
from contract_ledger.services.state_event_service import ContractStateEventService

logger = get_logger("services.history_sync")


@dataclass
class HistorySyncStats:
    agreements_processed: int = 0
    agreements_created: int = 0
    agreements_skipped: int = 0
    payments_processed: int = 0
    payments_created: int = 0
    payments_skipped: int = 0
    legacy_skipped: bool = False
    dry_run: bool = False

    @property
    def events_created(self) -> int:
        return self.agreements_created + self.payments_created


class HistorySyncService:
    """Idempotent backfill of document events."""

    def __init__(self, ledger: ContractStateEventService):
        self._ledger = ledger

    def _already_recorded(self, contract: Contract, trigger: TriggerRef) -> bool:
        return bool(self._ledger.selector.find_by_trigger(contract.id, trigger))

    def sync_contract(
        self,
        contract: Contract,
        agreements: Iterable[AgreementInfo] = (),
        payments: Iterable[PaymentInfo] = (),
        dry_run: bool = False,
    ) -> HistorySyncStats:
        """
        Create missing document events for ``contract``.

        With ``dry_run`` nothing is written; the *_created counters report
        what would have been created.
        """
        stats = HistorySyncStats(dry_run=dry_run)

        if not contract.uses_event_sourcing():
            stats.legacy_skipped = True
            logger.info(
                "history_sync_skipped_legacy",
                extra={"contract_id": str(contract.id)},
            )
            return stats

        for agreement in agreements:
            stats.agreements_processed += 1
            trigger = TriggerRef.supplementary_agreement(agreement.id)
            if self._already_recorded(contract, trigger):
                stats.agreements_skipped += 1
                continue
            if not dry_run:
                self._ledger.create_supplementary_agreement_event(contract, agreement)
            stats.agreements_created += 1

        for payment in payments:
            stats.payments_processed += 1
            trigger = TriggerRef.payment(payment.id)
            if self._already_recorded(contract, trigger):
                stats.payments_skipped += 1
                continue
            if not dry_run:
                self._ledger.create_payment_event(contract, payment)
            stats.payments_created += 1

        logger.info(
            "history_sync_completed",
            extra={
                "contract_id": str(contract.id),
                "dry_run": dry_run,
                "agreements_created": stats.agreements_created,
                "agreements_skipped": stats.agreements_skipped,
                "payments_created": stats.payments_created,
                "payments_skipped": stats.payments_skipped,
            },
        )
        return stats
