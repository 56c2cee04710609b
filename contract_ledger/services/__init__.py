"""Write-side services of the contract ledger."""

from contract_ledger.services.contract_lock import ContractLockService
from contract_ledger.services.event_store import EventStore, NewStateEvent
from contract_ledger.services.history_sync_service import (
    HistorySyncService,
    HistorySyncStats,
)
from contract_ledger.services.reconciliation_service import (
    DriftReport,
    ReconciliationResult,
    ReconciliationService,
)
from contract_ledger.services.sequence_service import SequenceService
from contract_ledger.services.state_calculator import (
    BatchRecalculationResult,
    StateCalculator,
)
from contract_ledger.services.state_event_service import (
    ContractStateEventService,
    TimelineEntry,
)

__all__ = [
    "BatchRecalculationResult",
    "ContractLockService",
    "ContractStateEventService",
    "DriftReport",
    "EventStore",
    "HistorySyncService",
    "HistorySyncStats",
    "NewStateEvent",
    "ReconciliationResult",
    "ReconciliationService",
    "SequenceService",
    "StateCalculator",
    "TimelineEntry",
]
