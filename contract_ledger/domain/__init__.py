"""Domain layer: pure values, aggregation rules and the clock."""

from contract_ledger.domain.clock import Clock, DeterministicClock, SystemClock
from contract_ledger.domain.values import (
    AgreementInfo,
    ContractStateSnapshot,
    CurrentStateDTO,
    PaymentInfo,
    StateEventDTO,
    StateEventType,
    TriggerKind,
    TriggerRef,
)

__all__ = [
    "AgreementInfo",
    "Clock",
    "ContractStateSnapshot",
    "CurrentStateDTO",
    "DeterministicClock",
    "PaymentInfo",
    "StateEventDTO",
    "StateEventType",
    "SystemClock",
    "TriggerKind",
    "TriggerRef",
]
