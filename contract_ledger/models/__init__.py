"""ORM models for the contract ledger."""

from contract_ledger.models.contract import Contract
from contract_ledger.models.current_state import ContractCurrentState
from contract_ledger.models.sequence import SequenceCounter
from contract_ledger.models.state_event import ContractStateEvent

__all__ = [
    "Contract",
    "ContractCurrentState",
    "ContractStateEvent",
    "SequenceCounter",
]
