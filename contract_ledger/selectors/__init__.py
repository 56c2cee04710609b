"""Read-side query layer."""

from contract_ledger.selectors.base import BaseSelector
from contract_ledger.selectors.state_event_selector import StateEventSelector

__all__ = ["BaseSelector", "StateEventSelector"]
