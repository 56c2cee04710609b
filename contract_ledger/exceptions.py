"""
Typed exception hierarchy for the contract ledger.

Every error carries a ``code`` class attribute (machine-readable, API-safe)
and stores its context as attributes, so callers catch by type and read
structured data instead of parsing messages.

Hierarchy::

    ContractLedgerError (base)
    |
    +-- ContractError
    |   +-- ContractNotFoundError
    |   +-- LegacyContractError
    |
    +-- EventError
    |   +-- EventNotFoundError
    |   +-- EventContractMismatchError
    |   +-- DuplicateCreatedEventError
    |
    +-- SupersessionError
    |   +-- EventAlreadySupersededError
    |   +-- NoActiveEventsFoundError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

Error codes:

Category      | Code                      | When raised
--------------|---------------------------|------------------------------------------
Contract      | CONTRACT_NOT_FOUND        | Contract id does not exist
              | LEGACY_CONTRACT           | Contract does not use the ledger
--------------|---------------------------|------------------------------------------
Event         | EVENT_NOT_FOUND           | Event id does not exist
              | EVENT_CONTRACT_MISMATCH   | Event belongs to another contract
              | CREATED_EVENT_EXISTS      | Second CREATED event for a contract
--------------|---------------------------|------------------------------------------
Supersession  | ALREADY_SUPERSEDED        | Target event is no longer active
              | NO_ACTIVE_EVENTS_FOUND    | No active event matches the agreements
--------------|---------------------------|------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION    | Update/delete of a written event

Infrastructure failures (SQLAlchemy ``OperationalError``, ``IntegrityError``
and friends) are not wrapped: they propagate to the caller, which owns retry
policy.
"""


class ContractLedgerError(Exception):
    """
    Base exception for all contract ledger errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "CONTRACT_LEDGER_ERROR"


# Contract-related exceptions


class ContractError(ContractLedgerError):
    """Base exception for contract-level errors."""

    code: str = "CONTRACT_ERROR"


class ContractNotFoundError(ContractError):
    """Contract with given ID was not found."""

    code: str = "CONTRACT_NOT_FOUND"

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Contract not found: {contract_id}")


class LegacyContractError(ContractError):
    """Contract runs in legacy mode and never consults the ledger."""

    code: str = "LEGACY_CONTRACT"

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(
            f"Contract {contract_id} does not use event sourcing"
        )


# Event-related exceptions


class EventError(ContractLedgerError):
    """Base exception for event-related errors."""

    code: str = "EVENT_ERROR"


class EventNotFoundError(EventError):
    """Event with given ID was not found."""

    code: str = "EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Contract state event not found: {event_id}")


class EventContractMismatchError(EventError):
    """Event referenced for a contract belongs to a different contract."""

    code: str = "EVENT_CONTRACT_MISMATCH"

    def __init__(self, event_id: str, expected_contract_id: str, actual_contract_id: str):
        self.event_id = event_id
        self.expected_contract_id = expected_contract_id
        self.actual_contract_id = actual_contract_id
        super().__init__(
            f"Event {event_id} belongs to contract {actual_contract_id}, "
            f"not {expected_contract_id}"
        )


class DuplicateCreatedEventError(EventError):
    """The contract's ledger already has its CREATED event."""

    code: str = "CREATED_EVENT_EXISTS"

    def __init__(self, contract_id: str, existing_event_id: str):
        self.contract_id = contract_id
        self.existing_event_id = existing_event_id
        super().__init__(
            f"Contract {contract_id} already has CREATED event {existing_event_id}"
        )


# Supersession-related exceptions


class SupersessionError(ContractLedgerError):
    """Base exception for supersession errors."""

    code: str = "SUPERSESSION_ERROR"


class EventAlreadySupersededError(SupersessionError):
    """Target event has already been superseded by another event."""

    code: str = "ALREADY_SUPERSEDED"

    def __init__(self, event_id: str, superseded_by_id: str | None = None):
        self.event_id = event_id
        self.superseded_by_id = superseded_by_id
        super().__init__(f"Event {event_id} has already been superseded")


class NoActiveEventsFoundError(SupersessionError):
    """No active amount-affecting event was triggered by the given agreements."""

    code: str = "NO_ACTIVE_EVENTS_FOUND"

    def __init__(self, contract_id: str, agreement_ids: list[str]):
        self.contract_id = contract_id
        self.agreement_ids = agreement_ids
        super().__init__(
            f"No active events for contract {contract_id} "
            f"triggered by agreements {', '.join(agreement_ids)}"
        )


# Immutability-related exceptions


class ImmutabilityError(ContractLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
