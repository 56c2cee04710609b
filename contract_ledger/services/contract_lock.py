"""
ContractLockService -- explicit per-contract write serialization.

Responsibility:
    Every logical ledger change starts by bumping ``contracts.ledger_version``
    with a single UPDATE.  The UPDATE takes the contract row lock on
    PostgreSQL (held until the enclosing transaction ends) and the database
    write lock on SQLite, so two writers on the same contract never both
    read the same "last active event".

    Projection rebuilds take the same row lock with ``SELECT ... FOR UPDATE``
    without bumping the version, so an amendment cannot interleave with a
    recalculation.

Failure modes:
    - ContractNotFoundError: the contract row does not exist.
    - OperationalError (lock timeout / deadlock): propagates; callers own
      retry policy.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from contract_ledger.exceptions import ContractNotFoundError
from contract_ledger.logging_config import get_logger
from contract_ledger.models.contract import Contract

logger = get_logger("services.contract_lock")


class ContractLockService:
    """Row-level lock on the contract, expressed as a version bump."""

    def __init__(self, session: Session):
        self._session = session

    def lock_for_write(self, contract: Contract) -> int:
        """
        Bump the contract's ledger_version and return the new value.

        Pending changes are flushed first so a contract created in the same
        session is visible to the UPDATE.
        """
        self._session.flush()
        result = self._session.execute(
            update(Contract)
            .where(Contract.id == contract.id)
            .values(ledger_version=Contract.ledger_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ContractNotFoundError(str(contract.id))

        version = self._current_version(contract.id)
        # Keep the in-session instance in step without a refresh round trip.
        set_committed_value(contract, "ledger_version", version)

        logger.debug(
            "contract_write_lock_acquired",
            extra={"contract_id": str(contract.id), "ledger_version": version},
        )
        return version

    def lock_for_read(self, contract_id: UUID) -> int:
        """Lock the contract row without changing it; returns ledger_version."""
        self._session.flush()
        version = self._session.execute(
            select(Contract.ledger_version)
            .where(Contract.id == contract_id)
            .with_for_update()
        ).scalar_one_or_none()
        if version is None:
            raise ContractNotFoundError(str(contract_id))
        return version

    def _current_version(self, contract_id: UUID) -> int:
        return self._session.execute(
            select(Contract.ledger_version).where(Contract.id == contract_id)
        ).scalar_one()
