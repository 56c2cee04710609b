"""
ContractCache -- in-process read cache keyed by contract id.

Responsibility:
    Holds read results (active event lists, current-state DTOs) for a
    bounded TTL.  Every entry belongs to exactly one contract, so
    ``invalidate(contract_id)`` drops everything derived from that
    contract's ledger in one call.

Architecture position:
    Ledger > infrastructure.  Used by StateEventSelector and StateCalculator;
    invalidated by EventStore on every write.

Concurrency:
    - A ``threading.Lock`` guards the entry map.  ``fn`` runs outside the
      lock, so a slow query never blocks other contracts.
    - Each contract has a generation counter bumped by ``invalidate``.  A
      value computed while an invalidation happened is returned to its
      caller but never stored.
    - Writers invalidate synchronously, and again when their session's
      transaction ends (``invalidate_on_transaction_end``), so a reader that
      repopulated the entry from pre-commit data is evicted.

Values must be immutable (frozen DTOs, tuples).  ORM instances are never
cached.
"""

import threading
from collections.abc import Callable, Hashable
from typing import Any, TypeVar

from sqlalchemy import event
from sqlalchemy.orm import Session

from contract_ledger.domain.clock import Clock, SystemClock
from contract_ledger.logging_config import get_logger

logger = get_logger("cache")

T = TypeVar("T")

_PENDING_KEY = "contract_ledger.pending_invalidations"
_HOOKED_KEY = "contract_ledger.cache_hooks"


class ContractCache:
    """Thread-safe TTL cache with per-contract invalidation."""

    def __init__(self, clock: Clock | None = None, default_ttl: float = 300):
        self._clock = clock or SystemClock()
        self._default_ttl = default_ttl
        self._lock = threading.Lock()
        # {(contract_key, namespace, extra): (value, expires_at)}
        self._entries: dict[tuple, tuple[Any, float]] = {}
        self._generations: dict[str, int] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _contract_key(contract_id: Any) -> str:
        return str(contract_id)

    def get(
        self,
        contract_id: Any,
        namespace: str = "default",
        key: Hashable = None,
    ) -> Any | None:
        """Cached value, or None when absent or expired."""
        entry_key = (self._contract_key(contract_id), namespace, key)
        now = self._clock.monotonic()
        with self._lock:
            entry = self._entries.get(entry_key)
            if entry is None:
                return None
            value, expires_at = entry
            if now >= expires_at:
                del self._entries[entry_key]
                return None
            return value

    def get_or_compute(
        self,
        contract_id: Any,
        ttl: float | None,
        fn: Callable[[], T],
        namespace: str = "default",
        key: Hashable = None,
    ) -> T:
        """
        Return the cached value for ``(contract_id, namespace, key)`` or
        compute it with ``fn`` and store it for ``ttl`` seconds.

        ``ttl`` of None uses the cache default; ``ttl <= 0`` disables
        caching for the call.
        """
        ttl = self._default_ttl if ttl is None else ttl
        contract_key = self._contract_key(contract_id)
        entry_key = (contract_key, namespace, key)

        now = self._clock.monotonic()
        with self._lock:
            entry = self._entries.get(entry_key)
            if entry is not None and now < entry[1]:
                self.hits += 1
                return entry[0]
            if entry is not None:
                del self._entries[entry_key]
            self.misses += 1
            generation = self._generations.get(contract_key, 0)

        value = fn()

        if ttl <= 0:
            return value

        with self._lock:
            if self._generations.get(contract_key, 0) == generation:
                self._entries[entry_key] = (value, self._clock.monotonic() + ttl)
            else:
                logger.debug(
                    "cache_store_skipped_invalidated",
                    extra={"contract_id": contract_key, "namespace": namespace},
                )
        return value

    def invalidate(self, contract_id: Any) -> int:
        """Drop every entry for ``contract_id``.  Returns the number dropped."""
        contract_key = self._contract_key(contract_id)
        with self._lock:
            self._generations[contract_key] = (
                self._generations.get(contract_key, 0) + 1
            )
            doomed = [k for k in self._entries if k[0] == contract_key]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.debug(
                "cache_invalidated",
                extra={"contract_id": contract_key, "entries": len(doomed)},
            )
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            for contract_key in {k[0] for k in self._entries}:
                self._generations[contract_key] = (
                    self._generations.get(contract_key, 0) + 1
                )
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def invalidate_on_transaction_end(self, session: Session, contract_id: Any) -> None:
        """
        Invalidate ``contract_id`` again when ``session``'s outermost
        transaction commits or rolls back.
        """
        pending = session.info.setdefault(_PENDING_KEY, set())
        pending.add(self._contract_key(contract_id))

        hooked = session.info.setdefault(_HOOKED_KEY, set())
        if id(self) in hooked:
            return
        hooked.add(id(self))

        def _after_transaction_end(sess, transaction):
            if transaction.parent is not None:
                return
            ids = sess.info.get(_PENDING_KEY)
            if not ids:
                return
            for contract_key in list(ids):
                self.invalidate(contract_key)
            ids.clear()

        event.listen(session, "after_transaction_end", _after_transaction_end)
