"""
ContractCache tests.

Tests cover:
- Read-through caching and hit/miss counters
- TTL expiry against the injected clock
- Per-contract invalidation across namespaces
- Invalidation racing a computation
- Invalidation when the owning transaction ends
"""

from uuid import uuid4

import pytest

from contract_ledger.cache import ContractCache
from contract_ledger.domain.clock import DeterministicClock


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def cache(clock):
    return ContractCache(clock=clock, default_ttl=300)


class Counter:
    def __init__(self, value="v"):
        self.calls = 0
        self.value = value

    def __call__(self):
        self.calls += 1
        return (self.value, self.calls)


class TestReadThrough:
    def test_second_call_is_served_from_cache(self, cache):
        contract_id = uuid4()
        fn = Counter()

        first = cache.get_or_compute(contract_id, 60, fn)
        second = cache.get_or_compute(contract_id, 60, fn)

        assert first == second == ("v", 1)
        assert fn.calls == 1
        assert (cache.hits, cache.misses) == (1, 1)

    def test_namespaces_are_separate(self, cache):
        contract_id = uuid4()
        cache.get_or_compute(contract_id, 60, lambda: "events", namespace="events")
        cache.get_or_compute(contract_id, 60, lambda: "state", namespace="state")

        assert cache.get(contract_id, "events") == "events"
        assert cache.get(contract_id, "state") == "state"
        assert len(cache) == 2

    def test_none_ttl_uses_default(self, cache, clock):
        contract_id = uuid4()
        fn = Counter()
        cache.get_or_compute(contract_id, None, fn)
        clock.advance(299)
        cache.get_or_compute(contract_id, None, fn)
        assert fn.calls == 1

    def test_zero_ttl_disables_storing(self, cache):
        contract_id = uuid4()
        fn = Counter()
        cache.get_or_compute(contract_id, 0, fn)
        cache.get_or_compute(contract_id, 0, fn)
        assert fn.calls == 2
        assert len(cache) == 0


class TestExpiry:
    def test_entry_expires_after_ttl(self, cache, clock):
        contract_id = uuid4()
        fn = Counter()
        cache.get_or_compute(contract_id, 10, fn)

        clock.advance(10)

        assert cache.get(contract_id) is None
        assert cache.get_or_compute(contract_id, 10, fn) == ("v", 2)


class TestInvalidation:
    def test_invalidate_drops_every_namespace_of_the_contract(self, cache):
        target, other = uuid4(), uuid4()
        cache.get_or_compute(target, 60, lambda: 1, namespace="a")
        cache.get_or_compute(target, 60, lambda: 2, namespace="b")
        cache.get_or_compute(other, 60, lambda: 3, namespace="a")

        assert cache.invalidate(target) == 2
        assert cache.get(target, "a") is None
        assert cache.get(other, "a") == 3

    def test_string_and_uuid_keys_are_the_same_contract(self, cache):
        contract_id = uuid4()
        cache.get_or_compute(contract_id, 60, lambda: 1)
        assert cache.invalidate(str(contract_id)) == 1

    def test_value_computed_during_invalidation_is_not_stored(self, cache):
        contract_id = uuid4()

        def compute():
            # A writer commits while this reader is still querying.
            cache.invalidate(contract_id)
            return "stale"

        assert cache.get_or_compute(contract_id, 60, compute) == "stale"
        assert cache.get(contract_id) is None

    def test_clear(self, cache):
        cache.get_or_compute(uuid4(), 60, lambda: 1)
        cache.clear()
        assert len(cache) == 0

    def test_invalidated_again_when_transaction_ends(self, cache, session):
        contract_id = uuid4()
        cache.invalidate_on_transaction_end(session, contract_id)
        # Repopulated by a reader after the write but before the commit.
        cache.get_or_compute(contract_id, 60, lambda: "pre-commit")
        assert cache.get(contract_id) == "pre-commit"

        session.commit()

        assert cache.get(contract_id) is None
