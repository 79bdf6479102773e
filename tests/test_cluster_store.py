# ============================================================================
# CLUSTER DOCUMENT STORE TESTS
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Tests - Lease queue and optimistic concurrency
# PURPOSE: Verify CAS writes, dequeue races, lease expiry and release
# CREATED: 16 OCT 2026
# ============================================================================
"""
Cluster Document Store Tests (in-memory backend)

Covers:
1. get/create with case-normalised keys
2. write() rejects stale concurrency tokens and issues a new token
3. dequeue(): eligibility, exactly one winner under contention
4. Expired leases are reclaimable even with lease_owner still set
5. release()/renew_lease() owner checks
6. patch()/patch_with_lease() retry and idempotence

Run with:
    pytest tests/test_cluster_store.py -v
"""

import asyncio
from datetime import timedelta

import pytest

from core.contracts import ProvisioningState
from core.errors import (
    ConflictError,
    LeaseConflictError,
    NotFoundError,
    VersionConflictError,
)
from repositories.memory_repo import InMemoryClusterRepository


# ============================================================================
# PRIMITIVES
# ============================================================================

class TestPrimitives:

    def test_create_and_get_by_any_case(self, store, make_document):
        async def run_test():
            created = await store.create(make_document("MyCluster"))
            fetched = await store.get(created.id.upper())
            return created, fetched

        created, fetched = asyncio.run(run_test())

        assert created.key == created.id.lower()
        assert created.concurrency_token
        assert fetched.key == created.key
        assert fetched.concurrency_token == created.concurrency_token

    def test_create_duplicate_conflicts(self, store, make_document):
        async def run_test():
            await store.create(make_document())
            await store.create(make_document())

        with pytest.raises(ConflictError):
            asyncio.run(run_test())

    def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            asyncio.run(store.get("/subscriptions/0000/nothing"))

    def test_write_replaces_token(self, store, make_document):
        async def run_test():
            doc = await store.create(make_document())
            doc.provisioned_by = "abc1234"
            written = await store.write(doc)
            return doc, written, await store.get(doc.key)

        doc, written, fetched = asyncio.run(run_test())

        assert written.concurrency_token != doc.concurrency_token
        assert fetched.provisioned_by == "abc1234"
        assert fetched.concurrency_token == written.concurrency_token

    def test_stale_token_rejected(self, store, make_document):
        async def run_test():
            doc = await store.create(make_document())
            first = doc.model_copy(deep=True)
            second = doc.model_copy(deep=True)

            first.provisioned_by = "first"
            await store.write(first)

            second.provisioned_by = "second"
            await store.write(second)

        with pytest.raises(VersionConflictError):
            asyncio.run(run_test())

    def test_returned_documents_are_copies(self, store, make_document):
        async def run_test():
            doc = await store.create(make_document())
            doc.provisioned_by = "local-only"
            return await store.get(doc.key)

        assert asyncio.run(run_test()).provisioned_by is None

    def test_delete_requires_current_token(self, store, make_document):
        async def run_test():
            doc = await store.create(make_document())
            stale = doc.model_copy(deep=True)
            doc.provisioned_by = "abc1234"
            await store.write(doc)
            with pytest.raises(VersionConflictError):
                await store.delete(stale)
            await store.delete(await store.get(doc.key))
            return len(store)

        assert asyncio.run(run_test()) == 0

    def test_count_by_state(self, store, make_document):
        async def run_test():
            await store.create(make_document("a"))
            await store.create(make_document("b"))
            await store.create(make_document("c", ProvisioningState.SUCCEEDED))
            return await store.count_by_state()

        assert asyncio.run(run_test()) == {"Creating": 2, "Succeeded": 1}


# ============================================================================
# LEASE QUEUE
# ============================================================================

class TestDequeue:

    def test_empty_queue(self, store):
        with pytest.raises(NotFoundError):
            asyncio.run(store.dequeue("worker-a"))

    def test_dequeue_sets_lease(self, store, clock, make_document):
        async def run_test():
            await store.create(make_document())
            return await store.dequeue("worker-a")

        doc = asyncio.run(run_test())

        assert doc.lease_owner == "worker-a"
        assert doc.lease_expiry == clock.current + timedelta(seconds=60)
        assert doc.dequeues == 1
        assert doc.is_held_by("worker-a", clock.current)

    def test_terminal_documents_not_eligible(self, store, make_document):
        async def run_test():
            await store.create(make_document("a", ProvisioningState.SUCCEEDED))
            await store.create(make_document("b", ProvisioningState.FAILED))
            await store.dequeue("worker-a")

        with pytest.raises(NotFoundError):
            asyncio.run(run_test())

    def test_leased_document_not_eligible(self, store, make_document):
        async def run_test():
            await store.create(make_document())
            await store.dequeue("worker-a")
            await store.dequeue("worker-b")

        with pytest.raises(NotFoundError):
            asyncio.run(run_test())

    def test_retry_after_respected(self, store, clock, make_document):
        async def run_test():
            await store.create(make_document(retry_after=clock.current + timedelta(seconds=30)))
            with pytest.raises(NotFoundError):
                await store.dequeue("worker-a")
            clock.advance(31)
            return await store.dequeue("worker-a")

        doc = asyncio.run(run_test())
        assert doc.retry_after is None

    def test_concurrent_dequeue_exactly_one_winner(self, store, make_document):
        async def run_test():
            await store.create(make_document())
            return await asyncio.gather(
                *(store.dequeue(f"worker-{i}") for i in range(5)),
                return_exceptions=True,
            )

        results = asyncio.run(run_test())

        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, BaseException)]
        assert len(winners) == 1
        assert all(isinstance(e, (LeaseConflictError, NotFoundError)) for e in losers)

    def test_expired_lease_reclaimable(self, store, clock, make_document):
        async def run_test():
            await store.create(make_document())
            first = await store.dequeue("worker-a")
            clock.advance(61)
            second = await store.dequeue("worker-b")
            return first, second

        first, second = asyncio.run(run_test())

        assert first.lease_owner == "worker-a"
        assert second.lease_owner == "worker-b"
        assert second.dequeues == 2

    def test_expired_lease_with_owner_still_set(self, clock, make_document):
        """A crashed worker's lease fields linger but don't block reclaim."""
        store = InMemoryClusterRepository(clock=clock)
        doc = make_document(
            lease_owner="crashed-worker",
            lease_expiry=clock.current - timedelta(seconds=1),
        )

        async def run_test():
            await store.create(doc)
            return await store.dequeue("worker-b")

        assert asyncio.run(run_test()).lease_owner == "worker-b"

    def test_oldest_document_first(self, store, clock, make_document):
        async def run_test():
            await store.create(make_document("newer", updated_at=clock.current))
            await store.create(make_document("older", updated_at=clock.current - timedelta(hours=1)))
            return await store.dequeue("worker-a")

        assert asyncio.run(run_test()).key.endswith("/older")


class TestReleaseAndRenew:

    def test_release_clears_lease(self, store, make_document):
        async def run_test():
            await store.create(make_document())
            doc = await store.dequeue("worker-a")
            released = await store.release(doc.key, owner="worker-a")
            return released, await store.get(doc.key)

        released, doc = asyncio.run(run_test())

        assert released is True
        assert doc.lease_owner is None
        assert doc.lease_expiry is None

    def test_release_by_other_owner_is_refused(self, store, make_document):
        async def run_test():
            await store.create(make_document())
            doc = await store.dequeue("worker-a")
            released = await store.release(doc.key, owner="worker-b")
            return released, await store.get(doc.key)

        released, doc = asyncio.run(run_test())

        assert released is False
        assert doc.lease_owner == "worker-a"

    def test_release_with_retry_after(self, store, clock, make_document):
        async def run_test():
            await store.create(make_document())
            doc = await store.dequeue("worker-a")
            await store.release(doc.key, owner="worker-a", retry_after=clock.current + timedelta(seconds=30))
            with pytest.raises(NotFoundError):
                await store.dequeue("worker-b")
            clock.advance(30)
            return await store.dequeue("worker-b")

        assert asyncio.run(run_test()).lease_owner == "worker-b"

    def test_renew_extends_lease(self, store, clock, make_document):
        async def run_test():
            await store.create(make_document())
            doc = await store.dequeue("worker-a")
            clock.advance(50)
            return await store.renew_lease(doc.key, "worker-a")

        doc = asyncio.run(run_test())
        assert doc.lease_expiry == clock.current + timedelta(seconds=60)

    def test_renew_after_expiry_refused(self, store, clock, make_document):
        async def run_test():
            await store.create(make_document())
            doc = await store.dequeue("worker-a")
            clock.advance(61)
            await store.renew_lease(doc.key, "worker-a")

        with pytest.raises(LeaseConflictError):
            asyncio.run(run_test())

    def test_renew_by_other_owner_refused(self, store, make_document):
        async def run_test():
            await store.create(make_document())
            doc = await store.dequeue("worker-a")
            await store.renew_lease(doc.key, "worker-b")

        with pytest.raises(LeaseConflictError):
            asyncio.run(run_test())


# ============================================================================
# READ-MODIFY-WRITE
# ============================================================================

class TestPatch:

    def test_patch_retries_on_conflict(self, store, make_document):
        async def run_test():
            doc = await store.create(make_document())
            attempts = []

            def mutate(current):
                attempts.append(current.concurrency_token)
                if len(attempts) == 1:
                    # Simulate a concurrent writer landing between read and write
                    racer = current.model_copy(deep=True)
                    racer.provisioned_by = "racer"
                    store._swap(racer)
                current.last_error = "patched"

            result = await store.patch(doc.key, mutate)
            return attempts, result

        attempts, result = asyncio.run(run_test())

        assert len(attempts) == 2
        assert attempts[0] != attempts[1]
        assert result.last_error == "patched"
        assert result.provisioned_by == "racer"

    def test_patch_gives_up_after_attempts(self, store, make_document):
        async def run_test():
            doc = await store.create(make_document())

            def mutate(current):
                racer = current.model_copy(deep=True)
                store._swap(racer)
                current.last_error = "never lands"

            await store.patch(doc.key, mutate)

        with pytest.raises(VersionConflictError):
            asyncio.run(run_test())

    def test_patch_with_lease_requires_live_lease(self, store, clock, make_document):
        async def run_test():
            await store.create(make_document())
            doc = await store.dequeue("worker-a")
            clock.advance(61)

            def mutate(current):
                current.provisioned_by = "late"

            await store.patch_with_lease(doc.key, "worker-a", mutate)

        with pytest.raises(LeaseConflictError):
            asyncio.run(run_test())

    def test_provisioned_by_update_is_idempotent(self, store, make_document):
        async def run_test():
            await store.create(make_document())
            doc = await store.dequeue("worker-a")

            def mutate(current):
                if current.provisioned_by == "abc1234":
                    return False
                current.provisioned_by = "abc1234"

            first = await store.patch_with_lease(doc.key, "worker-a", mutate)
            second = await store.patch_with_lease(doc.key, "worker-a", mutate)
            return first, second, await store.get(doc.key)

        first, second, fetched = asyncio.run(run_test())

        assert fetched.provisioned_by == "abc1234"
        # The second application did not write
        assert second.concurrency_token == first.concurrency_token
        assert fetched.concurrency_token == first.concurrency_token

    def test_delete_with_lease(self, store, make_document):
        async def run_test():
            await store.create(make_document())
            doc = await store.dequeue("worker-a")
            with pytest.raises(LeaseConflictError):
                await store.delete_with_lease(doc.key, "worker-b")
            await store.delete_with_lease(doc.key, "worker-a")
            return len(store)

        assert asyncio.run(run_test()) == 0
