# ============================================================================
# WORKER LOOP TESTS
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Tests - Claim / run / persist / release cycle
# PURPOSE: Verify final state writes, lease handling and graceful shutdown
# CREATED: 16 OCT 2026
# ============================================================================
"""
Worker Loop Tests

Covers:
1. Creating -> Succeeded with provisionedBy stamped and lease released
2. Failed pipelines record the state and the step error
3. A finished Deleting pipeline removes the document
4. Dequeue limit and missing pipelines fail the document without running
5. Lease lost mid-run: the run is cancelled and nothing is written
6. Failed final write: lease released with a retry_after backoff
7. Cycle handling of empty queue, lost races and store errors
8. stop() lets the in-flight pipeline finish

Run with:
    pytest tests/test_worker_loop.py -v
"""

import asyncio
import dataclasses
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from conftest import FakeClusterClient, available_version
from core.contracts import ProvisioningState
from core.errors import LeaseConflictError, NotFoundError, VersionConflictError
from core.observability import TOPIC_INSTALL_TIME
from orchestrator.pipelines import PipelineRegistry, default_pipelines
from orchestrator.steps import action
from worker.loop import WorkerLoop, kubernetes_client_for, manager_factory_for


def build_loop(store, config, metrics, pipelines=None, client=None):
    client = client or FakeClusterClient(cluster_version=available_version())
    factory = manager_factory_for(
        store,
        config,
        emitter=metrics,
        client_factory=lambda doc: client,
    )
    return WorkerLoop(store, pipelines or default_pipelines(), factory, config)


def single_step(state, name, body):
    registry = PipelineRegistry()
    registry.register(state, lambda manager: [action(name, body)])
    return registry


async def claim_and_process(store, loop):
    doc = await store.dequeue(loop.owner_id)
    await loop.process(doc)
    return doc


# ============================================================================
# FINAL STATE
# ============================================================================

class TestFinalState:

    def test_create_succeeds(self, store, worker_config, metrics, make_document):
        loop = build_loop(store, worker_config, metrics)

        async def run_test():
            await store.create(make_document())
            doc = await claim_and_process(store, loop)
            return await store.get(doc.key)

        doc = asyncio.run(run_test())

        assert doc.provisioning_state == ProvisioningState.SUCCEEDED
        assert doc.provisioned_by == "abc1234"
        assert doc.lease_owner is None
        assert doc.lease_expiry is None
        assert doc.dequeues == 0
        assert doc.last_error is None

        points = metrics.get_metrics(TOPIC_INSTALL_TIME)
        assert len(points) == 1
        assert points[0].dimensions == {"provisioningState": "Creating"}
        assert loop.stats()["succeeded"] == 1

    def test_cluster_client_closed_after_each_run(self, store, worker_config, metrics, make_document):
        client = FakeClusterClient(cluster_version=available_version())
        loop = build_loop(store, worker_config, metrics, client=client)

        async def allocate(ctx):
            raise RuntimeError("quota exceeded")

        failing = build_loop(
            store, worker_config, metrics,
            pipelines=single_step(ProvisioningState.CREATING, "allocate", allocate),
            client=client,
        )

        async def run_test():
            await store.create(make_document("ok"))
            await claim_and_process(store, loop)
            await store.create(make_document("bad"))
            await claim_and_process(store, failing)

        asyncio.run(run_test())

        assert client.closed == 2

    def test_update_succeeds_and_clears_previous_failure(self, store, worker_config, metrics, make_document):
        loop = build_loop(store, worker_config, metrics)

        async def run_test():
            await store.create(make_document(
                state=ProvisioningState.UPDATING,
                failed_provisioning_state=ProvisioningState.CREATING,
                last_error="old failure",
                provisioned_by="0ld5tmp",
            ))
            doc = await claim_and_process(store, loop)
            return await store.get(doc.key)

        doc = asyncio.run(run_test())

        assert doc.provisioning_state == ProvisioningState.SUCCEEDED
        assert doc.provisioned_by == "abc1234"
        assert doc.failed_provisioning_state is None
        assert doc.last_error is None

    def test_failed_step_recorded(self, store, worker_config, metrics, make_document):
        async def allocate(ctx):
            raise RuntimeError("quota exceeded")

        pipelines = single_step(ProvisioningState.CREATING, "allocate", allocate)
        loop = build_loop(store, worker_config, metrics, pipelines=pipelines)

        async def run_test():
            await store.create(make_document())
            doc = await claim_and_process(store, loop)
            return await store.get(doc.key)

        doc = asyncio.run(run_test())

        assert doc.provisioning_state == ProvisioningState.FAILED
        assert doc.failed_provisioning_state == ProvisioningState.CREATING
        assert doc.last_error == "step [allocate] encountered error: quota exceeded"
        assert doc.lease_owner is None
        assert metrics.get_metrics() == []
        assert loop.stats()["failed"] == 1

    def test_failed_document_is_not_reclaimed(self, store, worker_config, metrics, make_document):
        async def allocate(ctx):
            raise RuntimeError("quota exceeded")

        pipelines = single_step(ProvisioningState.CREATING, "allocate", allocate)
        loop = build_loop(store, worker_config, metrics, pipelines=pipelines)

        async def run_test():
            await store.create(make_document())
            await claim_and_process(store, loop)
            await store.dequeue("worker-other")

        with pytest.raises(NotFoundError):
            asyncio.run(run_test())

    def test_delete_removes_document(self, store, worker_config, metrics, make_document):
        loop = build_loop(store, worker_config, metrics)

        async def run_test():
            await store.create(make_document(
                state=ProvisioningState.DELETING,
                properties={"adminKubeconfig": {"apiVersion": "v1", "clusters": []}},
            ))
            await claim_and_process(store, loop)
            return len(store)

        assert asyncio.run(run_test()) == 0
        assert loop.stats()["succeeded"] == 1

    def test_failed_delete_keeps_document(self, store, worker_config, metrics, make_document):
        async def drain(ctx):
            raise RuntimeError("node drain timed out")

        pipelines = single_step(ProvisioningState.DELETING, "drain", drain)
        loop = build_loop(store, worker_config, metrics, pipelines=pipelines)

        async def run_test():
            await store.create(make_document(state=ProvisioningState.DELETING))
            doc = await claim_and_process(store, loop)
            return await store.get(doc.key)

        doc = asyncio.run(run_test())

        assert doc.provisioning_state == ProvisioningState.FAILED
        assert doc.failed_provisioning_state == ProvisioningState.DELETING


# ============================================================================
# GUARDS
# ============================================================================

class TestGuards:

    def test_too_many_dequeues(self, store, worker_config, metrics, make_document):
        ran = []

        async def step(ctx):
            ran.append(ctx)

        pipelines = single_step(ProvisioningState.CREATING, "step", step)
        loop = build_loop(store, worker_config, metrics, pipelines=pipelines)

        async def run_test():
            # max_dequeues is 3; this claim makes it 4
            await store.create(make_document(dequeues=3))
            doc = await claim_and_process(store, loop)
            return await store.get(doc.key)

        doc = asyncio.run(run_test())

        assert ran == []
        assert doc.provisioning_state == ProvisioningState.FAILED
        assert doc.last_error == "too many dequeues"
        assert doc.dequeues == 0

    def test_missing_pipeline(self, store, worker_config, metrics, make_document):
        loop = build_loop(store, worker_config, metrics, pipelines=PipelineRegistry())

        async def run_test():
            await store.create(make_document())
            doc = await claim_and_process(store, loop)
            return await store.get(doc.key)

        doc = asyncio.run(run_test())

        assert doc.provisioning_state == ProvisioningState.FAILED
        assert doc.last_error == "No pipeline registered for state: Creating"

    def test_unbuildable_client_fails_and_releases(self, store, worker_config, metrics, make_document):
        def bad_kubeconfig(doc):
            raise ValueError("Invalid kube-config file. No configuration found.")

        factory = manager_factory_for(store, worker_config, emitter=metrics, client_factory=bad_kubeconfig)
        loop = WorkerLoop(store, default_pipelines(), factory, worker_config)

        async def run_test():
            await store.create(make_document())
            await loop._cycle()
            return await store.get(make_document().key)

        doc = asyncio.run(run_test())

        assert doc.provisioning_state == ProvisioningState.FAILED
        assert doc.failed_provisioning_state == ProvisioningState.CREATING
        assert doc.last_error == "Invalid kube-config file. No configuration found."
        assert doc.lease_owner is None
        assert loop.stats()["errors"] == 0

    def test_pipeline_builder_error_fails_and_closes_client(self, store, worker_config, metrics, make_document):
        client = FakeClusterClient()

        def broken(manager):
            raise KeyError("storageProfile")

        registry = PipelineRegistry()
        registry.register(ProvisioningState.CREATING, broken)
        loop = build_loop(store, worker_config, metrics, pipelines=registry, client=client)

        async def run_test():
            await store.create(make_document())
            doc = await claim_and_process(store, loop)
            return await store.get(doc.key)

        doc = asyncio.run(run_test())

        assert doc.provisioning_state == ProvisioningState.FAILED
        assert doc.last_error == "'storageProfile'"
        assert doc.lease_owner is None
        assert client.closed == 1


# ============================================================================
# LEASES
# ============================================================================

class TestLeases:

    def test_lease_lost_mid_run_writes_nothing(self, store, clock, worker_config, metrics, make_document):
        config = dataclasses.replace(worker_config, lease_renew_interval=0.01)

        async def stall(ctx):
            # Lease expires while the step is running
            clock.advance(61)
            await asyncio.sleep(5)

        pipelines = single_step(ProvisioningState.CREATING, "stall", stall)
        loop = build_loop(store, config, metrics, pipelines=pipelines)

        async def run_test():
            await store.create(make_document())
            doc = await claim_and_process(store, loop)
            return await store.get(doc.key)

        doc = asyncio.run(asyncio.wait_for(run_test(), timeout=2))

        assert doc.provisioning_state == ProvisioningState.CREATING
        assert doc.last_error is None
        assert loop.stats()["leases_lost"] == 1
        assert metrics.get_metrics() == []

    def test_heartbeat_renews_lease(self, store, clock, worker_config, metrics, make_document):
        config = dataclasses.replace(worker_config, lease_renew_interval=0.01)
        expiries = []

        async def long_step(ctx):
            for _ in range(3):
                clock.advance(30)
                await asyncio.sleep(0.05)
                current = await store.get(ctx.cluster_key)
                expiries.append(current.lease_expiry)

        pipelines = single_step(ProvisioningState.CREATING, "long", long_step)
        loop = build_loop(store, config, metrics, pipelines=pipelines)

        async def run_test():
            await store.create(make_document())
            doc = await claim_and_process(store, loop)
            return await store.get(doc.key)

        doc = asyncio.run(run_test())

        # 90s elapsed on a 60s lease: only renewals kept it alive
        assert doc.provisioning_state == ProvisioningState.SUCCEEDED
        assert expiries == sorted(expiries)
        assert loop.stats()["leases_lost"] == 0

    def test_failed_final_write_releases_with_backoff(self, store, clock, worker_config, metrics, make_document):
        async def noop(ctx):
            pass

        pipelines = single_step(ProvisioningState.CREATING, "noop", noop)
        loop = build_loop(store, worker_config, metrics, pipelines=pipelines)

        async def run_test():
            await store.create(make_document())
            with patch.object(
                store,
                "patch_with_lease",
                AsyncMock(side_effect=VersionConflictError("k", "t")),
            ):
                doc = await claim_and_process(store, loop)
            return await store.get(doc.key)

        doc = asyncio.run(run_test())

        assert doc.provisioning_state == ProvisioningState.CREATING
        assert doc.lease_owner is None
        assert doc.retry_after == clock.current + timedelta(seconds=30)
        assert loop.stats()["write_failures"] == 1


# ============================================================================
# LOOP CYCLE
# ============================================================================

class TestCycle:

    def test_empty_queue_waits(self, worker_config):
        store = AsyncMock()
        store.dequeue.side_effect = NotFoundError()
        loop = WorkerLoop(store, default_pipelines(), AsyncMock(), worker_config)

        asyncio.run(loop._cycle())

        assert loop.stats()["cycles"] == 1
        assert loop.stats()["claimed"] == 0
        assert loop.stats()["errors"] == 0

    def test_lost_race_counted(self, worker_config):
        store = AsyncMock()
        store.dequeue.side_effect = LeaseConflictError("k", "worker-test")
        loop = WorkerLoop(store, default_pipelines(), AsyncMock(), worker_config)

        asyncio.run(loop._cycle())

        assert loop.stats()["conflicts"] == 1
        assert loop.stats()["errors"] == 0

    def test_store_error_does_not_kill_loop(self, worker_config):
        store = AsyncMock()
        store.dequeue.side_effect = ConnectionError("database unavailable")
        loop = WorkerLoop(store, default_pipelines(), AsyncMock(), worker_config)

        asyncio.run(loop._cycle())

        assert loop.stats()["errors"] == 1

    def test_run_drains_backlog_then_stops(self, store, worker_config, metrics, make_document):
        loop = build_loop(store, worker_config, metrics)

        async def run_test():
            for name in ("a", "b", "c"):
                await store.create(make_document(name))

            task = asyncio.create_task(loop.run())
            for _ in range(200):
                if (await store.count_by_state()).get("Succeeded") == 3:
                    break
                await asyncio.sleep(0.01)
            loop.stop()
            await asyncio.wait_for(task, timeout=1)
            return await store.count_by_state()

        assert asyncio.run(run_test()) == {"Succeeded": 3}
        assert loop.stats()["claimed"] == 3
        assert not loop.is_running

    def test_stop_lets_in_flight_pipeline_finish(self, store, worker_config, metrics, make_document):
        started = asyncio.Event()
        release = asyncio.Event()

        async def gate(ctx):
            started.set()
            await release.wait()

        pipelines = single_step(ProvisioningState.CREATING, "gate", gate)
        loop = build_loop(store, worker_config, metrics, pipelines=pipelines)

        async def run_test():
            await store.create(make_document())
            task = asyncio.create_task(loop.run())
            await asyncio.wait_for(started.wait(), timeout=1)

            loop.stop()
            await asyncio.sleep(0.05)
            assert not task.done()

            release.set()
            await asyncio.wait_for(task, timeout=1)
            return await store.count_by_state()

        assert asyncio.run(run_test()) == {"Succeeded": 1}

    def test_concurrent_loops_claim_each_document_once(self, store, worker_config, metrics, make_document):
        runs = []

        async def record(ctx):
            runs.append(ctx.cluster_key)
            await asyncio.sleep(0.01)

        pipelines = single_step(ProvisioningState.CREATING, "record", record)
        config = dataclasses.replace(worker_config, concurrency=3)
        factory = manager_factory_for(store, config, emitter=metrics, client_factory=lambda doc: None)
        loops = [
            WorkerLoop(store, pipelines, factory, config, owner_id=config.owner_id(i))
            for i in range(3)
        ]

        async def run_test():
            for i in range(6):
                await store.create(make_document(f"c{i}"))
            tasks = [asyncio.create_task(worker.run()) for worker in loops]
            for _ in range(300):
                if (await store.count_by_state()).get("Succeeded") == 6:
                    break
                await asyncio.sleep(0.01)
            for worker in loops:
                worker.stop()
            await asyncio.wait_for(asyncio.gather(*tasks), timeout=1)

        asyncio.run(run_test())

        assert sorted(runs) == sorted(set(runs))
        assert len(runs) == 6
        assert [w.owner_id for w in loops] == ["worker-test-0", "worker-test-1", "worker-test-2"]


# ============================================================================
# FACTORIES
# ============================================================================

class TestFactories:

    def test_no_kubeconfig_no_client(self, make_document):
        assert kubernetes_client_for(make_document()) is None

    def test_manager_gets_stamp_and_client(self, store, worker_config, make_document):
        client = FakeClusterClient()
        factory = manager_factory_for(store, worker_config, client_factory=lambda doc: client)

        manager = factory(make_document(), "worker-test")

        assert manager.build_stamp == "abc1234"
        assert manager.owner_id == "worker-test"
        assert manager.cluster_client is client
        assert manager.condition_timeout == worker_config.condition_timeout
