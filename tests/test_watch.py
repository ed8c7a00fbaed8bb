from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio
from casty import ActorSystem, Behavior, Behaviors

from kubeward.actors.messages import ObjectChanged
from kubeward.api.model import Kind, ObjectKey, ObjectRef
from kubeward.store import WatchEvent
from kubeward.watch import dependents, pump_events


@pytest_asyncio.fixture
async def system():
    s = ActorSystem("test-watch")
    yield s
    await s.shutdown()


def collector_behavior(collected: list) -> Behavior:
    async def receive(ctx, msg):
        collected.append(msg)
        return Behaviors.same()
    return Behaviors.receive(receive)


def _ref(kind: Kind, name: str) -> ObjectRef:
    return ObjectRef(kind, ObjectKey("default", name))


class TestDependents:
    @pytest.mark.asyncio
    async def test_infra_object_enqueues_itself(self, store, make_cluster) -> None:
        _, kc = await make_cluster()
        refs = await dependents(store, WatchEvent("MODIFIED", _ref(Kind.KUBE_CLUSTER, "dev"), kc))
        assert refs == [_ref(Kind.KUBE_CLUSTER, "dev")]

    @pytest.mark.asyncio
    async def test_deleted_infra_object_is_not_dispatched(self, store, make_cluster) -> None:
        _, kc = await make_cluster()
        refs = await dependents(store, WatchEvent("DELETED", _ref(Kind.KUBE_CLUSTER, "dev"), kc))
        assert refs == []

    @pytest.mark.asyncio
    async def test_cluster_fans_out_to_its_infra(self, store, make_cluster, make_machine) -> None:
        cluster, _ = await make_cluster()
        await make_machine("m1")
        await make_machine("m2")
        await make_machine("other", cluster="prod")

        refs = await dependents(store, WatchEvent("MODIFIED", _ref(Kind.CLUSTER, "dev"), cluster))

        assert refs[0] == _ref(Kind.KUBE_CLUSTER, "dev")
        assert sorted(r.key.name for r in refs[1:]) == ["m1", "m2"]
        assert all(r.kind == Kind.KUBE_MACHINE for r in refs[1:])

    @pytest.mark.asyncio
    async def test_cluster_reaches_unlabelled_machines(self, store, make_cluster, make_machine) -> None:
        cluster, _ = await make_cluster()
        await make_machine("m1", labelled=False)

        refs = await dependents(store, WatchEvent("MODIFIED", _ref(Kind.CLUSTER, "dev"), cluster))

        assert refs == [_ref(Kind.KUBE_CLUSTER, "dev"), _ref(Kind.KUBE_MACHINE, "m1")]

    @pytest.mark.asyncio
    async def test_late_kube_cluster_reaches_waiting_machines(self, store, make_cluster, make_machine) -> None:
        _, kc = await make_cluster()
        await make_machine("m1")
        await make_machine("other", cluster="prod")

        refs = await dependents(store, WatchEvent("ADDED", _ref(Kind.KUBE_CLUSTER, "dev"), kc))

        assert refs == [_ref(Kind.KUBE_CLUSTER, "dev"), _ref(Kind.KUBE_MACHINE, "m1")]

    @pytest.mark.asyncio
    async def test_machine_reaches_its_kube_machine(self, store, make_machine) -> None:
        machine, _ = await make_machine("m1")
        refs = await dependents(store, WatchEvent("MODIFIED", _ref(Kind.MACHINE, "m1"), machine))
        assert refs == [_ref(Kind.KUBE_MACHINE, "m1")]


class TestPumpEvents:
    @pytest.mark.asyncio
    async def test_forwards_existing_and_new_objects(self, system, store, make_cluster) -> None:
        received: list = []
        collector = system.spawn(collector_behavior(received), "collector")
        await make_cluster()
        started = asyncio.Event()

        pump = asyncio.create_task(pump_events(store, collector, on_started=started.set))
        try:
            await asyncio.wait_for(started.wait(), 1.0)
            await asyncio.sleep(0.1)

            assert ObjectChanged(ref=_ref(Kind.KUBE_CLUSTER, "dev")) in received
        finally:
            pump.cancel()
            with pytest.raises(asyncio.CancelledError):
                await pump
