from __future__ import annotations

import asyncio

import pytest

from kubeward.api.model import (
    CLUSTER_NAME_LABEL,
    Kind,
    KubeMachine,
    Machine,
    ObjectKey,
    ObjectMeta,
)
from kubeward.core.exceptions import AlreadyExistsError, ConflictError, NotFoundError

KEY = ObjectKey("default", "m1")


def _km(name: str = "m1", **meta) -> KubeMachine:
    return KubeMachine(metadata=ObjectMeta(name=name, **meta))


class TestCrud:
    @pytest.mark.asyncio
    async def test_create_assigns_identity(self, store) -> None:
        created = await store.create(_km())
        assert created.metadata.resource_version > 0
        assert created.metadata.generation == 1
        assert created.metadata.uid
        assert created.metadata.creation_timestamp is not None

    @pytest.mark.asyncio
    async def test_create_twice_fails(self, store) -> None:
        await store.create(_km())
        with pytest.raises(AlreadyExistsError):
            await store.create(_km())

    @pytest.mark.asyncio
    async def test_get_missing(self, store) -> None:
        with pytest.raises(NotFoundError):
            await store.get(Kind.KUBE_MACHINE, KEY)

    @pytest.mark.asyncio
    async def test_reads_are_private_copies(self, store) -> None:
        await store.create(_km())
        first = await store.get(Kind.KUBE_MACHINE, KEY)
        first.status.phase = "Failed"

        second = await store.get(Kind.KUBE_MACHINE, KEY)
        assert second.status.phase is None

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(self, store) -> None:
        await store.create(_km())
        a = await store.get(Kind.KUBE_MACHINE, KEY)
        b = await store.get(Kind.KUBE_MACHINE, KEY)

        a.status.phase = "Provisioning"
        await store.update(a)

        b.status.phase = "Failed"
        with pytest.raises(ConflictError):
            await store.update(b)

    @pytest.mark.asyncio
    async def test_generation_tracks_spec_only(self, store) -> None:
        created = await store.create(_km())
        created.status.ready = True
        after_status = await store.update(created)
        assert after_status.metadata.generation == 1

        after_status.spec.node_name = "node-2"
        after_spec = await store.update(after_status)
        assert after_spec.metadata.generation == 2

    @pytest.mark.asyncio
    async def test_list_filters_by_labels(self, store) -> None:
        await store.create(Machine(metadata=ObjectMeta(name="a", labels={CLUSTER_NAME_LABEL: "dev"})))
        await store.create(Machine(metadata=ObjectMeta(name="b", labels={CLUSTER_NAME_LABEL: "prod"})))
        await store.create(Machine(metadata=ObjectMeta(name="c", namespace="other")))

        dev = await store.list(Kind.MACHINE, labels={CLUSTER_NAME_LABEL: "dev"})
        assert [m.metadata.name for m in dev] == ["a"]
        assert len(await store.list(Kind.MACHINE, namespace="default")) == 2


class TestDeletion:
    @pytest.mark.asyncio
    async def test_delete_without_finalizers_removes(self, store) -> None:
        await store.create(_km())
        await store.delete(Kind.KUBE_MACHINE, KEY)
        with pytest.raises(NotFoundError):
            await store.get(Kind.KUBE_MACHINE, KEY)

    @pytest.mark.asyncio
    async def test_finalizer_holds_tombstone(self, store) -> None:
        await store.create(_km(finalizers=["f"]))
        await store.delete(Kind.KUBE_MACHINE, KEY)

        held = await store.get(Kind.KUBE_MACHINE, KEY)
        assert held.metadata.deleting

        held.metadata.finalizers = []
        await store.update(held)
        with pytest.raises(NotFoundError):
            await store.get(Kind.KUBE_MACHINE, KEY)

    @pytest.mark.asyncio
    async def test_update_cannot_clear_tombstone(self, store) -> None:
        await store.create(_km(finalizers=["f"]))
        await store.delete(Kind.KUBE_MACHINE, KEY)
        held = await store.get(Kind.KUBE_MACHINE, KEY)

        held.metadata.deletion_timestamp = None
        updated = await store.update(held)
        assert updated.metadata.deleting


class TestWatch:
    @pytest.mark.asyncio
    async def test_replays_existing_then_streams(self, store) -> None:
        await store.create(_km("m1"))
        events = store.watch()

        first = await anext(events)
        assert (first.type, first.ref.key.name) == ("ADDED", "m1")

        await store.create(_km("m2", finalizers=["f"]))
        await store.delete(Kind.KUBE_MACHINE, ObjectKey("default", "m2"))

        second = await asyncio.wait_for(anext(events), 1.0)
        third = await asyncio.wait_for(anext(events), 1.0)
        assert (second.type, second.ref.key.name) == ("ADDED", "m2")
        assert third.type == "MODIFIED"
        assert third.object.metadata.deleting
        await events.aclose()

    @pytest.mark.asyncio
    async def test_finalizer_release_emits_deleted(self, store) -> None:
        await store.create(_km(finalizers=["f"]))
        await store.delete(Kind.KUBE_MACHINE, KEY)
        held = await store.get(Kind.KUBE_MACHINE, KEY)

        events = store.watch()
        await anext(events)

        held.metadata.finalizers = []
        await store.update(held)

        event = await asyncio.wait_for(anext(events), 1.0)
        assert event.type == "DELETED"
        await events.aclose()
