from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import replace

import pytest

from kubeward.api.model import (
    CLUSTER_NAME_LABEL,
    Cluster,
    ClusterSpec,
    Kind,
    KubeCluster,
    KubeClusterSpec,
    KubeMachine,
    KubeMachineSpec,
    Machine,
    MachineSpec,
    ObjectMeta,
    OwnerReference,
)
from kubeward.core.exceptions import (
    NodeNotFoundError,
    ProfileNotFoundError,
    ProvisionerError,
)
from kubeward.provisioner import NodeEntry, NodeInfo, NodeRequest, ProfileConfig
from kubeward.store import MemoryStore


class FakeProvisioner:
    """In-memory NodeProvisioner recording every call.

    ``fail[op]`` makes every call of that operation raise; ``delay[op]``
    makes it sleep first.
    """

    def __init__(self) -> None:
        self.profiles: dict[str, ProfileConfig] = {}
        self.running: dict[str, bool] = {}
        self.calls: list[tuple[str, ...]] = []
        self.requests: list[tuple[NodeRequest, bool]] = []
        self.fail: dict[str, ProvisionerError] = {}
        self.delay: dict[str, float] = {}

    def add_profile(
        self,
        name: str,
        nodes: tuple[NodeEntry, ...] = (NodeEntry("node-1", "192.168.49.2"),),
        api_server_port: int = 8443,
        kubernetes_version: str = "v1.30.0",
    ) -> None:
        self.profiles[name] = ProfileConfig(
            nodes=nodes, api_server_port=api_server_port, kubernetes_version=kubernetes_version,
        )

    def count(self, op: str) -> int:
        return sum(1 for c in self.calls if c[0] == op)

    async def _enter(self, op: str, *args: str) -> None:
        self.calls.append((op, *args))
        if op in self.delay:
            await asyncio.sleep(self.delay[op])
        if op in self.fail:
            raise self.fail[op]

    async def get_profile_config(self, profile: str) -> ProfileConfig:
        await self._enter("get_profile_config", profile)
        if profile not in self.profiles:
            raise ProfileNotFoundError(profile)
        return self.profiles[profile]

    async def add_node(self, profile: str, request: NodeRequest, delete_on_failure: bool) -> None:
        await self._enter("add_node", profile, request.name)
        self.requests.append((request, delete_on_failure))
        config = self.profiles[profile]
        address = f"192.168.49.{len(config.nodes) + 2}"
        self.profiles[profile] = replace(config, nodes=(*config.nodes, NodeEntry(request.name, address)))

    async def delete_node(self, profile: str, name: str) -> None:
        await self._enter("delete_node", profile, name)
        config = self.profiles[profile]
        if not any(n.name == name for n in config.nodes):
            raise NodeNotFoundError(profile, name)
        self.profiles[profile] = replace(config, nodes=tuple(n for n in config.nodes if n.name != name))

    async def describe_node(self, profile: str, name: str) -> NodeInfo:
        await self._enter("describe_node", profile, name)
        config = self.profiles.get(profile)
        entry = next((n for n in config.nodes if n.name == name), None) if config else None
        if entry is None:
            raise NodeNotFoundError(profile, name)
        return NodeInfo(
            provider_id=f"fake://{profile}/{name}",
            address=entry.address,
            running=self.running.get(name, True),
        )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def provisioner() -> FakeProvisioner:
    p = FakeProvisioner()
    p.add_profile("dev")
    return p


type ClusterFactory = Callable[..., Awaitable[tuple[Cluster, KubeCluster]]]
type MachineFactory = Callable[..., Awaitable[tuple[Machine, KubeMachine]]]


@pytest.fixture
def make_cluster(store: MemoryStore) -> ClusterFactory:
    async def _make(
        name: str = "dev",
        *,
        paused: bool = False,
        annotations: dict[str, str] | None = None,
        spec: KubeClusterSpec | None = None,
        with_owner: bool = True,
    ) -> tuple[Cluster, KubeCluster]:
        cluster = Cluster(
            metadata=ObjectMeta(name=name),
            spec=ClusterSpec(infrastructure_ref=name, paused=paused),
        )
        if with_owner:
            cluster = await store.create(cluster)  # type: ignore[assignment]
        kube_cluster = await store.create(KubeCluster(
            metadata=ObjectMeta(
                name=name,
                annotations=dict(annotations or {}),
                owner_references=[OwnerReference(Kind.CLUSTER, name)],
            ),
            spec=spec or KubeClusterSpec(),
        ))
        return cluster, kube_cluster  # type: ignore[return-value]
    return _make


@pytest.fixture
def make_machine(store: MemoryStore) -> MachineFactory:
    async def _make(
        name: str = "m1",
        *,
        cluster: str = "dev",
        spec: KubeMachineSpec | None = None,
        annotations: dict[str, str] | None = None,
        with_owner: bool = True,
        labelled: bool = True,
    ) -> tuple[Machine, KubeMachine]:
        machine = Machine(
            metadata=ObjectMeta(name=name, labels={CLUSTER_NAME_LABEL: cluster} if labelled else {}),
            spec=MachineSpec(cluster_name=cluster, infrastructure_ref=name),
        )
        if with_owner:
            machine = await store.create(machine)  # type: ignore[assignment]
        kube_machine = await store.create(KubeMachine(
            metadata=ObjectMeta(
                name=name,
                annotations=dict(annotations or {}),
                owner_references=[OwnerReference(Kind.MACHINE, name)],
            ),
            spec=spec or KubeMachineSpec(),
        ))
        return machine, kube_machine  # type: ignore[return-value]
    return _make
