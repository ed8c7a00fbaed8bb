"""KubeMachine reconciler: the node lifecycle state machine.

Phases::

    (unset) ──► Provisioning ──► Provisioned ◄──┐  re-described every pass
                     │                └─────────┘
                     └──► Failed   (profile lookup or add-node failed)

    any ──► Deleting ──► finalizer released

A non-empty ``spec.provider_id`` is the permanent "already provisioned"
marker: once it is set the reconciler only describes the node and
republishes its status, it never adds the node again.
"""

from __future__ import annotations

from dataclasses import dataclass

from kubeward.api import conditions
from kubeward.api.model import (
    MACHINE_FINALIZER,
    PHASE_DELETING,
    PHASE_FAILED,
    PHASE_PROVISIONED,
    PHASE_PROVISIONING,
    Cluster,
    Kind,
    KubeCluster,
    KubeMachine,
    Machine,
    NodeAddress,
    ObjectKey,
)
from kubeward.core.exceptions import NodeNotFoundError, ProvisionerError
from kubeward.observability.logger import logger
from kubeward.provisioner import (
    NodeInfo,
    NodeProvisioner,
    NodeRequest,
    ProfileConfig,
    node_name,
    parse_node_ordinal,
)
from kubeward.reconcile.base import (
    Result,
    add_finalizer,
    get_or_none,
    get_owner,
    is_paused,
    provisioner_call,
    remove_finalizer,
)
from kubeward.reconcile.cluster import effective_profile
from kubeward.reconcile.patch import patch_scope
from kubeward.store import ResourceStore

log = logger.bind(reconciler="machine")

REASON_CONFIG_NOT_FOUND = "ClusterConfigNotFound"
REASON_PROVISION_FAILED = "NodeProvisionFailed"
REASON_NODE_NOT_RUNNING = "NodeNotRunning"
REASON_DESCRIBE_FAILED = "NodeDescribeFailed"


def next_node_name(config: ProfileConfig) -> str:
    """Name for the node after the profile's last one.

    Takes the last node's ordinal plus one. When the profile is empty or the
    last name doesn't follow the naming convention, falls back to the node
    count plus one.
    """
    last_id = len(config.nodes)
    if config.nodes:
        parsed = parse_node_ordinal(config.nodes[-1].name)
        if parsed is not None:
            last_id = parsed
    return node_name(last_id + 1)


@dataclass(frozen=True, slots=True)
class _Owners:
    machine: Machine
    cluster: Cluster
    kube_cluster: KubeCluster


class MachineReconciler:
    def __init__(self, store: ResourceStore, provisioner: NodeProvisioner) -> None:
        self._store = store
        self._provisioner = provisioner

    async def _resolve_owners(self, km: KubeMachine) -> _Owners | None:
        key = km.metadata.key

        machine = await get_owner(self._store, km, Kind.MACHINE)
        if not isinstance(machine, Machine):
            log.info("Waiting for owner Machine on {key}", key=key)
            return None

        cluster_name = machine.cluster_name
        cluster = (
            await get_or_none(self._store, Kind.CLUSTER, ObjectKey(key.namespace, cluster_name))
            if cluster_name else None
        )
        if not isinstance(cluster, Cluster):
            log.info(
                "Machine {machine} has no cluster label or its Cluster does not exist yet",
                machine=machine.metadata.name,
            )
            return None

        infra_name = cluster.spec.infrastructure_ref
        kube_cluster = (
            await get_or_none(self._store, Kind.KUBE_CLUSTER, ObjectKey(key.namespace, infra_name))
            if infra_name else None
        )
        if not isinstance(kube_cluster, KubeCluster):
            log.info("KubeCluster for Cluster {cluster} is not available yet", cluster=cluster.metadata.name)
            return None

        return _Owners(machine=machine, cluster=cluster, kube_cluster=kube_cluster)

    async def reconcile(self, key: ObjectKey) -> Result:
        km = await get_or_none(self._store, Kind.KUBE_MACHINE, key)
        if not isinstance(km, KubeMachine):
            return Result()

        owners = await self._resolve_owners(km)
        if owners is None:
            return Result()

        if is_paused(km, owners.cluster):
            log.info(
                "{key} or Cluster {cluster} is paused, skipping",
                key=key, cluster=owners.cluster.metadata.name,
            )
            return Result()

        profile = effective_profile(owners.kube_cluster, owners.cluster)

        async with patch_scope(self._store, km) as m:
            if m.metadata.deleting:
                return await self._reconcile_delete(m, profile)
            return await self._reconcile_normal(m, profile)

    async def _reconcile_normal(self, km: KubeMachine, profile: str) -> Result:
        if add_finalizer(km, MACHINE_FINALIZER):
            return Result(requeue=True)

        if km.provisioned:
            return await self._reconcile_existing(km, profile)
        return await self._provision(km, profile)

    async def _provision(self, km: KubeMachine, profile: str) -> Result:
        log.info("Provisioning node for {key}", key=km.metadata.key, profile=profile)
        km.status.phase = PHASE_PROVISIONING

        try:
            config = await provisioner_call(
                "get_profile_config", self._provisioner.get_profile_config(profile),
            )
        except ProvisionerError as e:
            log.error("Failed to get profile {profile}: {err}", profile=profile, err=e)
            self._mark_failed(km, REASON_CONFIG_NOT_FOUND, f"Failed to get cluster config: {e}")
            raise

        if not km.spec.node_name:
            km.spec.node_name = next_node_name(config)
            log.info("Assigned node name {node}", node=km.spec.node_name, ref=km.metadata.key)

        request = NodeRequest(
            name=km.spec.node_name,
            worker=km.spec.worker if km.spec.worker is not None else True,
            control_plane=km.spec.control_plane,
            kubernetes_version=config.kubernetes_version,
        )

        if any(n.name == request.name for n in config.nodes):
            # Added by an earlier pass that could not describe it.
            log.info("Node {node} already in profile, not adding it again", node=request.name, profile=profile)
        else:
            try:
                await provisioner_call(
                    "add_node",
                    self._provisioner.add_node(profile, request, delete_on_failure=False),
                )
            except ProvisionerError as e:
                log.error("Failed to add node {node}: {err}", node=request.name, err=e)
                self._mark_failed(km, REASON_PROVISION_FAILED, f"Failed to provision node: {e}")
                raise

        try:
            info = await provisioner_call(
                "describe_node", self._provisioner.describe_node(profile, request.name),
            )
        except ProvisionerError as e:
            # The node exists; only the read failed.
            log.warning("Node {node} added but not describable yet: {err}", node=request.name, err=e)
            return Result(requeue=True)

        km.spec.provider_id = info.provider_id
        km.status.phase = PHASE_PROVISIONED
        km.status.ready = True
        km.status.addresses = [NodeAddress(type="InternalIP", address=info.address)]
        km.status.failure_reason = None
        km.status.failure_message = None
        conditions.mark_true(km.status.conditions, conditions.READY)

        log.info(
            "Node {node} provisioned as {provider_id}",
            node=request.name, provider_id=info.provider_id, profile=profile,
        )
        return Result()

    async def _reconcile_existing(self, km: KubeMachine, profile: str) -> Result:
        log.debug("Refreshing node {node}", node=km.spec.node_name, profile=profile)
        try:
            info: NodeInfo = await provisioner_call(
                "describe_node", self._provisioner.describe_node(profile, km.spec.node_name),
            )
        except ProvisionerError as e:
            log.error("Failed to describe node {node}: {err}", node=km.spec.node_name, err=e)
            km.status.ready = False
            conditions.mark_false(km.status.conditions, conditions.READY, REASON_DESCRIBE_FAILED, str(e))
            raise

        km.status.phase = PHASE_PROVISIONED
        km.status.ready = info.running
        km.status.addresses = [NodeAddress(type="InternalIP", address=info.address)]
        if info.running:
            conditions.mark_true(km.status.conditions, conditions.READY)
        else:
            conditions.mark_false(
                km.status.conditions, conditions.READY, REASON_NODE_NOT_RUNNING,
                f"Node {km.spec.node_name} is not running",
            )
        return Result()

    async def _reconcile_delete(self, km: KubeMachine, profile: str) -> Result:
        log.info("Deleting {key}", key=km.metadata.key, profile=profile)
        km.status.phase = PHASE_DELETING

        if km.spec.node_name:
            try:
                await provisioner_call(
                    "delete_node", self._provisioner.delete_node(profile, km.spec.node_name),
                )
                log.info("Node {node} deleted", node=km.spec.node_name)
            except NodeNotFoundError:
                log.debug("Node {node} already gone", node=km.spec.node_name)
            except ProvisionerError as e:
                # Logged only; the finalizer is released regardless.
                log.error("Failed to delete node {node}: {err}", node=km.spec.node_name, err=e)

        remove_finalizer(km, MACHINE_FINALIZER)
        return Result()

    @staticmethod
    def _mark_failed(km: KubeMachine, reason: str, message: str) -> None:
        km.status.phase = PHASE_FAILED
        km.status.ready = False
        km.status.failure_reason = reason
        km.status.failure_message = message
        conditions.mark_false(km.status.conditions, conditions.READY, reason, message)
