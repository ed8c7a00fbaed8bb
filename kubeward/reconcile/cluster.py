"""KubeCluster reconciler.

Publishes readiness and the control-plane endpoint of a cluster from the
provisioner's view of its profile. Deleting a KubeCluster only releases the
finalizer: tearing down a whole cluster is left to an explicit, human-run
operation outside the loop.
"""

from __future__ import annotations

from kubeward.api import conditions
from kubeward.api.model import (
    CLUSTER_FINALIZER,
    APIEndpoint,
    Cluster,
    Kind,
    KubeCluster,
    ObjectKey,
)
from kubeward.core.exceptions import ProvisionerError
from kubeward.observability.logger import logger
from kubeward.provisioner import NodeProvisioner
from kubeward.reconcile.base import (
    Result,
    add_finalizer,
    get_or_none,
    get_owner,
    is_paused,
    provisioner_call,
    remove_finalizer,
)
from kubeward.reconcile.patch import patch_scope
from kubeward.store import ResourceStore

log = logger.bind(reconciler="cluster")

REASON_CONFIG_NOT_FOUND = "ClusterConfigNotFound"
REASON_WAITING_FOR_CONTROL_PLANE = "WaitingForControlPlane"

# How soon to look again while the profile has no addressable node yet.
ENDPOINT_POLL_INTERVAL = 10.0


def effective_profile(kube_cluster: KubeCluster, cluster: Cluster) -> str:
    return kube_cluster.spec.profile_name or cluster.metadata.name


class ClusterReconciler:
    def __init__(self, store: ResourceStore, provisioner: NodeProvisioner) -> None:
        self._store = store
        self._provisioner = provisioner

    async def reconcile(self, key: ObjectKey) -> Result:
        kube_cluster = await get_or_none(self._store, Kind.KUBE_CLUSTER, key)
        if not isinstance(kube_cluster, KubeCluster):
            return Result()

        cluster = await get_owner(self._store, kube_cluster, Kind.CLUSTER)
        if not isinstance(cluster, Cluster):
            log.info("Waiting for owner Cluster on {key}", key=key)
            return Result()

        if is_paused(kube_cluster, cluster):
            log.info("{key} or Cluster {cluster} is paused, skipping", key=key, cluster=cluster.metadata.name)
            return Result()

        async with patch_scope(self._store, kube_cluster) as kc:
            if kc.metadata.deleting:
                return self._reconcile_delete(kc)
            return await self._reconcile_normal(kc, cluster)

    def _reconcile_delete(self, kc: KubeCluster) -> Result:
        log.info("Releasing {key}; the profile itself is left running", key=kc.metadata.key)
        remove_finalizer(kc, CLUSTER_FINALIZER)
        return Result()

    async def _reconcile_normal(self, kc: KubeCluster, cluster: Cluster) -> Result:
        if add_finalizer(kc, CLUSTER_FINALIZER):
            return Result(requeue=True)

        profile = effective_profile(kc, cluster)
        try:
            config = await provisioner_call(
                "get_profile_config", self._provisioner.get_profile_config(profile),
            )
        except ProvisionerError as e:
            log.error("Failed to get profile {profile}: {err}", profile=profile, err=e)
            kc.status.ready = False
            kc.status.failure_reason = REASON_CONFIG_NOT_FOUND
            kc.status.failure_message = f"Failed to get cluster config: {e}"
            conditions.mark_false(
                kc.status.conditions, conditions.READY, REASON_CONFIG_NOT_FOUND, str(e),
            )
            raise

        if not kc.spec.control_plane_endpoint.is_set:
            primary = config.nodes[0] if config.nodes else None
            if primary is not None and primary.address:
                kc.spec.control_plane_endpoint = APIEndpoint(
                    host=primary.address, port=config.api_server_port,
                )
                log.info(
                    "Control plane endpoint set to {endpoint}",
                    endpoint=kc.spec.control_plane_endpoint, profile=profile,
                )

        kc.status.failure_reason = None
        kc.status.failure_message = None

        if not kc.spec.control_plane_endpoint.is_set:
            kc.status.ready = False
            conditions.mark_false(
                kc.status.conditions,
                conditions.READY,
                REASON_WAITING_FOR_CONTROL_PLANE,
                f"Profile {profile} has no addressable node yet",
            )
            return Result(requeue_after=ENDPOINT_POLL_INTERVAL)

        kc.status.ready = True
        conditions.mark_true(kc.status.conditions, conditions.READY)
        log.debug("Reconciled {key} (profile {profile})", key=kc.metadata.key, profile=profile)
        return Result()
