"""Event pump: store change notifications → scheduler enqueues.

Infra objects are enqueued for themselves. Their owners are read-only to the
engine but still drive it: a change to a ``Cluster`` (unpausing it, say)
fans out to its KubeCluster and to every KubeMachine of its Machines, and a
change to a ``Machine`` reaches its KubeMachine. A KubeCluster appearing
late reaches the KubeMachines that were waiting for it.
"""

from __future__ import annotations

from collections.abc import Callable

from casty import ActorRef

from kubeward.actors.messages import ObjectChanged, SchedulerMsg
from kubeward.api.model import (
    Cluster,
    Kind,
    KubeCluster,
    Machine,
    ObjectKey,
    ObjectRef,
)
from kubeward.observability.logger import logger
from kubeward.store import ResourceStore, WatchEvent

log = logger.bind(component="watch")


async def dependents(store: ResourceStore, event: WatchEvent) -> list[ObjectRef]:
    """Refs to reconcile because of this event."""
    obj = event.object
    match obj:
        case Cluster():
            refs: list[ObjectRef] = []
            if obj.spec.infrastructure_ref:
                refs.append(ObjectRef(
                    Kind.KUBE_CLUSTER,
                    ObjectKey(obj.metadata.namespace, obj.spec.infrastructure_ref),
                ))
            return refs + await _cluster_machines(store, obj)

        case Machine():
            if not obj.spec.infrastructure_ref:
                return []
            return [_machine_infra(obj)]

        case KubeCluster() if event.type != "DELETED":
            # Machines that deferred waiting for this KubeCluster.
            refs = [event.ref]
            clusters = await store.list(Kind.CLUSTER, namespace=obj.metadata.namespace)
            for cluster in clusters:
                if isinstance(cluster, Cluster) and cluster.spec.infrastructure_ref == obj.metadata.name:
                    refs += await _cluster_machines(store, cluster)
            return refs

    if event.type == "DELETED":
        return []
    return [event.ref]


async def _cluster_machines(store: ResourceStore, cluster: Cluster) -> list[ObjectRef]:
    """KubeMachines of every Machine belonging to the cluster, by label or spec."""
    machines = await store.list(Kind.MACHINE, namespace=cluster.metadata.namespace)
    return [
        _machine_infra(m)
        for m in machines
        if isinstance(m, Machine)
        and m.cluster_name == cluster.metadata.name
        and m.spec.infrastructure_ref
    ]


def _machine_infra(machine: Machine) -> ObjectRef:
    return ObjectRef(
        Kind.KUBE_MACHINE,
        ObjectKey(machine.metadata.namespace, machine.spec.infrastructure_ref),
    )


async def pump_events(
    store: ResourceStore,
    scheduler: ActorRef[SchedulerMsg],
    on_started: Callable[[], None] | None = None,
) -> None:
    """Forward store events to the scheduler until cancelled.

    Parameters
    ----------
    store
        Store to subscribe to. Existing objects arrive first as ``ADDED``.
    scheduler
        Scheduler actor receiving ``ObjectChanged``.
    on_started
        Called once, right before the subscription starts draining.
    """
    log.info("Watching store")
    if on_started is not None:
        on_started()
    async for event in store.watch():
        for ref in await dependents(store, event):
            log.trace("{type} event, enqueueing", type=event.type, ref=ref)
            scheduler.tell(ObjectChanged(ref=ref))
