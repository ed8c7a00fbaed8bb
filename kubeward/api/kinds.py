"""Kind registry: one (de)serializer per resource kind.

The mapping is built once at import time; there is no dynamic registration.
Wire documents use camelCase keys and always carry ``kind``::

    {"kind": "KubeMachine",
     "metadata": {"name": "m1", "ownerReferences": [{"kind": "Machine", "name": "m1"}]},
     "spec": {"nodeName": "node-2", "worker": true}}
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Final, cast

from kubeward.api.model import (
    DEFAULT_NAMESPACE,
    APIEndpoint,
    Cluster,
    ClusterSpec,
    Condition,
    Kind,
    KubeCluster,
    KubeClusterSpec,
    KubeClusterStatus,
    KubeMachine,
    KubeMachineSpec,
    KubeMachineStatus,
    Machine,
    MachinePhase,
    MachineSpec,
    NodeAddress,
    ObjectMeta,
    OwnerReference,
    Resource,
)
from kubeward.core.exceptions import SerializationError

type Document = dict[str, Any]


@dataclass(frozen=True, slots=True)
class Codec:
    encode: Callable[[Any], Document]
    decode: Callable[[Document], Resource]


# =============================================================================
# Shared pieces
# =============================================================================


def _drop_empty(doc: Document) -> Document:
    return {k: v for k, v in doc.items() if v not in (None, "", [], {})}


def _encode_meta(meta: ObjectMeta) -> Document:
    return _drop_empty({
        "name": meta.name,
        "namespace": meta.namespace,
        "labels": dict(meta.labels),
        "annotations": dict(meta.annotations),
        "ownerReferences": [{"kind": str(o.kind), "name": o.name} for o in meta.owner_references],
        "finalizers": list(meta.finalizers),
        "deletionTimestamp": meta.deletion_timestamp,
        "resourceVersion": meta.resource_version or None,
        "generation": meta.generation or None,
        "uid": meta.uid,
        "creationTimestamp": meta.creation_timestamp,
    })


def _decode_meta(raw: Document) -> ObjectMeta:
    if not raw.get("name"):
        raise SerializationError("metadata.name is required")
    return ObjectMeta(
        name=raw["name"],
        namespace=raw.get("namespace") or DEFAULT_NAMESPACE,
        labels=dict(raw.get("labels", {})),
        annotations=dict(raw.get("annotations", {})),
        owner_references=[
            OwnerReference(kind=Kind(o["kind"]), name=o["name"])
            for o in raw.get("ownerReferences", [])
        ],
        finalizers=list(raw.get("finalizers", [])),
        deletion_timestamp=raw.get("deletionTimestamp"),
        resource_version=int(raw.get("resourceVersion", 0)),
        generation=int(raw.get("generation", 0)),
        uid=raw.get("uid", ""),
        creation_timestamp=raw.get("creationTimestamp"),
    )


def _encode_conditions(conditions: list[Condition]) -> list[Document]:
    return [
        _drop_empty({
            "type": c.type,
            "status": "True" if c.status else "False",
            "reason": c.reason,
            "message": c.message,
            "lastTransitionTime": c.last_transition_time,
        })
        for c in conditions
    ]


def _decode_conditions(raw: list[Document]) -> list[Condition]:
    return [
        Condition(
            type=c["type"],
            status=c.get("status") in (True, "True"),
            reason=c.get("reason"),
            message=c.get("message"),
            last_transition_time=float(c.get("lastTransitionTime", 0.0)),
        )
        for c in raw
    ]


# =============================================================================
# Per-kind codecs
# =============================================================================


def _encode_cluster(obj: Cluster) -> Document:
    return {
        "kind": str(Kind.CLUSTER),
        "metadata": _encode_meta(obj.metadata),
        "spec": _drop_empty({
            "infrastructureRef": obj.spec.infrastructure_ref,
            "paused": obj.spec.paused or None,
        }),
    }


def _decode_cluster(doc: Document) -> Cluster:
    spec = doc.get("spec", {})
    return Cluster(
        metadata=_decode_meta(doc.get("metadata", {})),
        spec=ClusterSpec(
            infrastructure_ref=spec.get("infrastructureRef"),
            paused=bool(spec.get("paused", False)),
        ),
    )


def _encode_machine(obj: Machine) -> Document:
    return {
        "kind": str(Kind.MACHINE),
        "metadata": _encode_meta(obj.metadata),
        "spec": _drop_empty({
            "clusterName": obj.spec.cluster_name,
            "infrastructureRef": obj.spec.infrastructure_ref,
            "version": obj.spec.version,
        }),
    }


def _decode_machine(doc: Document) -> Machine:
    spec = doc.get("spec", {})
    return Machine(
        metadata=_decode_meta(doc.get("metadata", {})),
        spec=MachineSpec(
            cluster_name=spec.get("clusterName", ""),
            infrastructure_ref=spec.get("infrastructureRef"),
            version=spec.get("version"),
        ),
    )


def _encode_kube_cluster(obj: KubeCluster) -> Document:
    endpoint = obj.spec.control_plane_endpoint
    return {
        "kind": str(Kind.KUBE_CLUSTER),
        "metadata": _encode_meta(obj.metadata),
        "spec": _drop_empty({
            "profileName": obj.spec.profile_name,
            "controlPlaneEndpoint": (
                {"host": endpoint.host, "port": endpoint.port} if endpoint.is_set else None
            ),
            "driver": obj.spec.driver,
            "containerRuntime": obj.spec.container_runtime,
            "networkPlugin": obj.spec.network_plugin,
        }),
        "status": _drop_empty({
            "ready": obj.status.ready,
            "failureReason": obj.status.failure_reason,
            "failureMessage": obj.status.failure_message,
            "conditions": _encode_conditions(obj.status.conditions),
        }),
    }


def _decode_kube_cluster(doc: Document) -> KubeCluster:
    spec = doc.get("spec", {})
    status = doc.get("status", {})
    endpoint = spec.get("controlPlaneEndpoint") or {}
    return KubeCluster(
        metadata=_decode_meta(doc.get("metadata", {})),
        spec=KubeClusterSpec(
            profile_name=spec.get("profileName", ""),
            control_plane_endpoint=APIEndpoint(
                host=endpoint.get("host", ""), port=int(endpoint.get("port", 0)),
            ),
            driver=spec.get("driver", ""),
            container_runtime=spec.get("containerRuntime", ""),
            network_plugin=spec.get("networkPlugin", ""),
        ),
        status=KubeClusterStatus(
            ready=bool(status.get("ready", False)),
            failure_reason=status.get("failureReason"),
            failure_message=status.get("failureMessage"),
            conditions=_decode_conditions(status.get("conditions", [])),
        ),
    )


def _encode_kube_machine(obj: KubeMachine) -> Document:
    return {
        "kind": str(Kind.KUBE_MACHINE),
        "metadata": _encode_meta(obj.metadata),
        "spec": _drop_empty({
            "providerID": obj.spec.provider_id,
            "nodeName": obj.spec.node_name,
            "controlPlane": obj.spec.control_plane or None,
            "worker": obj.spec.worker,
            "cpus": obj.spec.cpus or None,
            "memory": obj.spec.memory or None,
            "diskSize": obj.spec.disk_size or None,
            "extraOptions": dict(obj.spec.extra_options),
        }),
        "status": _drop_empty({
            "phase": obj.status.phase,
            "ready": obj.status.ready,
            "addresses": [{"type": a.type, "address": a.address} for a in obj.status.addresses],
            "failureReason": obj.status.failure_reason,
            "failureMessage": obj.status.failure_message,
            "conditions": _encode_conditions(obj.status.conditions),
        }),
    }


def _decode_kube_machine(doc: Document) -> KubeMachine:
    spec = doc.get("spec", {})
    status = doc.get("status", {})
    return KubeMachine(
        metadata=_decode_meta(doc.get("metadata", {})),
        spec=KubeMachineSpec(
            provider_id=spec.get("providerID"),
            node_name=spec.get("nodeName", ""),
            control_plane=bool(spec.get("controlPlane", False)),
            worker=spec.get("worker"),
            cpus=int(spec.get("cpus", 0)),
            memory=int(spec.get("memory", 0)),
            disk_size=int(spec.get("diskSize", 0)),
            extra_options={str(k): str(v) for k, v in spec.get("extraOptions", {}).items()},
        ),
        status=KubeMachineStatus(
            phase=cast("MachinePhase | None", status.get("phase")),
            ready=bool(status.get("ready", False)),
            addresses=[NodeAddress(type=a["type"], address=a["address"]) for a in status.get("addresses", [])],
            failure_reason=status.get("failureReason"),
            failure_message=status.get("failureMessage"),
            conditions=_decode_conditions(status.get("conditions", [])),
        ),
    )


KINDS: Final[Mapping[Kind, Codec]] = MappingProxyType({
    Kind.CLUSTER: Codec(_encode_cluster, _decode_cluster),
    Kind.MACHINE: Codec(_encode_machine, _decode_machine),
    Kind.KUBE_CLUSTER: Codec(_encode_kube_cluster, _decode_kube_cluster),
    Kind.KUBE_MACHINE: Codec(_encode_kube_machine, _decode_kube_machine),
})


def _codec(kind: str) -> Codec:
    try:
        return KINDS[Kind(kind)]
    except ValueError:
        raise SerializationError(
            f"Unknown kind {kind!r}. Valid: {', '.join(KINDS)}"
        ) from None


def encode(obj: Resource) -> Document:
    return _codec(obj.kind).encode(obj)


def decode(doc: Document) -> Resource:
    kind = doc.get("kind")
    if not kind:
        raise SerializationError("Resource document is missing 'kind'")
    try:
        return _codec(kind).decode(doc)
    except (KeyError, TypeError, ValueError) as e:
        raise SerializationError(f"Invalid {kind} document: {e}") from e
