"""Resource model: the objects the engine reconciles.

Four kinds live in the store:

- ``Cluster`` / ``Machine``: the higher-level grouping and machine
  abstractions, written by users or an orchestrator. The engine only reads them.
- ``KubeCluster`` / ``KubeMachine``: the infrastructure projection of a
  cluster and of one node. The engine owns their status, a few set-once spec
  fields, and their finalizers.

Objects are plain mutable dataclasses: the store hands out deep copies, a
reconcile pass mutates its copy, and the patch scope writes the diff back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import ClassVar, Literal


class Kind(StrEnum):
    CLUSTER = "Cluster"
    MACHINE = "Machine"
    KUBE_CLUSTER = "KubeCluster"
    KUBE_MACHINE = "KubeMachine"


DEFAULT_NAMESPACE = "default"

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
PAUSED_ANNOTATION = "cluster.x-k8s.io/paused"

CLUSTER_FINALIZER = "kubecluster.infrastructure.kubeward.io"
MACHINE_FINALIZER = "kubemachine.infrastructure.kubeward.io"

type MachinePhase = Literal["Provisioning", "Provisioned", "Deleting", "Failed"]
type AddressType = Literal["InternalIP", "ExternalIP", "Hostname"]

PHASE_PROVISIONING: MachinePhase = "Provisioning"
PHASE_PROVISIONED: MachinePhase = "Provisioned"
PHASE_DELETING: MachinePhase = "Deleting"
PHASE_FAILED: MachinePhase = "Failed"


# =============================================================================
# Identity
# =============================================================================


@dataclass(frozen=True, slots=True)
class ObjectKey:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True, slots=True)
class ObjectRef:
    """Kind-qualified key: the unit the scheduler serializes on."""

    kind: Kind
    key: ObjectKey

    def __str__(self) -> str:
        return f"{self.kind}/{self.key}"


@dataclass(frozen=True, slots=True)
class OwnerReference:
    kind: Kind
    name: str


@dataclass(slots=True)
class ObjectMeta:
    name: str
    namespace: str = DEFAULT_NAMESPACE
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: float | None = None
    resource_version: int = 0
    generation: int = 0
    uid: str = ""
    creation_timestamp: float | None = None

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def owner(self, kind: Kind) -> OwnerReference | None:
        return next((o for o in self.owner_references if o.kind == kind), None)


# =============================================================================
# Value Objects
# =============================================================================


@dataclass(frozen=True, slots=True)
class APIEndpoint:
    host: str = ""
    port: int = 0

    @property
    def is_set(self) -> bool:
        return bool(self.host)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class NodeAddress:
    type: AddressType
    address: str


@dataclass(frozen=True, slots=True)
class Condition:
    type: str
    status: bool
    reason: str | None = None
    message: str | None = None
    last_transition_time: float = 0.0


# =============================================================================
# Owners (read-only for the engine)
# =============================================================================


@dataclass(slots=True)
class ClusterSpec:
    infrastructure_ref: str | None = None
    paused: bool = False


@dataclass(slots=True)
class Cluster:
    kind: ClassVar[Kind] = Kind.CLUSTER

    metadata: ObjectMeta
    spec: ClusterSpec = field(default_factory=ClusterSpec)


@dataclass(slots=True)
class MachineSpec:
    cluster_name: str = ""
    infrastructure_ref: str | None = None
    version: str | None = None


@dataclass(slots=True)
class Machine:
    kind: ClassVar[Kind] = Kind.MACHINE

    metadata: ObjectMeta
    spec: MachineSpec = field(default_factory=MachineSpec)

    @property
    def cluster_name(self) -> str:
        return self.metadata.labels.get(CLUSTER_NAME_LABEL) or self.spec.cluster_name


# =============================================================================
# Infrastructure projections (reconciled)
# =============================================================================


@dataclass(slots=True)
class KubeClusterSpec:
    profile_name: str = ""
    control_plane_endpoint: APIEndpoint = APIEndpoint()
    driver: str = ""
    container_runtime: str = ""
    network_plugin: str = ""


@dataclass(slots=True)
class KubeClusterStatus:
    ready: bool = False
    failure_reason: str | None = None
    failure_message: str | None = None
    conditions: list[Condition] = field(default_factory=list)


@dataclass(slots=True)
class KubeCluster:
    kind: ClassVar[Kind] = Kind.KUBE_CLUSTER

    metadata: ObjectMeta
    spec: KubeClusterSpec = field(default_factory=KubeClusterSpec)
    status: KubeClusterStatus = field(default_factory=KubeClusterStatus)


@dataclass(slots=True)
class KubeMachineSpec:
    provider_id: str | None = None
    node_name: str = ""
    control_plane: bool = False
    worker: bool | None = None
    cpus: int = 0
    memory: int = 0
    disk_size: int = 0
    extra_options: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class KubeMachineStatus:
    phase: MachinePhase | None = None
    ready: bool = False
    addresses: list[NodeAddress] = field(default_factory=list)
    failure_reason: str | None = None
    failure_message: str | None = None
    conditions: list[Condition] = field(default_factory=list)


@dataclass(slots=True)
class KubeMachine:
    kind: ClassVar[Kind] = Kind.KUBE_MACHINE

    metadata: ObjectMeta
    spec: KubeMachineSpec = field(default_factory=KubeMachineSpec)
    status: KubeMachineStatus = field(default_factory=KubeMachineStatus)

    @property
    def provisioned(self) -> bool:
        return bool(self.spec.provider_id)


type Resource = Cluster | Machine | KubeCluster | KubeMachine


def ref_of(obj: Resource) -> ObjectRef:
    return ObjectRef(obj.kind, obj.metadata.key)
