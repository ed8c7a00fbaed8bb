"""kubeward - declarative reconciliation of clusters and their nodes.

Example:

    from kubeward import MemoryStore, Minikube, run_manager, ManagerConfig

    store = MemoryStore()
    provisioner = Minikube().create_provisioner()
    await run_manager(ManagerConfig(), store=store, provisioner=provisioner)
"""

from kubeward.api.model import (
    Cluster,
    Kind,
    KubeCluster,
    KubeMachine,
    Machine,
    ObjectKey,
    ObjectMeta,
    ObjectRef,
)
from kubeward.config import ManagerConfig, resolve_config
from kubeward.core.exceptions import (
    ConflictError,
    KubewardError,
    NotFoundError,
    ProvisionerError,
)
from kubeward.manager import run_manager
from kubeward.providers.minikube import Minikube
from kubeward.reconcile import ClusterReconciler, MachineReconciler, Result
from kubeward.store import MemoryStore, ResourceStore

__version__ = "0.1.0"

__all__ = [
    "Cluster",
    "ClusterReconciler",
    "ConflictError",
    "Kind",
    "KubeCluster",
    "KubeMachine",
    "KubewardError",
    "Machine",
    "MachineReconciler",
    "ManagerConfig",
    "MemoryStore",
    "Minikube",
    "NotFoundError",
    "ObjectKey",
    "ObjectMeta",
    "ObjectRef",
    "ProvisionerError",
    "ResourceStore",
    "Result",
    "__version__",
    "resolve_config",
    "run_manager",
]
