from kubeward.reconcile.base import Reconciler, Result
from kubeward.reconcile.cluster import ClusterReconciler
from kubeward.reconcile.machine import MachineReconciler

__all__ = [
    "ClusterReconciler",
    "MachineReconciler",
    "Reconciler",
    "Result",
]
