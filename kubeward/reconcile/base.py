"""Pieces shared by every reconciler: results, finalizers, owners, pause."""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Protocol

from kubeward.api.model import (
    PAUSED_ANNOTATION,
    Cluster,
    Kind,
    ObjectKey,
    Resource,
)
from kubeward.core.exceptions import NotFoundError, ProvisionerError
from kubeward.observability.metrics import PROVISIONER_CALLS
from kubeward.store import ResourceStore


@dataclass(frozen=True, slots=True)
class Result:
    """Outcome of a successful pass.

    An empty Result means "converged or deferred": nothing happens until the
    next change notification.
    """

    requeue: bool = False
    requeue_after: float | None = None


class Reconciler(Protocol):
    async def reconcile(self, key: ObjectKey) -> Result: ...


# =============================================================================
# Finalizers
# =============================================================================


def has_finalizer(obj: Resource, finalizer: str) -> bool:
    return finalizer in obj.metadata.finalizers


def add_finalizer(obj: Resource, finalizer: str) -> bool:
    if has_finalizer(obj, finalizer):
        return False
    obj.metadata.finalizers.append(finalizer)
    return True


def remove_finalizer(obj: Resource, finalizer: str) -> bool:
    if not has_finalizer(obj, finalizer):
        return False
    obj.metadata.finalizers = [f for f in obj.metadata.finalizers if f != finalizer]
    return True


# =============================================================================
# Owners and pause
# =============================================================================


async def get_or_none(store: ResourceStore, kind: Kind, key: ObjectKey) -> Resource | None:
    try:
        return await store.get(kind, key)
    except NotFoundError:
        return None


async def get_owner(store: ResourceStore, obj: Resource, kind: Kind) -> Resource | None:
    """Resolve obj's owner of the given kind; None when unset or not created yet."""
    ref = obj.metadata.owner(kind)
    if ref is None:
        return None
    return await get_or_none(store, kind, ObjectKey(obj.metadata.namespace, ref.name))


def is_paused(obj: Resource, cluster: Cluster | None) -> bool:
    if PAUSED_ANNOTATION in obj.metadata.annotations:
        return True
    if cluster is None:
        return False
    return cluster.spec.paused or PAUSED_ANNOTATION in cluster.metadata.annotations


# =============================================================================
# Provisioner calls
# =============================================================================


async def provisioner_call[T](operation: str, call: Awaitable[T]) -> T:
    try:
        result = await call
    except ProvisionerError:
        PROVISIONER_CALLS.labels(operation=operation, outcome="error").inc()
        raise
    PROVISIONER_CALLS.labels(operation=operation, outcome="success").inc()
    return result
