"""Custom exception hierarchy for kubeward.

All kubeward-specific exceptions inherit from KubewardError, enabling
callers to catch all kubeward exceptions with a single except clause.

Deferrals (owner not resolved yet, object paused) are not errors and never
surface here: reconcilers simply return an empty Result.
"""

from __future__ import annotations


class KubewardError(Exception):
    """Base exception for all kubeward errors."""


class ConfigurationError(KubewardError):
    """Raised for invalid configuration or missing required settings."""


class SerializationError(KubewardError):
    """Raised when a resource document cannot be encoded or decoded."""


class ReconcileTimeoutError(KubewardError):
    """Raised when a reconcile pass exceeds its deadline."""

    def __init__(self, ref: str, timeout: float) -> None:
        self.ref = ref
        self.timeout = timeout
        super().__init__(f"Reconcile of {ref} exceeded {timeout:.1f}s")


# =============================================================================
# Resource Store
# =============================================================================


class StoreError(KubewardError):
    """Base exception for resource store failures."""


class NotFoundError(StoreError):
    """Raised when an object does not exist in the store."""

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} not found")


class AlreadyExistsError(StoreError):
    """Raised when creating an object whose key is taken."""

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} already exists")


class ConflictError(StoreError):
    """Raised when a write carries a stale resource version - re-read and retry."""

    def __init__(self, kind: str, key: str, expected: int, actual: int) -> None:
        self.kind = kind
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{kind} {key} was modified (resource version {actual}, write based on {expected})"
        )


# =============================================================================
# Node Provisioner
# =============================================================================


class ProvisionerError(KubewardError):
    """Base exception for node provisioner failures."""


class ProfileNotFoundError(ProvisionerError):
    """Raised when the provisioning profile does not exist."""

    def __init__(self, profile: str) -> None:
        self.profile = profile
        super().__init__(f"Profile {profile!r} not found")


class ProvisionerUnavailableError(ProvisionerError):
    """Raised when the provisioner cannot be reached or answered garbage."""


class NodeNotFoundError(ProvisionerError):
    """Raised when a node is not part of the profile."""

    def __init__(self, profile: str, node: str) -> None:
        self.profile = profile
        self.node = node
        super().__init__(f"Node {node!r} not found in profile {profile!r}")


class NodeProvisionError(ProvisionerError):
    """Raised when adding or removing a node fails."""
