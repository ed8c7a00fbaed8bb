from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

NODE_NAME_PREFIX = "node-"

_ORDINAL = re.compile(rf"^{re.escape(NODE_NAME_PREFIX)}(\d+)$")


def node_name(ordinal: int) -> str:
    return f"{NODE_NAME_PREFIX}{ordinal}"


def parse_node_ordinal(name: str) -> int | None:
    """Ordinal of a canonically named node, None when the name doesn't follow it."""
    match = _ORDINAL.match(name)
    return int(match.group(1)) if match else None


@dataclass(frozen=True, slots=True)
class NodeEntry:
    name: str
    address: str = ""


@dataclass(frozen=True, slots=True)
class ProfileConfig:
    """Snapshot of a profile as the provisioner sees it right now."""

    nodes: tuple[NodeEntry, ...]
    api_server_port: int
    kubernetes_version: str


@dataclass(frozen=True, slots=True)
class NodeRequest:
    name: str
    worker: bool
    control_plane: bool
    kubernetes_version: str


@dataclass(frozen=True, slots=True)
class NodeInfo:
    provider_id: str
    address: str
    running: bool


@runtime_checkable
class NodeProvisioner(Protocol):
    """Narrow interface to whatever creates and destroys nodes.

    Implementations hold only their own configuration. Profile state is
    shared and mutable outside the engine, so callers re-query before acting
    and never cache results across reconcile passes.
    """

    async def get_profile_config(self, profile: str) -> ProfileConfig:
        """Describe the profile's current nodes and control-plane settings.

        Parameters
        ----------
        profile
            Profile identifier grouping the cluster's nodes.

        Raises
        ------
        ProfileNotFoundError
            The profile does not exist.
        ProvisionerUnavailableError
            The provisioner could not be reached or returned invalid data.
        """
        ...

    async def add_node(
        self, profile: str, request: NodeRequest, delete_on_failure: bool,
    ) -> None:
        """Add one node to the profile.

        Parameters
        ----------
        profile
            Profile identifier.
        request
            Name, roles and Kubernetes version of the node to create.
        delete_on_failure
            Whether a half-created node is rolled back on failure.

        Raises
        ------
        NodeProvisionError
            The node could not be created.
        """
        ...

    async def delete_node(self, profile: str, name: str) -> None:
        """Remove a node from the profile.

        Raises
        ------
        NodeNotFoundError
            The node is already gone. Callers treat this as success.
        NodeProvisionError
            The node exists but could not be removed.
        """
        ...

    async def describe_node(self, profile: str, name: str) -> NodeInfo:
        """Return live information about a node.

        Raises
        ------
        NodeNotFoundError
            The node is not part of the profile.
        """
        ...
