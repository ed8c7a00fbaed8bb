"""Minikube-backed node provisioner.

Profile state is read from ``<storage_path>/profiles/<profile>/config.json``.
Node lifecycle goes through the ``minikube`` binary.

Minikube picks its own names for added nodes (``m02``, ``m03``...). The
engine names nodes ``node-<n>`` instead, so every added node is recorded in
``kubeward-nodes.json`` beside the profile config, mapping engine names to
minikube names. Unmapped nodes are reported under their minikube name.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from kubeward.core.exceptions import (
    NodeNotFoundError,
    NodeProvisionError,
    ProfileNotFoundError,
    ProvisionerUnavailableError,
)
from kubeward.observability.logger import logger
from kubeward.provisioner import NodeEntry, NodeInfo, NodeRequest, ProfileConfig
from kubeward.providers.minikube.cli import CommandError, run, run_json
from kubeward.providers.minikube.config import Minikube

log = logger.bind(provisioner="minikube")

PROFILE_CONFIG_NAME = "config.json"
NODE_MAP_NAME = "kubeward-nodes.json"


def provider_id(profile: str, name: str) -> str:
    return f"minikube://{profile}/{name}"


def _flag(value: bool) -> str:
    return "true" if value else "false"


def parse_profile_config(raw: dict[str, Any], names: dict[str, str] | None = None) -> ProfileConfig:
    """Build a ProfileConfig from a minikube ``config.json`` document.

    ``names`` maps minikube node names back to engine names. The API server
    port is ``APIServerPort`` when present, else the primary node's ``Port``.
    """
    names = names or {}
    raw_nodes = raw.get("Nodes") or []
    if not isinstance(raw_nodes, list):
        raise ValueError("Nodes is not a list")

    nodes = tuple(
        NodeEntry(
            name=names.get(n.get("Name", ""), n.get("Name", "")),
            address=n.get("IP", "") or "",
        )
        for n in raw_nodes
    )
    port = raw.get("APIServerPort") or (raw_nodes[0].get("Port", 0) if raw_nodes else 0)
    version = (raw.get("KubernetesConfig") or {}).get("KubernetesVersion", "")
    return ProfileConfig(nodes=nodes, api_server_port=int(port), kubernetes_version=version)


class MinikubeProvisioner:
    def __init__(self, config: Minikube) -> None:
        self._config = config

    def _profile_dir(self, profile: str) -> Path:
        return self._config.profiles_dir / profile

    def _read_raw(self, profile: str) -> dict[str, Any]:
        path = self._profile_dir(profile) / PROFILE_CONFIG_NAME
        if not path.is_file():
            raise ProfileNotFoundError(profile)
        try:
            raw = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ProvisionerUnavailableError(f"Cannot read {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ProvisionerUnavailableError(f"{path} is not a JSON object")
        return raw

    def _read_node_map(self, profile: str) -> dict[str, str]:
        """Engine name → minikube name."""
        path = self._profile_dir(profile) / NODE_MAP_NAME
        if not path.is_file():
            return {}
        try:
            return dict(json.loads(path.read_text()))
        except (OSError, ValueError, TypeError) as e:
            raise ProvisionerUnavailableError(f"Cannot read {path}: {e}") from e

    def _write_node_map(self, profile: str, mapping: dict[str, str]) -> None:
        path = self._profile_dir(profile) / NODE_MAP_NAME
        path.write_text(json.dumps(mapping, indent=2, sort_keys=True))

    def _minikube_names(self, raw: dict[str, Any]) -> list[str]:
        return [n.get("Name", "") for n in raw.get("Nodes") or []]

    def _resolve(self, profile: str, name: str) -> tuple[str, dict[str, Any]]:
        """Minikube name and config entry of an engine-named node."""
        raw = self._read_raw(profile)
        target = self._read_node_map(profile).get(name, name)
        for node in raw.get("Nodes") or []:
            if node.get("Name", "") == target:
                return target, node
        raise NodeNotFoundError(profile, name)

    async def get_profile_config(self, profile: str) -> ProfileConfig:
        raw = self._read_raw(profile)
        reverse = {v: k for k, v in self._read_node_map(profile).items()}
        try:
            return parse_profile_config(raw, reverse)
        except (AttributeError, TypeError, ValueError) as e:
            raise ProvisionerUnavailableError(f"Invalid config for profile {profile!r}: {e}") from e

    async def add_node(self, profile: str, request: NodeRequest, delete_on_failure: bool) -> None:
        raw = self._read_raw(profile)
        before = set(self._minikube_names(raw))
        mapped = self._read_node_map(profile).get(request.name)
        if mapped is not None and mapped in before:
            log.info("Node {node} already exists as minikube node {mk}", node=request.name, mk=mapped, profile=profile)
            return

        log.info(
            "Adding node {node} (worker={worker}, control_plane={cp})",
            node=request.name, worker=request.worker, cp=request.control_plane, profile=profile,
        )
        if request.kubernetes_version:
            log.debug("Node inherits Kubernetes {version}", version=request.kubernetes_version)

        try:
            await run(
                self._config.binary, "node", "add",
                "-p", profile,
                f"--worker={_flag(request.worker)}",
                f"--control-plane={_flag(request.control_plane)}",
                f"--delete-on-failure={_flag(delete_on_failure)}",
                timeout=self._config.timeout,
            )
        except CommandError as e:
            raise NodeProvisionError(f"Failed to add node {request.name!r}: {e}") from e

        added = [n for n in self._minikube_names(self._read_raw(profile)) if n not in before]
        if not added:
            raise NodeProvisionError(
                f"minikube reported success but no new node appeared in profile {profile!r}"
            )
        mapping = self._read_node_map(profile)
        mapping[request.name] = added[-1]
        self._write_node_map(profile, mapping)
        log.info("Node {node} is minikube node {mk}", node=request.name, mk=added[-1], profile=profile)

    async def delete_node(self, profile: str, name: str) -> None:
        target, _ = self._resolve(profile, name)
        try:
            await run(
                self._config.binary, "node", "delete", target, "-p", profile,
                timeout=self._config.timeout,
            )
        except CommandError as e:
            raise NodeProvisionError(f"Failed to delete node {name!r}: {e}") from e

        mapping = self._read_node_map(profile)
        if mapping.pop(name, None) is not None:
            self._write_node_map(profile, mapping)

    async def describe_node(self, profile: str, name: str) -> NodeInfo:
        target, entry = self._resolve(profile, name)
        try:
            status = await run_json(
                self._config.binary, "status", "-p", profile, "-n", target, "-o", "json",
                timeout=self._config.timeout,
            )
        except CommandError as e:
            # status exits non-zero for stopped hosts but still prints its JSON.
            if not e.stdout:
                raise ProvisionerUnavailableError(str(e)) from e
            try:
                status = json.loads(e.stdout)
            except json.JSONDecodeError as decode_error:
                raise ProvisionerUnavailableError(str(e)) from decode_error
        except json.JSONDecodeError as e:
            raise ProvisionerUnavailableError(f"Unparseable status for node {name!r}: {e}") from e

        if isinstance(status, list):
            status = next((s for s in status if isinstance(s, dict)), {})

        address = entry.get("IP", "") or ""
        if not address:
            try:
                address = await run(
                    self._config.binary, "ip", "-p", profile, "-n", target,
                    timeout=self._config.timeout,
                )
            except CommandError as e:
                log.debug("No address for {node} yet: {err}", node=name, err=e)

        return NodeInfo(
            provider_id=provider_id(profile, name),
            address=address,
            running=status.get("Host") == "Running",
        )
