"""Declarative resource manifests.

A manifest is a TOML document with one ``[[resources]]`` table per object,
or a JSON list of the same documents::

    [[resources]]
    kind = "Cluster"
    metadata = { name = "dev" }
    spec = { infrastructureRef = "dev" }

    [[resources]]
    kind = "KubeCluster"
    metadata = { name = "dev", ownerReferences = [{ kind = "Cluster", name = "dev" }] }
"""

from __future__ import annotations

import json
import tomllib
from dataclasses import replace
from pathlib import Path

from kubeward.api.kinds import decode
from kubeward.api.model import KubeCluster, KubeMachine, Resource, ref_of
from kubeward.core.exceptions import AlreadyExistsError, SerializationError
from kubeward.observability.logger import logger
from kubeward.store import ResourceStore

log = logger.bind(component="manifest")


def load_manifest(path: Path) -> list[Resource]:
    try:
        text = path.read_text()
    except OSError as e:
        raise SerializationError(f"Cannot read manifest {path}: {e}") from e

    try:
        if path.suffix == ".json":
            docs = json.loads(text)
        else:
            docs = tomllib.loads(text).get("resources", [])
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise SerializationError(f"Invalid manifest {path}: {e}") from e

    if not isinstance(docs, list):
        raise SerializationError(f"Manifest {path} must hold a list of resources")
    return [decode(doc) for doc in docs]


def _merge_spec(current: Resource, desired: Resource) -> object:
    """Desired spec, keeping fields the reconcilers assigned once and for all."""
    if isinstance(current, KubeCluster) and isinstance(desired, KubeCluster):
        if desired.spec.control_plane_endpoint.is_set:
            return desired.spec
        return replace(desired.spec, control_plane_endpoint=current.spec.control_plane_endpoint)
    if isinstance(current, KubeMachine) and isinstance(desired, KubeMachine):
        return replace(
            desired.spec,
            provider_id=desired.spec.provider_id or current.spec.provider_id,
            node_name=desired.spec.node_name or current.spec.node_name,
        )
    return desired.spec


async def apply_manifest(store: ResourceStore, resources: list[Resource]) -> list[Resource]:
    """Create each resource, or update the desired-state part of an existing one.

    Status and finalizers of existing objects are left alone: they belong to
    the reconcilers.
    """
    applied: list[Resource] = []
    for obj in resources:
        ref = ref_of(obj)
        try:
            applied.append(await store.create(obj))
            log.info("Created {ref}", ref=ref)
            continue
        except AlreadyExistsError:
            pass

        current = await store.get(obj.kind, ref.key)
        current.metadata.labels = dict(obj.metadata.labels)
        current.metadata.annotations = dict(obj.metadata.annotations)
        current.metadata.owner_references = list(obj.metadata.owner_references)
        current.spec = _merge_spec(current, obj)  # type: ignore[assignment]
        applied.append(await store.update(current))
        log.info("Updated {ref}", ref=ref)
    return applied
