from __future__ import annotations

import pytest

from kubeward.api.kinds import KINDS, decode, encode
from kubeward.api.model import (
    APIEndpoint,
    Condition,
    Kind,
    KubeCluster,
    KubeClusterSpec,
    KubeMachine,
    KubeMachineSpec,
    ObjectMeta,
    OwnerReference,
)
from kubeward.core.exceptions import SerializationError


class TestRegistry:
    def test_every_kind_has_a_codec(self) -> None:
        assert set(KINDS) == set(Kind)

    def test_registry_is_immutable(self) -> None:
        with pytest.raises(TypeError):
            KINDS[Kind.CLUSTER] = KINDS[Kind.MACHINE]  # type: ignore[index]


class TestDecode:
    def test_kube_machine_document(self) -> None:
        obj = decode({
            "kind": "KubeMachine",
            "metadata": {
                "name": "m1",
                "ownerReferences": [{"kind": "Machine", "name": "m1"}],
            },
            "spec": {"nodeName": "node-2", "worker": False, "controlPlane": True},
        })

        assert isinstance(obj, KubeMachine)
        assert obj.metadata.namespace == "default"
        assert obj.metadata.owner(Kind.MACHINE) == OwnerReference(Kind.MACHINE, "m1")
        assert obj.spec.node_name == "node-2"
        assert obj.spec.worker is False
        assert obj.spec.control_plane is True
        assert obj.status.phase is None

    def test_missing_kind(self) -> None:
        with pytest.raises(SerializationError, match="missing 'kind'"):
            decode({"metadata": {"name": "x"}})

    def test_unknown_kind(self) -> None:
        with pytest.raises(SerializationError, match="Unknown kind"):
            decode({"kind": "Pod", "metadata": {"name": "x"}})

    def test_name_is_required(self) -> None:
        with pytest.raises(SerializationError, match="metadata.name"):
            decode({"kind": "Cluster", "metadata": {}})

    def test_malformed_field(self) -> None:
        with pytest.raises(SerializationError):
            decode({"kind": "KubeMachine", "metadata": {"name": "m1"}, "spec": {"cpus": "many"}})


class TestEncode:
    def test_omits_empty_fields(self) -> None:
        doc = encode(KubeCluster(metadata=ObjectMeta(name="dev")))
        assert doc["kind"] == "KubeCluster"
        assert "controlPlaneEndpoint" not in doc["spec"]
        assert doc["status"] == {"ready": False}

    def test_kube_cluster_survives_the_wire(self) -> None:
        original = KubeCluster(
            metadata=ObjectMeta(name="dev", finalizers=["f"]),
            spec=KubeClusterSpec(profile_name="dev", control_plane_endpoint=APIEndpoint("10.0.0.1", 8443)),
        )
        original.status.ready = True
        original.status.conditions.append(Condition("Ready", True, last_transition_time=12.5))

        restored = decode(encode(original))
        assert restored == original

    def test_provisioned_machine_uses_provider_id_key(self) -> None:
        km = KubeMachine(
            metadata=ObjectMeta(name="m1"),
            spec=KubeMachineSpec(provider_id="minikube://dev/node-2", node_name="node-2"),
        )
        assert encode(km)["spec"]["providerID"] == "minikube://dev/node-2"
