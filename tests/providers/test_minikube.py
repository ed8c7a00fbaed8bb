from __future__ import annotations

import json
from pathlib import Path

import pytest

from kubeward.core.exceptions import (
    NodeNotFoundError,
    NodeProvisionError,
    ProfileNotFoundError,
    ProvisionerUnavailableError,
)
from kubeward.provisioner import NodeEntry, NodeProvisioner, NodeRequest
from kubeward.providers.minikube import Minikube, MinikubeProvisioner
from kubeward.providers.minikube import provisioner as mk
from kubeward.providers.minikube.cli import CommandError
from kubeward.providers.minikube.provisioner import parse_profile_config

PROFILE = {
    "Name": "dev",
    "APIServerPort": 8443,
    "KubernetesConfig": {"KubernetesVersion": "v1.30.0"},
    "Nodes": [
        {"Name": "", "IP": "192.168.49.2", "Port": 8443, "ControlPlane": True, "Worker": True},
    ],
}


def _profile_path(root: Path, name: str = "dev") -> Path:
    return root / "profiles" / name / "config.json"


@pytest.fixture
def storage(tmp_path: Path) -> Path:
    path = _profile_path(tmp_path)
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(PROFILE))
    return tmp_path


@pytest.fixture
def minikube(storage: Path) -> MinikubeProvisioner:
    return Minikube(storage_path=storage).create_provisioner()


class FakeMinikube:
    """Stands in for the minikube binary by editing the profile on disk."""

    def __init__(self, storage: Path) -> None:
        self.storage = storage
        self.commands: list[tuple[str, ...]] = []
        self.host_state = "Running"

    def _load(self) -> dict:
        return json.loads(_profile_path(self.storage).read_text())

    def _save(self, raw: dict) -> None:
        _profile_path(self.storage).write_text(json.dumps(raw))

    async def run(self, binary: str, *args: str, timeout: float | None = None) -> str:
        self.commands.append(args)
        raw = self._load()
        match args:
            case ("node", "add", *_):
                n = len(raw["Nodes"]) + 1
                raw["Nodes"].append({"Name": f"m{n:02d}", "IP": f"192.168.49.{n + 1}", "Port": 8443})
                self._save(raw)
            case ("node", "delete", name, *_):
                raw["Nodes"] = [node for node in raw["Nodes"] if node["Name"] != name]
                self._save(raw)
        return ""

    async def run_json(self, binary: str, *args: str, timeout: float | None = None) -> dict:
        self.commands.append(args)
        status = {"Name": "dev", "Host": self.host_state, "Kubelet": "Running"}
        if self.host_state != "Running":
            raise CommandError(f"{binary} status", 7, "", json.dumps(status))
        return status


@pytest.fixture
def fake_cli(storage: Path, monkeypatch) -> FakeMinikube:
    fake = FakeMinikube(storage)
    monkeypatch.setattr(mk, "run", fake.run)
    monkeypatch.setattr(mk, "run_json", fake.run_json)
    return fake


class TestParseProfileConfig:
    def test_reads_nodes_port_and_version(self) -> None:
        config = parse_profile_config(PROFILE)
        assert config.nodes == (NodeEntry("", "192.168.49.2"),)
        assert config.api_server_port == 8443
        assert config.kubernetes_version == "v1.30.0"

    def test_port_falls_back_to_primary_node(self) -> None:
        raw = {**PROFILE, "APIServerPort": 0, "Nodes": [{"Name": "", "IP": "10.0.0.1", "Port": 6443}]}
        assert parse_profile_config(raw).api_server_port == 6443

    def test_maps_names(self) -> None:
        raw = {**PROFILE, "Nodes": [*PROFILE["Nodes"], {"Name": "m02", "IP": "192.168.49.3"}]}
        config = parse_profile_config(raw, {"m02": "node-2"})
        assert [n.name for n in config.nodes] == ["", "node-2"]


class TestMinikubeProvisioner:
    def test_satisfies_protocol(self, minikube) -> None:
        assert isinstance(minikube, NodeProvisioner)

    @pytest.mark.asyncio
    async def test_missing_profile(self, minikube) -> None:
        with pytest.raises(ProfileNotFoundError):
            await minikube.get_profile_config("nope")

    @pytest.mark.asyncio
    async def test_corrupt_profile(self, minikube, storage: Path) -> None:
        _profile_path(storage).write_text("{not json")
        with pytest.raises(ProvisionerUnavailableError):
            await minikube.get_profile_config("dev")

    @pytest.mark.asyncio
    async def test_add_records_engine_name(self, minikube, fake_cli) -> None:
        request = NodeRequest(name="node-2", worker=True, control_plane=False, kubernetes_version="v1.30.0")
        await minikube.add_node("dev", request, delete_on_failure=False)

        add = fake_cli.commands[0]
        assert add[:2] == ("node", "add")
        assert "--worker=true" in add
        assert "--control-plane=false" in add
        assert "--delete-on-failure=false" in add

        config = await minikube.get_profile_config("dev")
        assert [n.name for n in config.nodes] == ["", "node-2"]

        info = await minikube.describe_node("dev", "node-2")
        assert info.provider_id == "minikube://dev/node-2"
        assert info.address == "192.168.49.3"
        assert info.running

    @pytest.mark.asyncio
    async def test_add_is_idempotent_per_engine_name(self, minikube, fake_cli) -> None:
        request = NodeRequest(name="node-2", worker=True, control_plane=False, kubernetes_version="")
        await minikube.add_node("dev", request, delete_on_failure=False)
        await minikube.add_node("dev", request, delete_on_failure=False)

        assert sum(1 for c in fake_cli.commands if c[:2] == ("node", "add")) == 1
        config = await minikube.get_profile_config("dev")
        assert [n.name for n in config.nodes] == ["", "node-2"]

    @pytest.mark.asyncio
    async def test_add_failure(self, minikube, monkeypatch) -> None:
        async def failing(binary, *args, timeout=None):
            raise CommandError("minikube node add", 1, "not enough memory")

        monkeypatch.setattr(mk, "run", failing)
        request = NodeRequest(name="node-2", worker=True, control_plane=False, kubernetes_version="")
        with pytest.raises(NodeProvisionError, match="not enough memory"):
            await minikube.add_node("dev", request, delete_on_failure=False)

    @pytest.mark.asyncio
    async def test_stopped_node_is_not_running(self, minikube, fake_cli) -> None:
        request = NodeRequest(name="node-2", worker=True, control_plane=False, kubernetes_version="")
        await minikube.add_node("dev", request, delete_on_failure=False)
        fake_cli.host_state = "Stopped"

        info = await minikube.describe_node("dev", "node-2")
        assert not info.running

    @pytest.mark.asyncio
    async def test_delete_forgets_the_node(self, minikube, fake_cli) -> None:
        request = NodeRequest(name="node-2", worker=True, control_plane=False, kubernetes_version="")
        await minikube.add_node("dev", request, delete_on_failure=False)

        await minikube.delete_node("dev", "node-2")

        assert ("node", "delete", "m02", "-p", "dev") in fake_cli.commands
        with pytest.raises(NodeNotFoundError):
            await minikube.describe_node("dev", "node-2")

    @pytest.mark.asyncio
    async def test_unknown_node(self, minikube, fake_cli) -> None:
        with pytest.raises(NodeNotFoundError):
            await minikube.delete_node("dev", "node-7")
        assert fake_cli.commands == []
