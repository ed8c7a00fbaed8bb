from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kubeward.providers.minikube.provisioner import MinikubeProvisioner


@dataclass(frozen=True, slots=True)
class Minikube:
    """Minikube provisioner configuration.

    Profiles are read straight from the minikube state directory; node
    add/delete/status go through the ``minikube`` binary.

    Example:
        >>> provisioner = Minikube(storage_path=Path("~/.minikube")).create_provisioner()
        >>> config = await provisioner.get_profile_config("dev")
    """

    storage_path: Path = Path("~/.minikube")
    binary: str = "minikube"
    timeout: float = 600.0

    @property
    def profiles_dir(self) -> Path:
        return self.storage_path.expanduser() / "profiles"

    def create_provisioner(self) -> MinikubeProvisioner:
        from kubeward.providers.minikube.provisioner import MinikubeProvisioner
        return MinikubeProvisioner(self)

    @property
    def type(self) -> str: return "minikube"
