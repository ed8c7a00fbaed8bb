"""Minikube provisioner: profiles on disk, nodes via the minikube CLI."""

from kubeward.providers.minikube.config import Minikube
from kubeward.providers.minikube.provisioner import MinikubeProvisioner

__all__ = ["Minikube", "MinikubeProvisioner"]
