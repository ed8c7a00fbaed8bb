"""Node provisioner implementations."""

from kubeward.providers.minikube import Minikube, MinikubeProvisioner

__all__ = [
    "Minikube",
    "MinikubeProvisioner",
]
