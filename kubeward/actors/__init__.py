from kubeward.actors.scheduler import scheduler_actor

__all__ = [
    "scheduler_actor",
]
