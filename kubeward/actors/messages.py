"""The scheduler's vocabulary.

Public messages (ObjectChanged, GetStats) are what the watch pump and the
manager send; underscored messages are the scheduler talking to itself
about passes it started.

The type union IS the actor's public API.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from casty import ActorRef

if TYPE_CHECKING:
    from kubeward.api.model import ObjectRef
    from kubeward.reconcile.base import Result


# =============================================================================
# Public
# =============================================================================


@dataclass(frozen=True, slots=True)
class ObjectChanged:
    """An object (or something it depends on) changed; reconcile it."""

    ref: ObjectRef


@dataclass(frozen=True, slots=True)
class SchedulerStats:
    inflight: frozenset[ObjectRef]
    dirty: frozenset[ObjectRef]
    failures: dict[ObjectRef, int] = field(default_factory=dict)
    passes: int = 0


@dataclass(frozen=True, slots=True)
class GetStats:
    reply_to: ActorRef[SchedulerStats]


# =============================================================================
# Internal
# =============================================================================


@dataclass(frozen=True, slots=True)
class _PassSucceeded:
    ref: ObjectRef
    result: Result


@dataclass(frozen=True, slots=True)
class _PassFailed:
    ref: ObjectRef
    error: BaseException


@dataclass(frozen=True, slots=True)
class _Requeue:
    ref: ObjectRef
    reason: str


type SchedulerMsg = ObjectChanged | GetStats | _PassSucceeded | _PassFailed | _Requeue
