"""Resource store: desired state plus reconciler-owned status.

The engine consumes the store through the ``ResourceStore`` protocol:
get / list / watch, optimistic updates keyed on ``resource_version``, and
tombstone deletion gated on finalizers. ``MemoryStore`` is the in-process
implementation used by the manager and the tests.
"""

from __future__ import annotations

import asyncio
import copy
import time
import uuid
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from typing import Literal, Protocol, runtime_checkable

from kubeward.api.model import Kind, ObjectKey, ObjectRef, Resource, ref_of
from kubeward.core.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from kubeward.observability.logger import logger

log = logger.bind(component="store")

type EventType = Literal["ADDED", "MODIFIED", "DELETED"]


@dataclass(frozen=True, slots=True)
class WatchEvent:
    type: EventType
    ref: ObjectRef
    object: Resource


@runtime_checkable
class ResourceStore(Protocol):
    async def get(self, kind: Kind, key: ObjectKey) -> Resource:
        """Return a private copy of the object; raise NotFoundError if absent."""
        ...

    async def list(
        self,
        kind: Kind,
        *,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[Resource]: ...

    async def create(self, obj: Resource) -> Resource: ...

    async def update(self, obj: Resource) -> Resource:
        """Write obj back if its resource_version is current, else ConflictError."""
        ...

    async def delete(self, kind: Kind, key: ObjectKey) -> None:
        """Mark obj for deletion; it is removed once no finalizers remain."""
        ...

    def watch(self) -> AsyncIterator[WatchEvent]: ...


class MemoryStore:
    def __init__(self) -> None:
        self._objects: dict[ObjectRef, Resource] = {}
        self._lock = asyncio.Lock()
        self._subscribers: list[asyncio.Queue[WatchEvent]] = []
        self._version = 0

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    def _publish(self, type_: EventType, obj: Resource) -> None:
        event = WatchEvent(type=type_, ref=ref_of(obj), object=copy.deepcopy(obj))
        for queue in self._subscribers:
            queue.put_nowait(event)

    def _lookup(self, kind: Kind, key: ObjectKey) -> Resource:
        obj = self._objects.get(ObjectRef(kind, key))
        if obj is None:
            raise NotFoundError(kind, str(key))
        return obj

    async def get(self, kind: Kind, key: ObjectKey) -> Resource:
        async with self._lock:
            return copy.deepcopy(self._lookup(kind, key))

    async def list(
        self,
        kind: Kind,
        *,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[Resource]:
        async with self._lock:
            return [
                copy.deepcopy(obj)
                for ref, obj in self._objects.items()
                if ref.kind == kind
                and (namespace is None or ref.key.namespace == namespace)
                and all(obj.metadata.labels.get(k) == v for k, v in (labels or {}).items())
            ]

    async def create(self, obj: Resource) -> Resource:
        async with self._lock:
            ref = ref_of(obj)
            if ref in self._objects:
                raise AlreadyExistsError(obj.kind, str(ref.key))
            stored = copy.deepcopy(obj)
            stored.metadata.resource_version = self._next_version()
            stored.metadata.generation = 1
            stored.metadata.uid = stored.metadata.uid or str(uuid.uuid4())
            stored.metadata.creation_timestamp = time.time()
            stored.metadata.deletion_timestamp = None
            self._objects[ref] = stored
            log.debug("Created {ref}", ref=ref)
            self._publish("ADDED", stored)
            return copy.deepcopy(stored)

    async def update(self, obj: Resource) -> Resource:
        async with self._lock:
            ref = ref_of(obj)
            current = self._lookup(obj.kind, ref.key)
            expected = obj.metadata.resource_version
            actual = current.metadata.resource_version
            if expected != actual:
                raise ConflictError(obj.kind, str(ref.key), expected, actual)

            stored = copy.deepcopy(obj)
            # The tombstone and identity are store-owned.
            stored.metadata.deletion_timestamp = current.metadata.deletion_timestamp
            stored.metadata.uid = current.metadata.uid
            stored.metadata.creation_timestamp = current.metadata.creation_timestamp
            stored.metadata.generation = current.metadata.generation + (
                1 if getattr(stored, "spec", None) != getattr(current, "spec", None) else 0
            )
            stored.metadata.resource_version = self._next_version()

            if stored.metadata.deleting and not stored.metadata.finalizers:
                del self._objects[ref]
                log.debug("Finalizers cleared, removed {ref}", ref=ref)
                self._publish("DELETED", stored)
                return copy.deepcopy(stored)

            self._objects[ref] = stored
            self._publish("MODIFIED", stored)
            return copy.deepcopy(stored)

    async def delete(self, kind: Kind, key: ObjectKey) -> None:
        async with self._lock:
            ref = ObjectRef(kind, key)
            current = self._lookup(kind, key)
            if not current.metadata.finalizers:
                del self._objects[ref]
                log.debug("Removed {ref}", ref=ref)
                self._publish("DELETED", current)
                return
            if current.metadata.deleting:
                return
            current.metadata.deletion_timestamp = time.time()
            current.metadata.resource_version = self._next_version()
            log.debug(
                "Marked {ref} for deletion, waiting on finalizers {fin}",
                ref=ref, fin=current.metadata.finalizers,
            )
            self._publish("MODIFIED", current)

    async def watch(self) -> AsyncIterator[WatchEvent]:
        """Yield every change from subscription on; existing objects first as ADDED."""
        queue: asyncio.Queue[WatchEvent] = asyncio.Queue()
        async with self._lock:
            for ref, obj in self._objects.items():
                queue.put_nowait(WatchEvent(type="ADDED", ref=ref, object=copy.deepcopy(obj)))
            self._subscribers.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.remove(queue)
