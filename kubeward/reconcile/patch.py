"""Guaranteed write-back of a reconcile pass.

``patch_scope`` snapshots an object when the pass starts and flushes
whatever the pass changed when the scope exits, whichever way it exits::

    async with patch_scope(store, machine) as m:
        m.status.phase = "Provisioning"
        if not await ready():
            return Result()          # still flushed
        raise SomeError()            # still flushed, error propagates

Only finalizers, spec and status are owned by the pass. A stale write is
never forced through: on conflict the object is re-read and just the fields
this pass changed are re-applied on top of the fresh copy.
"""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, fields
from typing import Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from kubeward.api.model import Resource, ref_of
from kubeward.core.exceptions import ConflictError, NotFoundError, StoreError
from kubeward.observability.logger import logger
from kubeward.store import ResourceStore

log = logger.bind(component="patch")

CONFLICT_ATTEMPTS = 5


@dataclass(frozen=True, slots=True)
class FieldChange:
    section: str
    name: str
    value: Any


def _section_changes(section: str, before: Any, after: Any) -> list[FieldChange]:
    if before is None or after is None:
        return []
    return [
        FieldChange(section, f.name, copy.deepcopy(getattr(after, f.name)))
        for f in fields(after)
        if getattr(before, f.name) != getattr(after, f.name)
    ]


def diff(before: Resource, after: Resource) -> list[FieldChange]:
    changes: list[FieldChange] = []
    if before.metadata.finalizers != after.metadata.finalizers:
        changes.append(FieldChange("metadata", "finalizers", list(after.metadata.finalizers)))
    changes += _section_changes("spec", getattr(before, "spec", None), getattr(after, "spec", None))
    changes += _section_changes("status", getattr(before, "status", None), getattr(after, "status", None))
    return changes


def apply(obj: Resource, changes: list[FieldChange]) -> None:
    for change in changes:
        setattr(getattr(obj, change.section), change.name, copy.deepcopy(change.value))


async def flush(store: ResourceStore, before: Resource, after: Resource) -> Resource | None:
    """Write the pass's changes; returns the stored object, None if nothing was written."""
    changes = diff(before, after)
    if not changes:
        return None

    ref = ref_of(after)
    log.debug(
        "Patching {fields}",
        fields=[f"{c.section}.{c.name}" for c in changes], ref=ref,
    )

    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(CONFLICT_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, max=1.0),
        reraise=True,
    ):
        with attempt:
            try:
                if attempt.retry_state.attempt_number == 1:
                    target = after
                else:
                    log.debug("Conflict on {ref}, re-reading", ref=ref)
                    target = await store.get(after.kind, ref.key)
                    apply(target, changes)
                return await store.update(target)
            except NotFoundError:
                log.debug("{ref} is gone, dropping patch", ref=ref)
                return None
    return None


@asynccontextmanager
async def patch_scope[R: Resource](store: ResourceStore, obj: R) -> AsyncIterator[R]:
    before = copy.deepcopy(obj)
    failed = False
    try:
        yield obj
    except BaseException:
        failed = True
        raise
    finally:
        try:
            await flush(store, before, obj)
        except StoreError as e:
            if not failed:
                raise
            # The pass already failed; its error is the one worth surfacing.
            log.error("Failed to patch {ref}: {err}", ref=ref_of(obj), err=e)
