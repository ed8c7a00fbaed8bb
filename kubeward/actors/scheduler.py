"""Scheduler actor turning change notifications into reconcile passes.

At most one pass per object identity is in flight. A change that arrives
while its object is being reconciled marks it dirty and collapses into a
single follow-up pass once the current one finishes. Failed passes are
retried with per-object exponential backoff; write conflicts are retried
after a short fixed delay and do not count as failures.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from casty import ActorContext, Behavior, Behaviors

from kubeward.actors.messages import (
    GetStats,
    ObjectChanged,
    SchedulerMsg,
    SchedulerStats,
    _PassFailed,
    _PassSucceeded,
    _Requeue,
)
from kubeward.api.model import Kind, ObjectRef
from kubeward.core.exceptions import ConflictError, ReconcileTimeoutError
from kubeward.observability.logger import logger
from kubeward.observability.metrics import (
    RECONCILE_DURATION,
    RECONCILE_INFLIGHT,
    RECONCILE_TOTAL,
    REQUEUES_TOTAL,
)
from kubeward.reconcile.base import Reconciler, Result

log = logger.bind(actor="scheduler")


@dataclass(frozen=True, slots=True)
class _State:
    inflight: frozenset[ObjectRef] = frozenset()
    dirty: frozenset[ObjectRef] = frozenset()
    failures: Mapping[ObjectRef, int] = field(default_factory=dict)
    passes: int = 0


def backoff_delay(failures: int, base: float, cap: float) -> float:
    """Delay before retrying after the given number of consecutive failures."""
    if failures <= 0:
        return 0.0
    return min(base * 2 ** (failures - 1), cap)


def scheduler_actor(
    reconcilers: Mapping[Kind, Reconciler],
    reconcile_timeout: float = 60.0,
    backoff_base: float = 1.0,
    backoff_max: float = 300.0,
    conflict_delay: float = 0.5,
) -> Behavior[SchedulerMsg]:

    async def _run_pass(ref: ObjectRef) -> Result:
        reconciler = reconcilers[ref.kind]
        RECONCILE_INFLIGHT.inc()
        started = time.monotonic()
        try:
            async with asyncio.timeout(reconcile_timeout):
                return await reconciler.reconcile(ref.key)
        except TimeoutError as e:
            raise ReconcileTimeoutError(str(ref), reconcile_timeout) from e
        finally:
            RECONCILE_INFLIGHT.dec()
            RECONCILE_DURATION.labels(kind=ref.kind.value).observe(time.monotonic() - started)

    def _start(ctx: ActorContext[SchedulerMsg], s: _State, ref: ObjectRef) -> _State:
        log.debug("Starting pass", ref=ref)
        ctx.pipe_to_self(
            _run_pass(ref),
            mapper=lambda result: _PassSucceeded(ref=ref, result=result),
            on_failure=lambda err: _PassFailed(ref=ref, error=err),
        )
        return replace(s, inflight=s.inflight | {ref}, dirty=s.dirty - {ref})

    def _schedule(ctx: ActorContext[SchedulerMsg], ref: ObjectRef, delay: float, reason: str) -> None:
        REQUEUES_TOTAL.labels(kind=ref.kind.value, reason=reason).inc()

        async def _later() -> _Requeue:
            await asyncio.sleep(delay)
            return _Requeue(ref=ref, reason=reason)

        ctx.pipe_to_self(
            _later(),
            mapper=lambda r: r,
            on_failure=lambda _: _Requeue(ref=ref, reason=reason),
        )

    def _enqueue(ctx: ActorContext[SchedulerMsg], s: _State, ref: ObjectRef) -> _State:
        if ref.kind not in reconcilers:
            log.debug("No reconciler for {kind}, ignoring", kind=ref.kind.value, ref=ref)
            return s
        if ref in s.inflight:
            return replace(s, dirty=s.dirty | {ref})
        return _start(ctx, s, ref)

    def _finish(
        ctx: ActorContext[SchedulerMsg], s: _State, ref: ObjectRef, failures: int,
    ) -> tuple[_State, bool]:
        """Retire a pass; restart it at once if it went dirty meanwhile."""
        new_failures = {k: v for k, v in dict(s.failures).items() if k != ref}
        if failures:
            new_failures[ref] = failures
        new_s = replace(
            s, inflight=s.inflight - {ref}, failures=new_failures, passes=s.passes + 1,
        )
        if ref in new_s.dirty:
            REQUEUES_TOTAL.labels(kind=ref.kind.value, reason="coalesced").inc()
            return _start(ctx, new_s, ref), True
        return new_s, False

    def running(s: _State) -> Behavior[SchedulerMsg]:

        async def receive(
            ctx: ActorContext[SchedulerMsg], msg: SchedulerMsg,
        ) -> Behavior[SchedulerMsg]:
            match msg:
                case ObjectChanged(ref=ref):
                    return running(_enqueue(ctx, s, ref))

                case _Requeue(ref=ref, reason=reason):
                    log.debug("Requeue ({reason})", reason=reason, ref=ref)
                    return running(_enqueue(ctx, s, ref))

                case _PassSucceeded(ref=ref, result=result):
                    outcome = "requeue" if result.requeue or result.requeue_after else "success"
                    RECONCILE_TOTAL.labels(kind=ref.kind.value, outcome=outcome).inc()
                    new_s, restarted = _finish(ctx, s, ref, failures=0)
                    if restarted:
                        return running(new_s)
                    if result.requeue_after:
                        _schedule(ctx, ref, result.requeue_after, "delayed")
                    elif result.requeue:
                        REQUEUES_TOTAL.labels(kind=ref.kind.value, reason="immediate").inc()
                        new_s = _start(ctx, new_s, ref)
                    return running(new_s)

                case _PassFailed(ref=ref, error=ConflictError() as err):
                    RECONCILE_TOTAL.labels(kind=ref.kind.value, outcome="conflict").inc()
                    log.debug("Conflict, retrying: {err}", err=err, ref=ref)
                    prior = dict(s.failures).get(ref, 0)
                    new_s, restarted = _finish(ctx, s, ref, failures=prior)
                    if not restarted:
                        _schedule(ctx, ref, conflict_delay, "conflict")
                    return running(new_s)

                case _PassFailed(ref=ref, error=err):
                    outcome = "timeout" if isinstance(err, ReconcileTimeoutError) else "error"
                    RECONCILE_TOTAL.labels(kind=ref.kind.value, outcome=outcome).inc()
                    failures = dict(s.failures).get(ref, 0) + 1
                    delay = backoff_delay(failures, backoff_base, backoff_max)
                    log.warning(
                        "Pass failed ({n} in a row), retrying in {delay:.1f}s: {err}",
                        n=failures, delay=delay, err=err, ref=ref,
                    )
                    new_s, restarted = _finish(ctx, s, ref, failures=failures)
                    if not restarted:
                        _schedule(ctx, ref, delay, "backoff")
                    return running(new_s)

                case GetStats(reply_to=reply_to):
                    reply_to.tell(SchedulerStats(
                        inflight=s.inflight,
                        dirty=s.dirty,
                        failures=dict(s.failures),
                        passes=s.passes,
                    ))
                    return Behaviors.same()

            return Behaviors.same()
        return Behaviors.receive(receive)

    async def setup(ctx: ActorContext[SchedulerMsg]) -> Behavior[SchedulerMsg]:
        log.info(
            "Scheduler started: kinds={kinds}, timeout={timeout}s",
            kinds=sorted(k.value for k in reconcilers), timeout=reconcile_timeout,
        )
        return running(_State())

    return Behaviors.setup(setup)
