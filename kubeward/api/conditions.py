from __future__ import annotations

import time

from kubeward.api.model import Condition

READY = "Ready"


def get_condition(conditions: list[Condition], type_: str) -> Condition | None:
    return next((c for c in conditions if c.type == type_), None)


def set_condition(
    conditions: list[Condition],
    type_: str,
    status: bool,
    reason: str | None = None,
    message: str | None = None,
    *,
    now: float | None = None,
) -> None:
    """Upsert a condition in place.

    The transition time only moves when the status flips, so re-asserting an
    unchanged condition leaves the list equal and produces no write.
    """
    existing = get_condition(conditions, type_)
    if existing is not None and (existing.status, existing.reason, existing.message) == (
        status, reason, message,
    ):
        return

    transition = (
        existing.last_transition_time
        if existing is not None and existing.status == status
        else (now if now is not None else time.time())
    )
    updated = Condition(
        type=type_,
        status=status,
        reason=reason,
        message=message,
        last_transition_time=transition,
    )
    if existing is None:
        conditions.append(updated)
        return
    conditions[conditions.index(existing)] = updated


def mark_true(conditions: list[Condition], type_: str) -> None:
    set_condition(conditions, type_, True)


def mark_false(
    conditions: list[Condition], type_: str, reason: str, message: str | None = None,
) -> None:
    set_condition(conditions, type_, False, reason, message)


def is_true(conditions: list[Condition], type_: str) -> bool:
    cond = get_condition(conditions, type_)
    return cond is not None and cond.status
