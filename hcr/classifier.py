from __future__ import annotations

from enum import Enum

from .models import PHASE_PENDING, PHASE_RUNNING, Condition, Instance


class Action(str, Enum):
    IGNORE = "IGNORE"
    CREATE = "CREATE"
    UPDATE = "UPDATE"


def _tracked_condition(c: Condition | None) -> tuple[str, str, str] | None:
    if c is None:
        return None
    return (c.type, c.status, c.reason)


def same_tracked_state(old: Instance, new: Instance) -> bool:
    """Compare only what classification looks at: phase and the Ready condition."""
    if old.phase != new.phase:
        return False
    return _tracked_condition(old.ready_condition()) == _tracked_condition(new.ready_condition())


def classify(old: Instance, new: Instance) -> Action:
    """Decide what a pod transition means for its TTL health check.

    Pending -> Running creates the check. Once running, only a flip of the
    Ready condition is interesting. Everything else is ignored; pods that are
    not running are left to whoever deregisters the service.
    """
    if same_tracked_state(old, new):
        return Action.IGNORE

    # From here on the pod is scheduled, so it has a host IP to reach the agent on.
    if old.phase == PHASE_PENDING and new.phase == PHASE_RUNNING:
        return Action.CREATE

    if new.phase != PHASE_RUNNING:
        return Action.IGNORE

    if old.is_ready() == new.is_ready():
        return Action.IGNORE
    return Action.UPDATE
