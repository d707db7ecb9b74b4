from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .db import utc_now

PHASE_PENDING = "Pending"
PHASE_RUNNING = "Running"

CONDITION_READY = "Ready"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

CHECK_PASSING = "passing"
CHECK_CRITICAL = "critical"

HEALTH_CHECK_SUFFIX = "-kubernetes-health-check-ttl"


class ActionKind(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class Condition:
    type: str
    status: str
    reason: str = ""
    message: str = ""


@dataclass(frozen=True)
class Instance:
    """Snapshot of a pod as far as health checks are concerned."""

    namespace: str
    name: str
    phase: str  # Pending|Running|Succeeded|Failed|Unknown
    host_ip: str | None = None
    annotations: dict[str, str] = field(default_factory=dict, compare=False, hash=False)
    conditions: tuple[Condition, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def ready_condition(self) -> Condition | None:
        for c in self.conditions:
            if c.type == CONDITION_READY:
                return c
        return None

    def is_ready(self) -> bool:
        """Readiness as a bool; an absent Ready condition counts as ready."""
        c = self.ready_condition()
        if c is None:
            return True
        return c.status == CONDITION_TRUE

    def service_id(self, annotation: str) -> str:
        return f"{self.name}-{self.annotations.get(annotation, '')}"

    def health_check_id(self, annotation: str) -> str:
        return self.service_id(annotation) + HEALTH_CHECK_SUFFIX

    @classmethod
    def from_pod(cls, pod: Any) -> "Instance":
        """Build from a kubernetes V1Pod (or anything shaped like one)."""
        metadata = getattr(pod, "metadata", None)
        status = getattr(pod, "status", None)
        raw_conditions = getattr(status, "conditions", None) or []
        conditions = tuple(
            Condition(
                type=str(getattr(c, "type", "") or ""),
                status=str(getattr(c, "status", "") or ""),
                reason=getattr(c, "reason", None) or "",
                message=getattr(c, "message", None) or "",
            )
            for c in raw_conditions
        )
        annotations = getattr(metadata, "annotations", None) or {}
        return cls(
            namespace=getattr(metadata, "namespace", None) or "default",
            name=getattr(metadata, "name", None) or "",
            phase=getattr(status, "phase", None) or "Unknown",
            host_ip=getattr(status, "host_ip", None) or None,
            annotations={str(k): "" if v is None else str(v) for k, v in annotations.items()},
            conditions=conditions,
        )


@dataclass(frozen=True)
class ActionKey:
    action: ActionKind
    namespace: str
    name: str

    @classmethod
    def for_instance(cls, action: ActionKind, instance: Instance) -> "ActionKey":
        return cls(action=action, namespace=instance.namespace, name=instance.name)

    def __str__(self) -> str:
        return f"{self.action.value}/{self.namespace}/{self.name}"


@dataclass(frozen=True)
class HealthCheckRecord:
    check_id: str
    service_id: str
    status: str
    output: str = ""

    @classmethod
    def from_agent(cls, check_id: str, data: dict[str, Any]) -> "HealthCheckRecord":
        return cls(
            check_id=data.get("CheckID") or check_id,
            service_id=data.get("ServiceID") or "",
            status=data.get("Status") or "",
            output=data.get("Output") or data.get("Notes") or "",
        )


@dataclass
class ReconcileSummary:
    examined: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None
