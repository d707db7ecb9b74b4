from __future__ import annotations

import time
from typing import Callable, Protocol

from . import db
from .consul import AgentClient, MeshAgentError, MeshClientBinder, ServiceNotFound
from .models import (
    CHECK_CRITICAL,
    CHECK_PASSING,
    CONDITION_TRUE,
    PHASE_RUNNING,
    Instance,
    ReconcileSummary,
)
from .settings import Settings, settings as default_settings


class Handler(Protocol):
    def init(self) -> None: ...

    def create(self, instance: Instance) -> None: ...

    def update(self, instance: Instance) -> None: ...

    def delete(self, instance: Instance) -> None: ...

    def reconcile(self) -> ReconcileSummary: ...


class HealthCheckHandler:
    """Registers and flips Consul TTL checks for pods.

    Every call binds a fresh agent client to the pod's host and closes it when
    done. Errors from create/update/delete propagate so the worker loop can
    retry them; reconcile() only raises when listing pods fails.
    """

    def __init__(
        self,
        lister: Callable[[], list[Instance]],
        binder: MeshClientBinder | None = None,
        cfg: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cfg = cfg or default_settings
        self.lister = lister
        self.binder = binder or MeshClientBinder(self.cfg)
        self.sleep = sleep

    def _ids(self, instance: Instance) -> tuple[str, str]:
        annotation = self.cfg.service_annotation
        return instance.service_id(annotation), instance.health_check_id(annotation)

    def _wait_for_service(self, agent: AgentClient, service_id: str) -> None:
        """Poll until the agent lists the service.

        The pod can go Running before its sidecar has registered the service
        with the local agent, and registering a check against an unknown
        service is rejected.
        """
        attempts = max(1, int(self.cfg.service_wait_attempts))
        last_err: MeshAgentError | None = None
        for attempt in range(attempts):
            try:
                if agent.has_service(service_id):
                    return
            except MeshAgentError as e:
                last_err = e
            if attempt < attempts - 1:
                self.sleep(self.cfg.service_wait_interval_s)
        detail = f" (last error: {last_err})" if last_err else ""
        raise ServiceNotFound(f"did not find serviceID: {service_id}{detail}")

    def _register(self, agent: AgentClient, instance: Instance, status: str, reason: str) -> None:
        service_id, check_id = self._ids(instance)
        self._wait_for_service(agent, service_id)
        agent.register_ttl_check(check_id, service_id, status, reason, ttl=self.cfg.check_ttl)
        db.log_event(
            "INFO",
            f"Registered {status} TTL check {check_id}",
            namespace=instance.namespace,
            pod=instance.name,
        )

    def init(self) -> None:
        self.reconcile()

    def create(self, instance: Instance) -> None:
        with self.binder.bind(instance) as agent:
            self._register(agent, instance, CHECK_PASSING, "")

    def update(self, instance: Instance) -> None:
        cond = instance.ready_condition()
        if cond is None:
            db.log_event(
                "WARN",
                "Pod has no Ready condition; leaving health check alone",
                namespace=instance.namespace,
                pod=instance.name,
            )
            return
        _, check_id = self._ids(instance)
        fail = cond.status != CONDITION_TRUE
        reason = cond.message if fail else ""
        with self.binder.bind(instance) as agent:
            agent.set_ttl_status(check_id, reason, fail)
        db.log_event(
            "INFO",
            f"Set TTL check {check_id} to {CHECK_CRITICAL if fail else CHECK_PASSING}",
            namespace=instance.namespace,
            pod=instance.name,
        )

    def delete(self, instance: Instance) -> None:
        _, check_id = self._ids(instance)
        with self.binder.bind(instance) as agent:
            existed = agent.deregister_check(check_id)
        msg = f"Deregistered TTL check {check_id}" if existed else f"TTL check {check_id} already gone"
        db.log_event("INFO", msg, namespace=instance.namespace, pod=instance.name)

    def reconcile(self) -> ReconcileSummary:
        """Converge every managed, running pod's check towards its readiness.

        A missing check is registered with the status the pod has now; an
        existing check is flipped only when it disagrees. Failures are
        per-pod: they are logged and the sweep moves on.
        """
        summary = ReconcileSummary()
        try:
            instances = self.lister()
        except Exception as e:
            db.log_event("ERROR", f"Reconcile: unable to list pods: {type(e).__name__}: {e}")
            raise

        for inst in instances:
            summary.examined += 1
            if inst.phase != PHASE_RUNNING:
                summary.skipped += 1
                continue
            try:
                outcome = self._reconcile_one(inst)
            except Exception as e:
                summary.failed += 1
                db.log_event(
                    "ERROR",
                    f"Reconcile failed: {type(e).__name__}: {e}",
                    namespace=inst.namespace,
                    pod=inst.name,
                )
                continue
            if outcome == "created":
                summary.created += 1
            elif outcome == "updated":
                summary.updated += 1
            elif outcome == "skipped":
                summary.skipped += 1
            else:
                summary.unchanged += 1

        summary.finished_at = db.utc_now()
        db.insert_reconcile_run(
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            examined=summary.examined,
            created=summary.created,
            updated=summary.updated,
            unchanged=summary.unchanged,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        db.log_event(
            "INFO",
            f"Reconcile done: examined={summary.examined} created={summary.created} "
            f"updated={summary.updated} failed={summary.failed}",
        )
        return summary

    def _reconcile_one(self, inst: Instance) -> str:
        cond = inst.ready_condition()
        if cond is None:
            db.log_event(
                "WARN",
                "Reconcile: pod has no Ready condition, skipping",
                namespace=inst.namespace,
                pod=inst.name,
            )
            return "skipped"
        ready = cond.status == CONDITION_TRUE
        _, check_id = self._ids(inst)

        with self.binder.bind(inst) as agent:
            checks = agent.checks(name=check_id)
            current = checks.get(check_id)

            if current is None:
                if ready:
                    self._register(agent, inst, CHECK_PASSING, "")
                else:
                    self._register(agent, inst, CHECK_CRITICAL, cond.reason)
                return "created"

            if current.status == CHECK_CRITICAL and ready:
                agent.set_ttl_status(check_id, "", fail=False)
            elif current.status == CHECK_PASSING and not ready:
                agent.set_ttl_status(check_id, cond.reason, fail=True)
            else:
                return "unchanged"

        db.log_event(
            "INFO",
            f"Reconcile: set TTL check {check_id} to {CHECK_PASSING if ready else CHECK_CRITICAL}",
            namespace=inst.namespace,
            pod=inst.name,
        )
        return "updated"
