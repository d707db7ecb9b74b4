from __future__ import annotations

import threading
from dataclasses import asdict

from fastapi import FastAPI, HTTPException, Query

from hcr import db
from hcr.api_models import EventOut, ReconcileRunOut, StatusOut
from hcr.controller import CacheSyncError, Controller
from hcr.handler import HealthCheckHandler
from hcr.settings import settings

app = FastAPI(title="Health Check Reconciler")

STATE: dict = {"controller": None, "status": "starting", "detail": None}
_stop = threading.Event()


def build_controller() -> Controller:
    from hcr import kube
    from hcr.watcher import PodWatcher

    api = kube.core_api()
    watcher = PodWatcher(api, settings.label_selector, namespace=settings.namespace)
    # The full sweep always covers every namespace.
    handler = HealthCheckHandler(lister=lambda: kube.list_instances(api, settings.label_selector))
    return Controller(watcher, handler)


def _run_controller(ctrl: Controller) -> None:
    try:
        ctrl.run(_stop)
    except CacheSyncError as e:
        STATE["status"] = "failed"
        STATE["detail"] = str(e)
    except Exception as e:
        STATE["status"] = "failed"
        STATE["detail"] = f"{type(e).__name__}: {e}"
        db.log_event("ERROR", f"Controller crashed: {STATE['detail']}")


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    if not settings.enable_controller:
        STATE["status"] = "disabled"
        return
    try:
        ctrl = build_controller()
    except Exception as e:
        STATE["status"] = "failed"
        STATE["detail"] = f"{type(e).__name__}: {e}"
        db.log_event("ERROR", f"Unable to build controller: {STATE['detail']}")
        return
    STATE["controller"] = ctrl
    STATE["status"] = "starting"
    threading.Thread(target=_run_controller, args=(ctrl,), name="hcr-controller", daemon=True).start()


@app.on_event("shutdown")
def shutdown() -> None:
    _stop.set()


def _controller() -> Controller:
    ctrl = STATE["controller"]
    if ctrl is None:
        raise HTTPException(status_code=503, detail=f"Controller is {STATE['status']}")
    return ctrl


@app.get("/health", response_model=StatusOut)
def health() -> StatusOut:
    ctrl = STATE["controller"]
    if ctrl is None:
        return StatusOut(status=STATE["status"], detail=STATE["detail"])
    synced = ctrl.source.has_synced.is_set()
    status = STATE["status"]
    if status == "starting" and synced:
        status = "ok"
        if ctrl.worker_count < ctrl.expected_workers:
            status = "degraded"
    return StatusOut(
        status=status,
        synced=synced,
        queue_depth=len(ctrl.queue),
        workers=ctrl.worker_count,
        detail=STATE["detail"],
    )


@app.get("/events", response_model=list[EventOut])
def events(limit: int = Query(100, ge=1, le=1000), level: str | None = None) -> list[EventOut]:
    return [EventOut(**e) for e in db.latest_events(limit=limit, level=level)]


@app.get("/reconcile/runs", response_model=list[ReconcileRunOut])
def reconcile_runs(limit: int = Query(20, ge=1, le=500)) -> list[ReconcileRunOut]:
    return [ReconcileRunOut(**asdict(r)) for r in db.list_reconcile_runs(limit=limit)]


@app.post("/reconcile", response_model=ReconcileRunOut)
def reconcile_now() -> ReconcileRunOut:
    ctrl = _controller()
    try:
        summary = ctrl.handler.reconcile()
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Reconcile failed: {type(e).__name__}: {e}")
    return ReconcileRunOut(**asdict(summary))
