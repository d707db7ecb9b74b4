from __future__ import annotations

from threading import Event, Thread

from . import db
from .handler import Handler


class PeriodicReconciler:
    """Runs a full reconcile pass on a fixed interval in a background thread."""

    def __init__(self, handler: Handler, interval_s: float):
        self.handler = handler
        self.interval_s = max(1.0, float(interval_s))
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, name="hcr-reconciler", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thr:
            self._thr.join(timeout)

    def _loop(self) -> None:
        db.log_event("INFO", f"Periodic reconciler started (every {self.interval_s:g}s)")
        # The controller already ran a pass at startup; wait first.
        while not self._stop.wait(self.interval_s):
            try:
                self.handler.reconcile()
            except Exception as e:
                db.log_event("ERROR", f"Periodic reconcile failed: {type(e).__name__}: {e}")
        db.log_event("INFO", "Periodic reconciler stopped")
