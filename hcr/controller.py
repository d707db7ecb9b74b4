from __future__ import annotations

from threading import Event, Lock, Thread
from typing import Callable, Protocol

from . import db
from .classifier import Action, classify
from .handler import Handler
from .models import ActionKey, ActionKind, Instance
from .reconciler import PeriodicReconciler
from .settings import Settings, settings as default_settings
from .workqueue import ItemExponentialFailureRateLimiter, RateLimitingQueue


class CacheSyncError(RuntimeError):
    pass


class InstanceSource(Protocol):
    has_synced: Event

    def add_event_handler(self, handler: object) -> None: ...

    def get(self, namespace: str, name: str) -> Instance | None: ...

    def run(self) -> None: ...

    def stop(self) -> None: ...

    def wait_for_sync(self, timeout_s: float | None = None) -> bool: ...


def report_error(key: ActionKey, err: Exception) -> None:
    db.log_event(
        "ERROR",
        f"Dropping {key} after retries: {type(err).__name__}: {err}",
        namespace=key.namespace,
        pod=key.name,
    )


class Controller:
    """Turns pod readiness transitions into health check actions.

    The watcher feeds on_update/on_delete, which classify the transition and
    enqueue an ActionKey. Worker threads drain the queue and call the handler,
    retrying failures with backoff until max_retries is exhausted.
    """

    def __init__(
        self,
        source: InstanceSource,
        handler: Handler,
        cfg: Settings | None = None,
        queue: RateLimitingQueue | None = None,
        on_error: Callable[[ActionKey, Exception], None] = report_error,
    ):
        self.cfg = cfg or default_settings
        self.source = source
        self.handler = handler
        self.queue = queue or RateLimitingQueue(
            ItemExponentialFailureRateLimiter(self.cfg.retry_base_delay_s, self.cfg.retry_max_delay_s)
        )
        self.max_retries = max(0, int(self.cfg.max_retries))
        self.on_error = on_error
        self._tombstones: dict[ActionKey, Instance] = {}
        self._tomb_lock = Lock()
        self._workers: list[Thread] = []
        self._periodic: PeriodicReconciler | None = None
        source.add_event_handler(self)

    # --- event filter -------------------------------------------------

    def on_add(self, instance: Instance) -> None:
        # Creation is driven by the Pending -> Running update instead.
        return

    def on_update(self, old: Instance, new: Instance) -> None:
        action = classify(old, new)
        if action is Action.CREATE:
            self.enqueue(ActionKey.for_instance(ActionKind.CREATE, new))
        elif action is Action.UPDATE:
            self.enqueue(ActionKey.for_instance(ActionKind.UPDATE, new))

    def on_delete(self, instance: Instance) -> None:
        # Deregistration normally happens with the service itself.
        if not self.cfg.deregister_on_delete:
            return
        key = ActionKey.for_instance(ActionKind.DELETE, instance)
        with self._tomb_lock:
            self._tombstones[key] = instance
        self.enqueue(key)

    def enqueue(self, key: ActionKey) -> None:
        self.queue.add(key)
        db.log_event("INFO", f"Queued {key}", namespace=key.namespace, pod=key.name)

    # --- worker loop --------------------------------------------------

    def _lookup(self, key: ActionKey) -> Instance | None:
        if key.action is ActionKind.DELETE:
            with self._tomb_lock:
                return self._tombstones.get(key)
        return self.source.get(key.namespace, key.name)

    def _finish(self, key: ActionKey) -> None:
        self.queue.forget(key)
        if key.action is ActionKind.DELETE:
            with self._tomb_lock:
                self._tombstones.pop(key, None)

    def _retry_or_drop(self, key: ActionKey, err: Exception) -> None:
        if self.queue.num_requeues(key) < self.max_retries:
            db.log_event(
                "WARN",
                f"Failed processing {key}, retrying: {type(err).__name__}: {err}",
                namespace=key.namespace,
                pod=key.name,
            )
            self.queue.add_rate_limited(key)
            return
        self._finish(key)
        self.on_error(key, err)

    def _process(self, key: ActionKey) -> None:
        try:
            instance = self._lookup(key)
        except Exception as e:
            self._retry_or_drop(key, e)
            return

        if instance is None:
            db.log_event("INFO", f"Pod for {key} no longer exists, skipping", namespace=key.namespace, pod=key.name)
            self._finish(key)
            return

        try:
            if key.action is ActionKind.CREATE:
                self.handler.create(instance)
                # Push the status the pod has now; the check was registered passing.
                self.handler.update(instance)
            elif key.action is ActionKind.UPDATE:
                self.handler.update(instance)
            else:
                self.handler.delete(instance)
        except Exception as e:
            self._retry_or_drop(key, e)
            return
        self._finish(key)

    def process_next_item(self) -> bool:
        """Handle one queued key. Returns False once the queue is shut down."""
        key, shutdown = self.queue.get()
        if shutdown:
            return False
        try:
            self._process(key)
        finally:
            self.queue.done(key)
        return True

    def run_worker(self) -> None:
        while True:
            try:
                if not self.process_next_item():
                    return
            except Exception as e:
                db.log_event("ERROR", f"Worker iteration failed: {type(e).__name__}: {e}")

    # --- lifecycle ----------------------------------------------------

    def start_workers(self, count: int | None = None) -> None:
        n = max(1, int(count if count is not None else self.cfg.workers))
        for i in range(n):
            t = Thread(target=self.run_worker, name=f"hcr-worker-{i}", daemon=True)
            t.start()
            self._workers.append(t)

    @property
    def worker_count(self) -> int:
        return sum(1 for t in self._workers if t.is_alive())

    @property
    def expected_workers(self) -> int:
        return len(self._workers)

    def shutdown(self) -> None:
        self.source.stop()
        if self._periodic:
            self._periodic.stop()
        self.queue.shut_down()
        for t in self._workers:
            t.join()
        self._workers.clear()
        db.log_event("INFO", "Controller stopped")

    def run(self, stop: Event) -> None:
        """Start watching, wait for the cache, reconcile once, then work until stop is set.

        Raises CacheSyncError if the pod cache does not sync in time.
        """
        db.log_event("INFO", "Controller starting")
        Thread(target=self.source.run, name="hcr-watcher", daemon=True).start()

        if not self.source.wait_for_sync(self.cfg.cache_sync_timeout_s):
            self.source.stop()
            self.queue.shut_down()
            db.log_event("ERROR", "Error syncing pod cache")
            raise CacheSyncError("pod cache did not sync")

        try:
            self.handler.init()
        except Exception as e:
            db.log_event("ERROR", f"Startup reconcile failed: {type(e).__name__}: {e}")

        if self.cfg.reconcile_interval_s > 0:
            self._periodic = PeriodicReconciler(self.handler, self.cfg.reconcile_interval_s)
            self._periodic.start()

        self.start_workers()
        stop.wait()
        self.shutdown()
