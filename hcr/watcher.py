from __future__ import annotations

import random
from dataclasses import dataclass
from threading import Event, Lock
from typing import Any, Callable, Protocol

from kubernetes import watch
from kubernetes.client import ApiException

from . import db
from .models import Instance

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


@dataclass(frozen=True)
class PodEvent:
    kind: str  # ADDED|MODIFIED|DELETED
    old: Instance | None
    new: Instance | None


class EventHandler(Protocol):
    def on_add(self, instance: Instance) -> None: ...

    def on_update(self, old: Instance, new: Instance) -> None: ...

    def on_delete(self, instance: Instance) -> None: ...


class PodWatcher:
    """List-then-watch pods matching a label selector and keep a local cache.

    The cache is keyed by ``namespace/name`` and only written by the watch
    thread. Each notification is turned into a PodEvent carrying the cached
    previous snapshot and the new one, then handed to the subscribers.
    """

    def __init__(
        self,
        api: Any,
        label_selector: str,
        namespace: str = "",
        watch_timeout_s: int = 300,
        sleep_jitter: Callable[[], float] = random.random,
    ):
        self.api = api
        self.label_selector = label_selector
        self.namespace = namespace
        self.watch_timeout_s = watch_timeout_s
        self.has_synced = Event()
        self._sleep_jitter = sleep_jitter
        self._lock = Lock()
        self._cache: dict[str, Instance] = {}
        self._handlers: list[EventHandler] = []
        self._stop = Event()
        self._active: watch.Watch | None = None

    def add_event_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def get(self, namespace: str, name: str) -> Instance | None:
        with self._lock:
            return self._cache.get(f"{namespace}/{name}")

    def list(self) -> list[Instance]:
        with self._lock:
            return list(self._cache.values())

    def wait_for_sync(self, timeout_s: float | None = None) -> bool:
        return self.has_synced.wait(timeout_s)

    def stop(self) -> None:
        self._stop.set()
        with self._lock:
            active = self._active
        if active is not None:
            active.stop()

    def stopped(self) -> bool:
        return self._stop.is_set()

    def _dispatch(self, ev: PodEvent) -> None:
        for h in self._handlers:
            try:
                if ev.kind == ADDED and ev.new is not None:
                    h.on_add(ev.new)
                elif ev.kind == MODIFIED and ev.old is not None and ev.new is not None:
                    h.on_update(ev.old, ev.new)
                elif ev.kind == DELETED and ev.old is not None:
                    h.on_delete(ev.old)
            except Exception as e:
                db.log_event("ERROR", f"Event handler failed on {ev.kind}: {type(e).__name__}: {e}")

    def handle_event(self, event_type: str, obj: Any) -> PodEvent | None:
        """Apply one watch notification to the cache and notify subscribers."""
        if event_type not in {ADDED, MODIFIED, DELETED} or obj is None:
            return None
        inst = Instance.from_pod(obj)
        if not inst.name:
            return None
        with self._lock:
            old = self._cache.get(inst.key)
            if event_type == DELETED:
                self._cache.pop(inst.key, None)
            else:
                self._cache[inst.key] = inst

        if event_type == DELETED:
            ev = PodEvent(DELETED, old or inst, None)
        elif old is None:
            ev = PodEvent(ADDED, None, inst)
        else:
            ev = PodEvent(MODIFIED, old, inst)
        self._dispatch(ev)
        return ev

    def _list_call(self) -> tuple[Callable[..., Any], dict[str, Any]]:
        if self.namespace:
            return self.api.list_namespaced_pod, {"namespace": self.namespace, "label_selector": self.label_selector}
        return self.api.list_pod_for_all_namespaces, {"label_selector": self.label_selector}

    def relist(self, replay: bool = False) -> str | None:
        """Replace the cache with a fresh listing; returns its resourceVersion.

        With ``replay`` the differences against the previous cache are sent to
        subscribers, covering whatever happened while the watch was down.
        """
        func, kwargs = self._list_call()
        pods = func(**kwargs)
        fresh: dict[str, Instance] = {}
        for p in getattr(pods, "items", None) or []:
            inst = Instance.from_pod(p)
            if inst.name:
                fresh[inst.key] = inst

        with self._lock:
            previous = self._cache
            self._cache = fresh

        if replay:
            for key, inst in fresh.items():
                old = previous.get(key)
                if old is None:
                    self._dispatch(PodEvent(ADDED, None, inst))
                elif old != inst:
                    self._dispatch(PodEvent(MODIFIED, old, inst))
            for key, old in previous.items():
                if key not in fresh:
                    self._dispatch(PodEvent(DELETED, old, None))

        return getattr(getattr(pods, "metadata", None), "resource_version", None)

    def _backoff(self, seconds: float) -> float:
        self._stop.wait(seconds * (0.5 + self._sleep_jitter()))
        return min(seconds * 2, 30)

    def run(self) -> None:
        """Blocking list-then-watch loop; returns once stop() is called."""
        resource_version: str | None = None
        backoff_s = 1.0
        while not self.stopped():
            try:
                resource_version = self.relist(replay=False)
                self.has_synced.set()
                db.log_event("INFO", f"Pod cache synced ({len(self.list())} pods), resourceVersion {resource_version}")
                break
            except ApiException as e:
                if e.status in {401, 403}:
                    db.log_event("ERROR", f"Kubernetes API access denied listing pods (status={e.status})")
                    return
                db.log_event("ERROR", f"Initial pod list failed: HTTP {e.status}: {e.reason}")
            except Exception as e:
                db.log_event("ERROR", f"Initial pod list failed: {type(e).__name__}: {e}")
            backoff_s = self._backoff(backoff_s)

        backoff_s = 1.0
        while not self.stopped():
            w = watch.Watch()
            with self._lock:
                self._active = w
            try:
                func, kwargs = self._list_call()
                for event in w.stream(
                    func,
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout_s,
                    **kwargs,
                ):
                    if self.stopped():
                        break
                    event_type = str(event.get("type", ""))
                    obj = event.get("object")
                    if event_type == "ERROR":
                        raw = event.get("raw_object") or {}
                        raise ApiException(status=raw.get("code", 500), reason=raw.get("message", "watch error"))
                    metadata = getattr(obj, "metadata", None)
                    if metadata is not None and getattr(metadata, "resource_version", None):
                        resource_version = metadata.resource_version
                    self.handle_event(event_type, obj)
                backoff_s = 1.0
            except ApiException as e:
                if e.status == 410:
                    db.log_event("WARN", "Watch resource version expired, re-listing")
                    try:
                        resource_version = self.relist(replay=True)
                    except Exception as relist_err:
                        db.log_event("ERROR", f"Re-list after 410 failed: {type(relist_err).__name__}: {relist_err}")
                        resource_version = None
                        backoff_s = self._backoff(backoff_s)
                    continue
                if e.status in {401, 403}:
                    db.log_event("ERROR", f"Kubernetes API access denied watching pods (status={e.status})")
                    return
                db.log_event("ERROR", f"Pod watch failed: HTTP {e.status}: {e.reason}")
                backoff_s = self._backoff(backoff_s)
            except Exception as e:
                if self.stopped():
                    break
                db.log_event("ERROR", f"Pod watch failed: {type(e).__name__}: {e}")
                backoff_s = self._backoff(backoff_s)
            finally:
                with self._lock:
                    self._active = None
