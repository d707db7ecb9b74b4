from __future__ import annotations

import time
from collections import deque
from threading import Condition, Lock, Timer
from typing import Hashable


class ItemExponentialFailureRateLimiter:
    """Per-item backoff: base_delay * 2**failures, capped at max_delay."""

    def __init__(self, base_delay_s: float = 0.005, max_delay_s: float = 1000.0):
        self.base_delay_s = max(0.0, float(base_delay_s))
        self.max_delay_s = max(self.base_delay_s, float(max_delay_s))
        self._lock = Lock()
        self._failures: dict[Hashable, int] = {}

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1
        if self.base_delay_s == 0:
            return 0.0
        # Guard against float overflow for very large exponents.
        if exp > 64:
            return self.max_delay_s
        return min(self.base_delay_s * (2**exp), self.max_delay_s)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)


class RateLimitingQueue:
    """FIFO work queue with de-duplication, delayed adds and per-item retry counts.

    An item is held in one of three places:
      - ``_queue``: waiting to be handed out by ``get``
      - ``_processing``: handed out, not yet ``done``
      - ``_dirty``: wanted again; either queued, or re-added while processing

    An item re-added while it is being processed is only put back in the
    queue once ``done`` is called for it, so a single item is never worked on
    by two consumers at the same time.
    """

    def __init__(self, rate_limiter: ItemExponentialFailureRateLimiter | None = None):
        self.rate_limiter = rate_limiter or ItemExponentialFailureRateLimiter()
        self._cond = Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._waiting: dict[Hashable, tuple[float, Timer]] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, item: Hashable) -> None:
        with self._cond:
            if self._shutting_down:
                return
            if item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self) -> tuple[Hashable | None, bool]:
        """Block until an item is available. Returns (item, shutdown)."""
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if not self._queue:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Hashable) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def add_after(self, item: Hashable, delay_s: float) -> None:
        """Add item once delay_s has passed. A pending item keeps the earlier deadline."""
        if delay_s <= 0:
            self.add(item)
            return
        deadline = time.monotonic() + delay_s
        with self._cond:
            if self._shutting_down:
                return
            pending = self._waiting.get(item)
            if pending is not None:
                if pending[0] <= deadline:
                    return
                pending[1].cancel()
            timer = Timer(delay_s, self._fire, args=(item, deadline))
            timer.daemon = True
            self._waiting[item] = (deadline, timer)
        timer.start()

    def _fire(self, item: Hashable, deadline: float) -> None:
        with self._cond:
            pending = self._waiting.get(item)
            # A replaced timer may still fire after cancel().
            if pending is None or pending[0] != deadline:
                return
            del self._waiting[item]
        self.add(item)

    def add_rate_limited(self, item: Hashable) -> None:
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: Hashable) -> None:
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            timers = [t for _, t in self._waiting.values()]
            self._waiting.clear()
            self._cond.notify_all()
        for t in timers:
            t.cancel()

    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down
