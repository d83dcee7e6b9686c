from __future__ import annotations

from collections import deque
from threading import Condition, Timer


class WorkQueue:
    """De-duplicating work queue with per-key exponential backoff.

    A key is never handed to two workers at once: a key re-added while it is
    being processed is parked until ``done`` is called for it.
    """

    def __init__(self, base_delay_s: float = 0.005, max_delay_s: float = 1000.0):
        self.base_delay_s = max(0.0, float(base_delay_s))
        self.max_delay_s = max(self.base_delay_s, float(max_delay_s))
        self._cond = Condition()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: dict[str, Timer] = {}
        self._shutdown = False

    def add(self, key: str) -> None:
        with self._cond:
            if self._shutdown or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: str, delay_s: float) -> None:
        if delay_s <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            pending = self._timers.pop(key, None)
            if pending is not None:
                pending.cancel()
            t = Timer(delay_s, self._fire, args=(key,))
            t.daemon = True
            self._timers[key] = t
        t.start()

    def _fire(self, key: str) -> None:
        with self._cond:
            self._timers.pop(key, None)
        self.add(key)

    def backoff(self, key: str) -> float:
        """Delay the next retry of ``key`` would get, without scheduling it."""
        with self._cond:
            n = self._failures.get(key, 0)
        return min(self.base_delay_s * (2 ** min(n, 62)), self.max_delay_s)

    def add_rate_limited(self, key: str) -> float:
        delay = self.backoff(key)
        with self._cond:
            self._failures[key] = self._failures.get(key, 0) + 1
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def get(self, timeout: float | None = None) -> str | None:
        """Next key to process, or None on timeout/shutdown."""
        with self._cond:
            if not self._queue and not self._shutdown:
                self._cond.wait_for(lambda: self._queue or self._shutdown, timeout)
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutdown = True
            for t in self._timers.values():
                t.cancel()
            self._timers.clear()
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutdown

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)
