"""Rate limited work queue used by the controllers."""

import heapq
import itertools
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Hashable, List, Optional, Tuple


@dataclass(frozen=True)
class Result:
    """Outcome of one reconcile pass.

    ``requeue`` asks for a retry after the key's exponential backoff delay.
    """
    requeue: bool = False


class ExponentialBackoff:
    """Per-key delay of ``base * 2**failures``, capped at ``max_delay``."""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 300.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, key: Hashable) -> float:
        with self._lock:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        # cap the exponent so large failure counts cannot overflow
        return min(self.base_delay * (2 ** min(failures, 32)), self.max_delay)

    def forget(self, key: Hashable):
        with self._lock:
            self._failures.pop(key, None)

    def failures(self, key: Hashable) -> int:
        with self._lock:
            return self._failures.get(key, 0)


class WorkQueue:
    """De-duplicating queue of keys with delayed and rate limited adds.

    A key is handed to at most one worker at a time. Adding a key while it is
    being processed marks it dirty, and it is queued again once the worker
    calls ``done``. Keys are processed in the order they became ready.

    A key waiting out its backoff after ``add_rate_limited`` is not made ready
    early by ``add``; the delayed retry picks up whatever changed meanwhile.
    """

    def __init__(self, backoff: Optional[ExponentialBackoff] = None):
        self.backoff = backoff or ExponentialBackoff()
        self._queue: deque = deque()
        self._dirty = set()
        self._processing = set()
        self._backing_off = set()
        self._delayed: List[Tuple[float, int, Any]] = []
        self._counter = itertools.count()
        self._cond = threading.Condition()
        self._shutdown = False

    def add(self, key: Hashable):
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: Hashable):
        if self._shutdown or key in self._dirty or key in self._backing_off:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: Hashable, delay: float):
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            heapq.heappush(self._delayed, (time.monotonic() + delay, next(self._counter), key))
            self._cond.notify()

    def add_rate_limited(self, key: Hashable):
        delay = self.backoff.when(key)
        with self._cond:
            if self._shutdown:
                return
            self._backing_off.add(key)
            heapq.heappush(self._delayed, (time.monotonic() + delay, next(self._counter), key))
            self._cond.notify()

    def forget(self, key: Hashable):
        self.backoff.forget(key)

    def num_requeues(self, key: Hashable) -> int:
        return self.backoff.failures(key)

    def _promote_ready_locked(self) -> Optional[float]:
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, key = heapq.heappop(self._delayed)
            self._backing_off.discard(key)
            self._add_locked(key)
        if self._delayed:
            return self._delayed[0][0] - now
        return None

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Block until a key is ready. Returns None on shutdown or timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._shutdown:
                    return None
                next_delay = self._promote_ready_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                wait = next_delay
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: Hashable):
        with self._cond:
            self._processing.discard(key)
            if key in self._backing_off:
                self._dirty.discard(key)
            elif key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self):
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    @property
    def is_shutdown(self) -> bool:
        with self._cond:
            return self._shutdown

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def pending_delayed(self) -> int:
        with self._cond:
            return len(self._delayed)
