"""
Named, cancellable scheduled callbacks.
All callbacks run one at a time on a single daemon thread, so the
scheduler never has two steps executing concurrently.
"""

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TimerService:
    """
    call_later(name, delay, callback) arms a timer; arming a name that is
    already armed cancels the earlier one first, so at most one task per
    name is ever pending.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._cond = threading.Condition()
        self._heap: list[tuple[float, int, str]] = []
        self._tokens: dict[str, int] = {}        # name -> live sequence number
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._seq = itertools.count()
        self._shutdown = False
        self._thread: Optional[threading.Thread] = None

    def now(self) -> float:
        return self._clock()

    def call_later(self, name: str, delay: float, callback: Callable[[], None]):
        with self._cond:
            if self._shutdown:
                logger.debug("Timer service shut down, ignoring %s", name)
                return
            self._cancel_locked(name)
            seq = next(self._seq)
            self._tokens[name] = seq
            self._callbacks[seq] = callback
            heapq.heappush(self._heap, (self._clock() + max(0.0, delay), seq, name))
            self._ensure_thread()
            self._cond.notify()

    def cancel(self, name: str):
        with self._cond:
            self._cancel_locked(name)
            self._cond.notify()

    def cancel_all(self):
        with self._cond:
            self._tokens.clear()
            self._callbacks.clear()
            self._heap.clear()
            self._cond.notify()

    def active_names(self) -> set[str]:
        with self._cond:
            return set(self._tokens)

    def shutdown(self, wait: bool = True):
        with self._cond:
            self._shutdown = True
            self._tokens.clear()
            self._callbacks.clear()
            self._heap.clear()
            self._cond.notify_all()
            thread = self._thread
        if wait and thread and thread is not threading.current_thread():
            thread.join(timeout=5)

    # ── Internals ─────────────────────────────────────────────────────

    def _cancel_locked(self, name: str):
        seq = self._tokens.pop(name, None)
        if seq is not None:
            self._callbacks.pop(seq, None)

    def _ensure_thread(self):
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(target=self._run, name="soraqueue-timers",
                                            daemon=True)
            self._thread.start()

    def _run(self):
        while True:
            with self._cond:
                callback = None
                while callback is None:
                    if self._shutdown:
                        return
                    if not self._heap:
                        self._cond.wait()
                        continue
                    due, seq, name = self._heap[0]
                    if seq not in self._callbacks:
                        heapq.heappop(self._heap)   # cancelled
                        continue
                    wait_for = due - self._clock()
                    if wait_for > 0:
                        self._cond.wait(wait_for)
                        continue
                    heapq.heappop(self._heap)
                    callback = self._callbacks.pop(seq)
                    if self._tokens.get(name) == seq:
                        del self._tokens[name]

            try:
                callback()
            except Exception as e:
                logger.error("Timer callback %s failed: %s", name, e, exc_info=True)
