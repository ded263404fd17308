from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, List, Optional


TickHandler = Callable[[int], None]


class Ticker:
    """Cancellable repeating task running on its own daemon thread.

    The first fire happens one full interval after start(); callers that want
    an immediate first tick invoke their handler themselves. cancel() is safe
    to call any number of times, from any thread, including from inside the
    handler.
    """

    def __init__(self, interval_ms: float, tick_handler: TickHandler):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.interval_ms = float(interval_ms)
        self.tick_handler = tick_handler
        self._t: Optional[threading.Thread] = None
        self._cancelled = threading.Event()
        self._fires = 0
        self._jitter_ms: Deque[float] = deque(maxlen=512)
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return bool(self._t and self._t.is_alive() and not self._cancelled.is_set())

    def start(self) -> None:
        if self._cancelled.is_set():
            raise RuntimeError("ticker was cancelled; create a new one")
        if self._t and self._t.is_alive():
            return
        self._t = threading.Thread(target=self._run, name="redacted-dm-ticker", daemon=True)
        self._t.start()

    def cancel(self, wait: bool = False) -> None:
        self._cancelled.set()
        t = self._t
        if wait and t and t is not threading.current_thread():
            t.join(timeout=1.0)

    def _run(self) -> None:
        interval = self.interval_ms / 1000.0
        next_call = time.monotonic() + interval
        while not self._cancelled.is_set():
            now = time.monotonic()
            if now >= next_call:
                with self._lock:
                    self._jitter_ms.append(max(0.0, (now - next_call) * 1000.0))
                next_call += interval
                # Fell more than one interval behind: resync instead of bursting
                if next_call < now:
                    next_call = now + interval
                self._fires += 1
                try:
                    self.tick_handler(self._fires)
                except Exception as e:
                    print(f"[clock] tick handler raised: {e!r}", flush=True)
            else:
                self._cancelled.wait(min(0.002, max(0.0, next_call - now)))

    def _percentile(self, values: List[float], pct: float) -> float:
        if not values:
            return 0.0
        xs = sorted(values)
        k = (len(xs) - 1) * pct
        f = int(k)
        c = min(f + 1, len(xs) - 1)
        if f == c:
            return xs[f]
        return xs[f] * (c - k) + xs[c] * (k - f)

    def get_metrics(self) -> dict:
        with self._lock:
            samples = list(self._jitter_ms)
        return {
            "fires": self._fires,
            "jitterMsP95": round(self._percentile(samples, 0.95), 3),
            "jitterMsP99": round(self._percentile(samples, 0.99), 3),
        }
