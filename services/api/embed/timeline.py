# services/api/embed/timeline.py
"""
Single-threaded event timeline for a document.

Timers, animation frames and posted messages all run serialized on one
virtual clock; nothing blocks and nothing runs until the clock advances.
"""
from __future__ import annotations

import heapq
import itertools
import logging
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

FRAME_MS = 1000.0 / 60.0

Callback = Callable[[], None]


class Timeline:
    def __init__(self, frame_ms: float = FRAME_MS):
        self.frame_ms = frame_ms
        self._now = 0.0
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, int]] = []
        self._tasks: Dict[int, Tuple[Callback, Optional[float]]] = {}
        self._handles = itertools.count(1)

    def now(self) -> float:
        return self._now

    # ---------- scheduling ----------

    def _schedule(self, due: float, callback: Callback, repeat_ms: Optional[float]) -> int:
        handle = next(self._handles)
        self._tasks[handle] = (callback, repeat_ms)
        heapq.heappush(self._queue, (due, next(self._seq), handle))
        return handle

    def set_timeout(self, callback: Callback, delay_ms: float = 0.0) -> int:
        return self._schedule(self._now + max(0.0, delay_ms), callback, None)

    def set_interval(self, callback: Callback, interval_ms: float) -> int:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        return self._schedule(self._now + interval_ms, callback, interval_ms)

    def call_soon(self, callback: Callback) -> int:
        return self.set_timeout(callback, 0.0)

    def request_animation_frame(self, callback: Callback) -> int:
        """Run callback at the next frame boundary strictly after now."""
        next_frame = (int(self._now // self.frame_ms) + 1) * self.frame_ms
        return self._schedule(next_frame, callback, None)

    def cancel(self, handle: int) -> None:
        self._tasks.pop(handle, None)

    clear_timeout = cancel
    clear_interval = cancel
    cancel_animation_frame = cancel

    # ---------- running ----------

    def advance(self, ms: float = 0.0) -> int:
        """
        Move the clock forward by `ms`, running every task that falls due,
        in due order. Returns the number of callbacks run.
        """
        target = self._now + max(0.0, ms)
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            task = self._tasks.get(handle)
            if task is None:
                continue
            callback, repeat_ms = task
            self._now = max(self._now, due)
            if repeat_ms is None:
                del self._tasks[handle]
            else:
                heapq.heappush(self._queue, (due + repeat_ms, next(self._seq), handle))
            callback()
            ran += 1
        self._now = target
        return ran

    def flush(self) -> int:
        """Run whatever is already due without moving the clock."""
        return self.advance(0.0)

    def next_frame(self) -> int:
        """Advance to (and through) the next animation frame boundary."""
        next_frame = (int(self._now // self.frame_ms) + 1) * self.frame_ms
        return self.advance(next_frame - self._now)

    @property
    def pending(self) -> int:
        return len(self._tasks)


class FrameThrottle:
    """
    Trailing-edge throttle: at most one call per animation frame.

    The first trigger schedules a frame callback; triggers while it is
    pending are absorbed; the pending flag clears after the call runs.
    """

    def __init__(self, timeline: Timeline, fn: Callback):
        self.timeline = timeline
        self.fn = fn
        self.pending = False
        self.calls = 0

    def __call__(self) -> None:
        if self.pending:
            return
        self.pending = True
        self.timeline.request_animation_frame(self._fire)

    def _fire(self) -> None:
        try:
            self.fn()
            self.calls += 1
        finally:
            self.pending = False
