from __future__ import annotations

import heapq
import itertools
import threading
import time
from typing import Callable, List, Optional

from miditimer.events import NoteEvent, ScheduledOff, note_off


Dispatch = Callable[[NoteEvent], None]
FaultHandler = Callable[[BaseException], None]


class DelayedDispatchQueue:
    """Pending note-offs keyed by due time (min-heap), behind its own lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._heap: List[ScheduledOff] = []
        self._seq = itertools.count()

    def schedule(self, key: int, due: float) -> None:
        with self._lock:
            heapq.heappush(self._heap, ScheduledOff(float(due), next(self._seq), int(key)))

    def drain_due(self, now: float) -> List[int]:
        """Remove and return the keys of every item due at or before `now`."""
        keys: List[int] = []
        with self._lock:
            while self._heap and self._heap[0].due <= now:
                keys.append(heapq.heappop(self._heap).key)
        return keys

    def next_due(self) -> Optional[float]:
        with self._lock:
            return self._heap[0].due if self._heap else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)


class DispatchDrainLoop:
    """Dispatch scheduled note-offs as they come due.

    After deactivate() the loop keeps polling until the queue is empty, so
    every note-off scheduled before the generator stopped still goes out.
    """

    def __init__(
        self,
        queue: DelayedDispatchQueue,
        dispatch: Dispatch,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.001,
        on_fault: Optional[FaultHandler] = None,
    ) -> None:
        self.queue = queue
        self.dispatch = dispatch
        self.clock = clock
        self.poll_interval = float(poll_interval)
        self.on_fault = on_fault
        self.error: Optional[BaseException] = None
        self.dispatched: int = 0
        self._t: Optional[threading.Thread] = None
        self._active = threading.Event()

    def start(self) -> None:
        if self._t and self._t.is_alive():
            return
        self._active.set()
        self._t = threading.Thread(target=self._run, name="drain-loop", daemon=True)
        self._t.start()

    def deactivate(self) -> None:
        self._active.clear()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._t:
            self._t.join(timeout=timeout)

    def is_alive(self) -> bool:
        return bool(self._t and self._t.is_alive())

    def _run(self) -> None:
        try:
            while True:
                self.tick()
                if not self._active.is_set() and len(self.queue) == 0:
                    break
                time.sleep(self.poll_interval)
        except BaseException as e:
            self.error = e
            if self.on_fault:
                self.on_fault(e)

    def tick(self) -> int:
        """Dispatch everything due now; returns how many offs went out."""
        keys = self.queue.drain_due(self.clock())
        for key in keys:
            self.dispatch(note_off(key, self.clock()))
            self.dispatched += 1
        return len(keys)
