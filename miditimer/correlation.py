from __future__ import annotations

from typing import List

from miditimer.events import ON, NoteEvent
from miditimer.pending import PendingEventStack
from miditimer.stats import StatisticsCollector


class CorrelationEngine:
    """Transport callback pairing each echo with the oldest matching dispatch."""

    def __init__(self, stack: PendingEventStack, stats: StatisticsCollector, debug: bool = False) -> None:
        self.stack = stack
        self.stats = stats
        self.debug = debug
        self.matched: int = 0
        self.spurious: int = 0
        self.dead_echoes: List[NoteEvent] = []

    def on_event(self, echo: NoteEvent) -> bool:
        # A note_on with velocity 0 still pairs with a dispatched off via (key, 0)
        velocity = echo.velocity if echo.kind == ON else 0
        entry = self.stack.take_first_match(echo.key, velocity)
        if entry is None:
            if self.debug:
                print(f"[timer] spurious echo {echo.kind} key={echo.key} vel={velocity}", flush=True)
            self.spurious += 1
            self.dead_echoes.append(echo)
            return False
        delta = max(0.0, echo.timestamp - entry.timestamp)
        if self.debug:
            print(f"[timer] matched {entry.kind} key={entry.key} vel={velocity} delta={delta * 1000.0:.3f}ms", flush=True)
        self.stats.add(entry.kind, delta)
        self.matched += 1
        return True

    __call__ = on_event
