from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from miditimer.events import note_on
from miditimer.scheduler import DelayedDispatchQueue, Dispatch, FaultHandler


@dataclass(frozen=True)
class GeneratorSettings:
    rest: Tuple[float, float] = (0.01, 0.5)
    notes_per_burst: Tuple[int, int] = (0, 5)
    key: Tuple[int, int] = (10, 100)
    velocity: Tuple[int, int] = (20, 120)
    hold: Tuple[float, float] = (0.1, 1.0)
    # Granularity of the interruptible rest
    cancel_slice: float = 0.01


class GeneratorLoop:
    """Fire bursts of random note-ons and schedule their note-offs.

    Each note: schedule the off, then dispatch the on. Rests are waited out in
    short slices so cancel() takes effect within one slice.
    """

    def __init__(
        self,
        queue: DelayedDispatchQueue,
        dispatch: Dispatch,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        settings: Optional[GeneratorSettings] = None,
        on_fault: Optional[FaultHandler] = None,
    ) -> None:
        self.queue = queue
        self.dispatch = dispatch
        self.clock = clock
        self.rng = rng or random.Random()
        self.settings = settings or GeneratorSettings()
        self.on_fault = on_fault
        self.error: Optional[BaseException] = None
        self.generated: int = 0
        self._t: Optional[threading.Thread] = None
        self._cancel = threading.Event()

    def start(self) -> None:
        if self._t and self._t.is_alive():
            return
        self._cancel.clear()
        self._t = threading.Thread(target=self._run, name="generator-loop", daemon=True)
        self._t.start()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._t:
            self._t.join(timeout=timeout)

    def is_alive(self) -> bool:
        return bool(self._t and self._t.is_alive())

    def _run(self) -> None:
        try:
            while not self._cancel.is_set():
                if self._rest(self.rng.uniform(*self.settings.rest)):
                    break
                self.burst()
        except BaseException as e:
            self.error = e
            if self.on_fault:
                self.on_fault(e)

    def _rest(self, seconds: float) -> bool:
        """Wait `seconds` in slices; True if cancelled meanwhile."""
        deadline = self.clock() + seconds
        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                return self._cancel.is_set()
            if self._cancel.wait(min(self.settings.cancel_slice, remaining)):
                return True

    def burst(self) -> int:
        s = self.settings
        count = self.rng.randint(*s.notes_per_burst)
        sent = 0
        for _ in range(count):
            if self._cancel.is_set():
                break
            key = self.rng.randint(*s.key)
            velocity = self.rng.randint(*s.velocity)
            ev = note_on(key, velocity, self.clock())
            self.queue.schedule(key, ev.timestamp + self.rng.uniform(*s.hold))
            self.dispatch(ev)
            self.generated += 1
            sent += 1
        return sent
