from __future__ import annotations

import math
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from miditimer.correlation import CorrelationEngine
from miditimer.events import KINDS, OFF, ON, NoteEvent
from miditimer.generator import GeneratorLoop, GeneratorSettings
from miditimer.pending import PendingEventStack
from miditimer.scheduler import DelayedDispatchQueue, DispatchDrainLoop
from miditimer.stats import CategoryStats, StatisticsCollector
from miditimer.transport import Transport


IDLE = "idle"
RUNNING = "running"
DRAINING = "draining"
STOPPED = "stopped"


class LoopFault(RuntimeError):
    """A generator or drain loop died; the run is aborted."""


@dataclass(frozen=True)
class TimerReport:
    dispatched: int
    dispatched_on: int
    dispatched_off: int
    matched: int
    spurious: int
    unprocessed: int
    elapsed: float
    stats: Optional[Dict[str, Optional[CategoryStats]]]


class TimerController:
    """Round-trip latency run over one transport.

    Lifecycle: idle -> running -> draining -> stopped. A controller runs once;
    build a new one for another measurement.
    """

    def __init__(
        self,
        transport: Transport,
        channel: int = 0,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        settings: Optional[GeneratorSettings] = None,
        poll_interval: float = 0.001,
        settle: float = 0.0,
        debug: bool = False,
    ) -> None:
        self.transport = transport
        self.channel = int(channel)
        self.clock = clock
        self.settle = max(0.0, float(settle))
        self.debug = debug
        self.state = IDLE
        self.stack = PendingEventStack()
        self.queue = DelayedDispatchQueue()
        self.stats = StatisticsCollector()
        self.correlation = CorrelationEngine(self.stack, self.stats, debug=debug)
        self.generator = GeneratorLoop(
            self.queue, self._dispatch, clock=clock, rng=rng, settings=settings, on_fault=self._on_fault
        )
        self.drain = DispatchDrainLoop(
            self.queue, self._dispatch, clock=clock, poll_interval=poll_interval, on_fault=self._on_fault
        )
        self.started_at: Optional[float] = None
        self.stopped_at: Optional[float] = None
        self.fault: Optional[BaseException] = None
        # Serializes lifecycle transitions; never taken by the loops
        self._lifecycle = threading.Lock()
        self._halt = threading.Event()

    # --- Dispatch (shared by both loops) ---
    def _dispatch(self, event: NoteEvent) -> None:
        # Send first, then register: the stamp predates the send
        self.transport.send(event.status(self.channel), event.key, event.velocity)
        self.stack.push(event)
        if self.debug:
            print(f"[timer] sent {event.kind} key={event.key} vel={event.velocity}", flush=True)

    def _on_fault(self, error: BaseException) -> None:
        if self.fault is None:
            self.fault = error
        print(f"[timer] loop fault: {error!r}", flush=True)
        self._halt.set()

    # --- Lifecycle ---
    def start(self) -> None:
        with self._lifecycle:
            if self.state != IDLE:
                raise RuntimeError(f"cannot start from state {self.state!r}")
            self.transport.subscribe(self.correlation.on_event, kinds=KINDS)
            self.started_at = self.clock()
            self.state = RUNNING
            self.generator.start()
            self.drain.start()
        if self.debug:
            print("[timer] running", flush=True)

    def request_stop(self) -> None:
        """Wake run(); safe from signal handlers and other threads."""
        self._halt.set()

    def stop(self) -> None:
        with self._lifecycle:
            if self.state != RUNNING:
                return
            self.state = DRAINING
            self.generator.cancel()
            self.generator.join()
            self.drain.deactivate()
            if self.debug:
                print(f"[timer] draining {len(self.queue)} scheduled note-offs", flush=True)
            self.drain.join()
            if self.settle > 0 and self.fault is None:
                time.sleep(self.settle)
            self.transport.unsubscribe()
            self.stopped_at = self.clock()
            self.state = STOPPED
            self._halt.set()
        if self.debug:
            print("[timer] stopped", flush=True)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._halt.wait(timeout)

    def run(self, seconds: float) -> TimerReport:
        """Measure for `seconds`, drain, and return the report.

        Raises LoopFault if either loop raised while running.
        """
        if not seconds or not math.isfinite(seconds) or seconds <= 0:
            raise ValueError("duration must be a positive, finite number of seconds")
        self.start()
        try:
            if not self._halt.wait(float(seconds)):
                print("[timer] Time's up!", flush=True)
        finally:
            self.stop()
        if self.fault is not None:
            raise LoopFault(f"loop failed: {self.fault!r}") from self.fault
        return self.report()

    # --- Reporting ---
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.stopped_at if self.stopped_at is not None else self.clock()
        return max(0.0, end - self.started_at)

    def report(self) -> TimerReport:
        return TimerReport(
            dispatched=self.stack.pushed,
            dispatched_on=self.stack.pushed_by_kind[ON],
            dispatched_off=self.stack.pushed_by_kind[OFF],
            matched=self.correlation.matched,
            spurious=self.correlation.spurious,
            unprocessed=len(self.stack),
            elapsed=self.elapsed(),
            stats=self.stats.finalize(),
        )

    def get_metrics(self) -> Dict[str, object]:
        return {
            "state": self.state,
            "elapsed": round(self.elapsed(), 3),
            "dispatched": self.stack.pushed,
            "matched": self.correlation.matched,
            "spurious": self.correlation.spurious,
            "pending": len(self.stack),
            "scheduledOffs": len(self.queue),
        }
