from __future__ import annotations

import collections
import threading
import time
from typing import Callable, Deque, Iterable, List, Optional, Tuple

from miditimer.events import KINDS, OFF, ON, NoteEvent, from_status


EchoCallback = Callable[[NoteEvent], None]


class TransportUnavailable(RuntimeError):
    """No usable MIDI input/output at startup."""


class Transport:
    """Abstract transport used by TimerController and the monitor."""

    def send(self, status: int, key: int, velocity: int) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def subscribe(self, callback: EchoCallback, kinds: Iterable[str] = KINDS) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def unsubscribe(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        self.unsubscribe()


class VirtualTransport(Transport):
    """Records sent messages; echoes are delivered by calling inject().

    Sent entries are (status, key, velocity) tuples.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self.sent: List[Tuple[int, int, int]] = []
        self._callback: Optional[EchoCallback] = None
        self._kinds: Tuple[str, ...] = KINDS

    def send(self, status: int, key: int, velocity: int) -> None:
        self.sent.append((int(status), int(key), int(velocity)))

    def subscribe(self, callback: EchoCallback, kinds: Iterable[str] = KINDS) -> None:
        self._callback = callback
        self._kinds = tuple(kinds)

    def unsubscribe(self) -> None:
        self._callback = None

    @property
    def subscribed(self) -> bool:
        return self._callback is not None

    def inject(self, kind: str, key: int, velocity: int = 0, timestamp: Optional[float] = None) -> None:
        ts = self.clock() if timestamp is None else timestamp
        ev = NoteEvent(kind, int(key), int(velocity) if kind == ON else 0, float(ts))
        if self._callback and ev.kind in self._kinds:
            self._callback(ev)


class LoopbackTransport(Transport):
    """In-process loopback: every sent note is echoed after `latency` seconds.

    Echoes are delivered in send order from a worker thread, which stands in
    for the MIDI input thread of a real device.
    """

    def __init__(self, latency: float = 0.002, clock: Callable[[], float] = time.monotonic) -> None:
        self.latency = max(0.0, float(latency))
        self.clock = clock
        self._lock = threading.Lock()
        self._cv = threading.Condition(self._lock)
        self._pending: Deque[Tuple[float, int, int, int]] = collections.deque()
        self._callback: Optional[EchoCallback] = None
        self._kinds: Tuple[str, ...] = KINDS
        self._t: Optional[threading.Thread] = None
        self._stop = False
        self.echoed: int = 0

    def send(self, status: int, key: int, velocity: int) -> None:
        with self._cv:
            self._pending.append((self.clock() + self.latency, int(status), int(key), int(velocity)))
            self._cv.notify()

    def subscribe(self, callback: EchoCallback, kinds: Iterable[str] = KINDS) -> None:
        with self._cv:
            self._callback = callback
            self._kinds = tuple(kinds)
            self._stop = False
        if not (self._t and self._t.is_alive()):
            self._t = threading.Thread(target=self._run, name="loopback", daemon=True)
            self._t.start()

    def unsubscribe(self) -> None:
        with self._cv:
            self._callback = None
            self._stop = True
            self._cv.notify()
        if self._t and self._t is not threading.current_thread():
            self._t.join(timeout=1.0)

    def _run(self) -> None:
        while True:
            with self._cv:
                while not self._pending and not self._stop:
                    self._cv.wait()
                if self._stop:
                    return
                due, status, key, velocity = self._pending[0]
                wait = due - self.clock()
                if wait > 0:
                    self._cv.wait(wait)
                    continue
                self._pending.popleft()
                callback, kinds = self._callback, self._kinds
            ev = from_status(status, key, velocity, self.clock())
            if callback and ev.kind in kinds:
                callback(ev)
                self.echoed += 1


class MidoTransport(Transport):
    """Mido-backed transport: an output port plus an input opened on subscribe."""

    def __init__(self, out_port, input_name: Optional[str], clock: Callable[[], float] = time.monotonic, debug: bool = False):
        self.out = out_port
        self.input_name = input_name
        self.clock = clock
        self.debug = debug
        self.inp = None

    def send(self, status: int, key: int, velocity: int) -> None:
        import mido

        self.out.send(mido.Message.from_bytes([int(status), int(key), int(velocity)]))

    def subscribe(self, callback: EchoCallback, kinds: Iterable[str] = KINDS) -> None:
        import mido

        wanted = tuple(kinds)

        def on_input(msg):
            # Stamp first so the delta excludes our own parsing
            ts = self.clock()
            if msg.type == "note_on":
                ev = NoteEvent(ON, int(msg.note), int(msg.velocity), ts)
            elif msg.type == "note_off":
                ev = NoteEvent(OFF, int(msg.note), 0, ts)
            else:
                return
            if ev.kind in wanted:
                callback(ev)

        self.unsubscribe()
        self.inp = mido.open_input(self.input_name, callback=on_input)
        if self.debug:
            print(f"[transport] listening on {self.input_name!r}", flush=True)

    def unsubscribe(self) -> None:
        if self.inp is not None:
            self.inp.close()
            self.inp = None

    def close(self) -> None:
        self.unsubscribe()
        close = getattr(self.out, "close", None)
        if close:
            close()


def _pick_port(names: List[str], name_filter: Optional[str]) -> Optional[str]:
    if name_filter:
        for name in names:
            if name_filter in name:
                return name
        return None
    return names[0] if names else None


def open_transport(
    in_filter: Optional[str] = None,
    out_filter: Optional[str] = None,
    clock: Callable[[], float] = time.monotonic,
    debug: bool = False,
    need_output: bool = True,
) -> MidoTransport:
    """Open the first matching mido output and resolve the matching input.

    A filter is a substring of the port name; without one the first port wins.
    Raises TransportUnavailable when a required side has no usable port.
    """
    try:
        import mido
    except ImportError as e:
        raise TransportUnavailable(f"mido is not installed: {e}") from e

    try:
        out_names = mido.get_output_names()
        in_names = mido.get_input_names()
    except Exception as e:
        # Backend failures (no rtmidi, sandboxed MIDI stack) surface here
        raise TransportUnavailable(f"MIDI system unavailable: {e}") from e

    in_name = _pick_port(in_names, in_filter)
    if in_name is None:
        raise TransportUnavailable(f"no MIDI input matching {in_filter!r} (have {in_names})")
    out_name = _pick_port(out_names, out_filter)
    if out_name is None and need_output:
        raise TransportUnavailable(f"no MIDI output matching {out_filter!r} (have {out_names})")

    out = None
    if out_name is not None:
        try:
            out = mido.open_output(out_name)
        except Exception as e:
            raise TransportUnavailable(f"could not open output {out_name!r}: {e}") from e
    print(f"[transport] output={out_name!r} input={in_name!r}", flush=True)
    return MidoTransport(out, in_name, clock=clock, debug=debug)
