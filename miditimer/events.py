from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple


ON = "on"
OFF = "off"
KINDS = (ON, OFF)

NOTE_ON_STATUS = 0x90
NOTE_OFF_STATUS = 0x80


def _check_7bit(name: str, value: int) -> int:
    v = int(value)
    if not 0 <= v <= 127:
        raise ValueError(f"{name} must be in 0..127, got {value}")
    return v


@dataclass(frozen=True)
class NoteEvent:
    """A note on/off as dispatched or echoed, stamped in seconds.

    Matching only looks at (key, velocity); Off events always carry velocity 0.
    """

    kind: str
    key: int
    velocity: int
    timestamp: float

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise ValueError(f"unknown event kind: {self.kind!r}")
        _check_7bit("key", self.key)
        _check_7bit("velocity", self.velocity)
        if self.kind == OFF and self.velocity != 0:
            raise ValueError("note off events carry velocity 0")

    @property
    def match_key(self) -> Tuple[int, int]:
        return (self.key, self.velocity)

    def status(self, channel: int = 0) -> int:
        base = NOTE_ON_STATUS if self.kind == ON else NOTE_OFF_STATUS
        return base + (int(channel) & 0x0F)


def note_on(key: int, velocity: int, timestamp: float) -> NoteEvent:
    return NoteEvent(ON, int(key), int(velocity), float(timestamp))


def note_off(key: int, timestamp: float) -> NoteEvent:
    return NoteEvent(OFF, int(key), 0, float(timestamp))


def from_status(status: int, key: int, velocity: int, timestamp: float) -> NoteEvent:
    """Build an event from raw channel message bytes (channel nibble ignored)."""
    high = int(status) & 0xF0
    if high == NOTE_ON_STATUS:
        return note_on(key, velocity, timestamp)
    if high == NOTE_OFF_STATUS:
        return note_off(key, timestamp)
    raise ValueError(f"not a note status byte: {status:#x}")


@dataclass(order=True)
class ScheduledOff:
    # Heap order: due time first, then insertion sequence for equal due times
    due: float
    seq: int
    key: int = field(compare=False)
