from __future__ import annotations

import threading
from typing import Dict, List, Optional

from miditimer.events import KINDS, NoteEvent


class PendingEventStack:
    """Dispatched events waiting for their echo, in registration order.

    One lock guards every operation. Matching is structural on (key, velocity)
    and oldest-first: two entries with the same pair are indistinguishable
    except by the order they were pushed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: List[NoteEvent] = []
        self.pushed: int = 0
        self.pushed_by_kind: Dict[str, int] = {k: 0 for k in KINDS}

    def push(self, entry: NoteEvent) -> None:
        with self._lock:
            self._entries.append(entry)
            self.pushed += 1
            self.pushed_by_kind[entry.kind] += 1

    def take_first_match(self, key: int, velocity: int) -> Optional[NoteEvent]:
        with self._lock:
            for i, entry in enumerate(self._entries):
                if entry.key == key and entry.velocity == velocity:
                    return self._entries.pop(i)
        return None

    def snapshot(self) -> List[NoteEvent]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
