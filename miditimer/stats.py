from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from miditimer.events import OFF, ON

TOTAL = "total"
CATEGORIES = (ON, OFF, TOTAL)


@dataclass(frozen=True)
class CategoryStats:
    count: int
    mean_ms: float
    max_ms: float
    min_ms: float
    stdev_ms: Optional[float]
    p95_ms: float
    p99_ms: float


def _ms(seconds: float) -> float:
    # Halves round away from zero, not to even
    ms = Decimal(str(seconds * 1000.0))
    return float(ms.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def percentile(values: List[float], pct: float) -> float:
    if not values:
        return 0.0
    xs = sorted(values)
    k = (len(xs) - 1) * pct
    f = int(k)
    c = min(f + 1, len(xs) - 1)
    if f == c:
        return xs[f]
    d0 = xs[f] * (c - k)
    d1 = xs[c] * (k - f)
    return d0 + d1


def sample_variance(values: List[float]) -> Optional[float]:
    """Sum of squared deviations over n-1; None below two samples."""
    n = len(values)
    if n < 2:
        return None
    mean = sum(values) / n
    return sum((x - mean) ** 2 for x in values) / (n - 1)


def summarize(values: List[float]) -> Optional[CategoryStats]:
    if not values:
        return None
    var = sample_variance(values)
    return CategoryStats(
        count=len(values),
        mean_ms=_ms(sum(values) / len(values)),
        max_ms=_ms(max(values)),
        min_ms=_ms(min(values)),
        stdev_ms=_ms(math.sqrt(var)) if var is not None else None,
        p95_ms=_ms(percentile(values, 0.95)),
        p99_ms=_ms(percentile(values, 0.99)),
    )


class StatisticsCollector:
    """Round-trip deltas (seconds) per category of the dispatched event."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._deltas: Dict[str, List[float]] = {ON: [], OFF: []}

    def add(self, category: str, delta: float) -> None:
        if category not in self._deltas:
            raise ValueError(f"unknown category: {category!r}")
        with self._lock:
            self._deltas[category].append(float(delta))

    def deltas(self, category: str) -> List[float]:
        with self._lock:
            if category == TOTAL:
                return self._deltas[ON] + self._deltas[OFF]
            return list(self._deltas[category])

    def count(self) -> int:
        with self._lock:
            return len(self._deltas[ON]) + len(self._deltas[OFF])

    def finalize(self) -> Optional[Dict[str, Optional[CategoryStats]]]:
        """Per-category stats in ms, or None when nothing was gathered."""
        on, off = self.deltas(ON), self.deltas(OFF)
        if not on and not off:
            return None
        return {ON: summarize(on), OFF: summarize(off), TOTAL: summarize(on + off)}


def _fmt(v: Optional[float]) -> str:
    return "n/a" if v is None else f"{v}"


def format_report(report) -> str:
    """Plain-text run summary for a TimerReport."""
    lines = [
        "*********************",
        f"Sent {report.dispatched} events, received {report.matched} successful events back "
        f"and {report.spurious} spurious events. {report.unprocessed} remain unprocessed.",
    ]
    if report.stats is None:
        lines.append("No statistics gathered!")
        return "\n".join(lines)
    for cat in CATEGORIES:
        st = report.stats.get(cat)
        if st is None:
            lines.append(f"{cat} no samples")
            continue
        lines.append(
            f"{cat} Average: {st.mean_ms}ms (Max: {st.max_ms}ms | Min: {st.min_ms}ms) @ Stdev: {_fmt(st.stdev_ms)}"
        )
    lines.append("*********************")
    return "\n".join(lines)
