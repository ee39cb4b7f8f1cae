"""Performance monitoring for acevo simulations.

Component-level wall-clock timing, enabled with a single flag; a no-op
when disabled. Safe to use from the worker threads: statistics are
updated under a lock.

Usage:
    from acevo.perf import PerfMonitor

    perf = PerfMonitor(enabled=True)
    evo.run(perf=perf)
    print(perf.report())    # interaction, reproduction and migration times
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class ComponentStats:
    """Timing statistics for a single component."""
    total_time: float = 0.0
    call_count: int = 0
    max_time: float = 0.0

    @property
    def mean_time(self) -> float:
        return self.total_time / self.call_count if self.call_count > 0 else 0.0


class PerfMonitor:
    """Lightweight component-level performance monitor.

    Times summed over worker threads can exceed the wall-clock total.
    """

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._stats: Dict[str, ComponentStats] = defaultdict(ComponentStats)
        self._lock = threading.Lock()
        self._start_time: Optional[float] = None
        self._total_time: float = 0.0

    def start(self) -> None:
        if self.enabled:
            self._start_time = time.perf_counter()

    def stop(self) -> None:
        if self.enabled and self._start_time is not None:
            self._total_time = time.perf_counter() - self._start_time

    @contextmanager
    def track(self, component: str):
        """Context manager to time a named component."""
        if not self.enabled:
            yield
            return

        t0 = time.perf_counter()
        yield
        self.record(component, time.perf_counter() - t0)

    def record(self, component: str, elapsed: float) -> None:
        """Manually record a timing measurement."""
        if not self.enabled:
            return
        with self._lock:
            stats = self._stats[component]
            stats.total_time += elapsed
            stats.call_count += 1
            stats.max_time = max(stats.max_time, elapsed)

    def get_stats(self) -> Dict[str, ComponentStats]:
        with self._lock:
            return dict(self._stats)

    def report(self) -> str:
        """One line per timed phase, longest first, then the wall-clock time.

        Phase times are summed over worker threads, so shares are relative
        to the summed phase time rather than to the wall clock.
        """
        stats = self.get_stats()
        phase_total = sum(s.total_time for s in stats.values())
        width = max([len(name) for name in stats] + [len('wall clock')])
        lines = []
        for name, s in sorted(stats.items(), key=lambda item: item[1].total_time, reverse=True):
            share = s.total_time / phase_total if phase_total > 0 else 0.0
            lines.append(
                f"{name:<{width}}  {s.total_time:9.3f} s  {share:6.1%}  "
                f"{s.call_count} x {s.mean_time * 1e3:.3f} ms"
            )
        lines.append(f"{'wall clock':<{width}}  {self._total_time:9.3f} s")
        return '\n'.join(lines)

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
        self._start_time = None
        self._total_time = 0.0
