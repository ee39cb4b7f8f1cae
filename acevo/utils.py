"""Console helpers: stop-watch timer and progress bar."""

from __future__ import annotations

import sys
import time
from datetime import datetime
from typing import Optional, TextIO


class Timer:
    """Stop watch that reports elapsed time on a stream."""

    def __init__(self, out: Optional[TextIO] = None):
        self.out = out if out is not None else sys.stdout
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def start(self) -> None:
        self._start = time.perf_counter()
        self._end = None

    def stop(self) -> None:
        self._end = time.perf_counter()

    @property
    def elapsed(self) -> float:
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else time.perf_counter()
        return end - self._start

    def display(self) -> None:
        finished = datetime.now().strftime('%a %b %d %H:%M:%S %Y')
        self.out.write(f"Finished computation at {finished}\n")
        self.out.write(f"Elapsed time: {self.elapsed:.3f}s\n")
        self.out.flush()


class ProgressBar:
    """Percentage progress from 0 to 100, one mark per percent."""

    def __init__(self, total: int, out: Optional[TextIO] = None, width: int = 50):
        self.out = out if out is not None else sys.stdout
        self.total = max(int(total), 1)
        self.width = width
        self.count = 0
        self._shown = -1

    def update(self, count: int) -> None:
        self.count = min(count, self.total)
        pct = (100 * self.count) // self.total
        if pct != self._shown:
            self._shown = pct
            filled = (self.width * pct) // 100
            bar = '#' * filled + '-' * (self.width - filled)
            self.out.write(f"\r[{bar}] {pct:3d}%")
            self.out.flush()

    def increment(self) -> None:
        self.update(self.count + 1)

    def final(self) -> None:
        self.update(self.total)
        self.out.write("\n")
        self.out.flush()

