"""
Progress counting and throughput reporting for a load.
"""
import time
from dataclasses import dataclass
from typing import Callable


class ProgressCounter:
    """
    Monotonic record counter with throughput since start.
    `increment()` reports when a cadence boundary is crossed.
    """

    def __init__(self, interval: int = 100_000, clock: Callable[[], float] = time.perf_counter):
        self.interval = interval
        self.count = 0
        self._clock = clock
        self.start_time = clock()

    def increment(self, amount: int = 1) -> bool:
        """Add `amount` records; True when the count lands on a multiple of interval."""
        self.count += amount
        return self.count % self.interval == 0

    def elapsed(self) -> float:
        return self._clock() - self.start_time

    def rate(self) -> float:
        """Records per second since start."""
        elapsed = self.elapsed()
        return self.count / elapsed if elapsed > 0 else 0.0


@dataclass(frozen=True)
class LoadReport:
    """Outcome of a successful load."""
    relation_name: str
    record_count: int
    elapsed: float

    @property
    def records_per_second(self) -> float:
        return self.record_count / self.elapsed if self.elapsed > 0 else 0.0

    def format_summary(self) -> str:
        return (
            f"COPY: {self.record_count:,} lines in {self.elapsed:.2f} sec "
            f"({self.records_per_second:,.0f} lines/sec)"
        )

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            return f"{seconds / 60:.1f}m"
        return f"{seconds / 3600:.1f}h"
