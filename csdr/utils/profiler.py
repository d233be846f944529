"""Lightweight wall-clock profiling for engine passes.

Provides:
    - timer(): Context manager for a single wall-clock measurement with optional sink
    - TimerAccumulator: Mean time over many measurements

Used by the copy-task runner to report per-phase cost (coder step, actor
activate, actor replay) at every log interval.
"""

import time
from contextlib import contextmanager
from typing import Callable, Optional


@contextmanager
def timer(name: str, sink: Optional[Callable[[str, float], None]] = None):
    """Context manager for wall-clock timing.

    Parameters
    ----------
    name : str
        Timer name
    sink : Optional[Callable[[str, float], None]]
        Optional callback(name, elapsed_seconds); prints to stdout if None

    Examples
    --------
    >>> with timer("coder_step", sink=lambda n, s: logger.debug("%s %.4f", n, s)):
    ...     coder.step(cs, [obs])
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if sink is not None:
            sink(name, elapsed)
        else:
            print(f"{name}: {elapsed:.3f} s")


class TimerAccumulator:
    """Accumulate multiple timing measurements for averaging.

    Examples
    --------
    >>> replay_timer = TimerAccumulator("actor_step")
    >>> for _ in range(100):
    ...     with replay_timer.measure():
    ...         actor.step(cs, inputs, actions, feedback)
    >>> print(f"Mean: {replay_timer.mean():.4f} s")
    """

    def __init__(self, name: str):
        self.name = name
        self.total_time = 0.0
        self.count = 0

    @contextmanager
    def measure(self):
        """Measure one block and add it to the running total."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.total_time += time.perf_counter() - start
            self.count += 1

    def mean(self) -> float:
        """Mean seconds per measurement, or 0.0 if nothing was measured."""
        return self.total_time / self.count if self.count > 0 else 0.0

    def reset(self) -> None:
        self.total_time = 0.0
        self.count = 0

    def __repr__(self) -> str:
        return f"TimerAccumulator({self.name}, mean={self.mean():.4f}s, count={self.count})"
