"""Kernel dispatch over grid positions with reproducible random sub-streams.

Every forward/backward/learn pass of the engines is a map over independent
grid positions. ComputeSystem runs such maps:
    - run_over_grid_1d(count, fn): positions 0..count-1
    - run_over_grid_2d((w, h), fn): positions (x, y), outer x, inner y
    - next_stream(): generator for caller-level randomness (initialization,
      replay sampling)

Each kernel invocation receives fn(pos, stream) where stream() lazily builds
a numpy Generator seeded from SeedSequence([seed, pass_index, flat_index]).
Sub-streams depend only on (seed, pass, position), never on thread
scheduling, so serial and threaded runs produce identical results.

Invariants:
    - Within one pass, a kernel writes only slots owned by its position
    - Passes are strictly sequential; run_* returns after every position ran
    - Exceptions raised by kernels propagate to the caller

Usage:
    from csdr.utils.compute import ComputeSystem

    cs = ComputeSystem(seed=1234, num_workers=4)
    cs.run_over_grid_2d((8, 8), lambda pos, stream: kernel(pos))
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

StreamFactory = Callable[[], np.random.Generator]


class ComputeSystem:
    """Seeded dispatcher for per-position kernels.

    Attributes
    ----------
    seed : int
        Root seed for every derived sub-stream
    num_workers : int
        Thread count; 1 runs kernels inline
    batch_size : int
        Positions per submitted task when threaded
    pass_index : int
        Number of passes (and streams) issued so far
    """

    def __init__(self, seed: int = 0, num_workers: int = 1, batch_size: int = 64):
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.seed = int(seed)
        self.num_workers = int(num_workers)
        self.batch_size = int(batch_size)
        self.pass_index = 0
        self._pool: Optional[ThreadPoolExecutor] = None

    def _next_pass(self) -> int:
        index = self.pass_index
        self.pass_index += 1
        return index

    def stream(self, pass_index: int, position: int) -> np.random.Generator:
        """Generator for one (pass, position) pair."""
        return np.random.default_rng(np.random.SeedSequence([self.seed, pass_index, position]))

    def next_stream(self) -> np.random.Generator:
        """Generator for caller-level randomness, one per call."""
        index = self._next_pass()
        return np.random.default_rng(np.random.SeedSequence([self.seed, index]))

    def run_over_grid_1d(
        self,
        count: int,
        fn: Callable[[int, StreamFactory], Any],
        batch_size: Optional[int] = None
    ) -> None:
        """Invoke fn(i, stream) for i in [0, count).

        Raises
        ------
        ValueError
            If count is negative
        """
        if count < 0:
            raise ValueError(f"Invalid dispatch count: {count}")
        pass_index = self._next_pass()
        positions = list(range(count))
        self._dispatch(positions, positions, fn, pass_index, batch_size)

    def run_over_grid_2d(
        self,
        extent: Sequence[int],
        fn: Callable[[Tuple[int, int], StreamFactory], Any],
        batch_size: Optional[int] = None
    ) -> None:
        """Invoke fn((x, y), stream) for every column of a (w, h) extent.

        Raises
        ------
        ValueError
            If either extent is negative
        """
        w, h = int(extent[0]), int(extent[1])
        if w < 0 or h < 0:
            raise ValueError(f"Invalid dispatch extent: {tuple(extent)}")
        pass_index = self._next_pass()
        positions = [(x, y) for x in range(w) for y in range(h)]
        flat = [y * w + x for x, y in positions]
        self._dispatch(positions, flat, fn, pass_index, batch_size)

    def _dispatch(
        self,
        positions: List[Any],
        flat: List[int],
        fn: Callable,
        pass_index: int,
        batch_size: Optional[int]
    ) -> None:
        if not positions:
            return

        def run_batch(start: int, stop: int) -> None:
            for i in range(start, stop):
                fn(positions[i], partial(self.stream, pass_index, flat[i]))

        if self.num_workers == 1:
            run_batch(0, len(positions))
            return

        size = batch_size or self.batch_size
        pool = self._get_pool()
        futures = [
            pool.submit(run_batch, start, min(start + size, len(positions)))
            for start in range(0, len(positions), size)
        ]
        for future in futures:
            future.result()

    def _get_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            logger.debug("Starting kernel pool with %d workers", self.num_workers)
            self._pool = ThreadPoolExecutor(max_workers=self.num_workers)
        return self._pool

    def close(self) -> None:
        """Shut down the worker pool (if any)."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def __enter__(self) -> 'ComputeSystem':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (f"ComputeSystem(seed={self.seed}, num_workers={self.num_workers}, "
                f"batch_size={self.batch_size}, pass_index={self.pass_index})")
