"""Fixed-capacity experience ring for the actor.

Slots are pre-allocated owned buffers; push() copies into the slot after the
newest one and, once full, overwrites the oldest by advancing the start
offset (no element shifting, no reallocation).

Logical indexing: ring[0] is the oldest retained sample, ring[size - 1] the
newest.
"""

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np


@dataclass
class HistorySample:
    """One environment step: per-layer input codes, emitted action codes, feedback codes."""
    input_cs: List[np.ndarray]
    hidden_cs: np.ndarray
    feedback_cs: np.ndarray

    @classmethod
    def empty(cls, visible_columns: Sequence[int], hidden_columns: int) -> 'HistorySample':
        return cls(
            input_cs=[np.zeros(n, dtype=np.int32) for n in visible_columns],
            hidden_cs=np.zeros(hidden_columns, dtype=np.int32),
            feedback_cs=np.zeros(hidden_columns, dtype=np.int32)
        )

    def assign(self, input_cs: Sequence[np.ndarray], hidden_cs: np.ndarray, feedback_cs: np.ndarray) -> None:
        for dst, src in zip(self.input_cs, input_cs):
            dst[:] = src
        self.hidden_cs[:] = hidden_cs
        self.feedback_cs[:] = feedback_cs


class HistoryRing:
    """Index-based ring buffer of HistorySample slots.

    Attributes
    ----------
    capacity : int
        Number of pre-allocated slots
    """

    def __init__(self, capacity: int, visible_columns: Sequence[int], hidden_columns: int):
        if capacity < 1:
            raise ValueError(f"History capacity must be >= 1, got {capacity}")
        self.capacity = int(capacity)
        self._slots = [HistorySample.empty(visible_columns, hidden_columns) for _ in range(self.capacity)]
        self._start = 0
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def _physical(self, index: int) -> int:
        if not -self._size <= index < self._size:
            raise IndexError(f"History index {index} out of range for size {self._size}")
        if index < 0:
            index += self._size
        return (self._start + index) % self.capacity

    def __getitem__(self, index: int) -> HistorySample:
        return self._slots[self._physical(index)]

    def __iter__(self):
        for i in range(self._size):
            yield self._slots[(self._start + i) % self.capacity]

    def slots(self):
        """Every pre-allocated slot in logical order: retained samples, then unused slots."""
        for i in range(self.capacity):
            yield self._slots[(self._start + i) % self.capacity]

    def push(self, input_cs: Sequence[np.ndarray], hidden_cs: np.ndarray, feedback_cs: np.ndarray) -> HistorySample:
        """Copy a step into the ring, evicting the oldest sample when full. Returns the written slot."""
        if self._size == self.capacity:
            slot = self._slots[self._start]
            self._start = (self._start + 1) % self.capacity
        else:
            slot = self._slots[(self._start + self._size) % self.capacity]
            self._size += 1
        slot.assign(input_cs, hidden_cs, feedback_cs)
        return slot

    def clear(self) -> None:
        self._start = 0
        self._size = 0
