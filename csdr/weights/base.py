"""Capability interface shared by the dense and compressed weight stores."""

from abc import ABC, abstractmethod

import numpy as np


class WeightStore(ABC):
    """Weights of one visible layer onto every hidden unit.

    A hidden unit is one (column, code) pair of the hidden grid. Both
    operations touch only the receptive field of that unit, never the whole
    buffer.
    """

    @abstractmethod
    def support_for(self, unit: int, input_cs: np.ndarray) -> float:
        """Sum of the weights selected by a one-hot input CSDR for one hidden unit."""

    @abstractmethod
    def apply_delta(self, unit: int, input_cs: np.ndarray, delta: float) -> None:
        """Add delta to every weight selected by a one-hot input CSDR for one hidden unit."""

    @property
    @abstractmethod
    def values(self) -> np.ndarray:
        """Flat float32 buffer of every stored weight (persisted verbatim)."""
