"""Dense local receptive-field weights addressed by explicit offsets.

Layout (flat float32 buffer):
    index = hidden_column + hidden_code * H + row * H * Z
    row   = field_offset + visible_code * D^2

where H = hidden columns, Z = hidden depth, D = 2 * radius + 1 and
field_offset = (vx - lower.x) + (vy - lower.y) * D relative to the
unclamped lower corner of the hidden column's field. Internally the buffer is
viewed as (rows, Z, H) so a whole column of hidden codes (forward pass) or a
whole column of visible codes (backward/learn) is one fancy-indexed read.

Geometry is precomputed once per instance:
    - field(hidden_column): visible columns and their field offsets
    - covering(visible_column): hidden columns whose field contains it and the
      offset of the visible column inside each of those fields, found by
      scanning only the reverse radii around the projected center
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from csdr.utils import grid
from .base import WeightStore

logger = logging.getLogger(__name__)


class DenseFieldWeights(WeightStore):
    """Dense weights of one visible layer onto a hidden grid.

    Attributes
    ----------
    hidden_size : Tuple[int, int, int]
        Hidden extent (w, h, depth)
    visible_size : Tuple[int, int, int]
        Visible extent (w, h, depth)
    radius : int
        Receptive radius in visible columns
    diameter : int
        2 * radius + 1
    hidden_to_visible, visible_to_hidden : Tuple[float, float]
        float32 projection ratios
    reverse_radii : Tuple[int, int]
        Hidden-column search radius used by covering()
    """

    def __init__(
        self,
        hidden_size: Sequence[int],
        visible_size: Sequence[int],
        radius: int,
        values: Optional[np.ndarray] = None
    ):
        self.hidden_size = tuple(int(v) for v in hidden_size)
        self.visible_size = tuple(int(v) for v in visible_size)
        self.radius = int(radius)
        self.diameter = 2 * self.radius + 1
        self.area = self.diameter * self.diameter

        self.num_hidden_columns = grid.num_columns(self.hidden_size)
        self.num_visible_columns = grid.num_columns(self.visible_size)
        self.num_rows = self.area * self.visible_size[2]

        size = self.num_rows * self.hidden_size[2] * self.num_hidden_columns
        if values is None:
            values = np.zeros(size, dtype=np.float32)
        values = np.asarray(values, dtype=np.float32)
        if values.size != size:
            raise ValueError(f"Dense weights need {size} values, got {values.size}")
        self._values = np.ascontiguousarray(values.ravel())
        self._view = self._values.reshape(self.num_rows, self.hidden_size[2], self.num_hidden_columns)

        self.hidden_to_visible = grid.projection_ratios(self.hidden_size, self.visible_size)
        self.visible_to_hidden = grid.projection_ratios(self.visible_size, self.hidden_size)
        self.reverse_radii = grid.reverse_radii(self.visible_to_hidden, self.radius)

        self._fields = [self._build_field(c) for c in range(self.num_hidden_columns)]
        self._covering = [self._build_covering(c) for c in range(self.num_visible_columns)]

    @classmethod
    def random(
        cls,
        hidden_size: Sequence[int],
        visible_size: Sequence[int],
        radius: int,
        rng: np.random.Generator,
        low: float = 0.99,
        high: float = 1.0
    ) -> 'DenseFieldWeights':
        """Weights drawn i.i.d. uniform in [low, high)."""
        store = cls(hidden_size, visible_size, radius)
        store._values[:] = rng.uniform(low, high, size=store._values.size).astype(np.float32)
        return store

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def _build_field(self, hidden_column: int) -> Tuple[np.ndarray, np.ndarray]:
        hx = hidden_column % self.hidden_size[0]
        hy = hidden_column // self.hidden_size[0]
        center = grid.project((hx, hy), self.hidden_to_visible)
        bounds = grid.receptive_field(center, self.radius, self.visible_size)
        return grid.field_columns(bounds, self.visible_size[0], self.diameter)

    def _build_covering(self, visible_column: int) -> Tuple[np.ndarray, np.ndarray]:
        vx = visible_column % self.visible_size[0]
        vy = visible_column // self.visible_size[0]
        center = grid.project((vx, vy), self.visible_to_hidden)
        rx, ry = self.reverse_radii

        columns: List[int] = []
        offsets: List[int] = []
        for x in range(max(0, center[0] - rx), min(self.hidden_size[0] - 1, center[0] + rx) + 1):
            for y in range(max(0, center[1] - ry), min(self.hidden_size[1] - 1, center[1] + ry) + 1):
                field_center = grid.project((x, y), self.hidden_to_visible)
                lower = (field_center[0] - self.radius, field_center[1] - self.radius)
                upper = (field_center[0] + self.radius + 1, field_center[1] + self.radius + 1)
                if grid.in_bounds((vx, vy), lower, upper):
                    columns.append(grid.index2((x, y), self.hidden_size[0]))
                    offsets.append(grid.field_offset((vx, vy), lower, self.diameter))

        return np.asarray(columns, dtype=np.int64), np.asarray(offsets, dtype=np.int64)

    def field(self, hidden_column: int) -> Tuple[np.ndarray, np.ndarray]:
        """(visible columns, field offsets) of a hidden column's receptive field."""
        return self._fields[hidden_column]

    def covering(self, visible_column: int) -> Tuple[np.ndarray, np.ndarray]:
        """(hidden columns, field offsets) of every field containing a visible column."""
        return self._covering[visible_column]

    def address(self, hidden_column: int, hidden_code: int, offset: int, visible_code: int) -> int:
        """Flat buffer index of one weight."""
        row = offset + visible_code * self.area
        return hidden_column + hidden_code * self.num_hidden_columns + row * self.hidden_size[2] * self.num_hidden_columns

    # ------------------------------------------------------------------
    # Access patterns
    # ------------------------------------------------------------------

    def column_support(self, hidden_column: int, input_cs: np.ndarray) -> np.ndarray:
        """Feed-forward support of every hidden code of one column, shape (Z,)."""
        columns, offsets = self._fields[hidden_column]
        rows = offsets + input_cs[columns].astype(np.int64) * self.area
        return self._view[rows, :, hidden_column].sum(axis=0, dtype=np.float32)

    def reverse_support(self, visible_column: int, hidden_cs: np.ndarray) -> Tuple[np.ndarray, int]:
        """Summed support of every visible code at one visible column.

        Returns
        -------
        Tuple[np.ndarray, int]
            (support per visible code, shape (visible depth,), number of
            covering hidden columns)
        """
        columns, offsets = self._covering[visible_column]
        if columns.size == 0:
            return np.zeros(self.visible_size[2], dtype=np.float32), 0
        codes = np.arange(self.visible_size[2], dtype=np.int64)
        rows = offsets[:, None] + codes[None, :] * self.area
        hidden_codes = hidden_cs[columns].astype(np.int64)
        block = self._view[rows, hidden_codes[:, None], columns[:, None]]
        return block.sum(axis=0, dtype=np.float32), int(columns.size)

    def add_reverse(self, visible_column: int, hidden_cs: np.ndarray, deltas: np.ndarray) -> None:
        """Add deltas[vc] to the weight of every covering hidden column for each visible code."""
        columns, offsets = self._covering[visible_column]
        if columns.size == 0:
            return
        codes = np.arange(self.visible_size[2], dtype=np.int64)
        rows = offsets[:, None] + codes[None, :] * self.area
        hidden_codes = hidden_cs[columns].astype(np.int64)
        # (hidden column, visible code) pairs are unique, so plain += is safe
        self._view[rows, hidden_codes[:, None], columns[:, None]] += deltas.astype(np.float32)[None, :]

    def support_for(self, unit: int, input_cs: np.ndarray) -> float:
        hidden_column = unit % self.num_hidden_columns
        hidden_code = unit // self.num_hidden_columns
        columns, offsets = self._fields[hidden_column]
        rows = offsets + input_cs[columns].astype(np.int64) * self.area
        return float(self._view[rows, hidden_code, hidden_column].sum(dtype=np.float32))

    def apply_delta(self, unit: int, input_cs: np.ndarray, delta: float) -> None:
        hidden_column = unit % self.num_hidden_columns
        hidden_code = unit // self.num_hidden_columns
        columns, offsets = self._fields[hidden_column]
        rows = offsets + input_cs[columns].astype(np.int64) * self.area
        self._view[rows, hidden_code, hidden_column] += np.float32(delta)

    @property
    def values(self) -> np.ndarray:
        return self._values

    def __repr__(self) -> str:
        return (f"DenseFieldWeights(hidden={self.hidden_size}, visible={self.visible_size}, "
                f"radius={self.radius}, size={self._values.size})")
