"""Compressed (CSR) weights with one-hot dot products and updates.

Rows are hidden units, columns are visible units:
    row    = hidden_column * hidden_depth + hidden_code
    column = visible_column * visible_depth + visible_code

so the codes of one hidden column occupy consecutive rows and the codes of
one visible column occupy consecutive matrix columns. Against a one-hot
input CSDR only the entry whose code matches the active input code of its
visible column contributes; multiply_one_hot() and delta_one_hot() touch
exactly the non-zeros of the requested rows.

Serialized layout: rows (i32), columns (i32), values buffer (f32),
row ranges buffer (i32), column indices buffer (i32).
"""

import logging
from typing import BinaryIO, Sequence

import numpy as np

from csdr.utils import grid
from csdr.utils import serialization as ser
from .base import WeightStore

logger = logging.getLogger(__name__)


class SparseMatrix(WeightStore):
    """CSR weight matrix of one visible layer onto a hidden grid.

    Attributes
    ----------
    rows : int
        Number of hidden units
    columns : int
        Number of visible units
    one_hot_size : int
        Visible depth (codes per visible column)
    row_ranges : np.ndarray
        int32, length rows + 1; non-zeros of row r live in [row_ranges[r], row_ranges[r + 1])
    column_indices : np.ndarray
        int32 visible unit of every non-zero
    """

    def __init__(
        self,
        rows: int,
        columns: int,
        values: np.ndarray,
        row_ranges: np.ndarray,
        column_indices: np.ndarray,
        one_hot_size: int
    ):
        self.rows = int(rows)
        self.columns = int(columns)
        self.one_hot_size = int(one_hot_size)
        self._values = np.ascontiguousarray(values, dtype=np.float32)
        self.row_ranges = np.ascontiguousarray(row_ranges, dtype=np.int32)
        self.column_indices = np.ascontiguousarray(column_indices, dtype=np.int32)

        if self.row_ranges.size != self.rows + 1:
            raise ValueError(f"row_ranges must have {self.rows + 1} entries, got {self.row_ranges.size}")
        nnz = int(self.row_ranges[-1]) if self.row_ranges.size else 0
        if self._values.size != nnz or self.column_indices.size != nnz:
            raise ValueError(
                f"Non-zero count mismatch: row_ranges says {nnz}, "
                f"values={self._values.size}, column_indices={self.column_indices.size}"
            )
        if np.any(np.diff(self.row_ranges) < 0):
            raise ValueError("row_ranges must be non-decreasing")
        if nnz and (self.column_indices.min() < 0 or self.column_indices.max() >= self.columns):
            raise ValueError(f"column_indices must lie in [0, {self.columns})")

        self._row_ids = np.repeat(np.arange(self.rows, dtype=np.int64), np.diff(self.row_ranges))
        self._visible_columns = self.column_indices.astype(np.int64) // self.one_hot_size
        self._visible_codes = self.column_indices.astype(np.int64) % self.one_hot_size

    @classmethod
    def init_local_rf(
        cls,
        visible_size: Sequence[int],
        hidden_size: Sequence[int],
        radius: int
    ) -> 'SparseMatrix':
        """Sparsity pattern of local receptive fields, all values zero.

        Every hidden code of a hidden column connects to every code of every
        visible column inside the clamped field around its projected center.
        """
        visible_size = tuple(int(v) for v in visible_size)
        hidden_size = tuple(int(v) for v in hidden_size)
        diameter = 2 * radius + 1
        hidden_to_visible = grid.projection_ratios(hidden_size, visible_size)
        vz = visible_size[2]
        hz = hidden_size[2]
        codes = np.arange(vz, dtype=np.int64)

        per_row = []
        lengths = []
        for hidden_column in range(grid.num_columns(hidden_size)):
            hx = hidden_column % hidden_size[0]
            hy = hidden_column // hidden_size[0]
            center = grid.project((hx, hy), hidden_to_visible)
            bounds = grid.receptive_field(center, radius, visible_size)
            visible_columns, _ = grid.field_columns(bounds, visible_size[0], diameter)
            row_columns = (visible_columns[:, None] * vz + codes[None, :]).ravel()
            for _ in range(hz):
                per_row.append(row_columns)
                lengths.append(row_columns.size)

        rows = len(per_row)
        row_ranges = np.zeros(rows + 1, dtype=np.int64)
        np.cumsum(lengths, out=row_ranges[1:])
        column_indices = np.concatenate(per_row) if per_row else np.zeros(0, dtype=np.int64)
        values = np.zeros(column_indices.size, dtype=np.float32)

        logger.debug("Local RF matrix: %d rows, %d non-zeros", rows, values.size)
        return cls(rows, grid.num_columns(visible_size) * vz, values, row_ranges, column_indices, vz)

    def counts(self, row: int) -> int:
        """Number of non-zeros in a row."""
        return int(self.row_ranges[row + 1] - self.row_ranges[row])

    def multiply_one_hot_rows(self, input_cs: np.ndarray, first_row: int, num_rows: int) -> np.ndarray:
        """Dot products of consecutive rows with a one-hot input CSDR, shape (num_rows,)."""
        start = int(self.row_ranges[first_row])
        end = int(self.row_ranges[first_row + num_rows])
        active = self._visible_codes[start:end] == input_cs[self._visible_columns[start:end]]
        contrib = np.where(active, self._values[start:end], np.float32(0.0))
        sums = np.bincount(self._row_ids[start:end] - first_row, weights=contrib, minlength=num_rows)
        return sums.astype(np.float32)

    def multiply_one_hot(self, input_cs: np.ndarray, row: int) -> float:
        """Dot product of one row with a one-hot input CSDR."""
        return float(self.multiply_one_hot_rows(input_cs, row, 1)[0])

    def delta_one_hot(self, input_cs: np.ndarray, delta: float, row: int) -> None:
        """Add delta to the non-zeros of a row selected by a one-hot input CSDR."""
        start = int(self.row_ranges[row])
        end = int(self.row_ranges[row + 1])
        active = self._visible_codes[start:end] == input_cs[self._visible_columns[start:end]]
        self._values[start + np.flatnonzero(active)] += np.float32(delta)

    def support_for(self, unit: int, input_cs: np.ndarray) -> float:
        return self.multiply_one_hot(input_cs, unit)

    def apply_delta(self, unit: int, input_cs: np.ndarray, delta: float) -> None:
        self.delta_one_hot(input_cs, delta, unit)

    @property
    def values(self) -> np.ndarray:
        return self._values

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def write_to_stream(self, stream: BinaryIO) -> None:
        ser.write_int(stream, self.rows)
        ser.write_int(stream, self.columns)
        ser.write_buffer(stream, self._values)
        ser.write_buffer(stream, self.row_ranges)
        ser.write_buffer(stream, self.column_indices)

    @classmethod
    def read_from_stream(cls, stream: BinaryIO, one_hot_size: int) -> 'SparseMatrix':
        """Read a matrix written by write_to_stream().

        Raises
        ------
        CorruptStateError
            If the stream is truncated or the buffers are inconsistent
        """
        rows = ser.read_int(stream, "matrix rows")
        columns = ser.read_int(stream, "matrix columns")
        ser.require(rows >= 0 and columns >= 0, f"Invalid matrix shape ({rows}, {columns})")
        values = ser.read_buffer(stream, ser.FLOAT32, what="matrix values")
        row_ranges = ser.read_buffer(stream, ser.INT32, expected=rows + 1, what="matrix row ranges")
        column_indices = ser.read_buffer(stream, ser.INT32, expected=values.size, what="matrix column indices")
        try:
            return cls(rows, columns, values, row_ranges, column_indices, one_hot_size)
        except ValueError as e:
            raise ser.CorruptStateError(f"Inconsistent sparse matrix: {e}") from e

    def __repr__(self) -> str:
        return f"SparseMatrix(rows={self.rows}, columns={self.columns}, nnz={self._values.size})"
