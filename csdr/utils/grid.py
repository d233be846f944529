"""Grid addressing, resolution projection, and receptive-field bounds.

Core utilities:
    - Flattening: index2(), index3() map grid coordinates to buffer offsets
    - Projection: project() maps a column in one grid to the center column of
      a differently-sized grid using a precomputed resolution ratio
    - Ratios: projection_ratios() and reverse_radii() precompute the constants
      an engine stores per visible layer
    - Receptive fields: receptive_field() clamps [center - r, center + r] to
      the visible extent; field_offset() gives the relative offset used by
      dense weight addressing

Invariants:
    - index2(pos, width) = y * width + x (row-major, x fastest)
    - Ratios are float32 and projection uses float32 arithmetic so that
      every engine (and any interoperating implementation) agrees on the
      receptive-field center of every column
    - Field offsets follow (x - lower.x) + (y - lower.y) * diameter

Used by:
    - csdr.weights: local receptive-field sparsity pattern
    - csdr.sparse_coder / csdr.actor: forward, backward and learn passes
"""

import math
from typing import NamedTuple, Sequence, Tuple

import numpy as np


class FieldBounds(NamedTuple):
    """Receptive field around a projected center.

    Attributes
    ----------
    lower : Tuple[int, int]
        Unclamped lower corner (center - radius); origin of field offsets
    iter_lower : Tuple[int, int]
        Lower corner clamped to the grid (inclusive)
    iter_upper : Tuple[int, int]
        Upper corner clamped to the grid (inclusive)
    """
    lower: Tuple[int, int]
    iter_lower: Tuple[int, int]
    iter_upper: Tuple[int, int]


def index2(pos: Sequence[int], width: int) -> int:
    """Flatten a 2D coordinate (x, y) into a row-major buffer index."""
    return pos[1] * width + pos[0]


def index3(pos: Sequence[int], size2: Sequence[int]) -> int:
    """Flatten a 3D coordinate (x, y, z) given the (width, height) of a slice."""
    return pos[2] * size2[0] * size2[1] + index2(pos, size2[0])


def num_columns(size: Sequence[int]) -> int:
    """Number of columns (width * height) of a grid extent."""
    return int(size[0]) * int(size[1])


def projection_ratios(
    from_size: Sequence[int],
    to_size: Sequence[int]
) -> Tuple[float, float]:
    """Compute the float32 ratio that maps coordinates of one grid onto another.

    Parameters
    ----------
    from_size : Sequence[int]
        Extent (w, h, ...) of the source grid
    to_size : Sequence[int]
        Extent (w, h, ...) of the destination grid

    Returns
    -------
    Tuple[float, float]
        (to_w / from_w, to_h / from_h), rounded to float32
    """
    rx = np.float32(to_size[0]) / np.float32(from_size[0])
    ry = np.float32(to_size[1]) / np.float32(from_size[1])
    return float(rx), float(ry)


def project(pos: Sequence[int], ratio: Sequence[float]) -> Tuple[int, int]:
    """Project a column coordinate into another grid.

    Parameters
    ----------
    pos : Sequence[int]
        Column (x, y) in the source grid
    ratio : Sequence[float]
        Ratio from projection_ratios(source, destination)

    Returns
    -------
    Tuple[int, int]
        floor(pos * ratio + ratio * 0.5) per axis, evaluated in float32
    """
    half = np.float32(0.5)
    rx = np.float32(ratio[0])
    ry = np.float32(ratio[1])
    x = np.float32(pos[0]) * rx + rx * half
    y = np.float32(pos[1]) * ry + ry * half
    return int(math.floor(x)), int(math.floor(y))


def reverse_radii(visible_to_hidden: Sequence[float], radius: int) -> Tuple[int, int]:
    """Search radius (in hidden columns) bounding every field covering a visible column.

    Computed as ceil(ratio * radius) + 1 per axis, so a backward pass never
    needs to scan the whole hidden grid.
    """
    rx = int(math.ceil(np.float32(visible_to_hidden[0]) * np.float32(radius))) + 1
    ry = int(math.ceil(np.float32(visible_to_hidden[1]) * np.float32(radius))) + 1
    return rx, ry


def receptive_field(
    center: Sequence[int],
    radius: int,
    extent: Sequence[int]
) -> FieldBounds:
    """Bounds of the (2r+1)^2 field around center, clamped to [0, extent - 1]."""
    lower = (center[0] - radius, center[1] - radius)
    iter_lower = (max(0, lower[0]), max(0, lower[1]))
    iter_upper = (
        min(int(extent[0]) - 1, center[0] + radius),
        min(int(extent[1]) - 1, center[1] + radius)
    )
    return FieldBounds(lower, iter_lower, iter_upper)


def field_offset(pos: Sequence[int], lower: Sequence[int], diameter: int) -> int:
    """Relative offset of pos inside a field whose unclamped corner is lower."""
    return (pos[0] - lower[0]) + (pos[1] - lower[1]) * diameter


def in_bounds(pos: Sequence[int], lower: Sequence[int], upper: Sequence[int]) -> bool:
    """True if lower <= pos < upper on both axes (upper exclusive)."""
    return lower[0] <= pos[0] < upper[0] and lower[1] <= pos[1] < upper[1]


def field_columns(bounds: FieldBounds, width: int, diameter: int) -> Tuple[np.ndarray, np.ndarray]:
    """Enumerate a clamped field as (flat column indices, field offsets).

    Iteration order is outer x, inner y. Every pass that revisits a field uses
    this helper so the enumeration order never drifts between passes.

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        int64 arrays of equal length: index2 of each visible column and its
        field offset relative to bounds.lower
    """
    xs = np.arange(bounds.iter_lower[0], bounds.iter_upper[0] + 1, dtype=np.int64)
    ys = np.arange(bounds.iter_lower[1], bounds.iter_upper[1] + 1, dtype=np.int64)
    gx, gy = np.meshgrid(xs, ys, indexing='ij')
    gx = gx.ravel()
    gy = gy.ravel()
    columns = gy * width + gx
    offsets = (gx - bounds.lower[0]) + (gy - bounds.lower[1]) * diameter
    return columns, offsets
