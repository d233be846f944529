"""Sparse coder: input CSDRs → hidden CSDR by iterative explaining-away.

Each activation runs explain_iters rounds of:
    1. Forward (per hidden column): support of every hidden code is the sum of
       the weights selected by the input codes in its receptive field. On the
       first round this is the raw activation; later rounds add
       (input support - reconstruction support), so input that the current
       code already explains stops pulling the column. The arg-max code
       (lowest index on ties) becomes the hidden code.
    2. Backward (per visible column, per layer): average the weights that
       every covering hidden column's active code assigns to each visible
       code; the arg-max becomes the reconstruction code read by the next
       forward round.

Learning (per visible column, per layer) moves each covering weight by
alpha * (target - average support), target = 1 for the observed input code
and 0 otherwise. Averages divide by max(1, count).

Invariants:
    - Forward writes only its own hidden column; backward/learn write only
      slots addressed by their own visible column, so every pass can be
      dispatched in parallel
    - Randomness is used only by create_random()
    - Persisted state excludes activations and reconstructions (rebuilt zeroed)

Usage:
    from csdr.sparse_coder import SparseCoder
    from csdr.utils import ComputeSystem, VisibleLayerDesc

    cs = ComputeSystem(seed=7)
    coder = SparseCoder.create_random(cs, (4, 4, 16), [VisibleLayerDesc(size=(4, 4, 16), radius=2)])
    coder.step(cs, [input_cs], learn_enabled=True)
    hidden = coder.hidden_cs
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Sequence, Tuple, Union

import numpy as np

from csdr.utils import fs, grid, validators
from csdr.utils import serialization as ser
from csdr.utils.compute import ComputeSystem
from csdr.utils.validators import SparseCoderConfig, VisibleLayerDesc
from csdr.weights import DenseFieldWeights

logger = logging.getLogger(__name__)


@dataclass
class CoderVisibleLayer:
    """Per-layer state owned by a SparseCoder.

    Attributes
    ----------
    weights : DenseFieldWeights
        Receptive-field weights onto the hidden grid
    recon_cs : np.ndarray
        int32 reconstruction code per visible column (scratch, not persisted)
    """
    weights: DenseFieldWeights
    recon_cs: np.ndarray

    @property
    def visible_to_hidden(self) -> Tuple[float, float]:
        return self.weights.visible_to_hidden

    @property
    def hidden_to_visible(self) -> Tuple[float, float]:
        return self.weights.hidden_to_visible

    @property
    def reverse_radii(self) -> Tuple[int, int]:
        return self.weights.reverse_radii


class SparseCoder:
    """Columnar sparse coding layer.

    Attributes
    ----------
    alpha : float
        Learning rate of the reconstruction delta rule
    explain_iters : int
        Explaining-away rounds per activation
    """

    def __init__(
        self,
        hidden_size: Sequence[int],
        visible_layer_descs: Sequence[VisibleLayerDesc],
        layers: List[CoderVisibleLayer],
        alpha: float = 0.1,
        explain_iters: int = 4
    ):
        if len(layers) != len(visible_layer_descs):
            raise ValueError("One visible layer state is required per descriptor")
        if explain_iters < 1:
            raise ValueError(f"explain_iters must be >= 1, got {explain_iters}")
        self._hidden_size = tuple(int(v) for v in hidden_size)
        self._descs = list(visible_layer_descs)
        self._layers = layers
        self.alpha = float(alpha)
        self.explain_iters = int(explain_iters)

        num_columns = grid.num_columns(self._hidden_size)
        self._hidden_cs = np.zeros(num_columns, dtype=np.int32)
        self._hidden_activations = np.zeros((num_columns, self._hidden_size[2]), dtype=np.float32)

    @classmethod
    def create_random(
        cls,
        cs: ComputeSystem,
        hidden_size: Sequence[int],
        visible_layer_descs: Sequence[VisibleLayerDesc],
        alpha: float = 0.1,
        explain_iters: int = 4
    ) -> 'SparseCoder':
        """Allocate every buffer and draw weights uniform in [0.99, 1.0).

        Parameters
        ----------
        cs : ComputeSystem
            Supplies the initialization stream
        hidden_size : Sequence[int]
            Hidden extent (w, h, depth)
        visible_layer_descs : Sequence[VisibleLayerDesc]
            One descriptor per input CSDR

        Raises
        ------
        ValueError
            If an extent is non-positive or no layer is given
        """
        hidden_size = validators.SparseCoderConfig(
            hidden_size=tuple(hidden_size),
            visible_layers=list(visible_layer_descs),
            alpha=alpha,
            explain_iters=explain_iters
        ).hidden_size

        rng = cs.next_stream()
        layers = []
        for desc in visible_layer_descs:
            weights = DenseFieldWeights.random(hidden_size, desc.size, desc.radius, rng)
            layers.append(CoderVisibleLayer(weights, np.zeros(desc.num_columns, dtype=np.int32)))

        coder = cls(hidden_size, visible_layer_descs, layers, alpha, explain_iters)
        logger.info(
            "Created sparse coder: hidden=%s, layers=%d, weights=%d",
            coder.hidden_size, len(layers), sum(l.weights.values.size for l in layers)
        )
        return coder

    @classmethod
    def from_config(cls, cs: ComputeSystem, cfg: SparseCoderConfig) -> 'SparseCoder':
        return cls.create_random(cs, cfg.hidden_size, cfg.visible_layers, cfg.alpha, cfg.explain_iters)

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    def _forward(
        self,
        pos: Tuple[int, int],
        input_cs: List[np.ndarray],
        first_iter: bool
    ) -> None:
        hidden_column = grid.index2(pos, self._hidden_size[0])

        input_support = np.zeros(self._hidden_size[2], dtype=np.float32)
        recon_support = np.zeros(self._hidden_size[2], dtype=np.float32)
        for layer, layer_cs in zip(self._layers, input_cs):
            input_support += layer.weights.column_support(hidden_column, layer_cs)
            if not first_iter:
                recon_support += layer.weights.column_support(hidden_column, layer.recon_cs)

        activations = self._hidden_activations[hidden_column]
        if first_iter:
            activations[:] = input_support
        else:
            activations += input_support - recon_support

        self._hidden_cs[hidden_column] = int(np.argmax(activations))

    def _backward(self, pos: Tuple[int, int], vli: int) -> None:
        layer = self._layers[vli]
        visible_column = grid.index2(pos, self._descs[vli].size[0])

        support, count = layer.weights.reverse_support(visible_column, self._hidden_cs)
        support /= max(1, count)

        layer.recon_cs[visible_column] = int(np.argmax(support))

    def _learn(self, pos: Tuple[int, int], input_cs: List[np.ndarray], vli: int) -> None:
        layer = self._layers[vli]
        visible_column = grid.index2(pos, self._descs[vli].size[0])

        support, count = layer.weights.reverse_support(visible_column, self._hidden_cs)
        support /= max(1, count)

        target = np.zeros_like(support)
        target[input_cs[vli][visible_column]] = 1.0

        layer.weights.add_reverse(visible_column, self._hidden_cs, np.float32(self.alpha) * (target - support))

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def activate(self, cs: ComputeSystem, input_cs: Sequence[np.ndarray]) -> np.ndarray:
        """Sparse-code the inputs into hidden_cs (no weight change).

        Raises
        ------
        CSDRShapeError
            If input_cs does not match the visible layer descriptors
        """
        input_cs = validators.check_input_cs(input_cs, self._descs)
        hidden_extent = self._hidden_size[:2]

        for it in range(self.explain_iters):
            first_iter = it == 0
            cs.run_over_grid_2d(
                hidden_extent,
                lambda pos, stream: self._forward(pos, input_cs, first_iter)
            )
            for vli, desc in enumerate(self._descs):
                cs.run_over_grid_2d(
                    desc.size[:2],
                    lambda pos, stream, vli=vli: self._backward(pos, vli)
                )

        logger.debug("Sparse coder activated (%d explain iterations)", self.explain_iters)
        return self.hidden_cs

    def learn(self, cs: ComputeSystem, input_cs: Sequence[np.ndarray]) -> None:
        """Move weights toward reconstructing input_cs from the current hidden_cs.

        Raises
        ------
        CSDRShapeError
            If input_cs does not match the visible layer descriptors
        """
        input_cs = validators.check_input_cs(input_cs, self._descs)
        for vli, desc in enumerate(self._descs):
            cs.run_over_grid_2d(
                desc.size[:2],
                lambda pos, stream, vli=vli: self._learn(pos, input_cs, vli)
            )

    def step(self, cs: ComputeSystem, input_cs: Sequence[np.ndarray], learn_enabled: bool = True) -> np.ndarray:
        """Activate, then learn if enabled. Returns hidden_cs."""
        self.activate(cs, input_cs)
        if learn_enabled:
            self.learn(cs, input_cs)
        return self.hidden_cs

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def hidden_size(self) -> Tuple[int, int, int]:
        return self._hidden_size

    @property
    def hidden_cs(self) -> np.ndarray:
        """Hidden CSDR (read-only view)."""
        view = self._hidden_cs.view()
        view.flags.writeable = False
        return view

    @property
    def hidden_activations(self) -> np.ndarray:
        """Running activations, shape (hidden columns, hidden depth) (read-only view)."""
        view = self._hidden_activations.view()
        view.flags.writeable = False
        return view

    @property
    def num_visible_layers(self) -> int:
        return len(self._layers)

    def visible_layer_desc(self, index: int) -> VisibleLayerDesc:
        return self._descs[index]

    def visible_layer(self, index: int) -> CoderVisibleLayer:
        return self._layers[index]

    def weights(self, index: int) -> DenseFieldWeights:
        return self._layers[index].weights

    def recon_cs(self, index: int) -> np.ndarray:
        """Reconstruction CSDR of a visible layer from the last backward pass."""
        return self._layers[index].recon_cs.copy()

    def reconstruction_error(self, input_cs: Sequence[np.ndarray]) -> int:
        """Number of visible columns whose reconstruction differs from input, over all layers."""
        input_cs = validators.check_input_cs(input_cs, self._descs)
        return int(sum(np.count_nonzero(l.recon_cs != c) for l, c in zip(self._layers, input_cs)))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def write_to_stream(self, stream: BinaryIO) -> None:
        ser.write_ints(stream, self._hidden_size)
        ser.write_float(stream, self.alpha)
        ser.write_int(stream, self.explain_iters)
        ser.write_buffer(stream, self._hidden_cs)

        ser.write_int(stream, len(self._layers))
        for desc, layer in zip(self._descs, self._layers):
            ser.write_ints(stream, (*desc.size, desc.radius))
            ser.write_floats(stream, layer.visible_to_hidden)
            ser.write_floats(stream, layer.hidden_to_visible)
            ser.write_ints(stream, layer.reverse_radii)
            ser.write_buffer(stream, layer.weights.values)

    @classmethod
    def read_from_stream(cls, stream: BinaryIO) -> 'SparseCoder':
        """Rebuild a coder written by write_to_stream().

        Raises
        ------
        CorruptStateError
            If the stream is truncated or inconsistent
        """
        hidden_size = ser.read_ints(stream, 3, "hidden size")
        ser.require(all(v >= 1 for v in hidden_size), f"Invalid hidden size {hidden_size}")
        alpha = ser.read_float(stream, "alpha")
        explain_iters = ser.read_int(stream, "explain_iters")
        ser.require(explain_iters >= 1, f"Invalid explain_iters {explain_iters}")
        num_columns = grid.num_columns(hidden_size)
        hidden_cs = ser.read_buffer(stream, ser.INT32, expected=num_columns, what="hidden codes")
        ser.require(
            hidden_cs.size == 0 or (hidden_cs.min() >= 0 and hidden_cs.max() < hidden_size[2]),
            "Hidden codes out of range"
        )

        num_layers = ser.read_int(stream, "visible layer count")
        ser.require(num_layers >= 1, f"Invalid visible layer count {num_layers}")

        descs = []
        layers = []
        for vli in range(num_layers):
            fields = ser.read_ints(stream, 4, f"layer {vli} descriptor")
            try:
                desc = VisibleLayerDesc(size=fields[:3], radius=fields[3])
            except ValueError as e:
                raise ser.CorruptStateError(f"Invalid descriptor for layer {vli}: {e}") from e
            visible_to_hidden = ser.read_floats(stream, 2, f"layer {vli} visible_to_hidden")
            hidden_to_visible = ser.read_floats(stream, 2, f"layer {vli} hidden_to_visible")
            reverse = ser.read_ints(stream, 2, f"layer {vli} reverse radii")

            expected = (2 * desc.radius + 1) ** 2 * desc.size[2] * hidden_size[2] * num_columns
            values = ser.read_buffer(stream, ser.FLOAT32, expected=expected, what=f"layer {vli} weights")
            weights = DenseFieldWeights(hidden_size, desc.size, desc.radius, values)
            ser.require(
                tuple(np.float32(v) for v in visible_to_hidden) == tuple(np.float32(v) for v in weights.visible_to_hidden)
                and tuple(np.float32(v) for v in hidden_to_visible) == tuple(np.float32(v) for v in weights.hidden_to_visible)
                and tuple(reverse) == tuple(weights.reverse_radii),
                f"Projection constants of layer {vli} do not match its extents"
            )

            descs.append(desc)
            layers.append(CoderVisibleLayer(weights, np.zeros(desc.num_columns, dtype=np.int32)))

        coder = cls(hidden_size, descs, layers, alpha, explain_iters)
        coder._hidden_cs[:] = hidden_cs
        return coder

    def save(self, path: Union[str, Path]) -> None:
        """Write state atomically to path."""
        buf = io.BytesIO()
        self.write_to_stream(buf)
        fs.atomic_write_bytes(path, buf.getvalue())
        logger.info("Saved sparse coder to %s (%d bytes)", path, buf.tell())

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'SparseCoder':
        """Read state from path.

        Raises
        ------
        FileNotFoundError
            If path doesn't exist
        CorruptStateError
            If the file is truncated or malformed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Sparse coder state not found: {path}")
        with open(path, 'rb') as f:
            coder = cls.read_from_stream(f)
            trailing = f.read(1)
        ser.require(not trailing, f"Trailing data after sparse coder state in {path}")
        logger.info("Loaded sparse coder from %s", path)
        return coder

    def __repr__(self) -> str:
        return (f"SparseCoder(hidden={self._hidden_size}, layers={len(self._layers)}, "
                f"alpha={self.alpha}, explain_iters={self.explain_iters})")
