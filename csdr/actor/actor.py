"""Actor-critic decision layer: greedy action codes with PAL experience replay.

The value of action code c in hidden column j is the sum, over visible layers,
of the CSR weights of row j * depth + c selected by the one-hot input codes.
activate() emits the arg-max code per column (lowest index on ties) and never
mutates weights.

step() records (input codes, emitted action codes, feedback codes) into the
history ring. Once at least 3 samples exist and learning is enabled it replays
history_iters random transitions (s_prev = ring[t], s = ring[t + 1]) and
applies the Persistent Advantage Learning update per hidden column:

    target  = action recorded at s_prev
    reward  = 1 if target equals s's feedback code else 0
    q, q'   = normalized value of target under s_prev / s inputs
    m, m'   = column max value under s_prev / s inputs
    dQ      = reward + gamma * m' - q
    dPAL    = max(dQ - gap * (m - q), dQ - gap * (m' - q'))
    w      += alpha * dPAL  (target row, weights selected by s_prev inputs)

Values are normalized by the per-column support count, clamped to >= 1.

Feedback alignment: because the reward for the action stored at ring[t] is read
from ring[t + 1], callers pass with each step the feedback for the *previous*
step's action (see scripts/run_copy_task.py).

Usage:
    from csdr.actor import Actor

    actor = Actor.init_random(cs, (4, 4, 16), 64, [VisibleLayerDesc(size=(4, 4, 16), radius=2)])
    action = actor.activate(cs, [hidden_cs])
    actor.step(cs, [hidden_cs], action, feedback_cs, learn_enabled=True)
"""

import io
import logging
from pathlib import Path
from typing import BinaryIO, List, Sequence, Tuple, Union

import numpy as np

from csdr.utils import fs, grid, validators
from csdr.utils import serialization as ser
from csdr.utils.compute import ComputeSystem
from csdr.utils.validators import ActorConfig, VisibleLayerDesc
from csdr.weights import SparseMatrix
from .history import HistoryRing, HistorySample

logger = logging.getLogger(__name__)


class Actor:
    """Actor-critic layer over one or more categorical input grids.

    Attributes
    ----------
    alpha : float
        Value learning rate
    gamma : float
        Discount factor
    gap : float
        Advantage-gap scale
    history_iters : int
        Replay updates per step()
    """

    def __init__(
        self,
        hidden_size: Sequence[int],
        visible_layer_descs: Sequence[VisibleLayerDesc],
        weights: List[SparseMatrix],
        history_capacity: int,
        alpha: float = 0.02,
        gamma: float = 0.9,
        gap: float = 0.1,
        history_iters: int = 16
    ):
        if len(weights) != len(visible_layer_descs):
            raise ValueError("One weight matrix is required per visible layer descriptor")
        if history_iters < 0:
            raise ValueError(f"history_iters must be >= 0, got {history_iters}")
        self._hidden_size = tuple(int(v) for v in hidden_size)
        self._descs = list(visible_layer_descs)
        self._weights = weights
        # Hyperparameters are single precision, as persisted
        self.alpha = float(np.float32(alpha))
        self.gamma = float(np.float32(gamma))
        self.gap = float(np.float32(gap))
        self.history_iters = int(history_iters)

        num_columns = grid.num_columns(self._hidden_size)
        hz = self._hidden_size[2]
        for vli, (desc, matrix) in enumerate(zip(self._descs, self._weights)):
            if matrix.rows != num_columns * hz or matrix.columns != desc.num_columns * desc.size[2]:
                raise ValueError(
                    f"Weight matrix {vli} has shape ({matrix.rows}, {matrix.columns}), expected "
                    f"({num_columns * hz}, {desc.num_columns * desc.size[2]})"
                )

        self._hidden_cs = np.zeros(num_columns, dtype=np.int32)
        self._hidden_counts = np.zeros(num_columns, dtype=np.int32)
        for desc, matrix in zip(self._descs, self._weights):
            for column in range(num_columns):
                self._hidden_counts[column] += matrix.counts(column * hz) // desc.size[2]

        self._history = HistoryRing(history_capacity, [d.num_columns for d in self._descs], num_columns)

    @classmethod
    def init_random(
        cls,
        cs: ComputeSystem,
        hidden_size: Sequence[int],
        history_capacity: int,
        visible_layer_descs: Sequence[VisibleLayerDesc],
        alpha: float = 0.02,
        gamma: float = 0.9,
        gap: float = 0.1,
        history_iters: int = 16
    ) -> 'Actor':
        """Build local receptive-field matrices with weights uniform in [-0.0001, 0.0).

        Raises
        ------
        ValueError
            If an extent, capacity or hyperparameter is out of range
        """
        cfg = ActorConfig(
            hidden_size=tuple(hidden_size),
            visible_layers=list(visible_layer_descs),
            history_capacity=history_capacity,
            alpha=alpha,
            gamma=gamma,
            gap=gap,
            history_iters=history_iters
        )

        rng = cs.next_stream()
        weights = []
        for desc in cfg.visible_layers:
            matrix = SparseMatrix.init_local_rf(desc.size, cfg.hidden_size, desc.radius)
            matrix.values[:] = rng.uniform(-0.0001, 0.0, size=matrix.values.size).astype(np.float32)
            weights.append(matrix)

        actor = cls(
            cfg.hidden_size, cfg.visible_layers, weights, cfg.history_capacity,
            cfg.alpha, cfg.gamma, cfg.gap, cfg.history_iters
        )
        logger.info(
            "Created actor: hidden=%s, layers=%d, non-zeros=%d, history_capacity=%d",
            actor.hidden_size, len(weights), sum(m.values.size for m in weights), history_capacity
        )
        return actor

    @classmethod
    def from_config(cls, cs: ComputeSystem, cfg: ActorConfig) -> 'Actor':
        return cls.init_random(
            cs, cfg.hidden_size, cfg.history_capacity, cfg.visible_layers,
            cfg.alpha, cfg.gamma, cfg.gap, cfg.history_iters
        )

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    def _column_values(self, hidden_column: int, input_cs: Sequence[np.ndarray]) -> np.ndarray:
        hz = self._hidden_size[2]
        values = np.zeros(hz, dtype=np.float32)
        for matrix, layer_cs in zip(self._weights, input_cs):
            values += matrix.multiply_one_hot_rows(layer_cs, hidden_column * hz, hz)
        return values

    def _forward(self, pos: Tuple[int, int], input_cs: List[np.ndarray]) -> None:
        hidden_column = grid.index2(pos, self._hidden_size[0])
        self._hidden_cs[hidden_column] = int(np.argmax(self._column_values(hidden_column, input_cs)))

    def _learn(self, pos: Tuple[int, int], s: HistorySample, s_prev: HistorySample) -> None:
        hidden_column = grid.index2(pos, self._hidden_size[0])
        target = int(s_prev.hidden_cs[hidden_column])

        count = np.float32(max(1, int(self._hidden_counts[hidden_column])))
        values = self._column_values(hidden_column, s.input_cs) / count
        values_prev = self._column_values(hidden_column, s_prev.input_cs) / count

        max_value = values.max()
        max_value_prev = values_prev.max()
        next_q_target = values[target]
        q_target = values_prev[target]

        reward = np.float32(1.0 if target == int(s.feedback_cs[hidden_column]) else 0.0)
        gamma = np.float32(self.gamma)
        gap = np.float32(self.gap)

        # Single-precision throughout
        d_q = reward + gamma * max_value - q_target
        d_adv = d_q - gap * (max_value_prev - q_target)
        d_pal = max(d_adv, d_q - gap * (max_value - next_q_target))
        delta = np.float32(self.alpha) * d_pal

        row = hidden_column * self._hidden_size[2] + target
        for matrix, layer_cs in zip(self._weights, s_prev.input_cs):
            matrix.delta_one_hot(layer_cs, delta, row)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def activate(self, cs: ComputeSystem, input_cs: Sequence[np.ndarray]) -> np.ndarray:
        """Greedy action code per hidden column (pure read of the value function).

        Raises
        ------
        CSDRShapeError
            If input_cs does not match the visible layer descriptors
        """
        input_cs = validators.check_input_cs(input_cs, self._descs)
        cs.run_over_grid_2d(
            self._hidden_size[:2],
            lambda pos, stream: self._forward(pos, input_cs)
        )
        return self.hidden_cs

    def step(
        self,
        cs: ComputeSystem,
        input_cs: Sequence[np.ndarray],
        hidden_cs: np.ndarray,
        feedback_cs: np.ndarray,
        learn_enabled: bool = True
    ) -> None:
        """Record one environment step and, once 3 samples exist, replay history.

        Parameters
        ----------
        cs : ComputeSystem
            Dispatcher; also supplies the replay sampling stream
        input_cs : Sequence[np.ndarray]
            Input codes of this step, one CSDR per visible layer
        hidden_cs : np.ndarray
            Action codes emitted this step
        feedback_cs : np.ndarray
            Correct action codes for the previous step's action
        learn_enabled : bool
            If False, only record

        Raises
        ------
        CSDRShapeError
            If any CSDR does not match its grid; nothing is recorded
        """
        input_cs = validators.check_input_cs(input_cs, self._descs)
        hidden_cs = validators.check_csdr(hidden_cs, self._hidden_size, "hidden_cs")
        feedback_cs = validators.check_csdr(feedback_cs, self._hidden_size, "feedback_cs")

        self._history.push(input_cs, hidden_cs, feedback_cs)

        size = len(self._history)
        if not learn_enabled or size < 3 or self.history_iters == 0:
            return

        rng = cs.next_stream()
        draws = rng.integers(0, size - 1, size=self.history_iters)
        logger.debug("Actor replay: %d draws over %d samples", self.history_iters, size)

        for t in draws:
            s_prev = self._history[int(t)]
            s = self._history[int(t) + 1]
            cs.run_over_grid_2d(
                self._hidden_size[:2],
                lambda pos, stream: self._learn(pos, s, s_prev)
            )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def hidden_size(self) -> Tuple[int, int, int]:
        return self._hidden_size

    @property
    def hidden_cs(self) -> np.ndarray:
        """Action CSDR from the last activate() (read-only view)."""
        view = self._hidden_cs.view()
        view.flags.writeable = False
        return view

    @property
    def hidden_counts(self) -> np.ndarray:
        view = self._hidden_counts.view()
        view.flags.writeable = False
        return view

    @property
    def num_visible_layers(self) -> int:
        return len(self._weights)

    def visible_layer_desc(self, index: int) -> VisibleLayerDesc:
        return self._descs[index]

    @property
    def history_size(self) -> int:
        return len(self._history)

    @property
    def history_capacity(self) -> int:
        return self._history.capacity

    def history_sample(self, index: int) -> HistorySample:
        """Sample at logical index (0 = oldest retained)."""
        return self._history[index]

    def weights(self, index: int) -> SparseMatrix:
        return self._weights[index]

    def value(self, input_cs: Sequence[np.ndarray], column: int, code: int) -> float:
        """Normalized value of one action code in one hidden column."""
        input_cs = validators.check_input_cs(input_cs, self._descs)
        count = np.float32(max(1, int(self._hidden_counts[column])))
        return float(self._column_values(column, input_cs)[code] / count)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def write_to_stream(self, stream: BinaryIO) -> None:
        ser.write_ints(stream, self._hidden_size)
        ser.write_floats(stream, (self.alpha, self.gamma, self.gap))
        ser.write_int(stream, self.history_iters)
        ser.write_int(stream, len(self._history))
        ser.write_buffer(stream, self._hidden_cs)
        ser.write_buffer(stream, self._hidden_counts)

        ser.write_int(stream, len(self._weights))
        for desc, matrix in zip(self._descs, self._weights):
            ser.write_ints(stream, (*desc.size, desc.radius))
            matrix.write_to_stream(stream)

        ser.write_int(stream, self._history.capacity)
        for sample in self._history.slots():
            for layer_cs in sample.input_cs:
                ser.write_buffer(stream, layer_cs)
            ser.write_buffer(stream, sample.hidden_cs)
            ser.write_buffer(stream, sample.feedback_cs)

    @classmethod
    def read_from_stream(cls, stream: BinaryIO) -> 'Actor':
        """Rebuild an actor written by write_to_stream().

        Raises
        ------
        CorruptStateError
            If the stream is truncated or inconsistent
        """
        hidden_size = ser.read_ints(stream, 3, "hidden size")
        ser.require(all(v >= 1 for v in hidden_size), f"Invalid hidden size {hidden_size}")
        alpha, gamma, gap = ser.read_floats(stream, 3, "hyperparameters")
        history_iters = ser.read_int(stream, "history_iters")
        ser.require(history_iters >= 0, f"Invalid history_iters {history_iters}")
        history_size = ser.read_int(stream, "history size")
        ser.require(history_size >= 0, f"Invalid history size {history_size}")

        num_columns = grid.num_columns(hidden_size)
        hidden_cs = ser.read_buffer(stream, ser.INT32, expected=num_columns, what="hidden codes")
        hidden_counts = ser.read_buffer(stream, ser.INT32, expected=num_columns, what="hidden counts")

        num_layers = ser.read_int(stream, "visible layer count")
        ser.require(num_layers >= 1, f"Invalid visible layer count {num_layers}")

        descs = []
        weights = []
        for vli in range(num_layers):
            fields = ser.read_ints(stream, 4, f"layer {vli} descriptor")
            try:
                desc = VisibleLayerDesc(size=fields[:3], radius=fields[3])
            except ValueError as e:
                raise ser.CorruptStateError(f"Invalid descriptor for layer {vli}: {e}") from e
            descs.append(desc)
            weights.append(SparseMatrix.read_from_stream(stream, desc.size[2]))

        capacity = ser.read_int(stream, "history capacity")
        ser.require(capacity >= 1, f"Invalid history capacity {capacity}")
        ser.require(history_size <= capacity, f"History size {history_size} exceeds capacity {capacity}")

        try:
            actor = cls(hidden_size, descs, weights, capacity, alpha, gamma, gap, history_iters)
        except ValueError as e:
            raise ser.CorruptStateError(f"Inconsistent actor state: {e}") from e
        ser.require(
            np.array_equal(actor._hidden_counts, hidden_counts),
            "Hidden counts do not match the weight matrices"
        )
        actor._hidden_cs[:] = hidden_cs

        # Every slot is stored; only the first history_size are live
        for i in range(capacity):
            input_cs = [
                ser.read_buffer(stream, ser.INT32, expected=d.num_columns, what=f"history {i} input {vli}")
                for vli, d in enumerate(descs)
            ]
            sample_hidden = ser.read_buffer(stream, ser.INT32, expected=num_columns, what=f"history {i} hidden")
            sample_feedback = ser.read_buffer(stream, ser.INT32, expected=num_columns, what=f"history {i} feedback")
            if i < history_size:
                actor._history.push(input_cs, sample_hidden, sample_feedback)

        return actor

    def save(self, path: Union[str, Path]) -> None:
        """Write state atomically to path."""
        buf = io.BytesIO()
        self.write_to_stream(buf)
        fs.atomic_write_bytes(path, buf.getvalue())
        logger.info("Saved actor to %s (%d bytes, %d history samples)", path, buf.tell(), len(self._history))

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'Actor':
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
            raise FileNotFoundError(f"Actor state not found: {path}")
        with open(path, 'rb') as f:
            actor = cls.read_from_stream(f)
            trailing = f.read(1)
        ser.require(not trailing, f"Trailing data after actor state in {path}")
        logger.info("Loaded actor from %s", path)
        return actor

    def __repr__(self) -> str:
        return (f"Actor(hidden={self._hidden_size}, layers={len(self._weights)}, "
                f"history={len(self._history)}/{self._history.capacity}, alpha={self.alpha}, "
                f"gamma={self.gamma}, gap={self.gap}, history_iters={self.history_iters})")
