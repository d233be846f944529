"""Test the sparse coding engine.

Tests for csdr.sparse_coder.SparseCoder:
    - Deterministic creation and activation for a fixed seed
    - Exactly one in-range code per hidden and reconstruction column
    - Explaining-away converges to the code whose weights match the input
    - Learning moves winning weights toward the input code and away from others
    - Reconstruction error does not increase when the same input is repeated
    - Serial and threaded dispatch give identical results
    - Persistence roundtrip is bit-identical; corrupt streams are rejected
    - Malformed inputs raise CSDRShapeError without mutating state

Test cases:
    - test_create_random_weights()
    - test_deterministic_activation()
    - test_codes_in_range_multi_layer()
    - test_explaining_away_converges()
    - test_learn_direction()
    - test_learn_zero_alpha_noop()
    - test_repeat_input_reconstruction_error()
    - test_serial_matches_threaded()
    - test_stream_roundtrip()
    - test_save_load_file()
    - test_truncated_stream_rejected()
    - test_projection_mismatch_rejected()
    - test_invalid_inputs()
    - test_invalid_construction()
    - test_returned_codes_read_only()

Run:
    pytest tests/test_sparse_coder.py -v
"""

import io

import numpy as np
import pytest

from csdr.sparse_coder import SparseCoder
from csdr.utils import grid, hashing
from csdr.utils.compute import ComputeSystem
from csdr.utils.serialization import CorruptStateError
from csdr.utils.validators import CSDRShapeError, SparseCoderConfig, VisibleLayerDesc


LAYER = VisibleLayerDesc(size=(4, 4, 16), radius=2)


def _random_cs(size, seed):
    return np.random.default_rng(seed).integers(0, size[2], size=grid.num_columns(size)).astype(np.int32)


@pytest.fixture
def coder():
    return SparseCoder.create_random(ComputeSystem(seed=7), (4, 4, 16), [LAYER])


@pytest.fixture
def tiny_coder():
    """One hidden column whose field covers a 3x3 visible grid."""
    cs = ComputeSystem(seed=1)
    return SparseCoder.create_random(cs, (1, 1, 4), [VisibleLayerDesc(size=(3, 3, 4), radius=1)])


def test_create_random_weights(coder):
    w = coder.weights(0)
    assert w.values.min() >= 0.99
    assert w.values.max() < 1.0
    assert coder.num_visible_layers == 1
    assert coder.visible_layer_desc(0) == LAYER
    assert coder.visible_layer(0).reverse_radii == (3, 3)
    assert coder.visible_layer(0).hidden_to_visible == (1.0, 1.0)
    assert np.all(coder.hidden_cs == 0)
    assert coder.hidden_activations.shape == (16, 16)


def test_deterministic_activation():
    input_cs = _random_cs(LAYER.size, 0)
    results = []
    for _ in range(2):
        cs = ComputeSystem(seed=42)
        c = SparseCoder.create_random(cs, (4, 4, 16), [LAYER])
        c.step(cs, [input_cs])
        c.step(cs, [input_cs])
        results.append((c.hidden_cs.copy(), hashing.sha256_array(c.weights(0).values)))

    np.testing.assert_array_equal(results[0][0], results[1][0])
    assert results[0][1] == results[1][1]


def test_codes_in_range_multi_layer():
    cs = ComputeSystem(seed=3)
    descs = [VisibleLayerDesc(size=(8, 8, 4), radius=1), VisibleLayerDesc(size=(2, 2, 8), radius=1)]
    c = SparseCoder.create_random(cs, (4, 4, 8), descs)
    inputs = [_random_cs(d.size, i) for i, d in enumerate(descs)]

    hidden = c.step(cs, inputs)

    assert hidden.dtype == np.int32
    assert hidden.size == 16
    assert hidden.min() >= 0 and hidden.max() < 8
    for i, d in enumerate(descs):
        recon = c.recon_cs(i)
        assert recon.size == d.num_columns
        assert recon.min() >= 0 and recon.max() < d.size[2]


def test_explaining_away_converges(tiny_coder):
    """A hidden code whose weights match the input wins and reconstructs it exactly."""
    input_cs = np.array([0, 3, 1, 2, 2, 0, 1, 3, 0], dtype=np.int32)
    w = tiny_coder.weights(0)
    w.values[:] = 0.5
    for offset in range(9):
        for vc in range(4):
            w.values[w.address(0, 2, offset, vc)] = 0.0
    columns, offsets = w.field(0)
    assert columns.size == 9
    for column, offset in zip(columns, offsets):
        w.values[w.address(0, 2, int(offset), int(input_cs[column]))] = 1.0

    tiny_coder.activate(ComputeSystem(seed=0), [input_cs])

    assert tiny_coder.hidden_cs[0] == 2
    np.testing.assert_array_equal(tiny_coder.recon_cs(0), input_cs)
    assert tiny_coder.reconstruction_error([input_cs]) == 0
    # Perfect reconstruction leaves the running activation at the first-round value
    np.testing.assert_array_equal(tiny_coder.hidden_activations[0], [4.5, 4.5, 9.0, 4.5])


def test_learn_direction(coder):
    cs = ComputeSystem(seed=0)
    input_cs = _random_cs(LAYER.size, 5)
    coder.activate(cs, [input_cs])
    hidden_cs = coder.hidden_cs.copy()
    w = coder.weights(0)
    before = w.values.copy()

    coder.learn(cs, [input_cs])

    for visible_column in (0, 5, 15):
        columns, offsets = w.covering(visible_column)
        for h, o in zip(columns, offsets):
            for vc in range(16):
                i = w.address(int(h), int(hidden_cs[h]), int(o), vc)
                if vc == input_cs[visible_column]:
                    assert w.values[i] >= before[i]
                else:
                    assert w.values[i] < before[i]

    # Weights of non-winning hidden codes are untouched
    H = grid.num_columns(coder.hidden_size)
    view = w.values.reshape(-1, 16, H)
    before_view = before.reshape(-1, 16, H)
    for h in range(H):
        losers = [c for c in range(16) if c != hidden_cs[h]]
        np.testing.assert_array_equal(view[:, losers, h], before_view[:, losers, h])


def test_learn_zero_alpha_noop():
    cs = ComputeSystem(seed=4)
    c = SparseCoder.create_random(cs, (4, 4, 16), [LAYER], alpha=0.0)
    before = hashing.sha256_array(c.weights(0).values)
    c.step(cs, [_random_cs(LAYER.size, 1)], learn_enabled=True)
    assert hashing.sha256_array(c.weights(0).values) == before


def test_step_without_learning_keeps_weights(coder):
    cs = ComputeSystem(seed=0)
    before = coder.weights(0).values.copy()
    coder.step(cs, [_random_cs(LAYER.size, 2)], learn_enabled=False)
    np.testing.assert_array_equal(coder.weights(0).values, before)


def test_repeat_input_reconstruction_error(coder):
    """4x4x16 hidden, one 4x4x16 layer, radius 2, four explain iterations."""
    cs = ComputeSystem(seed=0)
    input_cs = _random_cs(LAYER.size, 11)
    assert coder.explain_iters == 4

    coder.step(cs, [input_cs], learn_enabled=True)
    first = coder.reconstruction_error([input_cs])
    coder.step(cs, [input_cs], learn_enabled=True)
    second = coder.reconstruction_error([input_cs])

    assert second <= first


def test_serial_matches_threaded():
    inputs = [_random_cs(LAYER.size, s) for s in range(3)]
    outputs = []
    for workers in (1, 4):
        with ComputeSystem(seed=3, num_workers=workers, batch_size=3) as cs:
            c = SparseCoder.create_random(cs, (4, 4, 16), [LAYER])
            codes = [c.step(cs, [x]).copy() for x in inputs]
            outputs.append((codes, c.weights(0).values.copy()))

    for a, b in zip(outputs[0][0], outputs[1][0]):
        np.testing.assert_array_equal(a, b)
    np.testing.assert_array_equal(outputs[0][1], outputs[1][1])


def test_stream_roundtrip(coder):
    cs = ComputeSystem(seed=0)
    for s in range(3):
        coder.step(cs, [_random_cs(LAYER.size, s)])

    buf = io.BytesIO()
    coder.write_to_stream(buf)
    buf.seek(0)
    restored = SparseCoder.read_from_stream(buf)

    assert restored.hidden_size == coder.hidden_size
    assert restored.alpha == pytest.approx(coder.alpha)
    assert restored.explain_iters == coder.explain_iters
    np.testing.assert_array_equal(restored.hidden_cs, coder.hidden_cs)
    assert hashing.sha256_array(restored.weights(0).values) == hashing.sha256_array(coder.weights(0).values)
    # Scratch buffers are rebuilt zeroed
    assert np.all(restored.hidden_activations == 0.0)

    probe = _random_cs(LAYER.size, 99)
    np.testing.assert_array_equal(restored.activate(cs, [probe]), coder.activate(cs, [probe]))


def test_save_load_file(coder, tmp_path):
    path = tmp_path / "state" / "sparse_coder.bin"
    coder.save(path)
    restored = SparseCoder.load(path)
    np.testing.assert_array_equal(restored.weights(0).values, coder.weights(0).values)

    with open(path, 'ab') as f:
        f.write(b"\x00")
    with pytest.raises(CorruptStateError, match="Trailing"):
        SparseCoder.load(path)

    with pytest.raises(FileNotFoundError):
        SparseCoder.load(tmp_path / "missing.bin")


def test_truncated_stream_rejected(coder):
    buf = io.BytesIO()
    coder.write_to_stream(buf)
    data = buf.getvalue()
    for cut in (2, 30, len(data) - 1):
        with pytest.raises(CorruptStateError):
            SparseCoder.read_from_stream(io.BytesIO(data[:cut]))


def test_projection_mismatch_rejected(tiny_coder):
    buf = io.BytesIO()
    tiny_coder.write_to_stream(buf)
    data = bytearray(buf.getvalue())
    # hidden size, alpha, explain_iters, hidden buffer (1 column), layer count, descriptor
    offset = 12 + 4 + 4 + (4 + 4) + 4 + 16
    data[offset:offset + 4] = np.array([9.0], dtype='<f4').tobytes()
    with pytest.raises(CorruptStateError, match="Projection"):
        SparseCoder.read_from_stream(io.BytesIO(bytes(data)))


def test_invalid_inputs(coder):
    cs = ComputeSystem(seed=0)
    good = _random_cs(LAYER.size, 0)
    coder.activate(cs, [good])
    before = coder.hidden_cs.copy()

    with pytest.raises(CSDRShapeError):
        coder.activate(cs, [])
    with pytest.raises(CSDRShapeError):
        coder.activate(cs, [good, good])
    with pytest.raises(CSDRShapeError):
        coder.step(cs, [np.full(16, 16, dtype=np.int32)])
    with pytest.raises(CSDRShapeError):
        coder.learn(cs, [good[:8]])

    np.testing.assert_array_equal(coder.hidden_cs, before)
    with pytest.raises(ValueError):
        coder.hidden_cs[0] = 1


def test_invalid_construction():
    cs = ComputeSystem(seed=0)
    with pytest.raises(ValueError):
        SparseCoder.create_random(cs, (0, 4, 16), [LAYER])
    with pytest.raises(ValueError):
        SparseCoder.create_random(cs, (4, 4, 16), [])
    with pytest.raises(ValueError):
        SparseCoder.create_random(cs, (4, 4, 16), [LAYER], explain_iters=0)


def test_from_config():
    cfg = SparseCoderConfig(hidden_size=(2, 2, 8), visible_layers=[VisibleLayerDesc(size=(4, 4, 4), radius=1)],
                            alpha=0.05, explain_iters=2)
    c = SparseCoder.from_config(ComputeSystem(seed=0), cfg)
    assert c.hidden_size == (2, 2, 8)
    assert c.alpha == 0.05
    assert c.explain_iters == 2
    assert "SparseCoder" in repr(c)


def test_returned_codes_read_only(coder):
    cs = ComputeSystem(seed=0)
    input_cs = _random_cs(LAYER.size, 6)
    for hidden in (coder.activate(cs, [input_cs]), coder.step(cs, [input_cs], learn_enabled=False)):
        before = hidden.copy()
        with pytest.raises(ValueError):
            hidden[0] = (hidden[0] + 1) % 16
        np.testing.assert_array_equal(coder.hidden_cs, before)
