"""Test little-endian stream helpers.

Tests for csdr.utils.serialization:
    - Scalars and buffers round-trip through a byte stream
    - Buffers choose int32 / float32 from the array dtype
    - Truncated, negative and mismatched buffers raise CorruptStateError

Test cases:
    - test_scalar_roundtrip()
    - test_buffer_dtype_selection()
    - test_buffer_layout_little_endian()
    - test_truncated_stream()
    - test_negative_count()
    - test_expected_length_mismatch()
    - test_require()

Run:
    pytest tests/test_serialization.py -v
"""

import io

import numpy as np
import pytest

from csdr.utils import serialization as ser
from csdr.utils.serialization import CorruptStateError


def test_scalar_roundtrip():
    buf = io.BytesIO()
    ser.write_int(buf, -7)
    ser.write_float(buf, 0.25)
    ser.write_ints(buf, (4, 4, 16))
    ser.write_floats(buf, (0.5, 2.0))
    buf.seek(0)

    assert ser.read_int(buf) == -7
    assert ser.read_float(buf) == 0.25
    assert ser.read_ints(buf, 3) == (4, 4, 16)
    assert ser.read_floats(buf, 2) == (0.5, 2.0)
    assert buf.read() == b""


def test_buffer_dtype_selection():
    buf = io.BytesIO()
    ser.write_buffer(buf, np.array([1, 2, 3], dtype=np.int64))
    ser.write_buffer(buf, np.array([0.5, 1.5], dtype=np.float64))
    assert len(buf.getvalue()) == (4 + 3 * 4) + (4 + 2 * 4)

    buf.seek(0)
    ints = ser.read_buffer(buf, ser.INT32, expected=3)
    floats = ser.read_buffer(buf, ser.FLOAT32)
    assert ints.dtype == np.int32
    assert floats.dtype == np.float32
    np.testing.assert_array_equal(ints, [1, 2, 3])
    np.testing.assert_array_equal(floats, [0.5, 1.5])
    # Readers return writable copies
    ints[0] = 9


def test_buffer_layout_little_endian():
    buf = io.BytesIO()
    ser.write_buffer(buf, np.array([1], dtype=np.int32))
    assert buf.getvalue() == b"\x01\x00\x00\x00\x01\x00\x00\x00"


def test_truncated_stream():
    buf = io.BytesIO()
    ser.write_buffer(buf, np.arange(4, dtype=np.float32))
    data = buf.getvalue()[:-2]
    with pytest.raises(CorruptStateError, match="Truncated"):
        ser.read_buffer(io.BytesIO(data), ser.FLOAT32)
    with pytest.raises(CorruptStateError):
        ser.read_int(io.BytesIO(b"\x01\x00"))


def test_negative_count():
    buf = io.BytesIO()
    ser.write_int(buf, -3)
    buf.seek(0)
    with pytest.raises(CorruptStateError, match="Negative"):
        ser.read_buffer(buf, ser.INT32)


def test_expected_length_mismatch():
    buf = io.BytesIO()
    ser.write_buffer(buf, np.zeros(5, dtype=np.int32))
    buf.seek(0)
    with pytest.raises(CorruptStateError, match="mismatch"):
        ser.read_buffer(buf, ser.INT32, expected=4)


def test_require():
    ser.require(True, "never raised")
    with pytest.raises(CorruptStateError, match="bad state"):
        ser.require(False, "bad state")
    assert issubclass(CorruptStateError, ValueError)
