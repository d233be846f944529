"""Little-endian binary stream helpers for engine persistence.

Layout primitives:
    - int: int32 ('<i4'), float: float32 ('<f4')
    - buffer: int32 element count followed by the elements verbatim

Readers validate as they go and raise CorruptStateError on truncated input,
negative counts, or counts that contradict an expected length. A corrupt
stream never yields a silently zero-initialized engine.

Usage:
    from csdr.utils import serialization as ser

    ser.write_ints(stream, (4, 4, 16))
    ser.write_buffer(stream, weights)          # dtype decides '<f4' or '<i4'
    size = ser.read_ints(stream, 3)
    weights = ser.read_buffer(stream, ser.FLOAT32, expected=n)
"""

from typing import BinaryIO, Optional, Sequence, Tuple

import numpy as np

INT32 = np.dtype('<i4')
FLOAT32 = np.dtype('<f4')


class CorruptStateError(ValueError):
    """Raised when a persisted engine stream is truncated or malformed."""

    pass


def _read_exact(stream: BinaryIO, nbytes: int, what: str) -> bytes:
    data = stream.read(nbytes)
    if data is None or len(data) != nbytes:
        got = 0 if data is None else len(data)
        raise CorruptStateError(f"Truncated stream reading {what}: expected {nbytes} bytes, got {got}")
    return data


def write_int(stream: BinaryIO, value: int) -> None:
    stream.write(np.array([value], dtype=INT32).tobytes())


def write_float(stream: BinaryIO, value: float) -> None:
    stream.write(np.array([value], dtype=FLOAT32).tobytes())


def write_ints(stream: BinaryIO, values: Sequence[int]) -> None:
    stream.write(np.asarray(values, dtype=INT32).tobytes())


def write_floats(stream: BinaryIO, values: Sequence[float]) -> None:
    stream.write(np.asarray(values, dtype=FLOAT32).tobytes())


def write_buffer(stream: BinaryIO, values: np.ndarray) -> None:
    """Write a count-prefixed buffer; integer arrays as int32, others as float32."""
    values = np.asarray(values)
    dtype = INT32 if np.issubdtype(values.dtype, np.integer) else FLOAT32
    write_int(stream, values.size)
    stream.write(np.ascontiguousarray(values.ravel(), dtype=dtype).tobytes())


def read_int(stream: BinaryIO, what: str = "int") -> int:
    return int(np.frombuffer(_read_exact(stream, 4, what), dtype=INT32)[0])


def read_float(stream: BinaryIO, what: str = "float") -> float:
    return float(np.frombuffer(_read_exact(stream, 4, what), dtype=FLOAT32)[0])


def read_ints(stream: BinaryIO, count: int, what: str = "ints") -> Tuple[int, ...]:
    data = _read_exact(stream, 4 * count, what)
    return tuple(int(v) for v in np.frombuffer(data, dtype=INT32))


def read_floats(stream: BinaryIO, count: int, what: str = "floats") -> Tuple[float, ...]:
    data = _read_exact(stream, 4 * count, what)
    return tuple(float(v) for v in np.frombuffer(data, dtype=FLOAT32))


def read_buffer(
    stream: BinaryIO,
    dtype: np.dtype,
    expected: Optional[int] = None,
    what: str = "buffer"
) -> np.ndarray:
    """Read a count-prefixed buffer into a writable native-endian array.

    Raises
    ------
    CorruptStateError
        If the count is negative, differs from expected, or data is truncated
    """
    count = read_int(stream, f"{what} length")
    if count < 0:
        raise CorruptStateError(f"Negative length {count} for {what}")
    if expected is not None and count != expected:
        raise CorruptStateError(f"Length mismatch for {what}: expected {expected}, got {count}")
    data = _read_exact(stream, count * dtype.itemsize, what)
    native = np.float32 if dtype.kind == 'f' else np.int32
    return np.frombuffer(data, dtype=dtype).astype(native)


def require(condition: bool, message: str) -> None:
    """Raise CorruptStateError with message unless condition holds."""
    if not condition:
        raise CorruptStateError(message)
