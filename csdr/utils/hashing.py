"""SHA-256 hashing for checkpoint and weight provenance.

Provides:
    - sha256_file(): Hash file contents (saved engine checkpoints)
    - sha256_array(): Hash array values (weight buffers, CSDRs)

Run summaries record the digest of every saved checkpoint, and tests compare
array digests to assert weight buffers are bit-identical after a reload.

Deterministic hashing:
    - Arrays hashed as dtype string + shape + C-contiguous bytes, so equal
      values with different dtypes or shapes never collide
    - Files read in chunks (1 MB default)
    - Results are hex strings (64 chars)

Note: Module named `hashing.py` to avoid shadowing builtin `hash()`.
"""

import hashlib
from pathlib import Path
from typing import Union

import numpy as np


def sha256_file(path: Union[str, Path], chunk_size: int = 1 << 20) -> str:
    """Compute SHA-256 hash of file contents.

    Raises
    ------
    FileNotFoundError
        If file doesn't exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    sha256 = hashlib.sha256()

    with open(path, 'rb') as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            sha256.update(chunk)

    return sha256.hexdigest()


def sha256_array(a: np.ndarray) -> str:
    """Compute SHA-256 hash of array values.

    Parameters
    ----------
    a : np.ndarray
        Any numeric array

    Returns
    -------
    str
        SHA-256 hex digest (64 characters)
    """
    a = np.ascontiguousarray(a)
    sha256 = hashlib.sha256()
    sha256.update(a.dtype.str.encode('ascii'))
    sha256.update(str(a.shape).encode('ascii'))
    sha256.update(a.tobytes())
    return sha256.hexdigest()
