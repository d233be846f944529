"""Cross-cutting utilities (lowest dependency layer).

This package provides shared primitives for:
    - Grid addressing and resolution projection (grid)
    - Kernel dispatch with seeded sub-streams (compute)
    - Binary stream persistence (serialization)
    - Config and CSDR validation (validators)
    - Atomic I/O and YAML (fs)
    - Hashing for provenance (hashing)
    - Unified logging (logging_config)
    - Profiling (profiler)

No module in utils/ may import from upper layers (weights, sparse_coder, actor, env).

Convenience imports:
    from csdr.utils import grid, validators, fs
    from csdr.utils.logging_config import setup_logging, get_logger
"""

from . import compute
from . import fs
from . import grid
from . import hashing
from . import logging_config
from . import profiler
from . import serialization
from . import validators

from .compute import ComputeSystem
from .logging_config import get_logger, push_context, setup_logging
from .serialization import CorruptStateError
from .validators import CSDRShapeError, VisibleLayerDesc

__all__ = [
    # Modules
    'compute',
    'fs',
    'grid',
    'hashing',
    'logging_config',
    'profiler',
    'serialization',
    'validators',
    # Direct exports
    'ComputeSystem',
    'CorruptStateError',
    'CSDRShapeError',
    'VisibleLayerDesc',
    'setup_logging',
    'get_logger',
    'push_context',
]
