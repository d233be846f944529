"""YAML schema validation, config loading, and CSDR precondition checks.

Provides centralized validation using pydantic:
    - Visible layer schema: grid extent (w, h, depth) and receptive radius
    - Sparse coder schema (sparse_coder.v1.yaml): hidden extent, alpha, explain_iters
    - Actor schema (actor.v1.yaml): hidden extent, history capacity, alpha,
      gamma, gap, history_iters
    - Copy-task run schema (copy_task.v1.yaml): seed, steps, dispatch,
      environment, logging, nested coder/actor configs

And fail-fast runtime checks on engine inputs:
    - check_input_cs(): one CSDR per visible layer, correct length, codes in range
    - check_csdr(): a single CSDR against a grid extent

All loaders raise FileNotFoundError for a missing path and ValueError with the
offending path and pydantic's message for invalid content.

Usage:
    from csdr.utils import validators

    coder_cfg = validators.load_sparse_coder_config("configs/sparse_coder_v1.yaml")
    run_cfg = validators.load_run_config("configs/copy_task_v1.yaml")
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class CSDRShapeError(ValueError):
    """Raised when a CSDR does not match its declared grid."""

    pass


def _check_extent(v: Tuple[int, ...], name: str) -> Tuple[int, ...]:
    if any(int(d) < 1 for d in v):
        raise ValueError(f"{name} dimensions must all be >= 1, got {tuple(v)}")
    return tuple(int(d) for d in v)


# ============================================================================
# LAYER AND ENGINE SCHEMAS
# ============================================================================

class VisibleLayerDesc(BaseModel):
    """Visible (input) layer: grid extent and receptive radius onto hidden columns."""
    model_config = ConfigDict(frozen=True)

    size: Tuple[int, int, int] = Field((4, 4, 16), description="Visible extent (w, h, depth)")
    radius: int = Field(2, ge=0, description="Chebyshev radius in visible columns")

    @field_validator('size')
    @classmethod
    def validate_size(cls, v: Tuple[int, int, int]) -> Tuple[int, int, int]:
        return _check_extent(v, "Visible size")

    @property
    def num_columns(self) -> int:
        return self.size[0] * self.size[1]

    @property
    def diameter(self) -> int:
        return 2 * self.radius + 1


class SparseCoderConfig(BaseModel):
    """Sparse coder hyperparameters (sparse_coder.v1.yaml schema)."""
    schema_version: str = Field("sparse_coder.v1", alias="schema")
    hidden_size: Tuple[int, int, int] = Field(..., description="Hidden extent (w, h, depth)")
    visible_layers: List[VisibleLayerDesc] = Field(..., min_length=1)
    alpha: float = Field(0.1, ge=0.0, description="Reconstruction learning rate")
    explain_iters: int = Field(4, ge=1, description="Explaining-away iterations per activation")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('schema_version')
    @classmethod
    def validate_schema(cls, v: str) -> str:
        if v != "sparse_coder.v1":
            raise ValueError(f"Expected schema 'sparse_coder.v1', got '{v}'")
        return v

    @field_validator('hidden_size')
    @classmethod
    def validate_hidden_size(cls, v: Tuple[int, int, int]) -> Tuple[int, int, int]:
        return _check_extent(v, "Hidden size")


class ActorConfig(BaseModel):
    """Actor hyperparameters (actor.v1.yaml schema)."""
    schema_version: str = Field("actor.v1", alias="schema")
    hidden_size: Tuple[int, int, int] = Field(..., description="Action extent (w, h, depth)")
    visible_layers: List[VisibleLayerDesc] = Field(..., min_length=1)
    history_capacity: int = Field(64, ge=1, description="Replay ring capacity")
    alpha: float = Field(0.02, ge=0.0, description="Value learning rate")
    gamma: float = Field(0.9, ge=0.0, le=1.0, description="Discount factor")
    gap: float = Field(0.1, ge=0.0, description="Advantage-gap scale")
    history_iters: int = Field(16, ge=0, description="Replay updates per environment step")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('schema_version')
    @classmethod
    def validate_schema(cls, v: str) -> str:
        if v != "actor.v1":
            raise ValueError(f"Expected schema 'actor.v1', got '{v}'")
        return v

    @field_validator('hidden_size')
    @classmethod
    def validate_hidden_size(cls, v: Tuple[int, int, int]) -> Tuple[int, int, int]:
        return _check_extent(v, "Hidden size")

    @model_validator(mode='after')
    def warn_short_history(self) -> 'ActorConfig':
        if self.history_capacity < 3:
            logger.warning(
                "history_capacity=%d < 3: actor will collect history but never learn",
                self.history_capacity
            )
        return self


# ============================================================================
# RUN SCHEMA
# ============================================================================

class DispatchConfig(BaseModel):
    """Kernel dispatch settings."""
    num_workers: int = Field(1, ge=1)
    batch_size: int = Field(64, ge=1)


class CopyTaskEnvConfig(BaseModel):
    """Copy-task environment settings."""
    size: Tuple[int, int, int] = Field((4, 4, 16), description="Observation extent (w, h, depth)")
    hold_steps: int = Field(1, ge=1, description="Steps each observation is held")

    @field_validator('size')
    @classmethod
    def validate_size(cls, v: Tuple[int, int, int]) -> Tuple[int, int, int]:
        return _check_extent(v, "Environment size")


class LoggingConfig(BaseModel):
    """Logging settings forwarded to setup_logging()."""
    log_level: str = Field("INFO")
    log_file: Optional[str] = None
    json_format: bool = Field(False, alias="json")
    color: bool = True

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('log_level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in levels:
            raise ValueError(f"log_level must be one of {sorted(levels)}, got '{v}'")
        return v.upper()


class CopyTaskRunConfig(BaseModel):
    """Complete copy-task run (copy_task.v1.yaml schema)."""
    schema_version: str = Field("copy_task.v1", alias="schema")
    seed: int = 0
    steps: int = Field(500, ge=1)
    log_interval: int = Field(100, ge=1)
    learn_enabled: bool = True
    output_dir: str = "outputs/copy_task"
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    env: CopyTaskEnvConfig = Field(default_factory=CopyTaskEnvConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    coder: SparseCoderConfig
    actor: ActorConfig

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('schema_version')
    @classmethod
    def validate_schema(cls, v: str) -> str:
        if v != "copy_task.v1":
            raise ValueError(f"Expected schema 'copy_task.v1', got '{v}'")
        return v

    @model_validator(mode='after')
    def validate_wiring(self) -> 'CopyTaskRunConfig':
        """Coder reads the observation; actor reads the coder's hidden CSDR."""
        coder_in = self.coder.visible_layers[0].size
        if tuple(coder_in) != tuple(self.env.size):
            raise ValueError(
                f"coder.visible_layers[0].size {tuple(coder_in)} must equal env.size {tuple(self.env.size)}"
            )
        actor_in = self.actor.visible_layers[0].size
        if tuple(actor_in) != tuple(self.coder.hidden_size):
            raise ValueError(
                f"actor.visible_layers[0].size {tuple(actor_in)} must equal "
                f"coder.hidden_size {tuple(self.coder.hidden_size)}"
            )
        return self


# ============================================================================
# PUBLIC API
# ============================================================================

def _load_model(path: Union[str, Path], model: type, label: str) -> Any:
    from . import fs

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{label} not found: {path}")

    data = fs.load_yaml(path) or {}
    try:
        return model(**data)
    except Exception as e:
        raise ValueError(f"{label} validation failed at {path}: {e}") from e


def load_sparse_coder_config(path: Union[str, Path]) -> SparseCoderConfig:
    """Load and validate a sparse coder config from YAML.

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If validation fails
    """
    return _load_model(path, SparseCoderConfig, "Sparse coder config")


def load_actor_config(path: Union[str, Path]) -> ActorConfig:
    """Load and validate an actor config from YAML.

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If validation fails
    """
    return _load_model(path, ActorConfig, "Actor config")


def load_run_config(path: Union[str, Path]) -> CopyTaskRunConfig:
    """Load and validate a copy-task run config from YAML.

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If validation fails
    """
    return _load_model(path, CopyTaskRunConfig, "Run config")


def flatten_config(cfg: Union[Dict, BaseModel]) -> Dict[str, Any]:
    """Flatten a nested config into dot-separated keys (for run summaries)."""
    if isinstance(cfg, BaseModel):
        cfg = cfg.model_dump()

    def _flatten(d: Dict, parent_key: str = '') -> Dict:
        items = []
        for k, v in d.items():
            new_key = f"{parent_key}.{k}" if parent_key else k
            if isinstance(v, dict):
                items.extend(_flatten(v, new_key).items())
            elif isinstance(v, (list, tuple)):
                items.append((new_key, str(list(v))))
            else:
                items.append((new_key, v))
        return dict(items)

    return _flatten(cfg)


def check_csdr(cs: Any, size: Sequence[int], name: str = "CSDR") -> np.ndarray:
    """Validate one CSDR against a (w, h, depth) extent.

    Parameters
    ----------
    cs : array-like
        Flat sequence of w * h integer codes
    size : Sequence[int]
        Grid extent (w, h, depth)
    name : str
        Label used in error messages

    Returns
    -------
    np.ndarray
        The codes as a contiguous int32 array

    Raises
    ------
    CSDRShapeError
        On wrong length, non-integer dtype, or a code outside [0, depth)
    """
    arr = np.asarray(cs)
    if arr.dtype.kind not in ('i', 'u'):
        raise CSDRShapeError(f"{name} must hold integer codes, got dtype {arr.dtype}")
    expected = int(size[0]) * int(size[1])
    if arr.ndim != 1 or arr.size != expected:
        raise CSDRShapeError(f"{name} must have {expected} columns, got shape {arr.shape}")
    if arr.size and (arr.min() < 0 or arr.max() >= size[2]):
        raise CSDRShapeError(
            f"{name} codes must lie in [0, {size[2]}), got range [{arr.min()}, {arr.max()}]"
        )
    return np.ascontiguousarray(arr, dtype=np.int32)


def check_input_cs(input_cs: Sequence[Any], descs: Sequence[VisibleLayerDesc]) -> List[np.ndarray]:
    """Validate one input CSDR per visible layer.

    Raises
    ------
    CSDRShapeError
        If the layer count differs or any CSDR is malformed
    """
    if len(input_cs) != len(descs):
        raise CSDRShapeError(
            f"Expected {len(descs)} input CSDRs (one per visible layer), got {len(input_cs)}"
        )
    return [check_csdr(cs, d.size, f"input_cs[{i}]") for i, (cs, d) in enumerate(zip(input_cs, descs))]
