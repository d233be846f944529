"""Test YAML schema validation, config loading and CSDR checks.

Tests for csdr.utils.validators:
    - Shipped configs under configs/ load and validate
    - Invalid content is rejected with the path in the message
    - Run config enforces coder/actor/env wiring
    - check_csdr() / check_input_cs() reject malformed CSDRs

Test cases:
    - test_load_shipped_configs()
    - test_defaults()
    - test_invalid_schema_version()
    - test_out_of_bounds_values()
    - test_missing_config()
    - test_run_config_wiring()
    - test_short_history_warning()
    - test_flatten_config()
    - test_check_csdr_valid()
    - test_check_csdr_rejects()
    - test_check_input_cs_layer_count()

Run:
    pytest tests/test_schemas.py -v
"""

import logging
from pathlib import Path

import numpy as np
import pytest
import yaml

from csdr.utils import fs, validators
from csdr.utils.validators import CSDRShapeError, VisibleLayerDesc


@pytest.fixture(scope="module")
def project_root():
    return Path(__file__).parent.parent


def _write(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


def test_load_shipped_configs(project_root):
    coder = validators.load_sparse_coder_config(project_root / "configs/sparse_coder_v1.yaml")
    actor = validators.load_actor_config(project_root / "configs/actor_v1.yaml")
    run = validators.load_run_config(project_root / "configs/copy_task_v1.yaml")

    assert coder.hidden_size == (4, 4, 16)
    assert coder.visible_layers[0] == VisibleLayerDesc(size=(4, 4, 16), radius=2)
    assert actor.history_capacity == 64
    assert run.coder.explain_iters == 4
    assert run.actor.visible_layers[0].size == run.coder.hidden_size
    assert run.logging.json_format is False


def test_defaults():
    cfg = validators.SparseCoderConfig(hidden_size=(2, 2, 8), visible_layers=[VisibleLayerDesc()])
    assert cfg.alpha == 0.1
    assert cfg.explain_iters == 4

    actor = validators.ActorConfig(hidden_size=(2, 2, 8), visible_layers=[{'size': [2, 2, 8], 'radius': 1}])
    assert (actor.alpha, actor.gamma, actor.gap, actor.history_iters) == (0.02, 0.9, 0.1, 16)
    assert actor.visible_layers[0].diameter == 3
    assert actor.visible_layers[0].num_columns == 4


def test_visible_layer_desc_frozen():
    desc = VisibleLayerDesc(size=(3, 3, 4), radius=1)
    with pytest.raises(Exception):
        desc.radius = 2


def test_invalid_schema_version(tmp_path):
    path = _write(tmp_path, "coder.yaml", {
        'schema': 'sparse_coder.v2',
        'hidden_size': [4, 4, 16],
        'visible_layers': [{'size': [4, 4, 16], 'radius': 2}],
    })
    with pytest.raises(ValueError, match="coder.yaml"):
        validators.load_sparse_coder_config(path)


@pytest.mark.parametrize("patch", [
    {'alpha': -0.1},
    {'explain_iters': 0},
    {'hidden_size': [4, 0, 16]},
    {'visible_layers': []},
    {'visible_layers': [{'size': [4, 4, 16], 'radius': -1}]},
])
def test_out_of_bounds_values(tmp_path, patch):
    data = {
        'schema': 'sparse_coder.v1',
        'hidden_size': [4, 4, 16],
        'visible_layers': [{'size': [4, 4, 16], 'radius': 2}],
    }
    data.update(patch)
    with pytest.raises(ValueError, match="validation failed"):
        validators.load_sparse_coder_config(_write(tmp_path, "coder.yaml", data))


def test_actor_gamma_bounds():
    with pytest.raises(ValueError):
        validators.ActorConfig(hidden_size=(1, 1, 2), visible_layers=[VisibleLayerDesc()], gamma=1.5)
    with pytest.raises(ValueError):
        validators.ActorConfig(hidden_size=(1, 1, 2), visible_layers=[VisibleLayerDesc()], history_capacity=0)


def test_missing_config(tmp_path):
    with pytest.raises(FileNotFoundError):
        validators.load_run_config(tmp_path / "nope.yaml")


def test_run_config_wiring(project_root, tmp_path):
    data = fs.load_yaml(project_root / "configs/copy_task_v1.yaml")
    data['env']['size'] = [8, 8, 16]
    with pytest.raises(ValueError, match="env.size"):
        validators.load_run_config(_write(tmp_path, "run.yaml", data))

    data = fs.load_yaml(project_root / "configs/copy_task_v1.yaml")
    data['actor']['visible_layers'][0]['size'] = [4, 4, 8]
    with pytest.raises(ValueError, match="coder.hidden_size"):
        validators.load_run_config(_write(tmp_path, "run.yaml", data))


def test_short_history_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="csdr.utils.validators"):
        validators.ActorConfig(hidden_size=(1, 1, 2), visible_layers=[VisibleLayerDesc()], history_capacity=2)
    assert "never learn" in caplog.text


def test_flatten_config():
    cfg = validators.SparseCoderConfig(hidden_size=(2, 2, 8), visible_layers=[VisibleLayerDesc()])
    flat = validators.flatten_config(cfg)
    assert flat['alpha'] == 0.1
    assert flat['hidden_size'] == "[2, 2, 8]"
    assert validators.flatten_config({'a': {'b': 1}}) == {'a.b': 1}


def test_check_csdr_valid():
    cs = validators.check_csdr([0, 3, 1, 2], (2, 2, 4))
    assert cs.dtype == np.int32
    np.testing.assert_array_equal(cs, [0, 3, 1, 2])


@pytest.mark.parametrize("cs,match", [
    (np.zeros(3, dtype=np.int32), "4 columns"),
    (np.zeros((2, 2), dtype=np.int32), "4 columns"),
    (np.array([0, 1, 2, 4]), r"\[0, 4\)"),
    (np.array([0, -1, 2, 3]), r"\[0, 4\)"),
    (np.zeros(4, dtype=np.float32), "integer"),
])
def test_check_csdr_rejects(cs, match):
    with pytest.raises(CSDRShapeError, match=match):
        validators.check_csdr(cs, (2, 2, 4))


def test_check_input_cs_layer_count():
    descs = [VisibleLayerDesc(size=(2, 2, 4), radius=1)]
    assert len(validators.check_input_cs([np.zeros(4, dtype=np.int32)], descs)) == 1
    with pytest.raises(CSDRShapeError, match="one per visible layer"):
        validators.check_input_cs([], descs)
    with pytest.raises(CSDRShapeError, match=r"input_cs\[0\]"):
        validators.check_input_cs([np.zeros(5, dtype=np.int32)], descs)
