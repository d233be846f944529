"""Test unified logging configuration.

Tests for csdr.utils.logging_config:
    - setup_logging() is idempotent (handlers replaced, not duplicated)
    - File handler writes human or JSON lines with context fields
    - push_context/pop_context manage contextual fields
    - Rotation modes are validated

Test cases:
    - test_setup_logging_idempotent()
    - test_json_file_output()
    - test_human_file_output_with_context()
    - test_context_push_pop()
    - test_invalid_rotation_mode()
    - test_set_level()

Run:
    pytest tests/test_logging_config.py -v
"""

import json
import logging
import logging.handlers

import pytest

from csdr.utils import logging_config


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging_config.pop_context()


def test_setup_logging_idempotent(tmp_path):
    log_file = tmp_path / "run.log"
    logging_config.setup_logging("INFO", str(log_file), to_stderr=True)
    handlers = logging_config.setup_logging("INFO", str(log_file), to_stderr=True)
    assert len(handlers) == 2
    assert len(logging.getLogger().handlers) == 2


def test_json_file_output(tmp_path):
    log_file = tmp_path / "run.jsonl"
    logging_config.setup_logging("DEBUG", str(log_file), json=True, to_stderr=False, context={"app": "copy_task"})

    logging_config.get_logger("csdr.test").info("engine saved")
    for handler in logging.getLogger().handlers:
        handler.flush()

    record = json.loads(log_file.read_text().strip().splitlines()[-1])
    assert record['msg'] == "engine saved"
    assert record['lvl'] == "INFO"
    assert record['app'] == "copy_task"


def test_human_file_output_with_context(tmp_path):
    log_file = tmp_path / "run.log"
    logging_config.setup_logging("INFO", str(log_file), to_stderr=False)
    logging_config.push_context(seed=7)

    logging.getLogger("csdr.test").warning("short history")
    logging.getLogger("csdr.test").debug("not emitted")
    for handler in logging.getLogger().handlers:
        handler.flush()

    text = log_file.read_text()
    assert "WARNING" in text
    assert "seed=7" in text
    assert "short history" in text
    assert "not emitted" not in text


def test_size_rotation_handler(tmp_path):
    handlers = logging_config.setup_logging(
        "INFO", str(tmp_path / "rot.log"), to_stderr=False,
        rotate={"mode": "size", "max_bytes": 1024, "backup_count": 2}
    )
    assert isinstance(handlers[0], logging.handlers.RotatingFileHandler)


def test_context_push_pop():
    logging_config.push_context(run="copy_task", seed=1)
    logging_config.push_context(step=5)
    assert logging_config.get_context() == {"run": "copy_task", "seed": 1, "step": 5}

    logging_config.pop_context(["step", "absent"])
    assert logging_config.get_context() == {"run": "copy_task", "seed": 1}

    logging_config.pop_context()
    assert logging_config.get_context() == {}


def test_invalid_rotation_mode(tmp_path):
    with pytest.raises(ValueError, match="rotation mode"):
        logging_config.setup_logging("INFO", str(tmp_path / "x.log"), to_stderr=False, rotate={"mode": "hourly"})


def test_set_level():
    logging_config.set_level("warning")
    assert logging.getLogger().level == logging.WARNING
