#!filepath: tests/utils/test_logger.py
from pathlib import Path

import pytest
from loguru import logger

from desim import logs
from desim.config.log_config import LogConfig
from desim.utils.logger import init_logging


def test_catch_logs_and_reraises():
    captured = []
    sink_id = logger.add(lambda msg: captured.append(str(msg)))

    @logs.catch(msg="handler failed")
    def explode():
        raise ValueError("bad")

    with pytest.raises(ValueError):
        explode()

    logger.remove(sink_id)
    assert any("[ERROR] explode: handler failed" in line for line in captured)


def test_catch_passes_result_through():
    @logs.catch(log_inputs=True, log_outputs=True)
    def add(a, b=1):
        return a + b

    assert add(1, b=2) == 3


def test_init_logging_writes_files(tmp_path: Path):
    log_dir = tmp_path / "logs"
    returned = init_logging(LogConfig(dir=str(log_dir), level="DEBUG"))

    assert returned is logs
    assert logs.level == "DEBUG"
    logs.info("[Test] hello")
    logger.complete()
    assert log_dir.exists()

    # restore a quiet global logger
    logger.remove()
    logs.log_dir = None
    logs.level = "INFO"
