# tests/conftest.py
from __future__ import annotations

from pathlib import Path
from typing import List

import pytest
from loguru import logger

from desim.config.engine_config import EngineConfig
from desim.core.events import LAST
from desim.engine.simulation import SimEngine
from desim.modules.base import SimModule, handles
from desim.modules.registry import ModuleRegistry


@pytest.fixture(autouse=True)
def disable_file_logger():
    logger.remove()
    logger.add(lambda msg: None)  # or sys.stderr
    yield


@pytest.fixture
def captured_logs():
    """收集 loguru 输出（字符串列表）"""
    captured: List[str] = []
    sink_id = logger.add(lambda msg: captured.append(str(msg)), level="DEBUG")
    yield captured
    logger.remove(sink_id)


# =========================================================
# Sample modules
# =========================================================
class Generator(SimModule):
    """每年往 counts 追加一次当前时间"""

    metadata = {
        "name": "gen",
        "timeunit": "year",
        "parameters": [{"name": "step", "default": 1.0, "min": 0, "max": 10}],
        "output_objects": [{"object_name": "counts", "object_class": "list"}],
    }

    @handles("init")
    def init(self, state):
        state["counts"] = []
        state.schedule_event(state.time("year") + state.params["gen"]["step"], "gen", "grow")

    @handles("grow")
    def grow(self, state):
        state["counts"].append(state.now)
        state.schedule_event(state.time("year") + state.params["gen"]["step"], "gen", "grow")


class Observer(SimModule):
    """在 Generator 之后（LAST）读取 counts 的长度"""

    metadata = {
        "name": "use",
        "timeunit": "year",
        "input_objects": [{"object_name": "counts", "object_class": "list"}],
        "output_objects": [{"object_name": "seen"}],
    }

    @handles("init")
    def init(self, state):
        state["seen"] = []
        state.schedule_event(state.time("year") + 1, "use", "look", LAST)

    @handles("look")
    def look(self, state):
        state["seen"].append(len(state["counts"]))
        state.schedule_event(state.time("year") + 1, "use", "look", LAST)


class Flaky(SimModule):
    """fail_at 时刻抛一次异常，之后恢复正常"""

    metadata = {
        "name": "flaky",
        "output_objects": [{"object_name": "ticks"}],
    }

    def __init__(self, fail_at=3.0):
        super().__init__()
        self.fail_at = fail_at

    @handles("init")
    def init(self, state):
        state["ticks"] = 0
        state.schedule_event(1, "flaky", "tick")

    @handles("tick")
    def tick(self, state):
        if self.fail_at is not None and state.now == self.fail_at:
            self.fail_at = None
            raise RuntimeError("boom")
        state["ticks"] += 1
        state.schedule_event(state.now + 1, "flaky", "tick")


class Counter(SimModule):
    """记录 handler 被真正执行的次数（模块实例上，不在 state 里）"""

    metadata = {
        "name": "counter",
        "output_objects": [{"object_name": "total"}],
    }

    def __init__(self):
        super().__init__()
        self.calls = 0

    @handles("init")
    def init(self, state):
        self.calls += 1
        state["total"] = 0
        state.schedule_event(1, "counter", "add")

    @handles("add")
    def add(self, state):
        self.calls += 1
        state["total"] = state["total"] + state.now
        state.schedule_event(state.now + 1, "counter", "add")


# =========================================================
# Fixtures
# =========================================================
@pytest.fixture
def registry() -> ModuleRegistry:
    return ModuleRegistry()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(timeline_report=False)


@pytest.fixture
def engine(registry, engine_config) -> SimEngine:
    return SimEngine(registry=registry, config=engine_config)


@pytest.fixture
def sim_root(tmp_path: Path) -> Path:
    return tmp_path / "sim"
