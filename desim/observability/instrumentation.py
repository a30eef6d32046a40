#!filepath: desim/observability/instrumentation.py
from __future__ import annotations

import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict

from desim.observability.metrics import MetricRecorder
from desim.observability.progress import ProgressReporter
from desim.observability.timeline_reporter import TimelineReporter


@dataclass
class Instrumentation:
    """
    事件级 Instrumentation

    设计铁律：
    1. timeline 以 "module:event" 为 key，同名事件的耗时累加
    2. calls 记录每个 key 执行次数
    3. record=False 的 timer 只计时，不写 timeline
    4. Instrumentation 本身不在热路径打日志
    """

    enabled: bool = True

    def __post_init__(self):
        self.progress = ProgressReporter(enabled=self.enabled)
        self.metrics = MetricRecorder(enabled=self.enabled)

        # timeline: OrderedDict[name, elapsed_seconds]
        self.timeline: Dict[str, float] = OrderedDict()
        self.calls: Dict[str, int] = OrderedDict()
        self.last_elapsed: float = 0.0

    # ---------------------------------------------------------
    # Context Manager Timer（唯一入口）
    # ---------------------------------------------------------
    def timer(self, name: str, *, record: bool = True):
        inst = self

        @contextmanager
        def _ctx():
            if not inst.enabled:
                yield
                return

            start = time.perf_counter()
            try:
                yield
            finally:
                elapsed = time.perf_counter() - start
                inst.last_elapsed = elapsed
                if record:
                    inst.timeline[name] = inst.timeline.get(name, 0.0) + elapsed
                    inst.calls[name] = inst.calls.get(name, 0) + 1

        return _ctx()

    def reset(self) -> None:
        self.timeline.clear()
        self.calls.clear()

    # ---------------------------------------------------------
    # Timeline 输出（冷路径）
    # ---------------------------------------------------------
    def generate_timeline_report(self, label: str):
        if not self.enabled:
            return
        TimelineReporter(self.timeline, label, calls=self.calls).print()
