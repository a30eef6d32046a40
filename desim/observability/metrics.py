#!filepath: desim/observability/metrics.py
from dataclasses import dataclass, field
from typing import Any, Dict

from desim.utils.logger import logs


@dataclass
class MetricRecorder:
    """
    - record(name, value)：设置并记录日志（冷路径）
    - increment(name)    ：计数器，不打日志（事件循环热路径）
    """

    enabled: bool = True
    metrics: Dict[str, Any] = field(default_factory=dict)

    def record(self, name: str, value: Any):
        if not self.enabled:
            return
        self.metrics[name] = value
        logs.info(f"[Metric] {name} = {value}")

    def increment(self, name: str, by: int = 1):
        if not self.enabled:
            return
        self.metrics[name] = self.metrics.get(name, 0) + by

    def get(self, name: str, default: Any = 0) -> Any:
        return self.metrics.get(name, default)

    def report(self):
        for name in sorted(self.metrics):
            logs.info(f"[Metric] {name} = {self.metrics[name]}")
