#!filepath: desim/observability/timeline_reporter.py
from typing import Dict, Optional

from desim.utils.logger import logs


class TimelineReporter:
    """
    Simulation timeline 报告：
    - "module:event" → 累计耗时秒数（和执行次数）
    """

    def __init__(self, timeline: Dict[str, float], label: str, calls: Optional[Dict[str, int]] = None):
        self.timeline = timeline
        self.label = label
        self.calls = calls or {}

    def print(self):
        logs.info(f"[Timeline] ===== Simulation timeline for {self.label} =====")

        total = 0.0
        for name, sec in self.timeline.items():
            n = self.calls.get(name)
            suffix = f"  x{n}" if n else ""
            logs.info(f"[Timeline] {str(name):<30} {sec:>8.3f}s{suffix}")
            total += sec

        logs.info(f"[Timeline] Total{'':<27} {total:>8.3f}s")
        logs.info("[Timeline] ===========================================")
