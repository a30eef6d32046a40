#!filepath: desim/observability/progress.py
from desim.utils.logger import logs


class ProgressReporter:
    """
    模拟进度（按模拟时间，而不是条目数）
    由核心 progress 模块按其 interval 参数周期调用。
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def start(self, task: str, total: float, unit: str = ""):
        if not self.enabled:
            return
        logs.info(f"[Progress] {task} started, end={total:g} {unit}")

    def update(self, task: str, current: float, total: float, unit: str = ""):
        if not self.enabled:
            return
        pct = 100.0 * current / total if total else 100.0
        logs.info(f"[Progress] {task}: {current:g}/{total:g} {unit} ({pct:.0f}%)")

    def done(self, task: str):
        if not self.enabled:
            return
        logs.info(f"[Progress] {task} done")
