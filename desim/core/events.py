#!filepath: desim/core/events.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Optional


# -------------------------
# Priorities（值越小越先执行）
# -------------------------
HIGHEST = float("-inf")
FIRST = 1.0
NORMAL = 5.0
LAST = 10.0
LOWEST = float("inf")


@dataclass(frozen=True, order=True)
class Event:
    """
    Event（FINAL / FROZEN）

    排序键：(time, priority, seq)
      - time     : 模拟时间（simulation timeunit）
      - priority : 同一时刻内的先后，越小越早
      - seq      : EventQueue 写入序号，最终确定性 tie-break

    module_name / event_type 不参与排序与相等比较。
    """

    time: float
    module_name: str = field(compare=False)
    event_type: str = field(compare=False)
    priority: float = NORMAL
    seq: int = -1

    def with_seq(self, seq: int) -> "Event":
        return replace(self, seq=seq)

    @property
    def key(self) -> tuple:
        return (self.time, self.priority, self.seq)

    def label(self) -> str:
        return f"{self.module_name}:{self.event_type}"


@dataclass(frozen=True)
class ConditionalEvent:
    """
    条件事件：predicate(state) 为 True 前不可执行。

    - 每个常规事件完成后轮询一次
    - 首次为 True 时，在当前时刻提升为普通 Event，并从条件集合移除
    - now < min_time 时不轮询；now > max_time 时丢弃
    """

    module_name: str
    event_type: str
    predicate: Callable[..., bool] = field(compare=False)
    priority: float = NORMAL
    min_time: Optional[float] = None
    max_time: Optional[float] = None
    seq: int = -1

    def label(self) -> str:
        return f"{self.module_name}:{self.event_type}"
