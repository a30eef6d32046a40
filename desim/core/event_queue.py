#!filepath: desim/core/event_queue.py
from __future__ import annotations

import heapq
import math
import numbers
from dataclasses import replace
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

import pandas as pd

from desim.core.events import NORMAL, ConditionalEvent, Event
from desim.utils.errors import InvalidScheduleTime
from desim.utils.logger import logs

if TYPE_CHECKING:
    from desim.core.state import SimState


class EventQueue:
    """
    EventQueue（FINAL / FROZEN）

    职责：
      - 常规事件：最小堆，按 (time, priority, seq) 全序
      - 条件事件：独立列表，按写入顺序轮询
      - now：队列时钟，只前进不回退

    约束：
      - 不能调度到过去（time < now）或非有限时间
      - seq 由队列统一分配，保证回放逐位一致
    """

    def __init__(self, now: float = 0.0):
        self.now = float(now)
        self._heap: List[Event] = []
        self._conditionals: List[ConditionalEvent] = []
        self._next_seq = 0

    # ------------------------------------------------------------------
    # scheduling
    # ------------------------------------------------------------------
    @property
    def next_seq(self) -> int:
        """下一次 schedule 将分配的 seq（seq >= 该值的事件是之后写入的）"""
        return self._next_seq

    def _stamp(self) -> int:
        seq = self._next_seq
        self._next_seq += 1
        return seq

    def schedule(self, event: Event) -> Event:
        t = event.time
        if t is None or not isinstance(t, numbers.Real) or not math.isfinite(t):
            raise InvalidScheduleTime(t, self.now, event.module_name, event.event_type)
        if t < self.now:
            raise InvalidScheduleTime(t, self.now, event.module_name, event.event_type)

        stamped = replace(event, time=float(t), seq=self._stamp())
        heapq.heappush(self._heap, stamped)
        logs.debug(f"[EventQueue] scheduled {stamped.label()} t={stamped.time} p={stamped.priority}")
        return stamped

    def add(self, time: float, module_name: str, event_type: str, priority: float = NORMAL) -> Event:
        return self.schedule(Event(time, module_name, event_type, priority))

    def schedule_conditional(
        self,
        module_name: str,
        event_type: str,
        predicate: Callable[..., bool],
        priority: float = NORMAL,
        *,
        min_time: Optional[float] = None,
        max_time: Optional[float] = None,
    ) -> ConditionalEvent:
        if not callable(predicate):
            raise TypeError("predicate must be callable")
        cond = ConditionalEvent(
            module_name=module_name,
            event_type=event_type,
            predicate=predicate,
            priority=priority,
            min_time=min_time,
            max_time=max_time,
            seq=self._stamp(),
        )
        self._conditionals.append(cond)
        return cond

    def promote_conditionals(self, state: "SimState") -> List[Event]:
        """
        轮询所有条件事件；为 True 的恰好提升一次（time = now）。
        """
        if not self._conditionals:
            return []

        promoted: List[Event] = []
        pending: List[ConditionalEvent] = []
        for cond in self._conditionals:
            if cond.max_time is not None and self.now > cond.max_time:
                logs.debug(f"[EventQueue] conditional {cond.label()} expired at t={self.now}")
                continue
            if cond.min_time is not None and self.now < cond.min_time:
                pending.append(cond)
                continue
            if cond.predicate(state):
                promoted.append(cond)
            else:
                pending.append(cond)

        # 先更新集合再 schedule，predicate 内部异常时集合保持原样
        self._conditionals = pending
        events = [
            self.schedule(Event(self.now, c.module_name, c.event_type, c.priority))
            for c in promoted
        ]
        for e in events:
            logs.debug(f"[EventQueue] conditional {e.label()} promoted at t={self.now}")
        return events

    # ------------------------------------------------------------------
    # consuming
    # ------------------------------------------------------------------
    def peek(self) -> Optional[Event]:
        return self._heap[0] if self._heap else None

    def pop_next(self) -> Optional[Event]:
        if not self._heap:
            return None
        return heapq.heappop(self._heap)

    def advance_time_if_needed(self, event: Event) -> float:
        if event.time > self.now:
            self.now = event.time
        return self.now

    def advance_to(self, time: float) -> float:
        if time > self.now:
            self.now = float(time)
        return self.now

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------
    def remove(self, module_name: Optional[str] = None, event_type: Optional[str] = None) -> int:
        """删除匹配的常规与条件事件；两个参数都为 None 时等价于 clear()。"""

        def match(e) -> bool:
            return (module_name is None or e.module_name == module_name) and (
                event_type is None or e.event_type == event_type
            )

        before = len(self._heap) + len(self._conditionals)
        self._heap = [e for e in self._heap if not match(e)]
        heapq.heapify(self._heap)
        self._conditionals = [c for c in self._conditionals if not match(c)]
        removed = before - len(self._heap) - len(self._conditionals)
        if removed:
            logs.debug(f"[EventQueue] removed {removed} events ({module_name}:{event_type})")
        return removed

    def clear(self) -> None:
        self._heap.clear()
        self._conditionals.clear()

    def events(self) -> Tuple[Event, ...]:
        return tuple(sorted(self._heap))

    def conditionals(self) -> Tuple[ConditionalEvent, ...]:
        return tuple(self._conditionals)

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "time": e.time,
                "module_name": e.module_name,
                "event_type": e.event_type,
                "priority": e.priority,
            }
            for e in self.events()
        ]
        return pd.DataFrame(rows, columns=["time", "module_name", "event_type", "priority"])

    def __len__(self) -> int:
        return len(self._heap)

    def __iter__(self):
        return iter(self.events())

    def __repr__(self) -> str:
        return (
            f"EventQueue(now={self.now}, pending={len(self._heap)}, "
            f"conditional={len(self._conditionals)})"
        )
