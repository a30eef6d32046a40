#!filepath: desim/core/state.py
from __future__ import annotations

import copy
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Iterator, List, Mapping, Optional

import numpy as np

from desim.core.event_queue import EventQueue
from desim.core.events import NORMAL, ConditionalEvent, Event
from desim.core.time_units import DEFAULT_TIMEUNITS, TimeUnitRegistry
from desim.utils.logger import logs
from desim.utils.path import SimPaths


@dataclass
class SimTimes:
    """start / end / current，单位均为 timeunit"""

    start: float = 0.0
    end: float = 10.0
    current: float = 0.0
    timeunit: str = "second"

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) must not be before start ({self.start})")


@dataclass(frozen=True)
class CompletedEvent:
    event: Event
    clock_time: datetime
    elapsed: float  # wall-clock seconds
    cached: bool = False


_MISSING = object()


class SimState:
    """
    SimState（FINAL / FROZEN）

    模拟唯一的可变“世界”：
      - objects      : name -> value（state["x"] 访问）
      - params       : module -> {param -> value}
      - module_states: module -> dict（模块私有可变数据）
      - paths        : SimPaths
      - times        : SimTimes
      - queue        : EventQueue
      - completed    : 有界已完成事件日志
      - depends / load_order / descriptors：由引擎初始化阶段填写

    所有权：
      - 引擎持有唯一可变句柄，每个事件独占访问
      - 需要独立视图时必须显式 copy()（深拷贝）
    """

    def __init__(
        self,
        *,
        times: Optional[SimTimes] = None,
        params: Optional[Mapping[str, Mapping[str, Any]]] = None,
        objects: Optional[Mapping[str, Any]] = None,
        paths: Optional[SimPaths] = None,
        timeunits: Optional[TimeUnitRegistry] = None,
        n_completed: int = 1000,
        seed: Optional[int] = None,
    ) -> None:
        self.times = times or SimTimes()
        self.objects: Dict[str, Any] = dict(objects or {})
        self.params: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in (params or {}).items()}
        self.module_states: Dict[str, Dict[str, Any]] = {}
        self.paths = paths or SimPaths.under(".")
        self.timeunits = timeunits or DEFAULT_TIMEUNITS
        self.queue = EventQueue(now=self.times.current)
        self.completed: Deque[CompletedEvent] = deque(maxlen=n_completed)

        self.depends = None
        self.load_order: List[str] = []
        self.descriptors: Dict[str, Any] = {}
        self.diagnostics: List[Any] = []
        self.inputs: List[Any] = []
        self.outputs: List[Any] = []

        self.current: Optional[Event] = None
        self.rng = np.random.default_rng(seed)
        # 不参与 digest / 相等比较的运行期信息
        self.meta: Dict[str, Any] = {"._created": datetime.now()}

    # ------------------------------------------------------------------
    # object store
    # ------------------------------------------------------------------
    def __getitem__(self, name: str) -> Any:
        try:
            return self.objects[name]
        except KeyError:
            raise KeyError(f"Object '{name}' is not in the simulation state") from None

    def __setitem__(self, name: str, value: Any) -> None:
        self.objects[name] = value

    def __delitem__(self, name: str) -> None:
        del self.objects[name]

    def __contains__(self, name: str) -> bool:
        return name in self.objects

    def get(self, name: str, default: Any = None) -> Any:
        return self.objects.get(name, default)

    def keys(self) -> Iterator[str]:
        return iter(self.objects)

    def __iter__(self) -> Iterator[str]:
        return iter(self.objects)

    # ------------------------------------------------------------------
    # time
    # ------------------------------------------------------------------
    @property
    def timeunit(self) -> str:
        return self.times.timeunit

    @property
    def now(self) -> float:
        """当前时间，模拟 timeunit（不随调用模块变化）"""
        return self.times.current

    def in_unit(self, value: float, unit: Optional[str]) -> float:
        if unit is None:
            return value
        return self.timeunits.convert(value, self.times.timeunit, unit)

    def time(self, unit: Optional[str] = None) -> float:
        """
        当前时间。unit 缺省时：事件执行中 = 该事件所属模块的 timeunit，
        与 schedule_event 的缺省单位一致，因此
        state.schedule_event(state.time() + 1, ...) 表示“一个模块时间单位之后”。
        """
        if unit is None and self.current is not None:
            unit = self._module_unit(self.current.module_name)
        return self.in_unit(self.times.current, unit)

    def start(self, unit: Optional[str] = None) -> float:
        return self.in_unit(self.times.start, unit)

    def end(self, unit: Optional[str] = None) -> float:
        return self.in_unit(self.times.end, unit)

    def to_sim_time(self, value: float, unit: Optional[str]) -> float:
        if unit is None:
            return value
        return self.timeunits.convert(value, unit, self.times.timeunit)

    # ------------------------------------------------------------------
    # scheduling
    # ------------------------------------------------------------------
    def _module_unit(self, module_name: str) -> Optional[str]:
        desc = self.descriptors.get(module_name)
        return getattr(desc, "timeunit", None)

    def schedule_event(
        self,
        time: Optional[float],
        module_name: str,
        event_type: str,
        priority: float = NORMAL,
        unit: Optional[str] = None,
    ) -> Optional[Event]:
        """
        在 time 调度 module_name:event_type。

        time:
            None = 不调度（用于 .plotInitialTime = None 之类的“关闭”约定）
        unit:
            time 的单位；None 时使用模块声明的 timeunit，再退回模拟 timeunit。
            注意 state.now 是模拟 timeunit：跨单位时用 state.time() 或显式 unit。
        """
        if time is None:
            logs.debug(f"[State] {module_name}:{event_type} not scheduled (time is None)")
            return None
        unit = unit or self._module_unit(module_name)
        sim_time = self.to_sim_time(time, unit)
        return self.queue.schedule(Event(sim_time, module_name, event_type, priority))

    def schedule_conditional(
        self,
        module_name: str,
        event_type: str,
        predicate: Callable[["SimState"], bool],
        priority: float = NORMAL,
        *,
        min_time: Optional[float] = None,
        max_time: Optional[float] = None,
    ) -> ConditionalEvent:
        return self.queue.schedule_conditional(
            module_name, event_type, predicate, priority, min_time=min_time, max_time=max_time
        )

    def events(self):
        return self.queue.events()

    # ------------------------------------------------------------------
    # inputs supplied outside the module
    # ------------------------------------------------------------------
    def supplied_elsewhere(self, name: str, module_name: Optional[str] = None) -> bool:
        """
        对象是否已由用户提供、将由 load 读取、或由其它模块产出。
        模块的 input_objects() 用它判断是否需要填默认值。
        """
        if name in self.objects:
            return True
        if any(getattr(spec, "object_name", None) == name for spec in self.inputs):
            return True
        for other, desc in self.descriptors.items():
            if other == module_name:
                continue
            if name in getattr(desc, "output_names", ()):
                return True
        return False

    # ------------------------------------------------------------------
    def copy(self) -> "SimState":
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return (
            f"SimState(t={self.times.current} {self.times.timeunit}, "
            f"end={self.times.end}, objects={sorted(self.objects)}, queue={len(self.queue)})"
        )


# ----------------------------------------------------------------------
# accessors
# ----------------------------------------------------------------------
def module_state(state: SimState, module_name: str) -> Dict[str, Any]:
    """模块私有可变数据（不存在时创建）"""
    return state.module_states.setdefault(module_name, {})


def param(state: SimState, module_name: str, name: str, default: Any = _MISSING) -> Any:
    try:
        return state.params[module_name][name]
    except KeyError:
        if default is not _MISSING:
            return default
        raise KeyError(f"Parameter '{name}' is not defined for module '{module_name}'") from None


def set_param(state: SimState, module_name: str, name: str, value: Any) -> None:
    state.params.setdefault(module_name, {})[name] = value
