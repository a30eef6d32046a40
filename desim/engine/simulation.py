#!filepath: desim/engine/simulation.py
from __future__ import annotations

from datetime import datetime
from time import perf_counter
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from desim.cache.cached import Granularity, run_cached
from desim.cache.digest import DigestOptions
from desim.cache.repo import CacheRepo
from desim.checkpoint.manager import CheckpointManager
from desim.config.engine_config import EngineConfig
from desim.core.events import FIRST, Event
from desim.core.state import CompletedEvent, SimState, SimTimes
from desim.core.time_units import DEFAULT_TIMEUNITS
from desim.engine.core_modules import install_core_modules
from desim.io.objects import InputSpec, ObjectIO, OutputSpec, coerce_specs
from desim.modules.base import SimModule
from desim.modules.descriptor import ModuleDescriptor
from desim.modules.registry import ModuleRegistry, default_registry
from desim.modules.resolver import build_dependency_graph, diagnose, expand_groups, resolve_load_order
from desim.observability.instrumentation import Instrumentation
from desim.utils.errors import (
    CheckpointFailure,
    EventExecutionError,
    ModuleInitError,
    UndefinedEventType,
    UnknownTimeUnit,
)
from desim.utils.logger import logs
from desim.utils.path import SimPaths


PlotHook = Callable[[SimState, Event], None]


class SimEngine:
    """
    SimEngine（FINAL / FROZEN）

    职责：
      - init()   ：展开模块组 → 参数 → 依赖图 / load order → 诊断 → input_objects → 调度 init 事件
      - run()    ：事件主循环（peek → 快照 → pop → 执行 → 条件事件轮询 → 间隔快照）
      - restart()：从最近快照恢复并继续
      - step()   ：只执行一个事件

    设计原则：
      - 单线程；handler 执行完才取下一个事件
      - 引擎持有 SimState 唯一可变句柄；快照 / 缓存前显式深拷贝或序列化
      - 缓存与快照是两个独立层：命中缓存的事件同样在执行前被快照
      - 所有配置通过 EngineConfig 显式传入
    """

    def __init__(
        self,
        registry: Optional[ModuleRegistry] = None,
        config: Optional[EngineConfig] = None,
        *,
        inst: Optional[Instrumentation] = None,
        object_io: Optional[ObjectIO] = None,
        cache_repo: Optional[CacheRepo] = None,
    ):
        base = registry if registry is not None else default_registry()
        # 核心模块和 init() 传入的模块实例只注册到本引擎自己的 registry
        self.registry = base.child()
        self.config = config or EngineConfig()
        self.inst = inst or Instrumentation()
        self.io = object_io or ObjectIO()
        self.checkpoints = CheckpointManager.from_config(self.config)
        self.digest_options = DigestOptions.from_config(self.config)
        self._repo = cache_repo
        self._plot_hooks: List[PlotHook] = []
        self._n_events = 0
        install_core_modules(self.registry, self.io, self.inst.progress)

    # ==================================================================
    # init
    # ==================================================================
    def init(
        self,
        modules: Sequence[Union[str, SimModule, ModuleDescriptor]],
        *,
        times: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Mapping[str, Any]]] = None,
        objects: Optional[Mapping[str, Any]] = None,
        inputs=None,
        outputs=None,
        paths=None,
        timeunits: Optional[Mapping[str, Callable]] = None,
    ) -> SimState:
        """
        modules:
            模块名 / SimModule 实例（自动注册）/ 分组 descriptor
        times:
            {"start", "end", "timeunit"}；timeunit 缺省 = 用户模块中最细的 timeunit
        params:
            {module: {param: value}}，".globals" 覆盖所有声明了同名参数的模块
        inputs / outputs:
            InputSpec / OutputSpec 列表、dict 列表或 DataFrame
        timeunits:
            {"d<unit>": fn} 用户自定义时间单位
        """
        names: List[Union[str, ModuleDescriptor]] = list(self.config.core_modules)
        for m in modules:
            if isinstance(m, SimModule):
                self.registry.register(m)
                names.append(m.module_name)
            else:
                names.append(m)

        groups: List[ModuleDescriptor] = []
        descriptors = expand_groups(names, self.registry.descriptor, groups_out=groups)
        for d in descriptors:
            self.registry.get(d.name)

        core = set(self.config.core_modules)
        user = [d for d in descriptors if d.name not in core]

        unit_reg = DEFAULT_TIMEUNITS.scope(timeunits) if timeunits else DEFAULT_TIMEUNITS
        for d in user:
            if d.timeunit is None:
                continue
            try:
                unit_reg.check(d.timeunit)
            except UnknownTimeUnit as exc:
                raise ModuleInitError(d.name, str(exc)) from exc

        times = dict(times or {})
        timeunit = unit_reg.check(times.get("timeunit") or unit_reg.min_timeunit(d.timeunit for d in user))
        start = float(times.get("start", 0.0))
        sim_times = SimTimes(
            start=start,
            end=float(times.get("end", start + 10.0)),
            current=start,
            timeunit=timeunit,
        )

        state = SimState(
            times=sim_times,
            objects=objects,
            paths=SimPaths.coerce(paths if paths is not None else "."),
            timeunits=unit_reg,
            n_completed=self.config.n_completed,
            seed=self.config.seed,
        )
        state.descriptors = {d.name: d for d in descriptors}
        state.inputs = coerce_specs(inputs, InputSpec)
        state.outputs = coerce_specs(outputs, OutputSpec)
        state.params = self._build_params(descriptors, params or {})

        state.load_order = resolve_load_order(descriptors)
        state.depends = build_dependency_graph(descriptors, groups)

        supplied = set(state.objects) | {s.object_name for s in state.inputs}
        code = {d.name: self.registry.get(d.name) for d in user} if self.config.module_code_checks else None
        state.diagnostics = diagnose(user, supplied, code)
        for diag in state.diagnostics:
            diag.log()

        for name in state.load_order:
            module = self.registry.get(name)
            try:
                module.input_objects(state)
            except Exception as exc:
                raise ModuleInitError(name, f"input_objects failed: {type(exc).__name__}: {exc}") from exc

        for name in state.load_order:
            state.schedule_event(start, name, "init", FIRST, unit=timeunit)

        logs.info(
            f"[Init] {len(user)} modules ({', '.join(d.name for d in user)}); "
            f"timeunit={timeunit}; start={sim_times.start} end={sim_times.end}"
        )
        logs.debug(f"[Init] load order: {state.load_order}")
        return state

    def _build_params(self, descriptors: Sequence[ModuleDescriptor], overrides: Mapping[str, Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
        known = {d.name for d in descriptors}
        for name in overrides:
            if name != ".globals" and name not in known:
                logs.warning(f"[Init] parameters given for '{name}', which is not a loaded module")

        globals_ = dict(overrides.get(".globals", {}))
        engine_defaults = {
            "checkpoint": {"interval": self.config.checkpoint_interval, "file": self.config.checkpoint_file},
        }

        params: Dict[str, Dict[str, Any]] = {}
        for d in descriptors:
            p = d.defaults()
            p.update(engine_defaults.get(d.name, {}))
            for k, v in globals_.items():
                if k in p:
                    p[k] = v
            for k, v in overrides.get(d.name, {}).items():
                if k not in p and not k.startswith("."):
                    logs.warning(f"[Init] parameter '{k}' is not declared by module '{d.name}'")
                p[k] = v

            for spec in d.parameters:
                value = p.get(spec.name)
                try:
                    ok = spec.in_range(value)
                except (TypeError, ValueError) as exc:
                    raise ModuleInitError(d.name, f"parameter '{spec.name}'={value!r} cannot be checked: {exc}") from exc
                if not ok:
                    logs.warning(
                        f"[Init] {d.name}: parameter '{spec.name}'={value!r} is outside [{spec.min}, {spec.max}]"
                    )
            params[d.name] = p
        return params

    # ==================================================================
    # run
    # ==================================================================
    def cache_repo(self, state: SimState) -> CacheRepo:
        if self._repo is None:
            self._repo = CacheRepo(state.paths.cache)
        return self._repo

    def add_plot_hook(self, hook: PlotHook) -> None:
        """hook(state, event) 在每个 "plot*" 事件执行后调用"""
        self._plot_hooks.append(hook)

    def run(
        self,
        state: SimState,
        until: Optional[float] = None,
        *,
        cache: Optional[bool] = None,
        not_older_than: Optional[datetime] = None,
    ) -> SimState:
        """
        执行到 until（默认 times.end）。始终使用返回值：整次运行命中缓存时
        返回的是缓存中的 SimState。
        """
        use_cache = self.config.use_cache if cache is None else cache
        if not use_cache:
            return self._run(state, until)
        return run_cached(
            self._run,
            state,
            until,
            repo=self.cache_repo(state),
            granularity=Granularity.RUN,
            not_older_than=not_older_than,
            options=self.digest_options,
            cache_key={
                "state": state,
                "until": until,
                "modules": {name: self.registry.get(name).code() for name in state.load_order},
            },
            label="simulation run",
        )

    def _run(self, state: SimState, until: Optional[float] = None) -> SimState:
        stop_at = state.times.end if until is None else float(until)
        if stop_at > state.times.end:
            state.times.end = stop_at

        started = self._n_events
        logs.info(f"[Engine] run t={state.now} -> {stop_at} ({state.timeunit})")

        while self._step(state, stop_at) is not None:
            pass

        state.times.current = max(state.now, stop_at)
        state.queue.advance_to(state.times.current)

        logs.info(f"[Engine] run finished at t={state.now}; {self._n_events - started} events")
        if self.config.timeline_report:
            self.inst.generate_timeline_report(f"t={state.times.start:g}..{stop_at:g} {state.timeunit}")
        return state

    def step(self, state: SimState) -> Optional[Event]:
        """执行下一个事件（不超过 end）；没有可执行事件时返回 None"""
        return self._step(state, state.times.end)

    def restart(self, until: Optional[float] = None) -> SimState:
        """从最近一次快照恢复并继续运行；快照前已完成的事件不会重跑"""
        snap = self.checkpoints.latest
        state = self.checkpoints.restore_latest()
        logs.info(f"[Engine] restarting from snapshot {snap.snapshot_id} at t={snap.sim_time}")
        return self.run(state, until, cache=False)

    # ------------------------------------------------------------------
    def _step(self, state: SimState, stop_at: float) -> Optional[Event]:
        nxt = state.queue.peek()
        if nxt is None or nxt.time > stop_at:
            return None

        if self.checkpoints.recovery_mode:
            self._snapshot(state, nxt)

        event = state.queue.pop_next()
        state.times.current = state.queue.advance_time_if_needed(event)
        state.current = event
        self._execute(state, event)
        state.current = None

        state.queue.promote_conditionals(state)
        self._n_events += 1

        if self.checkpoints.should_checkpoint(state, self._n_events):
            self._snapshot(state, state.queue.peek())
        return event

    def _snapshot(self, state: SimState, nxt: Optional[Event]) -> Optional[int]:
        try:
            sid = self.checkpoints.checkpoint(state, nxt)
        except CheckpointFailure as exc:
            logs.warning(f"[Checkpoint] {exc}; continuing without recovery point")
            self.inst.metrics.increment("checkpoint_failures")
            return None
        self.inst.metrics.increment("checkpoints")
        return sid

    # ------------------------------------------------------------------
    def _execute(self, state: SimState, event: Event) -> None:
        module = self.registry.get(event.module_name)
        self._apply_seed(state, event)
        use_cache = self._event_cache_mode(state, event)

        clock = datetime.now()
        t0 = perf_counter()
        hit = False
        with self.inst.timer(event.label()):
            try:
                if use_cache is not None:
                    hit = self._dispatch_cached(module, state, event, use_cache)
                else:
                    result = module.dispatch(event.event_type, state)
                    if result is not state:
                        raise TypeError(
                            f"handler returned {type(result).__name__}; "
                            f"handlers must modify and return the state they receive"
                        )
            except UndefinedEventType as exc:
                if self.config.skip_undefined_events:
                    logs.warning(f"[Engine] {exc}; skipped")
                    self.inst.metrics.increment("events_skipped")
                    return
                raise self._failure(event, exc) from exc
            except Exception as exc:
                raise self._failure(event, exc) from exc

        state.completed.append(CompletedEvent(event, clock, perf_counter() - t0, hit))
        self.inst.metrics.increment("events_executed")
        if hit:
            self.inst.metrics.increment("cache_hits")

        if event.event_type.startswith("plot"):
            for hook in self._plot_hooks:
                hook(state, event)

    def _failure(self, event: Event, exc: BaseException) -> EventExecutionError:
        snap = self.checkpoints.latest if self.checkpoints.recovery_mode else None
        err = EventExecutionError(event, exc, snap.snapshot_id if snap is not None else None)
        logs.error(f"[Engine] {err}")
        return err

    def _apply_seed(self, state: SimState, event: Event) -> None:
        seed = state.params.get(event.module_name, {}).get(".seed")
        if isinstance(seed, Mapping):
            seed = seed.get(event.event_type)
        if seed is not None:
            state.rng = np.random.default_rng(seed)

    @staticmethod
    def _event_cache_mode(state: SimState, event: Event) -> Optional[Granularity]:
        flag = state.params.get(event.module_name, {}).get(".useCache")
        if flag is True:
            return Granularity.MODULE
        if isinstance(flag, str) and flag == event.event_type:
            return Granularity.EVENT
        if isinstance(flag, (list, tuple, set, frozenset)) and event.event_type in flag:
            return Granularity.EVENT
        return None

    def _dispatch_cached(self, module: SimModule, state: SimState, event: Event, granularity: Granularity) -> bool:
        """
        事件级缓存：key = 事件 + 模块参数 + 声明的输入 + 模块私有数据
        artifact = 声明的输出 + 模块私有数据 + 本事件新调度的事件
        返回 True 表示结果来自缓存
        """
        name = event.module_name
        desc = state.descriptors[name]
        before = state.queue.next_seq
        executed: List[bool] = []

        def _execute_event():
            executed.append(True)
            module.dispatch(event.event_type, state)
            return {
                "outputs": {o: state.objects[o] for o in desc.output_names if o in state},
                "module_state": state.module_states.get(name, {}),
                "scheduled": [
                    (e.time, e.module_name, e.event_type, e.priority)
                    for e in state.queue.events()
                    if e.seq >= before
                ],
            }

        key = {
            "module": name,
            "module_code": module.code(),
            "event_type": event.event_type,
            "time": event.time,
            "params": state.params.get(name, {}),
            "inputs": {o: state.get(o) for o in desc.input_names},
            "module_state": state.module_states.get(name, {}),
        }
        artifact = run_cached(
            _execute_event,
            repo=self.cache_repo(state),
            granularity=granularity,
            options=self.digest_options,
            cache_key=key,
            label=event.label(),
            tags={"module": name, "event_type": event.event_type},
        )
        if executed:
            return False

        state.objects.update(artifact["outputs"])
        state.module_states[name] = artifact["module_state"]
        for t, m, et, p in artifact["scheduled"]:
            state.queue.schedule(Event(t, m, et, p))
        return True
