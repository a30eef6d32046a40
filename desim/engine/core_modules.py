#!filepath: desim/engine/core_modules.py
"""
Core modules loaded into every simulation ahead of user modules.

- checkpoint : writes the state to ``checkpoint_file`` every ``interval``
- save       : writes the outputs table when each ``save_time`` is reached
- progress   : logs simulation progress every ``interval``
- load       : reads the inputs table when each ``load_time`` is reached
"""
from __future__ import annotations

from pathlib import Path

from desim.checkpoint.persist import save_sim
from desim.core.events import FIRST, LAST
from desim.core.state import SimState, module_state, param
from desim.io.objects import ObjectIO
from desim.modules.base import SimModule, handles
from desim.modules.registry import ModuleRegistry
from desim.observability.progress import ProgressReporter
from desim.utils.errors import CheckpointFailure
from desim.utils.logger import logs


class CheckpointModule(SimModule):
    metadata = {
        "name": "checkpoint",
        "description": "periodic on-disk checkpoint of the whole simulation state",
        "parameters": [
            {"name": "interval", "default": None, "min": 0, "description": "time between checkpoints"},
            {"name": "file", "default": None, "description": "checkpoint file, relative to the outputs path"},
        ],
    }

    def _path(self, state: SimState) -> Path:
        file = Path(param(state, "checkpoint", "file"))
        return file if file.is_absolute() else Path(state.paths.outputs) / file

    @handles("init")
    def init(self, state: SimState):
        interval = param(state, "checkpoint", "interval", None)
        if interval and param(state, "checkpoint", "file", None):
            state.schedule_event(state.now + interval, "checkpoint", "save", LAST)

    @handles("save")
    def save(self, state: SimState):
        try:
            save_sim(state, self._path(state))
        except CheckpointFailure as exc:
            logs.warning(f"[Checkpoint] {exc}; continuing without an on-disk checkpoint")
        interval = param(state, "checkpoint", "interval")
        state.schedule_event(state.now + interval, "checkpoint", "save", LAST)


class SaveModule(SimModule):
    metadata = {
        "name": "save",
        "description": "writes objects listed in the outputs table at their save_time",
    }

    def __init__(self, io: ObjectIO):
        super().__init__()
        self.io = io

    def _schedule_pending(self, state: SimState):
        scheduled = module_state(state, "save").setdefault("scheduled", set())
        for t in self.io.pending_times(state.outputs, "save_time", state.times.end, state.now):
            if t not in scheduled:
                state.schedule_event(t, "save", "save", LAST)
                scheduled.add(t)

    @handles("init")
    def init(self, state: SimState):
        self._schedule_pending(state)

    @handles("save")
    def save(self, state: SimState):
        self.io.save_due(state)
        self._schedule_pending(state)


class ProgressModule(SimModule):
    metadata = {
        "name": "progress",
        "description": "logs how far the simulation has advanced",
        "parameters": [
            {"name": "interval", "default": None, "min": 0, "description": "time between progress lines"},
        ],
    }

    def __init__(self, reporter: ProgressReporter):
        super().__init__()
        self.reporter = reporter

    @handles("init")
    def init(self, state: SimState):
        interval = param(state, "progress", "interval", None)
        if not interval:
            return
        self.reporter.start("simulation", state.times.end, state.timeunit)
        state.schedule_event(state.now + interval, "progress", "progress", LAST)

    @handles("progress")
    def progress(self, state: SimState):
        self.reporter.update("simulation", state.now, state.times.end, state.timeunit)
        interval = param(state, "progress", "interval")
        nxt = state.now + interval
        if nxt <= state.times.end:
            state.schedule_event(nxt, "progress", "progress", LAST)
        else:
            self.reporter.done("simulation")


class LoadModule(SimModule):
    metadata = {
        "name": "load",
        "description": "reads objects listed in the inputs table at their load_time",
    }

    def __init__(self, io: ObjectIO):
        super().__init__()
        self.io = io

    def _schedule_pending(self, state: SimState):
        scheduled = module_state(state, "load").setdefault("scheduled", set())
        for t in self.io.pending_times(state.inputs, "load_time", state.times.start, state.now):
            if t > state.now and t not in scheduled:
                state.schedule_event(t, "load", "inputs", FIRST)
                scheduled.add(t)

    @handles("init")
    def init(self, state: SimState):
        self.io.load_due(state)
        self._schedule_pending(state)

    @handles("inputs")
    def inputs(self, state: SimState):
        self.io.load_due(state)
        self._schedule_pending(state)


def install_core_modules(registry: ModuleRegistry, io: ObjectIO, reporter: ProgressReporter) -> None:
    registry.register(CheckpointModule())
    registry.register(SaveModule(io))
    registry.register(ProgressModule(reporter))
    registry.register(LoadModule(io))
