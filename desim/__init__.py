#!filepath: desim/__init__.py

from .utils.logger import Logging, logs
from .utils.filesystem import FileSystem
from .utils.path import SimPaths
from .config.app_config import AppConfig
from .config.engine_config import EngineConfig

from .core import (
    FIRST,
    HIGHEST,
    LAST,
    LOWEST,
    NORMAL,
    Event,
    EventQueue,
    SimState,
    SimTimes,
    TimeUnitRegistry,
    module_state,
    param,
)
from .modules import HandlerModule, ModuleRegistry, SimModule, handles, register_module
from .cache import CacheRepo, cached, digest, run_cached
from .checkpoint import CheckpointManager, load_sim, save_sim
from .engine.simulation import SimEngine

# alias 简化调用
fs = FileSystem

__all__ = [
    "logs", "Logging",
    "fs",
    "SimPaths",
    "AppConfig", "EngineConfig",
    "SimEngine", "SimState", "SimTimes",
    "SimModule", "HandlerModule", "handles", "register_module", "ModuleRegistry",
    "Event", "EventQueue", "HIGHEST", "FIRST", "NORMAL", "LAST", "LOWEST",
    "module_state", "param",
    "TimeUnitRegistry",
    "CacheRepo", "cached", "run_cached", "digest",
    "CheckpointManager", "save_sim", "load_sim",
]
