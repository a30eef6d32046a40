from .app_config import AppConfig
from .engine_config import CORE_MODULES, EngineConfig, PathsConfig
from .log_config import LogConfig

__all__ = ["AppConfig", "EngineConfig", "PathsConfig", "LogConfig", "CORE_MODULES"]
