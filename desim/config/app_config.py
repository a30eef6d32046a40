#!filepath: desim/config/app_config.py
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .engine_config import EngineConfig, PathsConfig
from .log_config import LogConfig


DEFAULT_CONFIG = Path(__file__).with_name("base.yml")

# 环境变量 → (section, key)
ENV_OVERRIDES = {
    "DESIM_LOG_LEVEL": ("log", "level"),
    "DESIM_LOG_DIR": ("log", "dir"),
    "DESIM_ROOT": ("paths", "root"),
    "DESIM_CACHE_DIR": ("paths", "cache"),
    "DESIM_SEED": ("engine", "seed"),
    "DESIM_USE_CACHE": ("engine", "use_cache"),
}


class AppConfig(BaseModel):
    log: LogConfig = Field(default_factory=LogConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)

    @classmethod
    def load(cls, path: str | Path | None = None, env_file: str | Path | None = None) -> "AppConfig":
        """
        加载 YAML 配置 + .env
        - 默认使用包内 desim/config/base.yml
        - .env 默认取当前工作目录
        - DESIM_* 环境变量覆盖 YAML
        """
        # 1) 先加载 .env
        load_dotenv(Path(env_file) if env_file else Path.cwd() / ".env")

        # 2) 决定配置文件路径
        path = Path(path) if path is not None else DEFAULT_CONFIG
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        # 3) 读取 YAML
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        # 4) 环境变量注入
        for env_key, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_key)
            if value is not None:
                raw.setdefault(section, {})[key] = value

        return cls(**raw)
