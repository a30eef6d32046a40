#!filepath: desim/config/engine_config.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


CORE_MODULES = ["checkpoint", "save", "progress", "load"]


class PathsConfig(BaseModel):
    root: str = "."
    cache: str = "cache"
    inputs: str = "inputs"
    outputs: str = "outputs"
    modules: str = "modules"


class EngineConfig(BaseModel):
    """
    EngineConfig（FINAL / FROZEN）

    引擎唯一配置载体，通过构造函数显式传入 SimEngine / CheckpointManager /
    CacheRepo，不存在进程级全局选项。
    """

    # -------------------------
    # event loop
    # -------------------------
    n_completed: int = Field(default=1000, ge=0)
    skip_undefined_events: bool = False
    seed: Optional[int] = None
    core_modules: List[str] = Field(default_factory=lambda: list(CORE_MODULES))

    # -------------------------
    # checkpoint / restart
    # -------------------------
    # 每个事件执行前保留的快照数；0 = 关闭 recovery mode
    recovery_mode: int = Field(default=1, ge=0)
    checkpoint_capacity: int = Field(default=1, ge=1)
    checkpoint_interval: Optional[float] = None
    checkpoint_every_n_events: Optional[int] = None
    checkpoint_file: Optional[str] = None

    # -------------------------
    # cache
    # -------------------------
    use_cache: bool = False
    digest_algo: str = "blake2b"
    digest_length: int = Field(default=1_000_000, gt=0)

    # -------------------------
    # diagnostics / observability
    # -------------------------
    module_code_checks: bool = True
    timeline_report: bool = True

    @field_validator("digest_algo")
    @classmethod
    def _known_algo(cls, v: str) -> str:
        allowed = {"blake2b", "crc32", "adler32", "md5", "sha1", "sha256"}
        if v not in allowed:
            raise ValueError(f"digest_algo must be one of {sorted(allowed)}")
        return v

    @property
    def snapshot_capacity(self) -> int:
        return max(self.recovery_mode, self.checkpoint_capacity)
