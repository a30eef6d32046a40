#!filepath: desim/utils/path.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from desim.utils.filesystem import FileSystem
from desim.utils.logger import logs


@dataclass
class SimPaths:
    """
    一次模拟的目录表（role → path）

    root/
     ├── cache/     CacheRepo（artifacts + tags.parquet）
     ├── inputs/    load 模块读取的原始文件
     ├── outputs/   save / checkpoint 模块写出的文件
     └── modules/   模块描述文件（*.yml）
    """

    cache: Path
    inputs: Path
    outputs: Path
    modules: Path

    @classmethod
    def under(cls, root: str | Path) -> "SimPaths":
        root = Path(root)
        return cls(
            cache=root / "cache",
            inputs=root / "inputs",
            outputs=root / "outputs",
            modules=root / "modules",
        )

    @classmethod
    def from_config(cls, cfg) -> "SimPaths":
        root = Path(cfg.root)
        return cls(
            cache=root / cfg.cache,
            inputs=root / cfg.inputs,
            outputs=root / cfg.outputs,
            modules=root / cfg.modules,
        )

    @classmethod
    def coerce(cls, value) -> "SimPaths":
        """SimPaths / 根目录 / {role: path} 映射 → SimPaths"""
        if isinstance(value, SimPaths):
            return value
        if isinstance(value, Mapping):
            base = cls.under(value.get("root", "."))
            for role in ("cache", "inputs", "outputs", "modules"):
                if role in value:
                    setattr(base, role, Path(value[role]))
            return base
        return cls.under(value)

    def ensure(self) -> "SimPaths":
        for p in (self.cache, self.inputs, self.outputs, self.modules):
            FileSystem.ensure_dir(p)
        logs.debug(f"[Paths] ensured {self}")
        return self

    def as_dict(self) -> dict:
        return {
            "cache": self.cache,
            "inputs": self.inputs,
            "outputs": self.outputs,
            "modules": self.modules,
        }
