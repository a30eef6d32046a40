#!filepath: desim/io/objects.py
from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional

import joblib
import pandas as pd

from desim.utils.errors import ObjectIOError
from desim.utils.filesystem import FileSystem
from desim.utils.logger import logs

if TYPE_CHECKING:
    from desim.core.state import SimState


Loader = Callable[[Path], Any]
Saver = Callable[[Any, Path], None]


@dataclass
class InputSpec:
    """inputs 表的一行：在 load_time 把 file 读入 state[object_name]"""

    object_name: str
    file: Optional[Path] = None
    fun: Optional[str] = None           # loader key；None = 按扩展名
    load_time: Optional[float] = None   # None = start
    interval: Optional[float] = None    # 周期性重新读取
    loaded: bool = False

    def __post_init__(self):
        if self.file is not None:
            self.file = Path(self.file)


@dataclass
class OutputSpec:
    """outputs 表的一行：在 save_time 把 state[object_name] 写到 file"""

    object_name: str
    file: Optional[Path] = None         # None = <outputs>/<name>_time<t>.joblib
    fun: Optional[str] = None
    save_time: Optional[float] = None   # None = end
    saved: bool = False

    def __post_init__(self):
        if self.file is not None:
            self.file = Path(self.file)


# ----------------------------------------------------------------------
# default loaders / savers
# ----------------------------------------------------------------------
def _load_text(p: Path) -> str:
    return p.read_text(encoding="utf-8")


def _save_text(obj: Any, p: Path) -> None:
    FileSystem.safe_write(p, str(obj).encode("utf-8"))


def _load_json(p: Path) -> Any:
    with open(p, "r", encoding="utf-8") as f:
        return json.load(f)


def _save_json(obj: Any, p: Path) -> None:
    FileSystem.safe_write(p, json.dumps(obj, indent=2, sort_keys=True, default=str).encode("utf-8"))


def _save_csv(obj: Any, p: Path) -> None:
    pd.DataFrame(obj).to_csv(p, index=False)


def _save_parquet(obj: Any, p: Path) -> None:
    pd.DataFrame(obj).to_parquet(p, index=False)


def _save_joblib(obj: Any, p: Path) -> None:
    joblib.dump(obj, p)


class ObjectIO:
    """
    文件 ↔ 对象的 loader / saver 注册表，按扩展名（或显式 fun）选择。

    引擎只要求：结果放进 state[object_name]，并把 loaded / saved 标记回写。
    """

    def __init__(self) -> None:
        self._loaders: Dict[str, Loader] = {
            "csv": pd.read_csv,
            "parquet": pd.read_parquet,
            "joblib": joblib.load,
            "pkl": joblib.load,
            "txt": _load_text,
            "json": _load_json,
        }
        self._savers: Dict[str, Saver] = {
            "csv": _save_csv,
            "parquet": _save_parquet,
            "joblib": _save_joblib,
            "pkl": _save_joblib,
            "txt": _save_text,
            "json": _save_json,
        }

    def register_loader(self, key: str, fn: Loader) -> None:
        self._loaders[key.lstrip(".").lower()] = fn

    def register_saver(self, key: str, fn: Saver) -> None:
        self._savers[key.lstrip(".").lower()] = fn

    @staticmethod
    def _key(spec_fun: Optional[str], path: Optional[Path]) -> str:
        if spec_fun:
            return spec_fun.lstrip(".").lower()
        if path is None or not path.suffix:
            raise ObjectIOError(f"Cannot infer file type of {path}")
        return path.suffix.lstrip(".").lower()

    # ------------------------------------------------------------------
    def load(self, spec: InputSpec) -> Any:
        if spec.file is None:
            raise ObjectIOError(f"Input '{spec.object_name}' has no file")
        key = self._key(spec.fun, spec.file)
        loader = self._loaders.get(key)
        if loader is None:
            raise ObjectIOError(f"No loader for '{key}' (object '{spec.object_name}'). Available: {sorted(self._loaders)}")
        try:
            return loader(spec.file)
        except (OSError, ValueError) as exc:
            raise ObjectIOError(f"Loading '{spec.object_name}' from {spec.file} failed: {exc}") from exc

    def save(self, obj: Any, spec: OutputSpec, path: Path) -> Path:
        key = self._key(spec.fun, path)
        saver = self._savers.get(key)
        if saver is None:
            raise ObjectIOError(f"No saver for '{key}' (object '{spec.object_name}'). Available: {sorted(self._savers)}")
        FileSystem.ensure_dir(path.parent)
        saver(obj, path)
        return path

    # ------------------------------------------------------------------
    # table driven (core load / save modules)
    # ------------------------------------------------------------------
    def load_due(self, state: "SimState") -> List[str]:
        """读取所有 load_time <= now 且未 loaded 的输入；带 interval 的追加下一行"""
        now = state.now
        names: List[str] = []
        follow_ups: List[InputSpec] = []
        for spec in state.inputs:
            t = state.times.start if spec.load_time is None else spec.load_time
            if spec.loaded or t > now:
                continue
            state[spec.object_name] = self.load(spec)
            spec.loaded = True
            names.append(spec.object_name)
            logs.info(f"[Load] {spec.object_name} <- {spec.file} (t={now})")
            if spec.interval:
                follow_ups.append(replace(spec, load_time=t + spec.interval, loaded=False))
        state.inputs.extend(follow_ups)
        return names

    def default_output_path(self, state: "SimState", spec: OutputSpec, t: float) -> Path:
        return Path(state.paths.outputs) / f"{spec.object_name}_time{t:g}.joblib"

    def save_due(self, state: "SimState") -> List[Path]:
        now = state.now
        written: List[Path] = []
        for spec in state.outputs:
            t = state.times.end if spec.save_time is None else spec.save_time
            if spec.saved or t > now:
                continue
            if spec.object_name not in state:
                logs.warning(f"[Save] '{spec.object_name}' is not in the state at t={now}; skipped")
                continue
            path = spec.file or self.default_output_path(state, spec, t)
            written.append(self.save(state[spec.object_name], spec, path))
            spec.saved = True
            logs.info(f"[Save] {spec.object_name} -> {path} (t={now})")
        return written

    @staticmethod
    def pending_times(specs: Iterable[Any], attr: str, default: float, now: float) -> List[float]:
        times = set()
        for spec in specs:
            done = spec.loaded if isinstance(spec, InputSpec) else spec.saved
            t = getattr(spec, attr)
            t = default if t is None else t
            if not done and t >= now:
                times.add(t)
        return sorted(times)


def coerce_specs(rows, cls) -> list:
    """list[spec] / list[dict] / DataFrame → list[spec]"""
    if rows is None:
        return []
    if isinstance(rows, pd.DataFrame):
        rows = rows.to_dict(orient="records")
    out = []
    for row in rows:
        if isinstance(row, cls):
            out.append(row)
        elif isinstance(row, Mapping):
            clean = {k: (None if _is_na(v) else v) for k, v in row.items()}
            out.append(cls(**clean))
        else:
            raise TypeError(f"Cannot build {cls.__name__} from {type(row).__name__}")
    return out


def _is_na(v: Any) -> bool:
    try:
        return bool(pd.isna(v))
    except (TypeError, ValueError):
        return False
