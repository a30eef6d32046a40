#!filepath: desim/cache/digest.py
"""
Reproducible digests.

``robust_digestible`` projects a value onto a JSON-compatible tree that
leaves out what differs between otherwise identical runs:

- mapping keys starting with ``._`` and keys listed in ``omit_keys``
- random-number-generator objects (their state is bookkeeping, not input)
- file paths, replaced by a hash of the first ``length`` bytes of content
- functions, replaced by their code, defaults, closure values and the
  globals they reference
- run bookkeeping of a SimState (completed log, wall clock, paths, RNG)

``digest`` serialises that tree canonically and hashes it.
"""
from __future__ import annotations

import dataclasses
import enum
import functools
import hashlib
import json
import pickle
import random
import zlib
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta
from pathlib import Path, PurePath
from types import BuiltinFunctionType, CodeType, FunctionType, MethodType, ModuleType
from typing import Any, Optional

import numpy as np
import pandas as pd
from pydantic import BaseModel

from desim.core.events import ConditionalEvent, Event
from desim.core.state import SimState
from desim.utils.errors import CacheDigestFailure
from desim.utils.filesystem import FileSystem


ALGORITHMS = ("blake2b", "crc32", "adler32", "md5", "sha1", "sha256")

DEFAULT_OMIT_KEYS = ("timestamp", "created_at", "clock_time", "accessed")

_RNG_TYPES = (
    random.Random,
    np.random.Generator,
    np.random.RandomState,
    np.random.BitGenerator,
    np.random.SeedSequence,
)

# 函数引用的全局变量中，按值 digest 的类型
_GLOBAL_VALUE_TYPES = (
    type(None), bool, int, float, complex, str, bytes, bytearray,
    enum.Enum, datetime, date, time, timedelta, PurePath,
    Mapping, list, tuple, set, frozenset,
    np.ndarray, np.generic, pd.DataFrame, pd.Series, pd.Index, BaseModel,
    type, FunctionType, MethodType, BuiltinFunctionType, functools.partial,
) + _RNG_TYPES


@dataclasses.dataclass(frozen=True)
class DigestOptions:
    algo: str = "blake2b"
    # 文件只读取前 length 字节
    length: int = 1_000_000
    omit_keys: tuple = DEFAULT_OMIT_KEYS
    hidden_prefix: str = "._"

    def __post_init__(self):
        if self.algo not in ALGORITHMS:
            raise CacheDigestFailure(f"Unknown digest algorithm '{self.algo}'. Available: {ALGORITHMS}")

    @classmethod
    def from_config(cls, cfg) -> "DigestOptions":
        return cls(algo=cfg.digest_algo, length=cfg.digest_length)


DEFAULT_OPTIONS = DigestOptions()


def hash_bytes(data: bytes, algo: str = "blake2b") -> str:
    """定长十六进制摘要"""
    if algo == "crc32":
        return f"{zlib.crc32(data) & 0xFFFFFFFF:08x}"
    if algo == "adler32":
        return f"{zlib.adler32(data) & 0xFFFFFFFF:08x}"
    if algo == "blake2b":
        return hashlib.blake2b(data, digest_size=8).hexdigest()
    if algo in ALGORITHMS:
        return hashlib.new(algo, data).hexdigest()
    raise CacheDigestFailure(f"Unknown digest algorithm '{algo}'")


# ----------------------------------------------------------------------
# normalisation
# ----------------------------------------------------------------------
def _qualname(obj: Any) -> str:
    t = obj if isinstance(obj, type) else type(obj)
    return f"{t.__module__}.{t.__qualname__}"


def _const(c: Any, opts: DigestOptions) -> Any:
    if isinstance(c, CodeType):
        return _code_identity(c, opts)
    if isinstance(c, tuple):
        return [_const(x, opts) for x in c]
    if isinstance(c, frozenset):
        # frozenset 的 repr 顺序随 hash 随机化变化
        return {"__set__": sorted(repr(x) for x in c)}
    return repr(c)


def _code_identity(code: CodeType, opts: DigestOptions) -> dict:
    """字节码 + 常量（嵌套函数 / lambda 的 code object 递归展开）"""
    return {
        "bytecode": hash_bytes(code.co_code, opts.algo),
        "consts": [_const(c, opts) for c in code.co_consts],
        "names": list(code.co_names),
    }


def _referenced_names(code: CodeType) -> list:
    names = list(code.co_names)
    for c in code.co_consts:
        if isinstance(c, CodeType):
            names.extend(_referenced_names(c))
    return list(dict.fromkeys(names))


def _cell_value(cell) -> Any:
    try:
        return cell.cell_contents
    except ValueError:
        # 闭包变量尚未赋值
        return "__empty_cell__"


def _global_value(value: Any, opts: DigestOptions, stack: set) -> Any:
    """
    被引用的全局变量：代码（函数 / 类 / 模块）与数据按值 digest；
    其他对象（logger、registry 之类的服务对象）只记录类型。
    """
    if isinstance(value, ModuleType):
        return {"__module__": value.__name__}
    if isinstance(value, _GLOBAL_VALUE_TYPES) or dataclasses.is_dataclass(value):
        return _normalise(value, opts, stack)
    return {"__global__": _qualname(value)}


def _function_identity(fn: Any, opts: DigestOptions, stack: set) -> dict:
    """
    函数身份 = 名字 + 字节码 / 常量 + 默认参数 + 闭包变量值 + 引用的全局变量值。
    绑定方法只看 __func__，绑定的实例不属于函数身份。
    """
    if isinstance(fn, MethodType):
        fn = fn.__func__
    ident = {"__fn__": f"{getattr(fn, '__module__', '')}.{getattr(fn, '__qualname__', repr(fn))}"}
    code = getattr(fn, "__code__", None)
    # 递归引用（自身 / 互相调用）只记名字
    if code is None or id(fn) in stack:
        return ident

    stack.add(id(fn))
    try:
        ident["code"] = _code_identity(code, opts)
        ident["defaults"] = _normalise(fn.__defaults__, opts, stack)
        ident["kwdefaults"] = _normalise(fn.__kwdefaults__, opts, stack)
        ident["closure"] = [
            [var, _normalise(_cell_value(cell), opts, stack)]
            for var, cell in zip(code.co_freevars, fn.__closure__ or ())
        ]
        scope = getattr(fn, "__globals__", {})
        ident["globals"] = [
            [name, _global_value(scope[name], opts, stack)]
            for name in _referenced_names(code)
            if name in scope
        ]
    finally:
        stack.discard(id(fn))
    return ident


def _keep_key(key: Any, opts: DigestOptions) -> bool:
    if isinstance(key, str):
        if key.startswith(opts.hidden_prefix):
            return False
        if key in opts.omit_keys:
            return False
    return True


def _sort_key(item: Any) -> str:
    return json.dumps(item, sort_keys=True, default=str)


def _path(p: PurePath, opts: DigestOptions) -> Any:
    path = Path(p)
    if path.is_file():
        return {"__file__": path.name, "content": FileSystem.file_hash(path, length=opts.length)}
    if path.is_dir():
        return {
            "__dir__": path.name,
            "files": [_path(f, opts) for f in sorted(path.iterdir())],
        }
    return {"__path__": str(path)}


def _state_projection(state) -> dict:
    """SimState 中决定后续演化的部分"""
    return {
        "objects": state.objects,
        "params": state.params,
        "module_states": state.module_states,
        "times": {
            "start": state.times.start,
            "end": state.times.end,
            "current": state.times.current,
            "timeunit": state.times.timeunit,
        },
        "queue": [
            {"time": e.time, "module": e.module_name, "event": e.event_type, "priority": e.priority}
            for e in state.queue.events()
        ],
        "conditionals": [
            {"module": c.module_name, "event": c.event_type, "priority": c.priority}
            for c in state.queue.conditionals()
        ],
        "load_order": list(state.load_order),
        # InputSpec / OutputSpec；file 按内容 digest
        "inputs": list(state.inputs),
        "outputs": list(state.outputs),
    }


def robust_digestible(value: Any, options: Optional[DigestOptions] = None) -> Any:
    opts = options or DEFAULT_OPTIONS
    return _normalise(value, opts, set())


def _normalise(value: Any, opts: DigestOptions, stack: set) -> Any:
    # -------- scalars --------
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int) and not isinstance(value, enum.Enum):
        return value
    if isinstance(value, float):
        return value if np.isfinite(value) else {"__float__": repr(value)}
    if isinstance(value, np.generic):
        return _normalise(value.item(), opts, stack)
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes__": hash_bytes(bytes(value), opts.algo)}
    if isinstance(value, enum.Enum):
        return {"__enum__": _qualname(value), "value": _normalise(value.value, opts, stack)}
    if isinstance(value, (datetime, date, time)):
        return {"__datetime__": value.isoformat()}
    if isinstance(value, timedelta):
        return {"__timedelta__": value.total_seconds()}

    # -------- stripped --------
    if isinstance(value, _RNG_TYPES):
        return "__rng__"
    if isinstance(value, PurePath):
        return _path(value, opts)
    if isinstance(value, type):
        return {"__type__": _qualname(value)}
    if isinstance(value, (FunctionType, MethodType, BuiltinFunctionType)):
        return _function_identity(value, opts, stack)
    if isinstance(value, ModuleType):
        return {"__module__": value.__name__}

    # -------- containers (cycle guarded) --------
    oid = id(value)
    if oid in stack:
        raise CacheDigestFailure(f"Self-referencing {type(value).__name__} cannot be digested")
    stack.add(oid)
    try:
        return _normalise_container(value, opts, stack)
    finally:
        stack.discard(oid)


def _normalise_container(value: Any, opts: DigestOptions, stack: set) -> Any:
    if isinstance(value, SimState):
        return {"__simstate__": _normalise(_state_projection(value), opts, stack)}
    if isinstance(value, Event):
        return {
            "__event__": [value.time, value.module_name, value.event_type, value.priority],
        }
    if isinstance(value, ConditionalEvent):
        return {
            "__conditional__": [value.module_name, value.event_type, value.priority],
            "predicate": _normalise(value.predicate, opts, stack),
        }

    if isinstance(value, Mapping):
        pairs = [
            [_normalise(k, opts, stack), _normalise(v, opts, stack)]
            for k, v in value.items()
            if _keep_key(k, opts)
        ]
        return {"__map__": sorted(pairs, key=lambda kv: _sort_key(kv[0]))}
    if isinstance(value, (list, tuple)):
        tag = "__tuple__" if isinstance(value, tuple) else "__list__"
        return {tag: [_normalise(v, opts, stack) for v in value]}
    if isinstance(value, (set, frozenset)):
        return {"__set__": sorted((_normalise(v, opts, stack) for v in value), key=_sort_key)}

    if isinstance(value, np.ndarray):
        if value.dtype == object:
            return {"__ndarray__": str(value.shape), "items": [_normalise(v, opts, stack) for v in value.ravel().tolist()]}
        arr = np.ascontiguousarray(value)
        return {
            "__ndarray__": str(arr.dtype),
            "shape": list(arr.shape),
            "data": hash_bytes(arr.tobytes(), opts.algo),
        }
    if isinstance(value, pd.DataFrame):
        hashed = pd.util.hash_pandas_object(value, index=True).to_numpy()
        return {
            "__dataframe__": [str(c) for c in value.columns],
            "dtypes": [str(t) for t in value.dtypes],
            "data": hash_bytes(hashed.tobytes(), opts.algo),
        }
    if isinstance(value, (pd.Series, pd.Index)):
        hashed = pd.util.hash_pandas_object(value, index=isinstance(value, pd.Series)).to_numpy()
        return {
            "__series__": str(getattr(value, "name", None)),
            "dtype": str(value.dtype),
            "data": hash_bytes(hashed.tobytes(), opts.algo),
        }

    if isinstance(value, BaseModel):
        return {"__model__": _qualname(value), "fields": _normalise(value.model_dump(), opts, stack)}
    if dataclasses.is_dataclass(value):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return {"__dataclass__": _qualname(value), "fields": _normalise(fields, opts, stack)}
    if isinstance(value, functools.partial):
        return {
            "__partial__": _normalise(value.func, opts, stack),
            "args": _normalise(value.args, opts, stack),
            "keywords": _normalise(value.keywords, opts, stack),
        }
    if hasattr(value, "__dict__"):
        return {"__object__": _qualname(value), "fields": _normalise(vars(value), opts, stack)}

    try:
        blob = pickle.dumps(value, protocol=4)
    except (pickle.PicklingError, TypeError, AttributeError) as exc:
        raise CacheDigestFailure(f"Cannot digest object of type {type(value).__name__}: {exc}") from exc
    return {"__pickle__": _qualname(value), "data": hash_bytes(blob, opts.algo)}


# ----------------------------------------------------------------------
# public
# ----------------------------------------------------------------------
def digest(value: Any, options: Optional[DigestOptions] = None) -> str:
    opts = options or DEFAULT_OPTIONS
    try:
        tree = robust_digestible(value, opts)
        payload = json.dumps(tree, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except CacheDigestFailure:
        raise
    except (TypeError, ValueError, RecursionError, OSError) as exc:
        raise CacheDigestFailure(f"Cannot digest {type(value).__name__}: {exc}") from exc
    return hash_bytes(payload.encode("utf-8"), opts.algo)


def all_equal(a: Any, b: Any, options: Optional[DigestOptions] = None) -> bool:
    """a、b 去掉隐藏字段 / 时间戳 / RNG 后是否相同（常用于比较两个 SimState）"""
    return digest(a, options) == digest(b, options)
