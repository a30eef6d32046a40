#!filepath: desim/cache/cached.py
from __future__ import annotations

import enum
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Iterable, Mapping, Optional

from desim.cache.digest import DigestOptions, digest
from desim.cache.repo import MISS, CacheRepo, as_utc
from desim.utils.errors import CacheDigestFailure
from desim.utils.logger import logs


class Granularity(str, enum.Enum):
    RUN = "run"            # 整个 SimEngine.run()
    MODULE = "module"      # 模块所有事件（.useCache = True）
    EVENT = "event"        # 指定事件类型（.useCache = ["init", ...]）
    FUNCTION = "function"  # 任意函数（run_cached / @cached）


def _label(fn: Callable) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or repr(fn)


def run_cached(
    fn: Callable,
    *args,
    repo: CacheRepo,
    granularity: Granularity = Granularity.FUNCTION,
    not_older_than: Optional[datetime] = None,
    omit_args: Iterable[str] = (),
    tags: Optional[Mapping[str, Any]] = None,
    options: Optional[DigestOptions] = None,
    cache_key: Any = None,
    label: Optional[str] = None,
    **kwargs,
) -> Any:
    """
    以 digest(fn, args, kwargs) 为 key 的记忆化执行。

      - 命中：直接返回 artifact，不执行 fn，日志 "recovered from cache"
      - 未命中：执行 fn，写入缓存，日志 "executed"
      - digest / 序列化失败：warning 后退化为普通执行（CacheDigestFailure 不外抛）

    cache_key:
        显式给出要 digest 的值（替代 fn/args/kwargs），用于事件级缓存等
        需要自定义“有效输入”的场景
    not_older_than:
        条目早于该时间时强制重新执行并覆盖
    """
    name = label or _label(fn)
    omit = set(omit_args)

    try:
        if cache_key is None:
            cache_key = {
                "function": fn,
                "args": args,
                "kwargs": {k: v for k, v in kwargs.items() if k not in omit},
            }
        key = digest(cache_key, options)
    except CacheDigestFailure as exc:
        logs.warning(f"[Cache] {name}: {exc}; executing without cache")
        return fn(*args, **kwargs)

    stale = False
    if not_older_than is not None and key in repo:
        created = repo.created_at(key)
        stale = created is None or created < as_utc(not_older_than)
        if stale:
            logs.info(f"[Cache] {name}: cached entry {key} is older than {not_older_than}; re-running")

    if not stale:
        artifact = repo.lookup(key)
        if artifact is not MISS:
            logs.info(f"[Cache] {name} recovered from cache ({key})")
            return artifact

    result = fn(*args, **kwargs)
    logs.info(f"[Cache] {name} executed, saving to cache ({key})")

    entry_tags = {"function": name, "granularity": Granularity(granularity).value}
    entry_tags.update(tags or {})
    try:
        repo.store(key, result, entry_tags)
    except CacheDigestFailure as exc:
        logs.warning(f"[Cache] {name}: result not cached: {exc}")
    return result


def cached(repo: CacheRepo, **cache_kwargs):
    """
    装饰器版本：

        @cached(repo)
        def slow(x): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            return run_cached(fn, *args, repo=repo, **cache_kwargs, **kwargs)

        return wrapper

    return decorator
