#!filepath: desim/cache/repo.py
from __future__ import annotations

import pickle
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional

import joblib
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from desim.utils.errors import CacheDigestFailure
from desim.utils.filesystem import FileSystem
from desim.utils.logger import logs


TAG_COLUMNS = ["cache_id", "tag_key", "tag_value"]

_TAG_SCHEMA = pa.schema(
    [
        ("cache_id", pa.string()),
        ("tag_key", pa.string()),
        ("tag_value", pa.string()),
    ]
)


class _Miss:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "<cache miss>"

    def __reduce__(self):
        return (_Miss, ())


MISS = _Miss()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


class CacheRepo:
    """
    CacheRepo（FINAL / FROZEN）

    目录结构：
        <path>/
          ├── artifacts/<digest>.joblib   序列化的结果
          └── tags.parquet                长表 (cache_id, tag_key, tag_value)

    内置 tag：
      - created_at : 写入时间（UTC ISO）
      - accessed   : 最近一次命中时间
      - class      : artifact 的类型
      - function   : 由 run_cached 写入

    只按完整 digest 精确匹配读取。
    """

    TAG_FILE = "tags.parquet"
    ARTIFACT_DIR = "artifacts"

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.artifact_dir = FileSystem.ensure_dir(self.path / self.ARTIFACT_DIR)
        self.tag_file = self.path / self.TAG_FILE
        self._tags = self._read_tags()

    # ------------------------------------------------------------------
    # tag table persistence
    # ------------------------------------------------------------------
    def _read_tags(self) -> pd.DataFrame:
        if not self.tag_file.exists():
            return pd.DataFrame(columns=TAG_COLUMNS, dtype="object")
        table = pq.read_table(self.tag_file)
        return table.to_pandas()[TAG_COLUMNS].astype("object")

    def _write_tags(self) -> None:
        table = pa.Table.from_pandas(self._tags[TAG_COLUMNS], schema=_TAG_SCHEMA, preserve_index=False)
        tmp = FileSystem.tmp_path(self.tag_file)
        pq.write_table(table, tmp)
        FileSystem.commit_tmp(self.tag_file)

    def _artifact_path(self, cache_id: str) -> Path:
        return self.artifact_dir / f"{cache_id}.joblib"

    def _set_tag(self, cache_id: str, key: str, value: Any) -> None:
        mask = (self._tags["cache_id"] == cache_id) & (self._tags["tag_key"] == key)
        self._tags = self._tags.loc[~mask]
        row = pd.DataFrame([[cache_id, key, str(value)]], columns=TAG_COLUMNS, dtype="object")
        self._tags = pd.concat([self._tags, row], ignore_index=True)

    # ------------------------------------------------------------------
    # lookup / store
    # ------------------------------------------------------------------
    def lookup(self, cache_id: str) -> Any:
        """命中返回 artifact，否则返回 MISS（读取失败也按 MISS 处理）"""
        path = self._artifact_path(cache_id)
        if not path.exists():
            return MISS
        try:
            artifact = joblib.load(path)
        except (OSError, EOFError, pickle.UnpicklingError, AttributeError, ImportError, ValueError) as exc:
            logs.warning(f"[Cache] cannot read artifact {cache_id}: {exc}; treating as miss")
            return MISS
        self._set_tag(cache_id, "accessed", _now().isoformat())
        self._write_tags()
        return artifact

    def store(self, cache_id: str, artifact: Any, tags: Optional[Mapping[str, Any]] = None) -> Path:
        path = self._artifact_path(cache_id)
        tmp = FileSystem.tmp_path(path)
        try:
            joblib.dump(artifact, tmp)
        except (pickle.PicklingError, TypeError, AttributeError, RecursionError) as exc:
            FileSystem.remove(tmp)
            raise CacheDigestFailure(f"Cannot serialise artifact {cache_id}: {exc}") from exc
        FileSystem.commit_tmp(path)

        self._tags = self._tags.loc[self._tags["cache_id"] != cache_id]
        rows = {"created_at": _now().isoformat(), "class": type(artifact).__qualname__}
        rows.update({k: v for k, v in (tags or {}).items() if v is not None})
        new = pd.DataFrame(
            [[cache_id, k, str(v)] for k, v in rows.items()], columns=TAG_COLUMNS, dtype="object"
        )
        self._tags = pd.concat([self._tags, new], ignore_index=True)
        self._write_tags()
        logs.debug(f"[Cache] stored {cache_id} -> {path}")
        return path

    def load_from_cache(self, cache_id: str) -> Any:
        artifact = self.lookup(cache_id)
        if artifact is MISS:
            raise KeyError(f"No cache entry {cache_id} in {self.path}")
        return artifact

    def created_at(self, cache_id: str) -> Optional[pd.Timestamp]:
        value = self.tags(cache_id).get("created_at")
        return None if value is None else as_utc(value)

    def tags(self, cache_id: str) -> dict:
        rows = self._tags.loc[self._tags["cache_id"] == cache_id]
        return dict(zip(rows["tag_key"], rows["tag_value"]))

    def ids(self) -> List[str]:
        return list(dict.fromkeys(self._tags["cache_id"]))

    def __contains__(self, cache_id: str) -> bool:
        return self._artifact_path(cache_id).exists()

    def __len__(self) -> int:
        return len(self.ids())

    # ------------------------------------------------------------------
    # show / clear / keep
    # ------------------------------------------------------------------
    def _select(
        self,
        tags: Optional[Mapping[str, Any]] = None,
        after=None,
        before=None,
        function: Optional[str] = None,
    ) -> List[str]:
        selected = []
        for cache_id in self.ids():
            entry = self.tags(cache_id)
            if function is not None and entry.get("function") != function:
                continue
            if tags and any(entry.get(k) != str(v) for k, v in tags.items()):
                continue
            if after is not None or before is not None:
                created = entry.get("created_at")
                if created is None:
                    continue
                created = as_utc(created)
                if after is not None and created < as_utc(after):
                    continue
                if before is not None and created > as_utc(before):
                    continue
            selected.append(cache_id)
        return selected

    def show(self, tags=None, after=None, before=None, function=None) -> pd.DataFrame:
        ids = self._select(tags, after, before, function)
        return self._tags.loc[self._tags["cache_id"].isin(ids)].reset_index(drop=True)

    def _remove(self, ids: Iterable[str]) -> int:
        ids = list(ids)
        for cache_id in ids:
            FileSystem.remove(self._artifact_path(cache_id))
        self._tags = self._tags.loc[~self._tags["cache_id"].isin(ids)].reset_index(drop=True)
        self._write_tags()
        return len(ids)

    def clear(self, tags=None, after=None, before=None, function=None) -> int:
        """删除匹配的条目；不带过滤条件时清空整个仓库"""
        n = self._remove(self._select(tags, after, before, function))
        logs.info(f"[Cache] cleared {n} entries from {self.path}")
        return n

    def keep(self, tags=None, after=None, before=None, function=None) -> int:
        """只保留匹配的条目，删除其它"""
        kept = set(self._select(tags, after, before, function))
        n = self._remove(i for i in self.ids() if i not in kept)
        logs.info(f"[Cache] kept {len(kept)} entries, removed {n} from {self.path}")
        return n
