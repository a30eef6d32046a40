#!filepath: desim/checkpoint/persist.py
from __future__ import annotations

import pickle
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import joblib

from desim.core.state import SimState
from desim.utils.errors import CheckpointFailure
from desim.utils.filesystem import FileSystem
from desim.utils.logger import logs


# 格式不保证跨版本兼容；读取时严格比对
FORMAT_VERSION = "desim-checkpoint/1"


def save_sim(state: SimState, path: str | Path, *, snapshot_id: Optional[int] = None, compress: int = 3) -> Path:
    """
    写出 {format_version, snapshot_id, timestamp, sim_time, state}

    先写 <path>.tmp 再 replace，失败 → CheckpointFailure
    """
    path = Path(path)
    FileSystem.ensure_dir(path.parent)
    payload = {
        "format_version": FORMAT_VERSION,
        "snapshot_id": snapshot_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sim_time": state.now,
        "state": state,
    }
    tmp = FileSystem.tmp_path(path)
    try:
        joblib.dump(payload, tmp, compress=compress)
    except (pickle.PicklingError, TypeError, AttributeError, RecursionError, OSError) as exc:
        FileSystem.remove(tmp)
        raise CheckpointFailure(f"Cannot write checkpoint {path}: {exc}") from exc
    FileSystem.commit_tmp(path)
    logs.info(f"[Checkpoint] saved t={state.now} -> {path}")
    return path


def load_payload(path: str | Path) -> dict:
    path = Path(path)
    try:
        payload = joblib.load(path)
    except (OSError, EOFError, pickle.UnpicklingError, AttributeError, ImportError, ValueError) as exc:
        raise CheckpointFailure(f"Cannot read checkpoint {path}: {exc}") from exc

    if not isinstance(payload, dict) or payload.get("format_version") != FORMAT_VERSION:
        found = payload.get("format_version") if isinstance(payload, dict) else type(payload).__name__
        raise CheckpointFailure(
            f"Checkpoint {path} has format {found!r}; this engine reads {FORMAT_VERSION!r}"
        )
    return payload


def load_sim(path: str | Path) -> SimState:
    payload = load_payload(path)
    state = payload["state"]
    logs.info(f"[Checkpoint] loaded t={state.now} from {path}")
    return state
