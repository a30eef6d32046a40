#!filepath: desim/observability/reports.py
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import pandas as pd

if TYPE_CHECKING:
    from desim.core.state import SimState


COMPLETED_COLUMNS = ["time", "module_name", "event_type", "priority", "clock_time", "elapsed", "cached"]


def completed_frame(state: "SimState", unit: Optional[str] = None) -> pd.DataFrame:
    """已完成事件日志（最多 n_completed 条），time 可换算到 unit"""
    rows = [
        {
            "time": state.in_unit(c.event.time, unit),
            "module_name": c.event.module_name,
            "event_type": c.event.event_type,
            "priority": c.event.priority,
            "clock_time": c.clock_time,
            "elapsed": c.elapsed,
            "cached": c.cached,
        }
        for c in state.completed
    ]
    return pd.DataFrame(rows, columns=COMPLETED_COLUMNS)


def elapsed_time(state: "SimState", by: str = "event") -> pd.DataFrame:
    """
    墙钟耗时汇总

    by:
        "event"  : 按 (module_name, event_type)
        "module" : 按 module_name
    """
    df = completed_frame(state)
    keys = ["module_name", "event_type"] if by == "event" else ["module_name"]
    if df.empty:
        return pd.DataFrame(columns=keys + ["elapsed", "n"])
    out = (
        df.groupby(keys, sort=False)["elapsed"]
        .agg(elapsed="sum", n="count")
        .reset_index()
        .sort_values("elapsed", ascending=False, kind="stable")
        .reset_index(drop=True)
    )
    return out
