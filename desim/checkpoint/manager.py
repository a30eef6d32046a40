#!filepath: desim/checkpoint/manager.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, Optional, Tuple

from desim.core.events import Event
from desim.core.state import SimState
from desim.utils.errors import CheckpointFailure, SnapshotNotFound
from desim.utils.logger import logs


@dataclass(frozen=True)
class Snapshot:
    """
    Snapshot（FINAL / FROZEN）

    - snapshot_id : 代数（generation index），单调递增
    - timestamp   : 墙钟时间（UTC）
    - sim_time    : 快照时的模拟时间
    - state       : SimState 深拷贝（之后的原地修改不会影响它）
    - next_event  : 快照时即将执行的事件（recovery mode）
    """

    snapshot_id: int
    timestamp: datetime
    sim_time: float
    state: SimState
    next_event: Optional[Event] = None


class CheckpointManager:
    """
    有界快照环（FIFO 淘汰：按创建先后，不按访问）

    触发方式：
      - recovery_mode：每个事件出队前一份快照（引擎调用 checkpoint(state, next_event)）
      - 间隔：every_n_events 个事件 / interval 模拟时间
      - 手动：checkpoint(state)
    """

    def __init__(
        self,
        capacity: int = 1,
        *,
        interval: Optional[float] = None,
        every_n_events: Optional[int] = None,
        recovery_mode: bool = True,
    ):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.interval = interval
        self.every_n_events = every_n_events
        self.recovery_mode = recovery_mode
        self._ring: Deque[Snapshot] = deque(maxlen=capacity)
        self._generation = 0
        self._last_interval_time: Optional[float] = None

    @classmethod
    def from_config(cls, cfg) -> "CheckpointManager":
        return cls(
            capacity=cfg.snapshot_capacity,
            interval=cfg.checkpoint_interval,
            every_n_events=cfg.checkpoint_every_n_events,
            recovery_mode=cfg.recovery_mode > 0,
        )

    # ------------------------------------------------------------------
    def checkpoint(self, state: SimState, next_event: Optional[Event] = None) -> int:
        try:
            frozen = state.copy()
        except Exception as exc:
            raise CheckpointFailure(f"Cannot copy state at t={state.now}: {exc}") from exc

        self._generation += 1
        snap = Snapshot(
            snapshot_id=self._generation,
            timestamp=datetime.now(timezone.utc),
            sim_time=state.now,
            state=frozen,
            next_event=next_event,
        )
        self._ring.append(snap)
        logs.debug(f"[Checkpoint] snapshot {snap.snapshot_id} at t={snap.sim_time} ({len(self._ring)}/{self.capacity})")
        return snap.snapshot_id

    def should_checkpoint(self, state: SimState, n_events: int) -> bool:
        """间隔触发（与 recovery mode 无关）"""
        if self.every_n_events and n_events > 0 and n_events % self.every_n_events == 0:
            return True
        if self.interval:
            if self._last_interval_time is None:
                self._last_interval_time = state.times.start
            if state.now - self._last_interval_time >= self.interval:
                self._last_interval_time = state.now
                return True
        return False

    # ------------------------------------------------------------------
    def restore(self, snapshot_id: int) -> SimState:
        for snap in self._ring:
            if snap.snapshot_id == snapshot_id:
                logs.info(f"[Checkpoint] restoring snapshot {snapshot_id} (t={snap.sim_time})")
                return snap.state.copy()
        raise SnapshotNotFound(
            f"Snapshot {snapshot_id} not retained; available: {list(self.ids())}"
        )

    def restore_latest(self) -> SimState:
        if not self._ring:
            raise SnapshotNotFound("No snapshot has been taken")
        return self.restore(self._ring[-1].snapshot_id)

    @property
    def latest(self) -> Optional[Snapshot]:
        return self._ring[-1] if self._ring else None

    @property
    def snapshots(self) -> Tuple[Snapshot, ...]:
        return tuple(self._ring)

    def ids(self) -> Tuple[int, ...]:
        return tuple(s.snapshot_id for s in self._ring)

    def clear(self) -> None:
        self._ring.clear()

    def __len__(self) -> int:
        return len(self._ring)
