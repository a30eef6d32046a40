# desim/utils/errors.py
"""
Error taxonomy.

Setup errors (ParseError, NameMismatch, CyclicModuleGroup, CyclicDependency,
ModuleInitError) abort initialisation. Runtime errors abort the run unless a
snapshot exists. CacheDigestFailure and CheckpointFailure are reported and
the simulation carries on without the optimisation.
"""
from __future__ import annotations

from typing import Optional, Sequence


class DesimError(Exception):
    """Base class for every engine error."""


# ------------------------------------------------------------------
# Setup / metadata
# ------------------------------------------------------------------
class ParseError(DesimError):
    """Malformed module descriptor."""


class NameMismatch(DesimError):
    def __init__(self, declared: str, key: str):
        self.declared = declared
        self.key = key
        super().__init__(
            f"Module name metadata ({declared}) does not match "
            f"its registration key ({key})"
        )


class CyclicModuleGroup(DesimError):
    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__(
            "Module group lists itself as a child: " + " -> ".join(self.chain)
        )


class CyclicDependency(DesimError):
    def __init__(self, modules: Sequence[str]):
        self.modules = list(modules)
        super().__init__(
            "Cyclic required-package dependency among modules: "
            + ", ".join(self.modules)
        )


class ModuleInitError(DesimError):
    def __init__(self, module_name: str, msg: str):
        self.module_name = module_name
        super().__init__(f"Module '{module_name}': {msg}")


class ModuleNotRegistered(DesimError, KeyError):
    def __init__(self, name: str, available: Sequence[str]):
        self.name = name
        self.available = list(available)
        super().__init__(
            f"Unknown module '{name}'. Registered: {sorted(self.available)}"
        )

    def __str__(self) -> str:
        return self.args[0]


class UnmetInputObject(UserWarning):
    """Warning category for inputs no module produces and nobody supplied."""


# ------------------------------------------------------------------
# Time / scheduling
# ------------------------------------------------------------------
class UnknownTimeUnit(DesimError, ValueError):
    def __init__(self, unit):
        self.unit = unit
        super().__init__(f"Unknown time unit: {unit!r}")


class InvalidScheduleTime(DesimError, ValueError):
    def __init__(self, time, now: float, module_name: str = "", event_type: str = ""):
        self.time = time
        self.now = now
        super().__init__(
            f"Cannot schedule {module_name}:{event_type} at t={time} "
            f"(current time {now})"
        )


class UndefinedEventType(DesimError):
    def __init__(self, module_name: str, event_type: str):
        self.module_name = module_name
        self.event_type = event_type
        super().__init__(
            f"Undefined event type: '{event_type}' in module '{module_name}'"
        )


class EventExecutionError(DesimError):
    """
    A handler failed. Carries the failing event for diagnosis; when the
    engine holds a snapshot, ``snapshot_id`` names the restart point.
    """

    def __init__(self, event, cause: BaseException, snapshot_id: Optional[int] = None):
        self.event = event
        self.time = event.time
        self.module_name = event.module_name
        self.event_type = event.event_type
        self.cause = cause
        self.snapshot_id = snapshot_id
        msg = (
            f"Event {event.module_name}:{event.event_type} at t={event.time} "
            f"failed: {type(cause).__name__}: {cause}"
        )
        if snapshot_id is not None:
            msg += f" (resume from snapshot {snapshot_id} with restart())"
        super().__init__(msg)

    @property
    def recoverable(self) -> bool:
        return self.snapshot_id is not None


# ------------------------------------------------------------------
# Optimisation layers (non-fatal)
# ------------------------------------------------------------------
class CacheDigestFailure(DesimError):
    """Input could not be digested; caller falls back to plain execution."""


class CheckpointFailure(DesimError):
    """Snapshot could not be taken, persisted or read back."""


class SnapshotNotFound(DesimError, KeyError):
    def __str__(self) -> str:
        return self.args[0] if self.args else "snapshot not found"


class ObjectIOError(DesimError):
    """No loader/saver for an object, or the loader itself failed."""
