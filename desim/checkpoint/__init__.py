from .manager import CheckpointManager, Snapshot
from .persist import FORMAT_VERSION, load_payload, load_sim, save_sim

__all__ = ["CheckpointManager", "Snapshot", "FORMAT_VERSION", "load_payload", "load_sim", "save_sim"]
