"""Recompute pipeline, snapshot store and scheduled refresh."""

from .recompute import RecomputePipeline
from .scheduler import RefreshScheduler
from .snapshot import DerivedSnapshot, SnapshotStore

__all__ = [
    "DerivedSnapshot",
    "RecomputePipeline",
    "RefreshScheduler",
    "SnapshotStore",
]
