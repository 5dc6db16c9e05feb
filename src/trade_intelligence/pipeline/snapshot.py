"""Derived snapshot and the store that publishes it.

A :class:`DerivedSnapshot` bundles every derived table from one recompute.
The :class:`SnapshotStore` holds exactly one published snapshot and swaps
the reference under a lock, so readers see either the old bundle or the
new one and never a mix.

Freshness is all-or-nothing: the store is FRESH only when a snapshot
exists, the last recompute did not fail, and the snapshot was computed
from the ledger version currently in effect.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from functools import cached_property
from typing import Any, Mapping

from trade_intelligence.analytics.calibration import CalibrationReport
from trade_intelligence.analytics.health import HealthSummary
from trade_intelligence.analytics.intelligence import HistoricalIntelligenceIndex
from trade_intelligence.analytics.performance import Aggregation, EngineMetrics
from trade_intelligence.analytics.signal_weights import ComputedWeight
from trade_intelligence.core.enums import Freshness
from trade_intelligence.core.errors import RecomputeFailure
from trade_intelligence.core.serialization import canonical_json, fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DerivedSnapshot:
    """Every derived table from one complete recompute."""

    version: int
    ledger_version: int
    computed_at: datetime
    run_id: str
    aggregations: Mapping[str, Aggregation]
    overall: EngineMetrics
    calibration: CalibrationReport
    signal_weights: tuple[ComputedWeight, ...]
    intelligence: HistoricalIntelligenceIndex
    health: HealthSummary
    row_count: int = 0
    closed_count: int = 0

    def tables(self) -> dict[str, Any]:
        """Derived tables only; run metadata is left out."""
        return {
            "aggregations": {k: v.to_dict() for k, v in self.aggregations.items()},
            "overall": self.overall.to_dict(),
            "calibration": self.calibration.to_dict(),
            "signal_weights": [w.to_dict() for w in self.signal_weights],
            "intelligence": self.intelligence.to_dict(),
            "health": self.health.to_dict(),
        }

    def tables_json(self) -> str:
        return canonical_json(self.tables())

    @cached_property
    def tables_fingerprint(self) -> str:
        return fingerprint(self.tables())

    @property
    def records_updated(self) -> int:
        """Count reported by a refresh: symbol profiles plus group records."""
        groups = sum(len(a.groups) for a in self.aggregations.values())
        return len(self.intelligence) + groups + len(self.signal_weights)

    def metadata(self) -> dict[str, Any]:
        return {
            "snapshot_version": self.version,
            "ledger_version": self.ledger_version,
            "computed_at": self.computed_at.isoformat(),
            "run_id": self.run_id,
            "rows": self.row_count,
            "closed": self.closed_count,
        }


@dataclass
class _StoreState:
    snapshot: DerivedSnapshot | None = None
    last_error: RecomputeFailure | None = None
    next_version: int = 1


class SnapshotStore:
    """Single-writer, many-reader holder of the published snapshot."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = _StoreState()

    @property
    def snapshot(self) -> DerivedSnapshot | None:
        return self._state.snapshot

    @property
    def last_error(self) -> RecomputeFailure | None:
        return self._state.last_error

    def reserve_version(self) -> int:
        """Next monotonic snapshot version (consumed even if the run fails)."""
        with self._lock:
            version = self._state.next_version
            self._state.next_version += 1
            return version

    def publish(self, snapshot: DerivedSnapshot) -> None:
        with self._lock:
            current = self._state.snapshot
            if current is not None and snapshot.version <= current.version:
                raise ValueError(
                    f"snapshot version {snapshot.version} does not advance "
                    f"published version {current.version}"
                )
            self._state.snapshot = snapshot
            self._state.last_error = None
        logger.info(
            "Published snapshot v%d (ledger v%d, run %s)",
            snapshot.version,
            snapshot.ledger_version,
            snapshot.run_id,
        )

    def mark_failed(self, error: RecomputeFailure) -> None:
        """Record a failed recompute; the published snapshot is untouched."""
        with self._lock:
            self._state.last_error = error
        logger.warning("Snapshot marked stale after failure: %s", error)

    def state(self, ledger_version: int) -> Freshness:
        with self._lock:
            snap = self._state.snapshot
            if (
                snap is None
                or self._state.last_error is not None
                or snap.ledger_version != ledger_version
            ):
                return Freshness.STALE
            return Freshness.FRESH
