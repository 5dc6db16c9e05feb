"""Full recompute of every derived table from one ledger snapshot.

Ledger snapshot -> Performance Aggregator -> {Calibration Analyzer,
Signal Weight Engine, Historical Intelligence Index} -> health summary ->
publish.  The three downstream reducers only read the immutable snapshot
and the finished aggregation, so they run on a thread pool.

A run either publishes one complete snapshot or publishes nothing.
Failures mark the store stale and keep the previous snapshot; an abort
leaves the store exactly as it was.
"""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

from trade_intelligence.analytics.calibration import CalibrationAnalyzer
from trade_intelligence.analytics.health import assess_health
from trade_intelligence.analytics.intelligence import HistoricalIntelligenceIndex
from trade_intelligence.analytics.performance import PerformanceAggregator
from trade_intelligence.analytics.signal_weights import SignalWeightEngine
from trade_intelligence.core.clock import IClock, WallClock
from trade_intelligence.core.config import Settings
from trade_intelligence.core.errors import RecomputeAborted, RecomputeFailure
from trade_intelligence.core.interfaces import IOutcomeLedger
from trade_intelligence.narration.generator import NarrativeGenerator
from trade_intelligence.observability.logger import bind_run_id, new_run_id
from trade_intelligence.observability.metrics import (
    record_malformed,
    record_recompute,
    record_snapshot,
)

from .snapshot import DerivedSnapshot, SnapshotStore

logger = logging.getLogger(__name__)


class RecomputePipeline:
    """Runs recomputes and publishes their snapshots.

    Concurrent :meth:`run` calls are serialised; each one reads the
    ledger snapshot current at the moment it acquires the lock.

    Parameters
    ----------
    ledger : IOutcomeLedger
        Source of truth.  Only ``snapshot()`` is called.
    store : SnapshotStore
        Receives the published snapshot.
    settings : Settings
        Component configuration and ``max_workers``.
    narrator : NarrativeGenerator, optional
        Recommendation text for calibration, symbols and health.
    """

    def __init__(
        self,
        ledger: IOutcomeLedger,
        store: SnapshotStore,
        settings: Settings | None = None,
        narrator: NarrativeGenerator | None = None,
        clock: IClock | None = None,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._settings = settings or Settings()
        self._narrator = narrator
        self._clock = clock or WallClock()
        self._lock = threading.Lock()

        s = self._settings
        self._aggregator = PerformanceAggregator(s.performance)
        self._calibration = CalibrationAnalyzer(s.calibration, narrator)
        self._weights = SignalWeightEngine(s.signal_weights)

    @property
    def weight_engine(self) -> SignalWeightEngine:
        return self._weights

    def run(self, abort: threading.Event | None = None) -> DerivedSnapshot:
        """Recompute and publish.

        Raises
        ------
        RecomputeAborted
            ``abort`` was set before the snapshot was published.
        RecomputeFailure
            Any other error; ``kind`` names the original exception class.
        """
        with self._lock, bind_run_id(new_run_id()) as run_id:
            started = time.perf_counter()
            logger.info("Recompute %s started", run_id)
            try:
                snapshot = self._compute(run_id, abort)
                _check_abort(abort)
            except RecomputeAborted:
                logger.warning("Recompute %s aborted; store untouched", run_id)
                record_recompute("aborted")
                raise
            except RecomputeFailure as exc:
                self._store.mark_failed(exc)
                record_recompute("failed")
                raise
            except Exception as exc:
                failure = RecomputeFailure(type(exc).__name__, str(exc))
                logger.exception("Recompute %s failed", run_id)
                self._store.mark_failed(failure)
                record_recompute("failed")
                raise failure from exc

            self._store.publish(snapshot)
            elapsed = time.perf_counter() - started
            record_recompute("success", elapsed)
            record_snapshot(snapshot.version, snapshot.row_count, snapshot.closed_count)
            logger.info(
                "Recompute %s published v%d in %.3fs (%d records)",
                run_id,
                snapshot.version,
                elapsed,
                snapshot.records_updated,
            )
            return snapshot

    def _compute(
        self, run_id: str, abort: threading.Event | None
    ) -> DerivedSnapshot:
        s = self._settings
        _check_abort(abort)

        ledger_snapshot = self._ledger.snapshot()
        rows = ledger_snapshot.outcomes
        closed = ledger_snapshot.closed

        aggregations = self._aggregator.aggregate_all(
            rows, check_abort=lambda: _check_abort(abort)
        )
        for dimension, agg in aggregations.items():
            record_malformed(dimension, len(agg.excluded_ids))
        overall = self._aggregator.overall(rows)
        _check_abort(abort)
        computed_at = self._clock.now()

        with ThreadPoolExecutor(
            max_workers=s.max_workers, thread_name_prefix="recompute"
        ) as pool:
            # Each task gets its own context copy so run_id reaches its logs
            calibration_f = pool.submit(
                contextvars.copy_context().run,
                self._calibration.analyze,
                closed,
                computed_at,
            )
            weights_f = pool.submit(
                contextvars.copy_context().run, self._weights.compute, closed
            )
            intelligence_f = pool.submit(
                contextvars.copy_context().run,
                HistoricalIntelligenceIndex.build,
                rows,
                config=s.intelligence,
                performance=s.performance,
                aggregations=aggregations,
                narrator=self._narrator,
            )
            calibration = calibration_f.result()
            signal_weights = weights_f.result()
            intelligence = intelligence_f.result()
        _check_abort(abort)

        health = assess_health(
            overall,
            aggregations["engine"].groups.values(),
            s.health,
            self._narrator,
        )

        return DerivedSnapshot(
            version=self._store.reserve_version(),
            ledger_version=ledger_snapshot.version,
            computed_at=computed_at,
            run_id=run_id,
            aggregations=aggregations,
            overall=overall,
            calibration=calibration,
            signal_weights=signal_weights,
            intelligence=intelligence,
            health=health,
            row_count=len(rows),
            closed_count=len(closed),
        )


def _check_abort(abort: threading.Event | None) -> None:
    if abort is not None and abort.is_set():
        raise RecomputeAborted()
