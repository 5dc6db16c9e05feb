"""Query and mutation facade over the published snapshot.

Every query reads the currently published :class:`DerivedSnapshot` and
wraps its answer in a :class:`QueryResult` carrying the freshness state
and snapshot version.  A stale snapshot is still served (with
``state="stale"``); only the very first query, before anything has been
published, triggers a recompute.

Signal weight overrides live outside the snapshot and are combined with
the computed weights at query time, so setting one never requires a
recompute and never changes the computed table.

Usage::

    service = IntelligenceService.from_settings(load_settings("config.toml"))
    service.refresh()
    print(service.symbol_intelligence("NVDA").to_dict())
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from trade_intelligence.analytics.calibration import ConfidenceAdjustment
from trade_intelligence.analytics.intelligence import ConfidenceAdjustmentResult
from trade_intelligence.analytics.signal_weights import (
    OverrideStore,
    SignalWeight,
    WeightedConfidence,
    signal_weight_to_dict,
)
from trade_intelligence.core.clock import IClock
from trade_intelligence.core.config import Settings
from trade_intelligence.core.enums import CatalystCategory, Direction, Freshness
from trade_intelligence.core.interfaces import IOutcomeLedger
from trade_intelligence.core.models import TradeOutcome
from trade_intelligence.core.serialization import to_jsonable
from trade_intelligence.ledger import JsonlOutcomeLedger
from trade_intelligence.narration.generator import (
    DefaultNarrativeGenerator,
    NarrativeGenerator,
)
from trade_intelligence.observability.metrics import record_override
from trade_intelligence.pipeline.recompute import RecomputePipeline
from trade_intelligence.pipeline.snapshot import DerivedSnapshot, SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryResult:
    """A query answer tagged with the snapshot it came from."""

    state: Freshness
    snapshot_version: int
    data: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "snapshot_version": self.snapshot_version,
            "data": to_jsonable(self.data),
        }


class IntelligenceService:
    """Entry point for every query and mutation.

    Parameters
    ----------
    ledger : IOutcomeLedger
        Outcome ledger; writes through :meth:`record_outcome` make the
        snapshot stale.
    settings : Settings, optional
    overrides : OverrideStore, optional
        Manual signal weight overrides (in-memory when omitted).
    narrator : NarrativeGenerator, optional
        Defaults to :class:`DefaultNarrativeGenerator`.
    """

    def __init__(
        self,
        ledger: IOutcomeLedger,
        settings: Settings | None = None,
        *,
        overrides: OverrideStore | None = None,
        narrator: NarrativeGenerator | None = None,
        clock: IClock | None = None,
    ) -> None:
        self._ledger = ledger
        self._settings = settings or Settings()
        self._overrides = overrides if overrides is not None else OverrideStore()
        self._store = SnapshotStore()
        self._pipeline = RecomputePipeline(
            ledger,
            self._store,
            self._settings,
            narrator if narrator is not None else DefaultNarrativeGenerator(),
            clock,
        )
        self._first_refresh = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "IntelligenceService":
        """Service over the configured JSONL ledger and override file."""
        ledger = JsonlOutcomeLedger(
            settings.ledger.path,
            breakeven_band_pct=settings.ledger.breakeven_band_pct,
        )
        overrides = OverrideStore(settings.signal_weights.overrides_path or None)
        return cls(ledger, settings, overrides=overrides)

    @property
    def ledger(self) -> IOutcomeLedger:
        return self._ledger

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def overrides(self) -> OverrideStore:
        return self._overrides

    @property
    def store(self) -> SnapshotStore:
        return self._store

    # ------------------------------------------------------------------ #
    # Snapshot access                                                      #
    # ------------------------------------------------------------------ #

    def state(self) -> Freshness:
        return self._store.state(self._ledger.version)

    def _current(self) -> tuple[DerivedSnapshot, Freshness]:
        snapshot = self._store.snapshot
        if snapshot is None:
            with self._first_refresh:
                snapshot = self._store.snapshot
                if snapshot is None:
                    logger.info("No snapshot published yet; computing one")
                    snapshot = self._pipeline.run()
        return snapshot, self.state()

    def _result(self, select: Callable[[DerivedSnapshot], Any]) -> QueryResult:
        snapshot, state = self._current()
        return QueryResult(state, snapshot.version, select(snapshot))

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def engine_metrics(self) -> QueryResult:
        return self._result(lambda s: s.aggregations["engine"])

    def health_summary(self) -> QueryResult:
        return self._result(lambda s: s.health)

    def calibration_report(self) -> QueryResult:
        return self._result(lambda s: s.calibration)

    def signal_weight_summary(self) -> QueryResult:
        engine = self._pipeline.weight_engine
        overrides = self._overrides.snapshot()
        return self._result(
            lambda s: engine.summarize(s.signal_weights, overrides)
        )

    def platform_stats(self) -> QueryResult:
        return self._result(lambda s: s.intelligence.platform)

    def symbol_intelligence(self, symbol: str) -> QueryResult:
        return self._result(lambda s: s.intelligence.lookup(symbol))

    def confidence_adjustment(
        self,
        symbol: str,
        catalyst: str | CatalystCategory | None,
        direction: Direction | str,
    ) -> ConfidenceAdjustmentResult:
        snapshot, _ = self._current()
        return snapshot.intelligence.confidence_adjustment(symbol, catalyst, direction)

    def calibrate_confidence(self, raw_confidence: float) -> ConfidenceAdjustment:
        snapshot, _ = self._current()
        return snapshot.calibration.calibrate(raw_confidence)

    def weighted_confidence(
        self, signals: Iterable[str], base_confidence: float
    ) -> WeightedConfidence:
        snapshot, _ = self._current()
        return self._pipeline.weight_engine.weighted_confidence(
            signals, base_confidence, snapshot.signal_weights, self._overrides.snapshot()
        )

    def status(self) -> dict[str, Any]:
        snapshot = self._store.snapshot
        error = self._store.last_error
        return {
            "status": "ok",
            "state": self.state().value,
            "snapshot_version": snapshot.version if snapshot else None,
            "ledger_version": self._ledger.version,
            "computed_at": snapshot.computed_at.isoformat() if snapshot else None,
            "last_error": (
                {"error": error.kind, "message": error.message} if error else None
            ),
        }

    # ------------------------------------------------------------------ #
    # Mutations                                                            #
    # ------------------------------------------------------------------ #

    def refresh(self, abort: threading.Event | None = None) -> dict[str, Any]:
        """Full recompute.  Returns the count of records updated.

        Raises
        ------
        RecomputeFailure
            The previous snapshot stays published and is now stale.
        """
        snapshot = self._pipeline.run(abort)
        return {
            "state": self.state().value,
            "snapshot_version": snapshot.version,
            "records_updated": snapshot.records_updated,
            "profiles_updated": len(snapshot.intelligence),
            "run_id": snapshot.run_id,
        }

    def record_outcome(self, outcome: TradeOutcome) -> None:
        """Append to the ledger; the published snapshot becomes stale."""
        self._ledger.append(outcome)

    def _resolved_weight(self, signal: str) -> SignalWeight:
        snapshot, _ = self._current()
        weights = self._pipeline.weight_engine.resolve(
            snapshot.signal_weights, self._overrides.snapshot()
        )
        return next(w for w in weights if w.computed.signal == signal)

    def set_override(self, signal: str, weight: Any) -> QueryResult:
        """Set a manual weight.

        Raises
        ------
        OverrideConflict
            If ``weight`` is not a positive finite number.
        """
        self._overrides.set(signal, weight)
        record_override("set", len(self._overrides))
        snapshot, state = self._current()
        return QueryResult(
            state, snapshot.version, signal_weight_to_dict(self._resolved_weight(signal))
        )

    def remove_override(self, signal: str) -> bool:
        removed = self._overrides.remove(signal)
        if removed:
            record_override("remove", len(self._overrides))
        return removed
