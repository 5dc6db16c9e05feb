"""Test the recompute pipeline and the snapshot store it publishes to."""

import dataclasses
import threading

import pytest

from trade_intelligence.core.enums import Freshness
from trade_intelligence.core.errors import RecomputeAborted, RecomputeFailure
from trade_intelligence.ledger.memory import InMemoryOutcomeLedger
from trade_intelligence.narration.generator import DefaultNarrativeGenerator
from trade_intelligence.pipeline.recompute import RecomputePipeline
from trade_intelligence.pipeline.snapshot import SnapshotStore


class FlakyLedger(InMemoryOutcomeLedger):
    """Ledger whose snapshot read can be made to fail."""

    fail = False

    def snapshot(self):
        if self.fail:
            raise OSError("ledger file unreadable")
        return super().snapshot()


@pytest.fixture
def store():
    return SnapshotStore()


@pytest.fixture
def pipeline(ledger, store, settings, fixed_clock):
    return RecomputePipeline(
        ledger, store, settings, DefaultNarrativeGenerator(), fixed_clock
    )


class TestPublish:
    def test_run_publishes_complete_snapshot(self, pipeline, store, ledger, fixed_clock):
        snap = pipeline.run()
        assert store.snapshot is snap
        assert snap.version == 1
        assert snap.ledger_version == ledger.version
        assert snap.computed_at == fixed_clock.now()
        assert snap.row_count == 11
        assert snap.closed_count == 10
        assert set(snap.aggregations) >= {"engine", "symbol"}
        assert snap.calibration.total_predictions == 10
        assert store.state(ledger.version) == Freshness.FRESH

    def test_versions_are_monotonic(self, pipeline):
        first = pipeline.run()
        second = pipeline.run()
        assert second.version > first.version

    def test_run_id_is_recorded(self, pipeline):
        snap = pipeline.run()
        assert snap.run_id
        assert snap.metadata()["run_id"] == snap.run_id

    def test_identical_ledger_gives_identical_tables(self, pipeline):
        first = pipeline.run()
        second = pipeline.run()
        assert first.run_id != second.run_id
        assert first.tables_fingerprint == second.tables_fingerprint
        assert first.tables_json() == second.tables_json()

    def test_row_order_does_not_change_tables(self, mixed_outcomes, settings, fixed_clock):
        a = RecomputePipeline(
            InMemoryOutcomeLedger(mixed_outcomes), SnapshotStore(), settings,
            DefaultNarrativeGenerator(), fixed_clock,
        ).run()
        b = RecomputePipeline(
            InMemoryOutcomeLedger(reversed(mixed_outcomes)), SnapshotStore(), settings,
            DefaultNarrativeGenerator(), fixed_clock,
        ).run()
        assert a.tables_fingerprint == b.tables_fingerprint

    def test_records_updated_counts_profiles(self, pipeline):
        snap = pipeline.run()
        assert len(snap.intelligence) == 3  # NVDA, TSLA, AMD
        assert snap.records_updated >= len(snap.intelligence)

    def test_calibration_window_follows_pipeline_clock(self, ledger, settings, fixed_clock):
        # Ledger rows open on 2024-01-01; the clock starts at 2024-06-01
        settings = settings.model_copy(
            update={
                "calibration": settings.calibration.model_copy(
                    update={"lookback_days": 180}
                )
            }
        )
        pipeline = RecomputePipeline(
            ledger, SnapshotStore(), settings, DefaultNarrativeGenerator(), fixed_clock
        )
        assert pipeline.run().calibration.total_predictions == 10

        fixed_clock.advance(60 * 86400)
        snap = pipeline.run()
        assert snap.calibration.total_predictions == 0
        assert snap.calibration.outside_window == 10


class TestStaleness:
    def test_ledger_write_makes_snapshot_stale(self, pipeline, store, ledger, make_outcome):
        pipeline.run()
        ledger.append(make_outcome(symbol="MSFT", return_pct=1.0))
        assert store.state(ledger.version) == Freshness.STALE

    def test_refresh_after_write_is_fresh_again(self, pipeline, store, ledger, make_outcome):
        pipeline.run()
        ledger.append(make_outcome(symbol="MSFT", return_pct=1.0))
        snap = pipeline.run()
        assert snap.row_count == 12
        assert store.state(ledger.version) == Freshness.FRESH


class TestFailure:
    def test_failure_keeps_previous_snapshot(self, mixed_outcomes, settings, fixed_clock):
        ledger = FlakyLedger(mixed_outcomes)
        store = SnapshotStore()
        pipeline = RecomputePipeline(ledger, store, settings, clock=fixed_clock)
        published = pipeline.run()

        ledger.fail = True
        with pytest.raises(RecomputeFailure) as exc_info:
            pipeline.run()

        assert exc_info.value.kind == "OSError"
        assert store.snapshot is published
        assert store.last_error is exc_info.value
        assert store.state(ledger.version) == Freshness.STALE

    def test_success_clears_error(self, mixed_outcomes, settings, fixed_clock):
        ledger = FlakyLedger(mixed_outcomes)
        store = SnapshotStore()
        pipeline = RecomputePipeline(ledger, store, settings, clock=fixed_clock)
        ledger.fail = True
        with pytest.raises(RecomputeFailure):
            pipeline.run()
        assert store.snapshot is None

        ledger.fail = False
        pipeline.run()
        assert store.last_error is None
        assert store.state(ledger.version) == Freshness.FRESH


class TestAbort:
    def test_abort_leaves_store_untouched(self, pipeline, store, ledger):
        published = pipeline.run()
        abort = threading.Event()
        abort.set()
        with pytest.raises(RecomputeAborted):
            pipeline.run(abort)
        assert store.snapshot is published
        assert store.last_error is None
        assert store.state(ledger.version) == Freshness.FRESH


class TestSnapshotStore:
    def test_empty_store_is_stale(self, store):
        assert store.snapshot is None
        assert store.state(0) == Freshness.STALE

    def test_publish_rejects_non_advancing_version(self, pipeline, store):
        snap = pipeline.run()
        with pytest.raises(ValueError, match="does not advance"):
            store.publish(dataclasses.replace(snap, version=snap.version))

    def test_mark_failed_keeps_snapshot(self, pipeline, store, ledger):
        snap = pipeline.run()
        store.mark_failed(RecomputeFailure("ValueError", "boom"))
        assert store.snapshot is snap
        assert store.state(ledger.version) == Freshness.STALE

    def test_reserve_version_increments(self, store):
        assert [store.reserve_version() for _ in range(3)] == [1, 2, 3]
