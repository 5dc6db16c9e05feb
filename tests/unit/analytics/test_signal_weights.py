"""Tests for SignalWeightEngine — adaptive per-signal multipliers."""

import json
import math

import pytest

from trade_intelligence.analytics.signal_weights import (
    Computed,
    Overridden,
    OverrideStore,
    SignalWeightEngine,
    collect_signal_stats,
    confidence_tier,
    dynamic_weight,
)
from trade_intelligence.core.config import SignalWeightConfig
from trade_intelligence.core.enums import ConfidenceTier, WeightSource
from trade_intelligence.core.errors import OverrideConflict


def _signal_rows(make_outcome, signal, n, wins):
    return [
        make_outcome(signals=(signal,), return_pct=2.0 if i < wins else -1.0)
        for i in range(n)
    ]


@pytest.fixture
def engine():
    return SignalWeightEngine(SignalWeightConfig())


@pytest.fixture
def weight_rows(make_outcome):
    rows = _signal_rows(make_outcome, "VWAP Cross", 40, 28)
    rows += _signal_rows(make_outcome, "Gap Fill", 20, 4)
    rows += _signal_rows(make_outcome, "MACD Flip", 12, 6)
    rows += _signal_rows(make_outcome, "Fresh Signal", 5, 5)
    return rows


class TestSignalStats:
    def test_counts_closed_trades_per_signal(self, weight_rows):
        stats = collect_signal_stats(weight_rows)
        vwap = stats["VWAP Cross"]
        assert vwap.trade_count == 40
        assert vwap.win_count == 28
        assert vwap.win_rate == pytest.approx(70.0)

    def test_trade_counts_towards_every_signal(self, make_outcome):
        rows = [make_outcome(signals=("A", "B"), return_pct=1.0)]
        stats = collect_signal_stats(rows)
        assert stats["A"].trade_count == 1
        assert stats["B"].trade_count == 1

    def test_duplicate_tags_count_once(self, make_outcome):
        rows = [make_outcome(signals=("A", "A"), return_pct=1.0)]
        assert collect_signal_stats(rows)["A"].trade_count == 1

    def test_open_ideas_ignored(self, make_outcome):
        assert collect_signal_stats([make_outcome(signals=("A",))]) == {}


class TestDynamicWeight:
    """Tier gating, shrinkage towards neutral and clamping."""

    def test_vwap_cross_scenario(self, engine, weight_rows):
        weights = {w.signal: w for w in engine.compute(weight_rows)}
        vwap = weights["VWAP Cross"]
        assert vwap.tier == ConfidenceTier.MEDIUM
        assert vwap.dynamic_weight > 1.0
        assert vwap.dynamic_weight == pytest.approx(1 + 0.4 * 40 / 70)

    def test_untested_is_exactly_neutral(self, engine, weight_rows):
        weights = {w.signal: w for w in engine.compute(weight_rows)}
        fresh = weights["Fresh Signal"]
        assert fresh.tier == ConfidenceTier.UNTESTED
        assert fresh.dynamic_weight == 1.0

    @pytest.mark.parametrize(
        "trades, tier",
        [
            (0, ConfidenceTier.UNTESTED),
            (9, ConfidenceTier.UNTESTED),
            (10, ConfidenceTier.LOW),
            (29, ConfidenceTier.LOW),
            (30, ConfidenceTier.MEDIUM),
            (99, ConfidenceTier.MEDIUM),
            (100, ConfidenceTier.HIGH),
        ],
    )
    def test_tier_boundaries(self, trades, tier):
        assert confidence_tier(trades, SignalWeightConfig()) == tier

    def test_losing_signal_floored_not_disabled(self):
        w = dynamic_weight(0.0, 500, SignalWeightConfig())
        assert w == pytest.approx(0.3)
        assert w > 0

    def test_clamped_to_ceiling(self):
        cfg = SignalWeightConfig(max_weight=1.5)
        assert dynamic_weight(100.0, 500, cfg) == pytest.approx(1.5)

    def test_baseline_win_rate_is_neutral(self):
        assert dynamic_weight(50.0, 60, SignalWeightConfig()) == pytest.approx(1.0)

    def test_more_samples_move_further(self):
        cfg = SignalWeightConfig()
        assert dynamic_weight(70.0, 200, cfg) > dynamic_weight(70.0, 20, cfg)


class TestOverrides:
    """Manual overrides replace the effective weight, never the computed one."""

    def test_override_takes_precedence(self, engine, weight_rows):
        computed = engine.compute(weight_rows)
        resolved = {
            w.computed.signal: w
            for w in engine.resolve(computed, {"VWAP Cross": 0.5})
        }
        vwap = resolved["VWAP Cross"]
        assert isinstance(vwap, Overridden)
        assert vwap.source == WeightSource.OVERRIDDEN
        assert vwap.effective_weight == 0.5
        assert vwap.computed.dynamic_weight > 1.0
        assert isinstance(resolved["Gap Fill"], Computed)

    def test_override_for_unknown_signal(self, engine, weight_rows):
        computed = engine.compute(weight_rows)
        resolved = {
            w.computed.signal: w for w in engine.resolve(computed, {"Brand New": 1.7})
        }
        row = resolved["Brand New"]
        assert row.effective_weight == 1.7
        assert row.computed.trade_count == 0
        assert row.computed.tier == ConfidenceTier.UNTESTED

    @pytest.mark.parametrize(
        "bad", [0, -1.0, math.nan, math.inf, "abc", None, True]
    )
    def test_invalid_override_rejected(self, bad):
        store = OverrideStore()
        with pytest.raises(OverrideConflict):
            store.set("VWAP Cross", bad)
        assert store.get("VWAP Cross") is None

    def test_set_returns_previous(self):
        store = OverrideStore()
        assert store.set("A", 1.5) is None
        assert store.set("A", 0.8) == 1.5

    def test_remove(self):
        store = OverrideStore()
        store.set("A", 1.5)
        assert store.remove("A") is True
        assert store.remove("A") is False
        assert len(store) == 0

    def test_persistence(self, tmp_path):
        path = tmp_path / "overrides.json"
        store = OverrideStore(path)
        store.set("VWAP Cross", 1.25)
        assert json.loads(path.read_text()) == {"VWAP Cross": 1.25}

        reloaded = OverrideStore(path)
        assert reloaded.get("VWAP Cross") == 1.25

    def test_failed_write_keeps_previous_state(self, tmp_path, monkeypatch):
        path = tmp_path / "overrides.json"
        store = OverrideStore(path)
        store.set("A", 1.5)

        def broken(*args, **kwargs):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(
            "trade_intelligence.analytics.signal_weights.atomic_write_json", broken
        )
        with pytest.raises(OSError):
            store.set("B", 0.8)
        with pytest.raises(OSError):
            store.remove("A")
        assert store.get("B") is None
        assert store.get("A") == 1.5
        assert json.loads(path.read_text()) == {"A": 1.5}

    def test_snapshot_is_read_only(self):
        store = OverrideStore()
        store.set("A", 1.5)
        snap = store.snapshot()
        with pytest.raises(TypeError):
            snap["A"] = 2.0


class TestSummary:
    def test_counts(self, engine, weight_rows):
        summary = engine.summarize(engine.compute(weight_rows), {})
        assert summary.enabled is True
        assert summary.total_signals == 4
        assert summary.boosted_count == 1
        assert summary.reduced_count == 1
        assert summary.neutral_count == 2
        assert summary.overridden_count == 0

    def test_top_lists(self, engine, weight_rows):
        summary = engine.summarize(engine.compute(weight_rows), {})
        assert [w.computed.signal for w in summary.top_boosted] == ["VWAP Cross"]
        assert [w.computed.signal for w in summary.top_reduced] == ["Gap Fill"]

    def test_override_moves_signal_between_lists(self, engine, weight_rows):
        summary = engine.summarize(engine.compute(weight_rows), {"Gap Fill": 1.9})
        assert summary.overridden_count == 1
        assert [w.computed.signal for w in summary.top_boosted] == [
            "Gap Fill",
            "VWAP Cross",
        ]
        assert summary.reduced_count == 0

    def test_to_dict_shape(self, engine, weight_rows):
        data = engine.summarize(engine.compute(weight_rows), {"VWAP Cross": 0.5}).to_dict()
        row = next(s for s in data["signals"] if s["signal_name"] == "VWAP Cross")
        assert row["is_overridden"] is True
        assert row["override_weight"] == 0.5
        assert row["effective_weight"] == 0.5
        assert row["confidence"] == "medium"


class TestWeightedConfidence:
    def test_boosted_signal_raises_confidence(self, engine, weight_rows):
        computed = engine.compute(weight_rows)
        result = engine.weighted_confidence(["VWAP Cross"], 70.0, computed, {})
        damped = 1 + (1 + 0.4 * 40 / 70 - 1) * 0.5
        assert result.adjusted_confidence == pytest.approx(round(70.0 * damped, 1))

    def test_unknown_signals_neutral(self, engine):
        result = engine.weighted_confidence(["Nope"], 60.0, (), {})
        assert result.adjusted_confidence == pytest.approx(60.0)

    def test_clamped(self, engine):
        result = engine.weighted_confidence(["X"], 98.0, (), {"X": 2.0})
        assert result.adjusted_confidence == 99.0

    def test_disabled_is_identity(self, weight_rows):
        engine = SignalWeightEngine(SignalWeightConfig(enabled=False))
        computed = engine.compute(weight_rows)
        result = engine.weighted_confidence(["VWAP Cross"], 70.0, computed, {})
        assert result.adjusted_confidence == 70.0
        assert result.total_weight_multiplier == 1.0
