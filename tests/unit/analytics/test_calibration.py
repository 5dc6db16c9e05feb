"""Tests for CalibrationAnalyzer — predicted confidence vs realised win rate."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from trade_intelligence.analytics.calibration import CalibrationAnalyzer
from trade_intelligence.core.config import CalibrationConfig
from trade_intelligence.narration.generator import DefaultNarrativeGenerator


@pytest.fixture
def overconfident_rows(make_outcome):
    """100 predictions at 80 confidence, 55 of them winners."""
    return [
        make_outcome(confidence=80.0, return_pct=2.0 if i < 55 else -1.0)
        for i in range(100)
    ]


class TestBins:
    """Bin assignment and per-bin statistics."""

    def test_ten_bins_partition_range(self, overconfident_rows):
        report = CalibrationAnalyzer().analyze(overconfident_rows)
        assert len(report.bins) == 10
        assert report.bins[0].bin_start == 0.0
        assert report.bins[-1].bin_end == 100.0

    def test_eighty_confidence_scenario(self, overconfident_rows):
        report = CalibrationAnalyzer().analyze(overconfident_rows)
        b = report.bins[8]
        assert b.label == "80-90"
        assert b.sample_size == 100
        assert b.predicted == pytest.approx(80.0)
        assert b.actual_win_rate == pytest.approx(55.0)
        assert b.calibrated is False
        assert b.included_in_ece is True
        assert b.standard_error == pytest.approx(math.sqrt(0.55 * 0.45 / 100) * 100)

    def test_confidence_100_joins_last_bin(self, make_outcome):
        report = CalibrationAnalyzer().analyze([make_outcome(confidence=100.0, return_pct=1.0)])
        assert report.bins[-1].sample_size == 1

    def test_empty_bins_reported_with_midpoint(self, overconfident_rows):
        report = CalibrationAnalyzer().analyze(overconfident_rows)
        empty = report.bins[2]
        assert empty.sample_size == 0
        assert empty.actual_win_rate is None
        assert empty.predicted == pytest.approx(25.0)
        assert empty.included_in_ece is False

    def test_custom_bin_width(self, make_outcome):
        analyzer = CalibrationAnalyzer(CalibrationConfig(bin_width=20))
        report = analyzer.analyze([make_outcome(confidence=45.0, return_pct=1.0)])
        assert len(report.bins) == 5
        assert report.bins[2].sample_size == 1


class TestScores:
    """Brier, ECE, MCE and reliability."""

    def test_brier_score(self, overconfident_rows):
        report = CalibrationAnalyzer().analyze(overconfident_rows)
        # 55 * 0.04 + 45 * 0.64 over 100
        assert report.brier_score == pytest.approx(0.31)

    def test_ece_and_reliability(self, overconfident_rows):
        report = CalibrationAnalyzer().analyze(overconfident_rows)
        assert report.expected_calibration_error == pytest.approx(25.0)
        assert report.max_calibration_error == pytest.approx(25.0)
        assert report.reliability == pytest.approx(50.0)

    def test_small_bins_excluded_from_ece(self, make_outcome):
        rows = [make_outcome(confidence=30.0, return_pct=1.0) for _ in range(3)]
        rows += [
            make_outcome(confidence=70.0, return_pct=1.0 if i < 7 else -1.0)
            for i in range(10)
        ]
        report = CalibrationAnalyzer().analyze(rows)
        assert report.bins[3].included_in_ece is False
        assert report.expected_calibration_error == pytest.approx(0.0)
        assert report.reliability == pytest.approx(100.0)

    def test_breakevens_count_in_bins_not_brier(self, make_outcome):
        rows = [
            make_outcome(confidence=60.0, return_pct=1.0),
            make_outcome(confidence=60.0, return_pct=0.0),
        ]
        report = CalibrationAnalyzer().analyze(rows)
        b = report.bins[6]
        assert b.sample_size == 2
        assert b.resolved_count == 1
        assert b.actual_win_rate == pytest.approx(50.0)
        assert report.brier_score == pytest.approx(0.16)

    def test_no_scored_predictions(self, make_outcome):
        report = CalibrationAnalyzer().analyze(
            [make_outcome(confidence=None, return_pct=1.0)]
        )
        assert report.total_predictions == 0
        assert report.excluded == 1
        assert report.brier_score is None
        assert report.expected_calibration_error is None
        assert report.reliability is None

    def test_open_ideas_ignored(self, make_outcome):
        report = CalibrationAnalyzer().analyze([make_outcome(confidence=80.0)])
        assert report.total_predictions == 0

    def test_reliability_floors_at_zero(self, make_outcome):
        rows = [make_outcome(confidence=95.0, return_pct=-1.0) for _ in range(10)]
        report = CalibrationAnalyzer().analyze(rows)
        assert report.expected_calibration_error == pytest.approx(95.0)
        assert report.reliability == 0.0


class TestTrainingExclusion:
    def test_flagged_rows_not_scored(self, overconfident_rows, make_outcome):
        flagged = [
            make_outcome(confidence=80.0, return_pct=-5.0, exclude_from_training=True)
            for _ in range(20)
        ]
        report = CalibrationAnalyzer().analyze(overconfident_rows + flagged)
        assert report.total_predictions == 100
        assert report.excluded_training == 20
        assert report.bins[8].actual_win_rate == pytest.approx(55.0)
        assert report.to_dict()["excluded_training"] == 20


class TestLookbackWindow:
    AS_OF = datetime(2024, 6, 1, tzinfo=timezone.utc)

    @pytest.fixture
    def aged_rows(self, make_outcome):
        old = [
            make_outcome(
                confidence=80.0,
                return_pct=-1.0,
                opened_at=self.AS_OF - timedelta(days=120 + i),
            )
            for i in range(5)
        ]
        recent = [
            make_outcome(
                confidence=80.0,
                return_pct=2.0,
                opened_at=self.AS_OF - timedelta(days=10 + i),
            )
            for i in range(5)
        ]
        return old + recent

    def test_no_window_by_default(self, aged_rows):
        report = CalibrationAnalyzer().analyze(aged_rows, self.AS_OF)
        assert report.total_predictions == 10
        assert report.outside_window == 0
        assert report.lookback_days is None

    def test_window_measured_from_as_of(self, aged_rows):
        analyzer = CalibrationAnalyzer(CalibrationConfig(lookback_days=90))
        report = analyzer.analyze(aged_rows, self.AS_OF)
        assert report.total_predictions == 5
        assert report.outside_window == 5
        assert report.overall_win_rate == pytest.approx(100.0)
        assert report.to_dict()["lookback_days"] == 90

    def test_later_as_of_shrinks_window(self, aged_rows):
        analyzer = CalibrationAnalyzer(CalibrationConfig(lookback_days=90))
        report = analyzer.analyze(aged_rows, self.AS_OF + timedelta(days=365))
        assert report.total_predictions == 0
        assert report.outside_window == 10

    def test_window_defaults_to_newest_row(self, aged_rows):
        analyzer = CalibrationAnalyzer(CalibrationConfig(lookback_days=90))
        report = analyzer.analyze(aged_rows)
        assert report.total_predictions == 5


class TestCalibrate:
    """Rescaling raw confidence by the bin's observed ratio."""

    def test_scales_by_bin_ratio(self, overconfident_rows):
        report = CalibrationAnalyzer().analyze(overconfident_rows)
        adj = report.calibrate(85.0)
        assert adj.adjustment_factor == pytest.approx(55 / 80)
        assert adj.calibrated_confidence == pytest.approx(round(85 * 55 / 80, 1))

    def test_identity_for_thin_bin(self, overconfident_rows):
        report = CalibrationAnalyzer().analyze(overconfident_rows)
        adj = report.calibrate(50.0)
        assert adj.calibrated_confidence == 50.0
        assert adj.adjustment_factor == 1.0

    def test_clamped_to_floor(self, make_outcome):
        rows = [make_outcome(confidence=80.0, return_pct=-1.0 if i else 1.0) for i in range(20)]
        report = CalibrationAnalyzer().analyze(rows)
        assert report.calibrate(80.0).calibrated_confidence == 30.0


class TestRecommendations:
    """Narrated guidance is deterministic and optional."""

    def test_no_narrator_no_recommendations(self, overconfident_rows):
        report = CalibrationAnalyzer().analyze(overconfident_rows)
        assert report.recommendations == ()

    def test_overconfident_high_band_flagged(self, overconfident_rows):
        analyzer = CalibrationAnalyzer(narrator=DefaultNarrativeGenerator())
        report = analyzer.analyze(overconfident_rows)
        text = " ".join(report.recommendations)
        assert "overconfident by 25.0 points" in text
        assert "HIGH PRIORITY" in text
        assert "Adjust 80-90% confidence down by 25.0" in text

    def test_reproducible(self, overconfident_rows):
        analyzer = CalibrationAnalyzer(narrator=DefaultNarrativeGenerator())
        first = analyzer.analyze(overconfident_rows).recommendations
        second = analyzer.analyze(list(reversed(overconfident_rows))).recommendations
        assert first == second
