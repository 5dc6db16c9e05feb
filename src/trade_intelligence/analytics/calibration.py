"""Calibration analyzer: predicted confidence vs realised win rate.

Measures how well upstream confidence scores predict outcomes.  A well
calibrated engine wins about 70% of the trades it scores at 70.

Closed predictions are bucketed into fixed-width confidence bins that
partition [0, 100] (the last bin is closed on the right).  From the bins:

* **Brier score**: mean of ``(confidence/100 - outcome)^2`` over wins
  and losses; breakevens count towards bin sizes but not towards Brier.
* **ECE**: sample-weighted mean of ``|predicted - actual|`` over bins with
  at least ``min_bin_samples`` members.
* **Reliability**: ``100 - 100 * ECE / ece_zero_reliability`` clamped to
  [0, 100], so ECE 0 maps to 100 and ECE >= 50 maps to 0.

Usage::

    analyzer = CalibrationAnalyzer(CalibrationConfig())
    report = analyzer.analyze(closed_outcomes)
    print(report.brier_score, report.expected_calibration_error)
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable

from trade_intelligence.core.config import CalibrationConfig
from trade_intelligence.core.models import TradeOutcome

if TYPE_CHECKING:
    from trade_intelligence.narration.generator import NarrativeGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationBin:
    """One confidence bucket.  Empty bins are rendered but never scored."""

    bin_start: float
    bin_end: float
    predicted: float  # Mean member confidence (bin midpoint when empty)
    actual_win_rate: float | None
    sample_size: int
    win_count: int
    resolved_count: int  # Wins + losses
    standard_error: float | None
    calibrated: bool
    included_in_ece: bool

    @property
    def label(self) -> str:
        return f"{self.bin_start:g}-{self.bin_end:g}"

    @property
    def gap(self) -> float | None:
        """predicted - actual; positive means overconfident."""
        if self.actual_win_rate is None:
            return None
        return self.predicted - self.actual_win_rate

    def to_dict(self) -> dict[str, Any]:
        return {
            "bin_start": self.bin_start,
            "bin_end": self.bin_end,
            "label": self.label,
            "predicted": self.predicted,
            "actual_win_rate": self.actual_win_rate,
            "sample_size": self.sample_size,
            "win_count": self.win_count,
            "resolved_count": self.resolved_count,
            "standard_error": self.standard_error,
            "calibrated": self.calibrated,
            "included_in_ece": self.included_in_ece,
        }


@dataclass(frozen=True)
class ConfidenceAdjustment:
    original_confidence: float
    calibrated_confidence: float
    adjustment_factor: float

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class CalibrationReport:
    bins: tuple[CalibrationBin, ...]
    total_predictions: int
    overall_win_rate: float | None
    brier_score: float | None
    expected_calibration_error: float | None
    max_calibration_error: float | None
    reliability: float | None
    recommendations: tuple[str, ...] = ()
    excluded: int = 0  # Closed rows without a confidence score
    excluded_training: int = 0  # Rows flagged exclude_from_training
    outside_window: int = 0  # Closed rows older than the lookback window
    lookback_days: float | None = None
    min_adjust_samples: int = 5
    adjusted_floor: float = 30.0
    adjusted_ceiling: float = 95.0

    def calibrate(self, raw_confidence: float) -> ConfidenceAdjustment:
        """Rescale a raw score by its bin's actual/predicted ratio.

        Identity when the bin is too thin to trust.
        """
        target = None
        for b in self.bins:
            last = b is self.bins[-1]
            if b.bin_start <= raw_confidence < b.bin_end or (
                last and raw_confidence == b.bin_end
            ):
                target = b
                break

        if (
            target is None
            or target.actual_win_rate is None
            or target.sample_size < self.min_adjust_samples
            or target.predicted <= 0
        ):
            return ConfidenceAdjustment(raw_confidence, raw_confidence, 1.0)

        factor = target.actual_win_rate / target.predicted
        calibrated = min(
            self.adjusted_ceiling,
            max(self.adjusted_floor, raw_confidence * factor),
        )
        return ConfidenceAdjustment(
            original_confidence=raw_confidence,
            calibrated_confidence=round(calibrated, 1),
            adjustment_factor=factor,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "bins": [b.to_dict() for b in self.bins],
            "total_predictions": self.total_predictions,
            "overall_win_rate": self.overall_win_rate,
            "brier_score": self.brier_score,
            "expected_calibration_error": self.expected_calibration_error,
            "max_calibration_error": self.max_calibration_error,
            "reliability": self.reliability,
            "recommendations": list(self.recommendations),
            "excluded": self.excluded,
            "excluded_training": self.excluded_training,
            "outside_window": self.outside_window,
            "lookback_days": self.lookback_days,
        }


class CalibrationAnalyzer:
    """Bins closed predictions by confidence and scores calibration.

    Parameters
    ----------
    config : CalibrationConfig
        Bin width, tolerance and minimum-sample settings.
    narrator : NarrativeGenerator, optional
        Turns the numeric report into advisory text.  The numbers never
        depend on it.
    """

    def __init__(
        self,
        config: CalibrationConfig | None = None,
        narrator: NarrativeGenerator | None = None,
    ) -> None:
        self._config = config or CalibrationConfig()
        self._narrator = narrator

    def _bin_edges(self) -> list[tuple[float, float]]:
        width = self._config.bin_width
        return [
            (float(lo), float(lo + width)) for lo in range(0, 100, width)
        ]

    def analyze(
        self,
        outcomes: Iterable[TradeOutcome],
        as_of: datetime | None = None,
    ) -> CalibrationReport:
        """Score calibration over closed predictions.

        ``as_of`` anchors the ``lookback_days`` window; it defaults to the
        newest open time among the closed rows.
        """
        cfg = self._config
        closed = sorted(
            (o for o in outcomes if o.is_closed), key=lambda o: o.sort_key
        )
        training = [o for o in closed if not o.exclude_from_training]
        excluded_training = len(closed) - len(training)
        if excluded_training:
            logger.info(
                "%d closed outcomes flagged exclude_from_training skipped",
                excluded_training,
            )
        closed = self._within_window(training, as_of)
        outside_window = len(training) - len(closed)
        scored = [o for o in closed if o.confidence is not None]
        excluded = len(closed) - len(scored)
        if excluded:
            logger.info(
                "%d closed outcomes without confidence excluded from calibration",
                excluded,
            )

        edges = self._bin_edges()
        members: list[list[TradeOutcome]] = [[] for _ in edges]
        for o in scored:
            # Width divides 100, so the index is exact; 100 joins the last bin
            idx = min(int(o.confidence // cfg.bin_width), len(edges) - 1)
            members[idx].append(o)

        bins = tuple(
            self._build_bin(lo, hi, group)
            for (lo, hi), group in zip(edges, members)
        )

        resolved = [o for o in scored if o.is_win or o.is_loss]
        brier = None
        if resolved:
            brier = sum(
                (o.confidence / 100.0 - (1.0 if o.is_win else 0.0)) ** 2
                for o in resolved
            ) / len(resolved)

        eligible = [b for b in bins if b.included_in_ece]
        ece = mce = reliability = None
        if eligible:
            weight = sum(b.sample_size for b in eligible)
            ece = sum(b.sample_size * abs(b.gap) for b in eligible) / weight
            mce = max(abs(b.gap) for b in eligible)
            reliability = min(
                100.0,
                max(0.0, 100.0 - 100.0 * ece / cfg.ece_zero_reliability),
            )

        overall = None
        if scored:
            overall = sum(1 for o in scored if o.is_win) / len(scored) * 100.0

        report = CalibrationReport(
            bins=bins,
            total_predictions=len(scored),
            overall_win_rate=overall,
            brier_score=brier,
            expected_calibration_error=ece,
            max_calibration_error=mce,
            reliability=reliability,
            excluded=excluded,
            excluded_training=excluded_training,
            outside_window=outside_window,
            lookback_days=cfg.lookback_days,
            min_adjust_samples=cfg.min_adjust_samples,
            adjusted_floor=cfg.adjusted_floor,
            adjusted_ceiling=cfg.adjusted_ceiling,
        )

        if self._narrator is not None:
            report = dataclasses.replace(
                report,
                recommendations=tuple(
                    self._narrator.calibration_recommendations(report)
                ),
            )

        logger.info(
            "Calibration: %d predictions, brier=%s ece=%s reliability=%s",
            len(scored),
            f"{brier:.4f}" if brier is not None else "n/a",
            f"{ece:.2f}" if ece is not None else "n/a",
            f"{reliability:.1f}" if reliability is not None else "n/a",
        )
        return report

    def _within_window(
        self, closed: list[TradeOutcome], as_of: datetime | None
    ) -> list[TradeOutcome]:
        days = self._config.lookback_days
        if days is None or not closed:
            return closed
        anchor = as_of or max(o.opened_at for o in closed)
        cutoff = anchor - timedelta(days=days)
        kept = [o for o in closed if o.opened_at >= cutoff]
        if len(kept) < len(closed):
            logger.info(
                "Calibration window %gd from %s: %d of %d closed outcomes kept",
                days,
                anchor.isoformat(),
                len(kept),
                len(closed),
            )
        return kept

    def _build_bin(
        self, lo: float, hi: float, group: list[TradeOutcome]
    ) -> CalibrationBin:
        cfg = self._config
        n = len(group)
        if n == 0:
            return CalibrationBin(
                bin_start=lo,
                bin_end=hi,
                predicted=(lo + hi) / 2,
                actual_win_rate=None,
                sample_size=0,
                win_count=0,
                resolved_count=0,
                standard_error=None,
                calibrated=False,
                included_in_ece=False,
            )

        wins = sum(1 for o in group if o.is_win)
        losses = sum(1 for o in group if o.is_loss)
        actual = wins / n * 100.0
        predicted = sum(o.confidence for o in group) / n
        p = actual / 100.0
        return CalibrationBin(
            bin_start=lo,
            bin_end=hi,
            predicted=predicted,
            actual_win_rate=actual,
            sample_size=n,
            win_count=wins,
            resolved_count=wins + losses,
            standard_error=math.sqrt(p * (1 - p) / n) * 100.0,
            calibrated=abs(predicted - actual) <= cfg.tolerance_pct,
            included_in_ece=n >= cfg.min_bin_samples,
        )
