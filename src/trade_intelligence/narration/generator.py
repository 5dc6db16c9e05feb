"""Recommendation text from numeric reports.

Narrative generators only ever see the finished numeric records, never the
ledger, so swapping the wording rules cannot change a statistic.  Output is
a pure function of its inputs: the same report always yields the same
strings in the same order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Protocol, runtime_checkable

from trade_intelligence.core.enums import Direction, HealthStatus

if TYPE_CHECKING:
    from trade_intelligence.analytics.calibration import CalibrationReport
    from trade_intelligence.analytics.health import HealthSummary
    from trade_intelligence.analytics.intelligence import CatalystStat, SymbolProfile
    from trade_intelligence.analytics.performance import EngineMetrics
    from trade_intelligence.core.config import HealthConfig, IntelligenceConfig


@runtime_checkable
class NarrativeGenerator(Protocol):
    """Turns numeric analytics into advisory strings."""

    def calibration_recommendations(self, report: CalibrationReport) -> list[str]: ...

    def symbol_recommendations(
        self,
        profile: SymbolProfile,
        directional_catalysts: Iterable[CatalystStat],
        config: IntelligenceConfig,
    ) -> list[str]: ...

    def health_narrative(
        self,
        summary: HealthSummary,
        overall: EngineMetrics,
        engines: Iterable[EngineMetrics],
        config: HealthConfig,
    ) -> tuple[list[str], list[str]]: ...


def _fmt_pf(value: float | None) -> str:
    if value is None:
        return "n/a"
    if value == float("inf"):
        return "inf"
    return f"{value:.2f}"


class DefaultNarrativeGenerator:
    """Threshold rules for the built-in recommendation text."""

    # Calibration
    brier_poor = 0.20
    brier_moderate = 0.15
    overconfidence_gap = 15.0
    underconfidence_gap = 10.0
    sparse_bin_samples = 10
    sparse_bin_count = 2
    bin_adjust_samples = 10
    high_confidence_start = 70.0

    # Symbols
    high_performer_win_rate = 70.0
    low_win_rate = 40.0
    min_symbol_trades = 5
    direction_bias_gap = 20.0
    best_catalyst_win_rate = 60.0
    avoid_catalyst_win_rate = 40.0
    overestimated_ratio = 80.0
    excellent_profit_factor = 2.0

    # ------------------------------------------------------------------ #
    # Calibration                                                          #
    # ------------------------------------------------------------------ #

    def calibration_recommendations(self, report: CalibrationReport) -> list[str]:
        recs: list[str] = []
        if report.total_predictions == 0:
            return ["No scored predictions yet; calibration cannot be assessed."]

        brier = report.brier_score
        if brier is not None and brier > self.brier_poor:
            recs.append(
                f"HIGH PRIORITY: Brier score ({brier:.3f}) indicates poor "
                "calibration. Confidence scores are not predictive of outcomes."
            )
        elif brier is not None and brier > self.brier_moderate:
            recs.append(
                f"MODERATE: Brier score ({brier:.3f}) shows room for "
                "improvement. Consider adjusting signal weights."
            )

        eligible = [b for b in report.bins if b.included_in_ece]

        high = [b for b in eligible if b.bin_start >= self.high_confidence_start]
        if high:
            n = sum(b.sample_size for b in high)
            gap = sum(b.sample_size * b.gap for b in high) / n
            if gap > self.overconfidence_gap:
                recs.append(
                    f"High-confidence band ({high[0].bin_start:g}-100) is "
                    f"overconfident by {gap:.1f} points."
                )

        over = [b for b in eligible if b.gap > self.overconfidence_gap]
        if over:
            avg = sum(b.gap for b in over) / len(over)
            recs.append(
                f"OVERCONFIDENCE DETECTED: scores are {avg:.1f} points too "
                f"optimistic in {len(over)} confidence ranges. Apply a scaling "
                f"factor of {100 / (100 + avg):.2f}."
            )

        if any(-b.gap > self.underconfidence_gap for b in eligible):
            recs.append(
                "UNDERCONFIDENCE: some ranges win more often than predicted. "
                "Consider increasing weights for those signal types."
            )

        sparse = [
            b for b in report.bins if 0 < b.sample_size < self.sparse_bin_samples
        ]
        if len(sparse) > self.sparse_bin_count:
            recs.append(
                f"DATA SPARSITY: {len(sparse)} confidence ranges have fewer "
                f"than {self.sparse_bin_samples} samples. Collect more "
                "resolved trades for reliable calibration."
            )

        for b in report.bins:
            if b.sample_size >= self.bin_adjust_samples and not b.calibrated:
                direction = "down" if b.gap > 0 else "up"
                recs.append(
                    f"Adjust {b.label}% confidence {direction} by "
                    f"{abs(b.gap):.1f} points (predicted {b.predicted:.1f}%, "
                    f"actual {b.actual_win_rate:.1f}%)."
                )

        if not recs:
            ece = report.expected_calibration_error
            recs.append(
                f"Calibration looks good: Brier {brier:.3f}"
                + (f", ECE {ece:.1f}" if ece is not None else "")
                + ". Continue monitoring as more data accumulates."
                if brier is not None
                else "Calibration looks good. Continue monitoring."
            )
        return recs

    # ------------------------------------------------------------------ #
    # Symbols                                                              #
    # ------------------------------------------------------------------ #

    def symbol_recommendations(
        self,
        profile: SymbolProfile,
        directional_catalysts: Iterable[CatalystStat],
        config: IntelligenceConfig,
    ) -> list[str]:
        if not profile.has_data:
            return [f"No closed trades on {profile.symbol} yet."]

        recs: list[str] = []
        wr = profile.overall_win_rate
        n = profile.closed_ideas

        if n >= self.min_symbol_trades and wr >= self.high_performer_win_rate:
            recs.append(f"High performer: {wr:.0f}% win rate across {n} trades.")
        if n >= self.min_symbol_trades and wr < self.low_win_rate:
            recs.append(
                f"Low win rate ({wr:.0f}%): consider avoiding or reducing "
                "position size."
            )

        long_wr, short_wr = profile.long_win_rate, profile.short_win_rate
        if long_wr is not None and short_wr is not None:
            if long_wr - short_wr > self.direction_bias_gap:
                recs.append(
                    f"Long bias: {long_wr:.0f}% win rate long vs "
                    f"{short_wr:.0f}% short."
                )
            elif short_wr - long_wr > self.direction_bias_gap:
                recs.append(
                    f"Short bias: {short_wr:.0f}% win rate short vs "
                    f"{long_wr:.0f}% long."
                )

        if (
            profile.best_catalyst_type is not None
            and profile.best_catalyst_win_rate >= self.best_catalyst_win_rate
        ):
            recs.append(
                f"Best catalyst: {profile.best_catalyst_type.value} "
                f"({profile.best_catalyst_win_rate:.0f}% win rate)."
            )
        if (
            profile.worst_catalyst_type is not None
            and profile.worst_catalyst_win_rate < self.avoid_catalyst_win_rate
        ):
            recs.append(
                f"Avoid catalyst: {profile.worst_catalyst_type.value} "
                f"({profile.worst_catalyst_win_rate:.0f}% win rate)."
            )

        for stat in directional_catalysts:
            if (
                stat.direction is not None
                and stat.trades >= config.min_catalyst_samples
                and stat.win_rate < self.avoid_catalyst_win_rate
            ):
                verb = "shorting" if stat.direction == Direction.SHORT else "buying"
                recs.append(
                    f"Avoid {verb} {profile.symbol} on {stat.catalyst.value} "
                    f"catalysts: {stat.win_rate:.0f}% win rate over "
                    f"{stat.trades} trades."
                )

        ratio = profile.actual_vs_predicted
        if ratio is not None and ratio < self.overestimated_ratio:
            recs.append(
                f"Confidence overestimated: actual performance is "
                f"{100 - ratio:.0f}% below predicted."
            )

        pf = profile.profit_factor
        if pf is not None and pf >= self.excellent_profit_factor:
            recs.append(f"Excellent profit factor: {_fmt_pf(pf)}x.")
        return recs

    # ------------------------------------------------------------------ #
    # Platform health                                                      #
    # ------------------------------------------------------------------ #

    def health_narrative(
        self,
        summary: HealthSummary,
        overall: EngineMetrics,
        engines: Iterable[EngineMetrics],
        config: HealthConfig,
    ) -> tuple[list[str], list[str]]:
        issues: list[str] = []
        recs: list[str] = []

        if overall.trade_count < config.min_trades:
            issues.append(
                f"Only {overall.trade_count} closed trades; at least "
                f"{config.min_trades} are needed for a reliable assessment."
            )
            recs.append("Collect more resolved trades before acting on these statistics.")
        else:
            if overall.expectancy is not None and overall.expectancy <= config.min_expectancy:
                issues.append(
                    f"Expectancy is {overall.expectancy:.2f}% per trade."
                )
            pf = overall.profit_factor
            if pf is not None and pf < config.healthy_profit_factor:
                issues.append(
                    f"Profit factor {_fmt_pf(pf)} is below "
                    f"{config.healthy_profit_factor:g}."
                )

        by_group = {m.group: m for m in engines}
        for name in summary.unhealthy_engines:
            m = by_group[name]
            issues.append(
                f"Engine {name} is underperforming: expectancy "
                f"{m.expectancy:.2f}%, profit factor {_fmt_pf(m.profit_factor)}."
            )
        if summary.unhealthy_engines:
            recs.append(
                "Review signal weights for "
                + ", ".join(summary.unhealthy_engines)
                + "."
            )

        if summary.status == HealthStatus.UNHEALTHY:
            recs.append(
                "Reduce position sizes until expectancy turns positive."
            )
        elif summary.status == HealthStatus.HEALTHY and not issues:
            recs.append("No action needed; continue monitoring.")
        return issues, recs
