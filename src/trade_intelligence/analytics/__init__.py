"""Analytics over the outcome ledger.

Key components
--------------
PerformanceAggregator        Grouped win rate, expectancy, Sharpe, profit factor, drawdown
CalibrationAnalyzer          Confidence bins, Brier score, ECE, reliability
SignalWeightEngine           Adaptive per-signal weights with manual overrides
HistoricalIntelligenceIndex  Symbol profiles, catalyst breakdowns, platform stats
assess_health                Platform health status from aggregate metrics
"""

from .calibration import CalibrationAnalyzer, CalibrationBin, CalibrationReport
from .health import HealthSummary, assess_health
from .intelligence import (
    BandSourceSplit,
    ConfidenceBandRow,
    HistoricalIntelligenceIndex,
    PlatformStats,
    SymbolIntelligence,
    SymbolProfile,
)
from .performance import (
    Aggregation,
    EngineMetrics,
    PerformanceAggregator,
    by_asset_type,
    by_catalyst,
    by_direction,
    by_engine,
    by_symbol,
)
from .signal_weights import (
    Computed,
    ComputedWeight,
    OverrideStore,
    Overridden,
    SignalWeightEngine,
    WeightSummary,
)

__all__ = [
    "Aggregation",
    "BandSourceSplit",
    "CalibrationAnalyzer",
    "CalibrationBin",
    "CalibrationReport",
    "Computed",
    "ComputedWeight",
    "ConfidenceBandRow",
    "EngineMetrics",
    "HealthSummary",
    "HistoricalIntelligenceIndex",
    "OverrideStore",
    "Overridden",
    "PerformanceAggregator",
    "PlatformStats",
    "SignalWeightEngine",
    "SymbolIntelligence",
    "SymbolProfile",
    "WeightSummary",
    "assess_health",
    "by_asset_type",
    "by_catalyst",
    "by_direction",
    "by_engine",
    "by_symbol",
]
