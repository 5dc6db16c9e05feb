"""Historical intelligence index: per-symbol and platform-wide lookups.

Built from scratch on every refresh: :meth:`HistoricalIntelligenceIndex.build`
is the only way to produce an index and the result is immutable.  Lookups
are plain dictionary reads against the built tables.

Usage::

    index = HistoricalIntelligenceIndex.build(outcomes, config=cfg)
    intel = index.lookup("NVDA")
    adj = index.confidence_adjustment("NVDA", "earnings beat", Direction.LONG)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from trade_intelligence.core.catalysts import categorize_catalyst
from trade_intelligence.core.config import IntelligenceConfig, PerformanceConfig
from trade_intelligence.core.enums import CatalystCategory, Direction
from trade_intelligence.core.models import TradeOutcome
from trade_intelligence.core.serialization import encode_ratio, encode_time

from .performance import (
    Aggregation,
    EngineMetrics,
    PerformanceAggregator,
    compute_metrics,
)

if TYPE_CHECKING:
    from trade_intelligence.narration.generator import NarrativeGenerator

logger = logging.getLogger(__name__)


def _win_rate(wins: int, n: int) -> float | None:
    return wins / n * 100.0 if n else None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CatalystStat:
    """Closed-trade record for one catalyst type, optionally one direction."""

    catalyst: CatalystCategory
    direction: Direction | None
    trades: int
    wins: int
    win_rate: float
    avg_return_pct: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "catalyst": self.catalyst.value,
            "direction": self.direction.value if self.direction else None,
            "trades": self.trades,
            "wins": self.wins,
            "win_rate": self.win_rate,
            "avg_return_pct": self.avg_return_pct,
        }


@dataclass(frozen=True)
class SymbolProfile:
    """Behaviour summary of one symbol.

    Every statistic is None when the symbol has no closed trades, so
    "no data" is never confused with "0% win rate".
    """

    symbol: str
    total_ideas: int
    closed_ideas: int
    wins: int
    losses: int
    breakevens: int
    overall_win_rate: float | None
    long_win_rate: float | None
    short_win_rate: float | None
    total_pnl: float | None
    total_return_pct: float | None
    profit_factor: float | None
    avg_win_pct: float | None
    avg_loss_pct: float | None
    best_catalyst_type: CatalystCategory | None
    best_catalyst_win_rate: float | None
    worst_catalyst_type: CatalystCategory | None
    worst_catalyst_win_rate: float | None
    avg_confidence: float | None
    actual_vs_predicted: float | None  # Actual win rate as % of avg confidence
    last_trade_at: datetime | None

    @property
    def has_data(self) -> bool:
        return self.closed_ideas > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "total_ideas": self.total_ideas,
            "closed_ideas": self.closed_ideas,
            "wins": self.wins,
            "losses": self.losses,
            "breakevens": self.breakevens,
            "overall_win_rate": self.overall_win_rate,
            "long_win_rate": self.long_win_rate,
            "short_win_rate": self.short_win_rate,
            "total_pnl": self.total_pnl,
            "total_return_pct": self.total_return_pct,
            "profit_factor": encode_ratio(self.profit_factor),
            "avg_win_pct": self.avg_win_pct,
            "avg_loss_pct": self.avg_loss_pct,
            "best_catalyst_type": (
                self.best_catalyst_type.value if self.best_catalyst_type else None
            ),
            "best_catalyst_win_rate": self.best_catalyst_win_rate,
            "worst_catalyst_type": (
                self.worst_catalyst_type.value if self.worst_catalyst_type else None
            ),
            "worst_catalyst_win_rate": self.worst_catalyst_win_rate,
            "avg_confidence": self.avg_confidence,
            "actual_vs_predicted": self.actual_vs_predicted,
            "last_trade_at": encode_time(self.last_trade_at),
        }


@dataclass(frozen=True)
class SymbolIntelligence:
    profile: SymbolProfile
    recent_trades: tuple[TradeOutcome, ...]
    best_catalysts: tuple[CatalystStat, ...]
    worst_catalysts: tuple[CatalystStat, ...]
    catalyst_breakdown: tuple[CatalystStat, ...]
    recommendations: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile.to_dict(),
            "recent_trades": [t.to_dict() for t in self.recent_trades],
            "best_catalysts": [c.to_dict() for c in self.best_catalysts],
            "worst_catalysts": [c.to_dict() for c in self.worst_catalysts],
            "catalyst_breakdown": [c.to_dict() for c in self.catalyst_breakdown],
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class BandSourceSplit:
    """One engine's share of a confidence band."""

    source: str
    ideas: int
    wins: int
    win_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "ideas": self.ideas,
            "wins": self.wins,
            "win_rate": self.win_rate,
        }


@dataclass(frozen=True)
class ConfidenceBandRow:
    band: str
    ideas: int
    wins: int
    expected_win_rate: float  # Band midpoint
    actual_win_rate: float | None
    calibration_error: float | None  # actual - expected
    avg_return_pct: float | None = None
    by_source: tuple[BandSourceSplit, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "band": self.band,
            "ideas": self.ideas,
            "wins": self.wins,
            "expected_win_rate": self.expected_win_rate,
            "actual_win_rate": self.actual_win_rate,
            "calibration_error": self.calibration_error,
            "avg_return_pct": self.avg_return_pct,
            "by_source": [s.to_dict() for s in self.by_source],
        }


@dataclass(frozen=True)
class LeaderboardRow:
    symbol: str
    ideas: int
    closed: int
    wins: int
    win_rate: float | None
    total_return_pct: float | None
    last_trade_at: datetime | None

    @classmethod
    def from_profile(cls, p: SymbolProfile) -> "LeaderboardRow":
        return cls(
            symbol=p.symbol,
            ideas=p.total_ideas,
            closed=p.closed_ideas,
            wins=p.wins,
            win_rate=p.overall_win_rate,
            total_return_pct=p.total_return_pct,
            last_trade_at=p.last_trade_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "ideas": self.ideas,
            "closed": self.closed,
            "wins": self.wins,
            "win_rate": self.win_rate,
            "total_return_pct": self.total_return_pct,
            "last_trade_at": encode_time(self.last_trade_at),
        }


@dataclass(frozen=True)
class PlatformStats:
    overall: EngineMetrics
    by_source: tuple[EngineMetrics, ...]
    by_asset_type: tuple[EngineMetrics, ...]
    by_direction: tuple[EngineMetrics, ...]
    by_catalyst: tuple[EngineMetrics, ...]  # Win rate descending
    symbol_leaderboard: tuple[LeaderboardRow, ...]
    confidence_bands: tuple[ConfidenceBandRow, ...]
    top_performers: tuple[LeaderboardRow, ...]
    worst_performers: tuple[LeaderboardRow, ...]
    calibration_score: float | None
    avg_overconfidence: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.to_dict(),
            "by_source": [m.to_dict() for m in self.by_source],
            "by_asset_type": [m.to_dict() for m in self.by_asset_type],
            "by_direction": [m.to_dict() for m in self.by_direction],
            "by_catalyst": [m.to_dict() for m in self.by_catalyst],
            "symbol_leaderboard": [r.to_dict() for r in self.symbol_leaderboard],
            "confidence_bands": [b.to_dict() for b in self.confidence_bands],
            "top_performers": [r.to_dict() for r in self.top_performers],
            "worst_performers": [r.to_dict() for r in self.worst_performers],
            "calibration_score": self.calibration_score,
            "avg_overconfidence": self.avg_overconfidence,
        }


@dataclass(frozen=True)
class ConfidenceAdjustmentResult:
    """Point adjustment for a new idea on ``symbol`` from its history."""

    adjustment: int
    reasons: tuple[str, ...]
    symbol_win_rate: float | None
    catalyst_win_rate: float | None

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons) or "No historical data"

    def to_dict(self) -> dict[str, Any]:
        return {
            "adjustment": self.adjustment,
            "reason": self.reason,
            "symbol_win_rate": self.symbol_win_rate,
            "catalyst_win_rate": self.catalyst_win_rate,
        }


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def catalyst_stats(
    closed: Iterable[TradeOutcome], *, by_direction: bool = False
) -> tuple[CatalystStat, ...]:
    """Per-catalyst (and optionally per-direction) win rates over closed rows."""
    groups: dict[tuple[str, str], list[TradeOutcome]] = defaultdict(list)
    for o in closed:
        if o.catalyst_type is None:
            continue
        direction = o.direction.value if by_direction else ""
        groups[(o.catalyst_type.value, direction)].append(o)

    stats = []
    for catalyst, direction in sorted(groups):
        rows = sorted(groups[(catalyst, direction)], key=lambda o: o.sort_key)
        wins = sum(1 for o in rows if o.is_win)
        stats.append(
            CatalystStat(
                catalyst=CatalystCategory(catalyst),
                direction=Direction(direction) if direction else None,
                trades=len(rows),
                wins=wins,
                win_rate=wins / len(rows) * 100.0,
                avg_return_pct=sum(o.return_pct for o in rows) / len(rows),
            )
        )
    return tuple(stats)


def _rank_best(stats: Iterable[CatalystStat]) -> list[CatalystStat]:
    return sorted(stats, key=lambda c: (-c.win_rate, -c.trades, c.catalyst.value))


def _rank_worst(stats: Iterable[CatalystStat]) -> list[CatalystStat]:
    return sorted(stats, key=lambda c: (c.win_rate, -c.trades, c.catalyst.value))


def build_symbol_profile(
    symbol: str,
    rows: Iterable[TradeOutcome],
    config: IntelligenceConfig | None = None,
    performance: PerformanceConfig | None = None,
) -> SymbolProfile:
    cfg = config or IntelligenceConfig()
    rows = sorted(rows, key=lambda o: o.sort_key)
    closed = [o for o in rows if o.is_closed]
    metrics = compute_metrics(symbol, rows, performance)

    last_trade_at = max(
        (o.closed_at or o.opened_at for o in rows), default=None
    )

    if not closed:
        return SymbolProfile(
            symbol=symbol,
            total_ideas=len(rows),
            closed_ideas=0,
            wins=0,
            losses=0,
            breakevens=0,
            overall_win_rate=None,
            long_win_rate=None,
            short_win_rate=None,
            total_pnl=None,
            total_return_pct=None,
            profit_factor=None,
            avg_win_pct=None,
            avg_loss_pct=None,
            best_catalyst_type=None,
            best_catalyst_win_rate=None,
            worst_catalyst_type=None,
            worst_catalyst_win_rate=None,
            avg_confidence=None,
            actual_vs_predicted=None,
            last_trade_at=last_trade_at,
        )

    longs = [o for o in closed if o.direction == Direction.LONG]
    shorts = [o for o in closed if o.direction == Direction.SHORT]

    eligible = [
        c for c in catalyst_stats(closed) if c.trades >= cfg.min_catalyst_samples
    ]
    best = _rank_best(eligible)[0] if eligible else None
    worst = _rank_worst(eligible)[0] if eligible else None

    actual_vs_predicted = None
    if metrics.avg_confidence:
        actual_vs_predicted = metrics.win_rate / metrics.avg_confidence * 100.0

    return SymbolProfile(
        symbol=symbol,
        total_ideas=len(rows),
        closed_ideas=len(closed),
        wins=metrics.win_count,
        losses=metrics.loss_count,
        breakevens=metrics.breakeven_count,
        overall_win_rate=metrics.win_rate,
        long_win_rate=_win_rate(sum(1 for o in longs if o.is_win), len(longs)),
        short_win_rate=_win_rate(sum(1 for o in shorts if o.is_win), len(shorts)),
        total_pnl=metrics.total_pnl,
        total_return_pct=metrics.total_return_pct,
        profit_factor=metrics.profit_factor,
        avg_win_pct=metrics.avg_win_pct,
        avg_loss_pct=metrics.avg_loss_pct,
        best_catalyst_type=best.catalyst if best else None,
        best_catalyst_win_rate=best.win_rate if best else None,
        worst_catalyst_type=worst.catalyst if worst else None,
        worst_catalyst_win_rate=worst.win_rate if worst else None,
        avg_confidence=metrics.avg_confidence,
        actual_vs_predicted=actual_vs_predicted,
        last_trade_at=last_trade_at,
    )


def confidence_band_table(
    closed: Iterable[TradeOutcome],
    bands: Iterable[tuple[float, float]],
) -> tuple[ConfidenceBandRow, ...]:
    """Platform-wide band table.  A band's upper edge is exclusive unless it is 100."""
    scored = [o for o in closed if o.confidence is not None]
    rows = []
    for lo, hi in bands:
        members = [
            o
            for o in scored
            if lo <= o.confidence < hi or (hi >= 100.0 and o.confidence == hi)
        ]
        wins = sum(1 for o in members if o.is_win)
        expected = (lo + hi) / 2
        actual = _win_rate(wins, len(members))
        returns = [o.return_pct for o in members if o.return_pct is not None]
        rows.append(
            ConfidenceBandRow(
                band=f"{lo:g}-{hi:g}",
                ideas=len(members),
                wins=wins,
                expected_win_rate=expected,
                actual_win_rate=actual,
                calibration_error=actual - expected if actual is not None else None,
                avg_return_pct=sum(returns) / len(returns) if returns else None,
                by_source=_band_sources(members),
            )
        )
    return tuple(rows)


def _band_sources(members: Iterable[TradeOutcome]) -> tuple[BandSourceSplit, ...]:
    groups: dict[str, list[TradeOutcome]] = defaultdict(list)
    for o in members:
        if o.engine is not None:
            groups[o.engine].append(o)
    splits = []
    for source in sorted(groups):
        rows = groups[source]
        wins = sum(1 for o in rows if o.is_win)
        splits.append(
            BandSourceSplit(
                source=source,
                ideas=len(rows),
                wins=wins,
                win_rate=wins / len(rows) * 100.0,
            )
        )
    return tuple(splits)


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HistoricalIntelligenceIndex:
    """Immutable symbol-keyed cache of intelligence tables."""

    profiles: Mapping[str, SymbolProfile]
    catalysts: Mapping[str, tuple[CatalystStat, ...]]
    directional_catalysts: Mapping[str, tuple[CatalystStat, ...]]
    recent: Mapping[str, tuple[TradeOutcome, ...]]
    platform: PlatformStats
    config: IntelligenceConfig = field(default_factory=IntelligenceConfig)
    narrator: NarrativeGenerator | None = field(default=None, compare=False)

    @classmethod
    def build(
        cls,
        outcomes: Iterable[TradeOutcome],
        *,
        config: IntelligenceConfig | None = None,
        performance: PerformanceConfig | None = None,
        aggregations: Mapping[str, Aggregation] | None = None,
        narrator: NarrativeGenerator | None = None,
    ) -> "HistoricalIntelligenceIndex":
        """Full recompute of every profile and platform table.

        Rows flagged ``exclude_from_training`` are left out of every table.

        ``aggregations`` lets the pipeline reuse the grouping it already
        computed; when omitted the groupings are computed here.
        """
        cfg = config or IntelligenceConfig()
        rows = sorted(outcomes, key=lambda o: o.sort_key)
        flagged = sum(1 for o in rows if o.exclude_from_training)
        if flagged:
            # Passed-in groupings include the flagged rows
            rows = [o for o in rows if not o.exclude_from_training]
            aggregations = None
            logger.info(
                "%d outcomes flagged exclude_from_training left out of the index",
                flagged,
            )
        if aggregations is None:
            aggregations = PerformanceAggregator(performance).aggregate_all(rows)

        by_symbol: dict[str, list[TradeOutcome]] = defaultdict(list)
        for o in rows:
            by_symbol[o.symbol].append(o)

        profiles: dict[str, SymbolProfile] = {}
        catalysts: dict[str, tuple[CatalystStat, ...]] = {}
        directional: dict[str, tuple[CatalystStat, ...]] = {}
        recent: dict[str, tuple[TradeOutcome, ...]] = {}
        for symbol in sorted(by_symbol):
            symbol_rows = by_symbol[symbol]
            closed = [o for o in symbol_rows if o.is_closed]
            profiles[symbol] = build_symbol_profile(
                symbol, symbol_rows, cfg, performance
            )
            catalysts[symbol] = catalyst_stats(closed)
            directional[symbol] = catalyst_stats(closed, by_direction=True)
            newest = sorted(
                symbol_rows, key=lambda o: (o.opened_at, o.outcome_id), reverse=True
            )
            recent[symbol] = tuple(newest[: cfg.recent_trades])

        platform = cls._platform_stats(rows, profiles, aggregations, cfg, performance)
        logger.info(
            "Intelligence index built: %d symbols, %d closed trades",
            len(profiles),
            platform.overall.trade_count,
        )
        return cls(
            profiles=MappingProxyType(profiles),
            catalysts=MappingProxyType(catalysts),
            directional_catalysts=MappingProxyType(directional),
            recent=MappingProxyType(recent),
            platform=platform,
            config=cfg,
            narrator=narrator,
        )

    @staticmethod
    def _platform_stats(
        rows: list[TradeOutcome],
        profiles: Mapping[str, SymbolProfile],
        aggregations: Mapping[str, Aggregation],
        cfg: IntelligenceConfig,
        performance: PerformanceConfig | None,
    ) -> PlatformStats:
        closed = [o for o in rows if o.is_closed]

        def groups(dimension: str) -> tuple[EngineMetrics, ...]:
            agg = aggregations.get(dimension)
            return tuple(agg.groups.values()) if agg else ()

        by_catalyst = sorted(
            groups("catalyst"), key=lambda m: (-m.win_rate, m.group)
        )

        leaderboard = sorted(
            profiles.values(), key=lambda p: (-p.total_ideas, p.symbol)
        )
        performers = [
            p
            for p in profiles.values()
            if p.closed_ideas >= cfg.min_performer_trades
        ]
        top = sorted(
            performers,
            key=lambda p: (-p.overall_win_rate, -p.closed_ideas, p.symbol),
        )
        worst = sorted(
            performers,
            key=lambda p: (p.overall_win_rate, -p.closed_ideas, p.symbol),
        )

        bands = confidence_band_table(closed, cfg.confidence_bands)
        populated = [b for b in bands if b.calibration_error is not None]
        calibration_score = avg_overconfidence = None
        if populated:
            mean_abs = sum(abs(b.calibration_error) for b in populated) / len(populated)
            calibration_score = max(0.0, 100.0 - mean_abs)
            avg_overconfidence = -sum(
                b.calibration_error for b in populated
            ) / len(populated)

        n = cfg.leaderboard_size
        return PlatformStats(
            overall=compute_metrics("all", rows, performance),
            by_source=groups("engine"),
            by_asset_type=groups("asset_type"),
            by_direction=groups("direction"),
            by_catalyst=tuple(by_catalyst),
            symbol_leaderboard=tuple(
                LeaderboardRow.from_profile(p) for p in leaderboard[:n]
            ),
            confidence_bands=bands,
            top_performers=tuple(LeaderboardRow.from_profile(p) for p in top[:n]),
            worst_performers=tuple(
                LeaderboardRow.from_profile(p) for p in worst[:n]
            ),
            calibration_score=calibration_score,
            avg_overconfidence=avg_overconfidence,
        )

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        return len(self.profiles)

    def profile(self, symbol: str) -> SymbolProfile | None:
        return self.profiles.get(symbol.strip().upper())

    def lookup(self, symbol: str) -> SymbolIntelligence:
        """Profile, recent trades, best/worst catalysts and recommendations.

        Unknown symbols get an empty profile with null statistics.
        """
        key = symbol.strip().upper()
        profile = self.profiles.get(key) or build_symbol_profile(key, (), self.config)
        stats = self.catalysts.get(key, ())
        eligible = [c for c in stats if c.trades >= self.config.min_catalyst_samples]
        k = self.config.max_catalysts

        intel = SymbolIntelligence(
            profile=profile,
            recent_trades=self.recent.get(key, ()),
            best_catalysts=tuple(_rank_best(eligible)[:k]),
            worst_catalysts=tuple(_rank_worst(eligible)[:k]),
            catalyst_breakdown=stats,
        )
        if self.narrator is None:
            return intel
        return SymbolIntelligence(
            profile=intel.profile,
            recent_trades=intel.recent_trades,
            best_catalysts=intel.best_catalysts,
            worst_catalysts=intel.worst_catalysts,
            catalyst_breakdown=intel.catalyst_breakdown,
            recommendations=tuple(
                self.narrator.symbol_recommendations(
                    profile,
                    self.directional_catalysts.get(key, ()),
                    self.config,
                )
            ),
        )

    def confidence_adjustment(
        self,
        symbol: str,
        catalyst: str | CatalystCategory | None,
        direction: Direction | str,
    ) -> ConfidenceAdjustmentResult:
        """Confidence points to add to a new idea, with the reasons why.

        Requires ``min_adjustment_trades`` closed trades on the symbol.
        """
        key = symbol.strip().upper()
        profile = self.profiles.get(key)
        if profile is None or profile.closed_ideas < self.config.min_adjustment_trades:
            return ConfidenceAdjustmentResult(0, (), None, None)

        direction = Direction(direction)
        category = _as_category(catalyst)
        adjustment = 0
        reasons: list[str] = []
        wr = profile.overall_win_rate

        if wr >= 70:
            adjustment += 10
            reasons.append(f"+10: {key} historical win rate {wr:.0f}%")
        elif wr < 40:
            adjustment -= 15
            reasons.append(f"-15: {key} low win rate {wr:.0f}%")

        long_wr, short_wr = profile.long_win_rate, profile.short_win_rate
        if long_wr is not None and short_wr is not None:
            same, other = (
                (long_wr, short_wr) if direction == Direction.LONG else (short_wr, long_wr)
            )
            opposite = "short" if direction == Direction.LONG else "long"
            if same > other + 15:
                adjustment += 5
                reasons.append(f"+5: {key} {direction.value} bias confirmed")
            elif same < other - 15:
                adjustment -= 5
                reasons.append(f"-5: {key} performs better {opposite}")

        catalyst_wr = None
        if category is not None:
            if (
                profile.best_catalyst_type == category
                and profile.best_catalyst_win_rate >= 60
            ):
                adjustment += 8
                catalyst_wr = profile.best_catalyst_win_rate
                reasons.append(f"+8: {category.value} is best catalyst for {key}")
            elif (
                profile.worst_catalyst_type == category
                and profile.worst_catalyst_win_rate < 40
            ):
                adjustment -= 10
                catalyst_wr = profile.worst_catalyst_win_rate
                reasons.append(f"-10: {category.value} is worst catalyst for {key}")

        return ConfidenceAdjustmentResult(
            adjustment=adjustment,
            reasons=tuple(reasons),
            symbol_win_rate=wr,
            catalyst_win_rate=catalyst_wr,
        )

    def to_dict(self) -> dict[str, Any]:
        """Derived tables only; used for the snapshot fingerprint."""
        return {
            "profiles": [p.to_dict() for p in self.profiles.values()],
            "catalysts": {
                s: [c.to_dict() for c in stats]
                for s, stats in self.catalysts.items()
            },
            "platform": self.platform.to_dict(),
        }


def _as_category(catalyst: str | CatalystCategory | None) -> CatalystCategory | None:
    if catalyst is None or isinstance(catalyst, CatalystCategory):
        return catalyst
    try:
        return CatalystCategory(catalyst)
    except ValueError:
        return categorize_catalyst(catalyst)
