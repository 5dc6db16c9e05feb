"""Performance aggregator: reduces the outcome ledger into group statistics.

One record shape (:class:`EngineMetrics`) serves every grouping: engine,
symbol, direction, catalyst type and asset type.  All functions are pure;
rows inside a group are put in canonical chronological order before any
floating-point reduction, so the input order never changes the output and
two runs over the same ledger snapshot serialise byte-identically.

Usage::

    aggregator = PerformanceAggregator(PerformanceConfig())
    by_engine = aggregator.aggregate(outcomes, by_engine)
    print(by_engine.groups["quant"].profit_factor)
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

import numpy as np

from trade_intelligence.core.config import PerformanceConfig
from trade_intelligence.core.errors import MalformedRecord
from trade_intelligence.core.models import TradeOutcome
from trade_intelligence.core.serialization import encode_ratio

logger = logging.getLogger(__name__)

INF = math.inf

# Standard deviations below this (relative to |mean|) are treated as zero
_ZERO_VARIANCE_EPS = 1e-12

KeyFn = Callable[[TradeOutcome], str]


# ---------------------------------------------------------------------------
# Group key functions
# ---------------------------------------------------------------------------

def by_engine(outcome: TradeOutcome) -> str:
    if not outcome.engine:
        raise MalformedRecord(outcome.outcome_id, "engine")
    return outcome.engine


def by_symbol(outcome: TradeOutcome) -> str:
    return outcome.symbol


def by_direction(outcome: TradeOutcome) -> str:
    return outcome.direction.value


def by_catalyst(outcome: TradeOutcome) -> str:
    if outcome.catalyst_type is None:
        raise MalformedRecord(outcome.outcome_id, "catalyst_type")
    return outcome.catalyst_type.value


def by_asset_type(outcome: TradeOutcome) -> str:
    if outcome.asset_type is None:
        raise MalformedRecord(outcome.outcome_id, "asset_type")
    return outcome.asset_type.value


DIMENSIONS: dict[str, KeyFn] = {
    "engine": by_engine,
    "symbol": by_symbol,
    "direction": by_direction,
    "catalyst": by_catalyst,
    "asset_type": by_asset_type,
}


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EngineMetrics:
    """Statistics for one group of outcomes.

    ``win_rate`` is 0.0 with ``has_data=False`` when the group has no
    closed trades; callers render that as "insufficient data".  Ratios use
    ``inf`` sentinels for division by zero and None when undefined.
    """

    group: str
    idea_count: int
    trade_count: int  # Closed trades
    win_count: int
    loss_count: int
    breakeven_count: int
    win_rate: float
    has_data: bool
    expectancy: float | None
    sharpe_ratio: float | None
    profit_factor: float | None
    max_drawdown: float | None
    avg_win_pct: float | None
    avg_loss_pct: float | None  # Magnitude
    total_return_pct: float
    total_pnl: float
    avg_confidence: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "group": self.group,
            "idea_count": self.idea_count,
            "trade_count": self.trade_count,
            "win_count": self.win_count,
            "loss_count": self.loss_count,
            "breakeven_count": self.breakeven_count,
            "win_rate": self.win_rate,
            "has_data": self.has_data,
            "expectancy": self.expectancy,
            "sharpe_ratio": encode_ratio(self.sharpe_ratio),
            "profit_factor": encode_ratio(self.profit_factor),
            "max_drawdown": self.max_drawdown,
            "avg_win_pct": self.avg_win_pct,
            "avg_loss_pct": self.avg_loss_pct,
            "total_return_pct": self.total_return_pct,
            "total_pnl": self.total_pnl,
            "avg_confidence": self.avg_confidence,
        }


@dataclass(frozen=True)
class Aggregation:
    """All groups for one dimension plus the rows excluded from it."""

    dimension: str
    groups: Mapping[str, EngineMetrics] = field(
        default_factory=lambda: MappingProxyType({})
    )
    excluded_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimension": self.dimension,
            "groups": [m.to_dict() for m in self.groups.values()],
            "excluded": len(self.excluded_ids),
        }


# ---------------------------------------------------------------------------
# Pure statistics
# ---------------------------------------------------------------------------

def sharpe_ratio(
    returns: np.ndarray, *, scale: float = 1.0, min_trades: int = 2
) -> float | None:
    """Mean / population stdev.  None below ``min_trades``, ±inf at zero variance."""
    if returns.size < max(2, min_trades):
        return None
    mean = float(returns.mean())
    std = float(returns.std())
    if std <= _ZERO_VARIANCE_EPS * max(1.0, abs(mean)):
        if mean > 0:
            return INF
        if mean < 0:
            return -INF
        return 0.0
    return mean / std * scale


def profit_factor(returns: np.ndarray) -> float | None:
    """Gross gain / gross loss.  ``inf`` without losses, None without either."""
    gross_gain = float(returns[returns > 0].sum())
    gross_loss = float(-returns[returns < 0].sum())
    if gross_loss == 0:
        return INF if gross_gain > 0 else None
    return gross_gain / gross_loss


def max_drawdown(returns_in_time_order: np.ndarray) -> float:
    """Largest peak-to-trough drop of the cumulative return curve.

    The curve starts at 0 before the first trade, so an opening loss
    counts as drawdown.
    """
    if returns_in_time_order.size == 0:
        return 0.0
    curve = np.concatenate(([0.0], np.cumsum(returns_in_time_order)))
    peaks = np.maximum.accumulate(curve)
    return float((peaks - curve).max())


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return float(np.mean(values))


def compute_metrics(
    group: str,
    outcomes: Iterable[TradeOutcome],
    config: PerformanceConfig | None = None,
) -> EngineMetrics:
    """Reduce one group of outcomes into an :class:`EngineMetrics`."""
    cfg = config or PerformanceConfig()
    rows = sorted(outcomes, key=lambda o: o.sort_key)
    closed = [o for o in rows if o.is_closed]

    n = len(closed)
    wins = [o for o in closed if o.is_win]
    losses = [o for o in closed if o.is_loss]
    breakevens = n - len(wins) - len(losses)

    returns = np.array([o.return_pct for o in closed], dtype=float)
    confidences = [o.confidence for o in closed if o.confidence is not None]

    if n == 0:
        return EngineMetrics(
            group=group,
            idea_count=len(rows),
            trade_count=0,
            win_count=0,
            loss_count=0,
            breakeven_count=0,
            win_rate=0.0,
            has_data=False,
            expectancy=None,
            sharpe_ratio=None,
            profit_factor=None,
            max_drawdown=None,
            avg_win_pct=None,
            avg_loss_pct=None,
            total_return_pct=0.0,
            total_pnl=0.0,
            avg_confidence=None,
        )

    return EngineMetrics(
        group=group,
        idea_count=len(rows),
        trade_count=n,
        win_count=len(wins),
        loss_count=len(losses),
        breakeven_count=breakevens,
        win_rate=len(wins) / n * 100.0,
        has_data=True,
        expectancy=float(returns.mean()),
        sharpe_ratio=sharpe_ratio(
            returns,
            scale=cfg.sharpe_annualization,
            min_trades=cfg.min_sharpe_trades,
        ),
        profit_factor=profit_factor(returns),
        max_drawdown=max_drawdown(returns),
        avg_win_pct=_mean([o.return_pct for o in wins]),
        avg_loss_pct=_mean([abs(o.return_pct) for o in losses]),
        total_return_pct=float(returns.sum()),
        total_pnl=float(sum(o.realized_pnl or 0.0 for o in closed)),
        avg_confidence=_mean(confidences),
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class PerformanceAggregator:
    """Stateless grouping reducer over ledger rows.

    Parameters
    ----------
    config : PerformanceConfig
        Sharpe scaling and minimum sample settings.
    """

    def __init__(self, config: PerformanceConfig | None = None) -> None:
        self._config = config or PerformanceConfig()

    def aggregate(
        self,
        outcomes: Iterable[TradeOutcome],
        key_fn: KeyFn,
        dimension: str = "",
    ) -> Aggregation:
        """Group ``outcomes`` by ``key_fn`` and compute one record per group.

        Rows for which ``key_fn`` raises :class:`MalformedRecord` are left
        out of this grouping only.
        """
        buckets: dict[str, list[TradeOutcome]] = defaultdict(list)
        excluded: list[str] = []
        for outcome in outcomes:
            try:
                key = key_fn(outcome)
            except MalformedRecord as exc:
                excluded.append(outcome.outcome_id)
                logger.debug("Excluded from %s grouping: %s", dimension, exc)
                continue
            buckets[key].append(outcome)

        if excluded:
            logger.info(
                "%d rows excluded from %s grouping (missing field)",
                len(excluded),
                dimension or getattr(key_fn, "__name__", "custom"),
            )

        groups = {
            key: compute_metrics(key, buckets[key], self._config)
            for key in sorted(buckets)
        }
        return Aggregation(
            dimension=dimension,
            groups=MappingProxyType(groups),
            excluded_ids=tuple(sorted(excluded)),
        )

    def aggregate_all(
        self,
        outcomes: Iterable[TradeOutcome],
        check_abort: Callable[[], None] | None = None,
    ) -> dict[str, Aggregation]:
        """Aggregate every standard dimension (see :data:`DIMENSIONS`)."""
        rows = tuple(outcomes)
        result: dict[str, Aggregation] = {}
        for dimension, key_fn in DIMENSIONS.items():
            if check_abort is not None:
                check_abort()
            result[dimension] = self.aggregate(rows, key_fn, dimension)
        return result

    def overall(self, outcomes: Iterable[TradeOutcome]) -> EngineMetrics:
        """Single platform-wide record."""
        return compute_metrics("all", outcomes, self._config)
