"""Platform health summary from aggregate and per-engine metrics.

Status rules (thresholds from :class:`HealthConfig`):

* ``degraded`` while fewer than ``min_trades`` closed trades exist;
* ``healthy`` when expectancy > ``min_expectancy`` and profit factor
  >= ``healthy_profit_factor``;
* ``unhealthy`` when expectancy <= 0 and profit factor < ``unhealthy_profit_factor``;
* ``degraded`` otherwise.

An engine counts as healthy when it has data, positive expectancy and a
profit factor of at least 1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable

from trade_intelligence.core.config import HealthConfig
from trade_intelligence.core.enums import HealthStatus
from trade_intelligence.core.serialization import encode_ratio

from .performance import EngineMetrics

if TYPE_CHECKING:
    from trade_intelligence.narration.generator import NarrativeGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthSummary:
    status: HealthStatus
    issues: tuple[str, ...]
    recommendations: tuple[str, ...]
    healthy_engines: tuple[str, ...]
    unhealthy_engines: tuple[str, ...]
    total_trades: int
    win_rate: float | None
    expectancy: float | None
    profit_factor: float | None
    avg_expectancy: float | None  # Mean over engines with data

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "healthy_engines": list(self.healthy_engines),
            "unhealthy_engines": list(self.unhealthy_engines),
            "total_trades": self.total_trades,
            "win_rate": self.win_rate,
            "expectancy": self.expectancy,
            "profit_factor": encode_ratio(self.profit_factor),
            "avg_expectancy": self.avg_expectancy,
        }


def engine_is_healthy(metrics: EngineMetrics) -> bool:
    return (
        metrics.has_data
        and metrics.expectancy is not None
        and metrics.expectancy > 0
        and metrics.profit_factor is not None
        and metrics.profit_factor >= 1.0
    )


def classify_health(overall: EngineMetrics, config: HealthConfig) -> HealthStatus:
    if overall.trade_count < config.min_trades or overall.expectancy is None:
        return HealthStatus.DEGRADED
    # None profit factor means every trade broke even
    pf = overall.profit_factor if overall.profit_factor is not None else 1.0
    if (
        overall.expectancy > config.min_expectancy
        and pf >= config.healthy_profit_factor
    ):
        return HealthStatus.HEALTHY
    if overall.expectancy <= 0 and pf < config.unhealthy_profit_factor:
        return HealthStatus.UNHEALTHY
    return HealthStatus.DEGRADED


def assess_health(
    overall: EngineMetrics,
    engines: Iterable[EngineMetrics],
    config: HealthConfig | None = None,
    narrator: NarrativeGenerator | None = None,
) -> HealthSummary:
    cfg = config or HealthConfig()
    engines = sorted(engines, key=lambda m: m.group)
    with_data = [m for m in engines if m.has_data]

    status = classify_health(overall, cfg)
    avg_expectancy = None
    if with_data:
        avg_expectancy = sum(m.expectancy for m in with_data) / len(with_data)

    summary = HealthSummary(
        status=status,
        issues=(),
        recommendations=(),
        healthy_engines=tuple(m.group for m in with_data if engine_is_healthy(m)),
        unhealthy_engines=tuple(
            m.group for m in with_data if not engine_is_healthy(m)
        ),
        total_trades=overall.trade_count,
        win_rate=overall.win_rate if overall.has_data else None,
        expectancy=overall.expectancy,
        profit_factor=overall.profit_factor,
        avg_expectancy=avg_expectancy,
    )

    if narrator is not None:
        issues, recommendations = narrator.health_narrative(
            summary, overall, engines, cfg
        )
        summary = HealthSummary(
            status=summary.status,
            issues=tuple(issues),
            recommendations=tuple(recommendations),
            healthy_engines=summary.healthy_engines,
            unhealthy_engines=summary.unhealthy_engines,
            total_trades=summary.total_trades,
            win_rate=summary.win_rate,
            expectancy=summary.expectancy,
            profit_factor=summary.profit_factor,
            avg_expectancy=summary.avg_expectancy,
        )

    logger.info(
        "Platform health: %s (%d trades, %d/%d engines healthy)",
        status.value,
        overall.trade_count,
        len(summary.healthy_engines),
        len(with_data),
    )
    return summary
