"""Signal weight engine: adaptive multipliers from per-signal outcomes.

Every signal tag seen on a closed trade gets a dynamic weight that biases
how much upstream engines lean on it.  The weight grows with the signal's
win rate above a neutral baseline and shrinks below it, but thin samples
are pulled back towards 1.0 and the result is clamped into
``[min_weight, max_weight]``.  The floor is strictly positive: the
automatic process damps a bad signal, it never switches one off.

Manual overrides sit on top.  Each signal resolves to a tagged variant,
either :class:`Computed` or :class:`Overridden`; an override replaces the
effective weight while the computed value stays queryable.

Usage::

    engine = SignalWeightEngine(SignalWeightConfig())
    computed = engine.compute(outcomes)
    summary = engine.summarize(computed, overrides.snapshot())
"""

from __future__ import annotations

import json
import logging
import math
import numbers
import threading
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Union

from trade_intelligence.core.config import SignalWeightConfig
from trade_intelligence.core.enums import ConfidenceTier, WeightSource
from trade_intelligence.core.errors import OverrideConflict
from trade_intelligence.core.file_io import atomic_write_json
from trade_intelligence.core.models import TradeOutcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SignalStats:
    signal: str
    trade_count: int
    win_count: int
    loss_count: int
    win_rate: float | None
    avg_return_pct: float | None


@dataclass(frozen=True)
class ComputedWeight:
    """Output of the automatic process for one signal."""

    signal: str
    base_weight: float
    dynamic_weight: float
    win_rate: float | None
    trade_count: int
    tier: ConfidenceTier

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal": self.signal,
            "base_weight": self.base_weight,
            "dynamic_weight": self.dynamic_weight,
            "win_rate": self.win_rate,
            "trade_count": self.trade_count,
            "confidence": self.tier.value,
        }


@dataclass(frozen=True)
class Computed:
    computed: ComputedWeight

    source = WeightSource.COMPUTED

    @property
    def effective_weight(self) -> float:
        return self.computed.dynamic_weight

    @property
    def override_weight(self) -> float | None:
        return None


@dataclass(frozen=True)
class Overridden:
    weight: float
    computed: ComputedWeight

    source = WeightSource.OVERRIDDEN

    @property
    def effective_weight(self) -> float:
        return self.weight

    @property
    def override_weight(self) -> float | None:
        return self.weight


SignalWeight = Union[Computed, Overridden]


def signal_weight_to_dict(weight: SignalWeight) -> dict[str, Any]:
    c = weight.computed
    return {
        "signal_name": c.signal,
        "base_weight": c.base_weight,
        "dynamic_weight": c.dynamic_weight,
        "effective_weight": weight.effective_weight,
        "win_rate": c.win_rate,
        "total_trades": c.trade_count,
        "confidence": c.tier.value,
        "is_overridden": isinstance(weight, Overridden),
        "override_weight": weight.override_weight,
    }


@dataclass(frozen=True)
class WeightSummary:
    enabled: bool
    total_signals: int
    boosted_count: int
    reduced_count: int
    neutral_count: int
    overridden_count: int
    top_boosted: tuple[SignalWeight, ...]
    top_reduced: tuple[SignalWeight, ...]
    signals: tuple[SignalWeight, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "total_signals": self.total_signals,
            "boosted_count": self.boosted_count,
            "reduced_count": self.reduced_count,
            "neutral_count": self.neutral_count,
            "overridden_count": self.overridden_count,
            "top_boosted": [signal_weight_to_dict(w) for w in self.top_boosted],
            "top_reduced": [signal_weight_to_dict(w) for w in self.top_reduced],
            "signals": [signal_weight_to_dict(w) for w in self.signals],
        }


@dataclass(frozen=True)
class WeightedConfidence:
    adjusted_confidence: float
    total_weight_multiplier: float
    contributions: tuple[tuple[str, float], ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "adjusted_confidence": self.adjusted_confidence,
            "total_weight_multiplier": self.total_weight_multiplier,
            "signal_contributions": [
                {"signal": s, "weight": w} for s, w in self.contributions
            ],
        }


# ---------------------------------------------------------------------------
# Pure functions
# ---------------------------------------------------------------------------

def collect_signal_stats(outcomes: Iterable[TradeOutcome]) -> dict[str, SignalStats]:
    """Per-signal trade counts over closed trades.

    A trade carrying several signals counts once towards each of them.
    """
    trades: dict[str, int] = defaultdict(int)
    wins: dict[str, int] = defaultdict(int)
    losses: dict[str, int] = defaultdict(int)
    returns: dict[str, list[float]] = defaultdict(list)

    for o in sorted(outcomes, key=lambda o: o.sort_key):
        if not o.is_closed:
            continue
        for signal in sorted(set(o.signals)):
            trades[signal] += 1
            returns[signal].append(o.return_pct)
            if o.is_win:
                wins[signal] += 1
            elif o.is_loss:
                losses[signal] += 1

    stats: dict[str, SignalStats] = {}
    for signal in sorted(trades):
        n = trades[signal]
        stats[signal] = SignalStats(
            signal=signal,
            trade_count=n,
            win_count=wins[signal],
            loss_count=losses[signal],
            win_rate=wins[signal] / n * 100.0,
            avg_return_pct=sum(returns[signal]) / n,
        )
    return stats


def confidence_tier(trade_count: int, config: SignalWeightConfig) -> ConfidenceTier:
    if trade_count >= config.high_tier_trades:
        return ConfidenceTier.HIGH
    if trade_count >= config.medium_tier_trades:
        return ConfidenceTier.MEDIUM
    if trade_count >= config.low_tier_trades:
        return ConfidenceTier.LOW
    return ConfidenceTier.UNTESTED


def clamp_weight(weight: float, config: SignalWeightConfig) -> float:
    """The only place the weight floor is applied."""
    return min(config.max_weight, max(config.min_weight, weight))


def dynamic_weight(
    win_rate: float | None, trade_count: int, config: SignalWeightConfig
) -> float:
    """Bounded multiplier from win rate, shrunk towards neutral by sample size.

    ``base * (1 + (win_rate / baseline - 1) * n / (n + prior_strength))``;
    untested signals stay exactly at the base weight.
    """
    if (
        win_rate is None
        or confidence_tier(trade_count, config) == ConfidenceTier.UNTESTED
    ):
        return clamp_weight(config.base_weight, config)
    deviation = win_rate / config.baseline_win_rate - 1.0
    shrink = trade_count / (trade_count + config.prior_strength)
    return clamp_weight(config.base_weight * (1.0 + deviation * shrink), config)


def validate_override(signal: str, weight: Any) -> float:
    """Positive finite numbers only; anything else is rejected, never clamped."""
    if isinstance(weight, bool) or not isinstance(weight, numbers.Real):
        raise OverrideConflict(signal, weight)
    value = float(weight)
    if not math.isfinite(value) or value <= 0:
        raise OverrideConflict(signal, weight)
    return value


# ---------------------------------------------------------------------------
# Override store
# ---------------------------------------------------------------------------

class OverrideStore:
    """Manual weight overrides keyed by signal name.

    Parameters
    ----------
    path : str or Path, optional
        JSON file for durable storage.  Loaded on init and rewritten
        atomically on every change.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._overrides: dict[str, float] = {}
        self._lock = threading.Lock()
        if self._path is not None and self._path.exists():
            self._load()

    def _load(self) -> None:
        with open(self._path) as f:
            raw = json.load(f)
        for signal, weight in raw.items():
            try:
                self._overrides[signal] = validate_override(signal, weight)
            except OverrideConflict:
                logger.warning("Ignoring invalid persisted override %r", signal)
        logger.info(
            "Loaded %d signal overrides from %s", len(self._overrides), self._path
        )

    def _persist(self, overrides: dict[str, float]) -> None:
        if self._path is not None:
            atomic_write_json(self._path, overrides)

    def set(self, signal: str, weight: Any) -> float | None:
        """Set an override and return the previous one (if any).

        Raises
        ------
        OverrideConflict
            If ``weight`` is not a positive finite number.
        """
        value = validate_override(signal, weight)
        with self._lock:
            previous = self._overrides.get(signal)
            updated = {**self._overrides, signal: value}
            self._persist(updated)
            self._overrides = updated
        logger.info(
            "Signal override set: %s = %.4fx (was %s)",
            signal,
            value,
            f"{previous:.4f}x" if previous is not None else "computed",
        )
        return previous

    def remove(self, signal: str) -> bool:
        with self._lock:
            existed = signal in self._overrides
            if existed:
                updated = {k: v for k, v in self._overrides.items() if k != signal}
                self._persist(updated)
                self._overrides = updated
        if existed:
            logger.info("Signal override removed: %s", signal)
        return existed

    def get(self, signal: str) -> float | None:
        return self._overrides.get(signal)

    def snapshot(self) -> Mapping[str, float]:
        with self._lock:
            return MappingProxyType(dict(self._overrides))

    def __len__(self) -> int:
        return len(self._overrides)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class SignalWeightEngine:
    """Computes dynamic weights and resolves them against overrides.

    Both steps are pure: the same aggregated stats and override map
    always produce the same weights.
    """

    def __init__(self, config: SignalWeightConfig | None = None) -> None:
        self._config = config or SignalWeightConfig()

    @property
    def config(self) -> SignalWeightConfig:
        return self._config

    def compute_from_stats(
        self, stats: Mapping[str, SignalStats]
    ) -> tuple[ComputedWeight, ...]:
        cfg = self._config
        weights = tuple(
            ComputedWeight(
                signal=s.signal,
                base_weight=cfg.base_weight,
                dynamic_weight=dynamic_weight(s.win_rate, s.trade_count, cfg),
                win_rate=s.win_rate,
                trade_count=s.trade_count,
                tier=confidence_tier(s.trade_count, cfg),
            )
            for s in (stats[k] for k in sorted(stats))
        )
        logger.info("Computed dynamic weights for %d signals", len(weights))
        return weights

    def compute(self, outcomes: Iterable[TradeOutcome]) -> tuple[ComputedWeight, ...]:
        return self.compute_from_stats(collect_signal_stats(outcomes))

    def _untested(self, signal: str) -> ComputedWeight:
        return ComputedWeight(
            signal=signal,
            base_weight=self._config.base_weight,
            dynamic_weight=clamp_weight(self._config.base_weight, self._config),
            win_rate=None,
            trade_count=0,
            tier=ConfidenceTier.UNTESTED,
        )

    def resolve(
        self,
        computed: Iterable[ComputedWeight],
        overrides: Mapping[str, float],
    ) -> tuple[SignalWeight, ...]:
        """Pair every computed weight with its override, if any.

        Overrides for signals never seen in the ledger resolve against an
        untested computed weight.
        """
        by_signal = {c.signal: c for c in computed}
        for signal in overrides:
            if signal not in by_signal:
                by_signal[signal] = self._untested(signal)

        resolved: list[SignalWeight] = []
        for signal in sorted(by_signal):
            c = by_signal[signal]
            if signal in overrides:
                resolved.append(Overridden(weight=overrides[signal], computed=c))
            else:
                resolved.append(Computed(computed=c))
        return tuple(resolved)

    def effective_weight(
        self,
        signal: str,
        computed: Iterable[ComputedWeight],
        overrides: Mapping[str, float],
    ) -> float:
        if signal in overrides:
            return overrides[signal]
        for c in computed:
            if c.signal == signal:
                return c.dynamic_weight
        return self._config.base_weight

    def summarize(
        self,
        computed: Iterable[ComputedWeight],
        overrides: Mapping[str, float],
    ) -> WeightSummary:
        cfg = self._config
        weights = self.resolve(computed, overrides)
        upper = 1.0 + cfg.neutral_epsilon
        lower = 1.0 - cfg.neutral_epsilon

        boosted = [w for w in weights if w.effective_weight > upper]
        reduced = [w for w in weights if w.effective_weight < lower]
        overridden = [w for w in weights if isinstance(w, Overridden)]

        boosted.sort(key=lambda w: (-w.effective_weight, w.computed.signal))
        reduced.sort(key=lambda w: (w.effective_weight, w.computed.signal))

        return WeightSummary(
            enabled=cfg.enabled,
            total_signals=len(weights),
            boosted_count=len(boosted),
            reduced_count=len(reduced),
            neutral_count=len(weights) - len(boosted) - len(reduced),
            overridden_count=len(overridden),
            top_boosted=tuple(boosted[: cfg.top_n]),
            top_reduced=tuple(reduced[: cfg.top_n]),
            signals=weights,
        )

    def weighted_confidence(
        self,
        signals: Iterable[str],
        base_confidence: float,
        computed: Iterable[ComputedWeight],
        overrides: Mapping[str, float],
    ) -> WeightedConfidence:
        """Bias a fresh prediction's confidence by its signals' weights.

        The average effective weight is half-damped and the result clamped
        to [10, 99].  Identity when dynamic weighting is disabled.
        """
        names = list(signals)
        if not names or not self._config.enabled:
            return WeightedConfidence(base_confidence, 1.0, ())

        table = {c.signal: c for c in computed}
        contributions = []
        for name in names:
            if name in overrides:
                weight = overrides[name]
            elif name in table:
                weight = table[name].dynamic_weight
            else:
                weight = self._config.base_weight
            contributions.append((name, weight))

        avg = sum(w for _, w in contributions) / len(contributions)
        damped = 1.0 + (avg - 1.0) * 0.5
        adjusted = min(99.0, max(10.0, base_confidence * damped))
        return WeightedConfidence(
            adjusted_confidence=round(adjusted, 1),
            total_weight_multiplier=round(avg, 2),
            contributions=tuple(contributions),
        )
