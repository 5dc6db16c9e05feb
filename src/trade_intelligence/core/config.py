"""Configuration management.

Loads from TOML config files + environment variables.
Uses pydantic-settings for validation and env var overriding.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class LedgerConfig(BaseModel):
    path: str = "data/outcomes.jsonl"
    breakeven_band_pct: float = 0.1  # |return| inside the band is breakeven


class PerformanceConfig(BaseModel):
    sharpe_annualization: float = 1.0  # Per-trade Sharpe, not annualised
    min_sharpe_trades: int = 2


class CalibrationConfig(BaseModel):
    bin_width: int = 10
    tolerance_pct: float = 10.0  # |predicted - actual| for a calibrated bin
    min_bin_samples: int = 5  # Bins below this are excluded from ECE
    ece_zero_reliability: float = 50.0  # ECE at which reliability hits 0
    min_adjust_samples: int = 5
    adjusted_floor: float = 30.0
    adjusted_ceiling: float = 95.0
    lookback_days: float | None = None  # None = whole history


class SignalWeightConfig(BaseModel):
    enabled: bool = True
    base_weight: float = 1.0
    baseline_win_rate: float = 50.0
    min_weight: float = 0.3  # Floor: a signal is damped, never disabled
    max_weight: float = 2.0
    prior_strength: float = 30.0  # Pseudo-trades pulling weights to 1.0
    low_tier_trades: int = 10
    medium_tier_trades: int = 30
    high_tier_trades: int = 100
    neutral_epsilon: float = 0.05
    top_n: int = 10
    overrides_path: str = ""  # Optional JSON persistence for overrides


class IntelligenceConfig(BaseModel):
    min_catalyst_samples: int = 3
    min_performer_trades: int = 3
    recent_trades: int = 10
    max_catalysts: int = 3
    leaderboard_size: int = 10
    min_adjustment_trades: int = 5
    confidence_bands: list[tuple[float, float]] = Field(
        default_factory=lambda: [
            (90.0, 100.0),
            (80.0, 90.0),
            (70.0, 80.0),
            (60.0, 70.0),
            (50.0, 60.0),
            (0.0, 50.0),
        ]
    )


class HealthConfig(BaseModel):
    min_trades: int = 10
    min_expectancy: float = 0.0
    healthy_profit_factor: float = 1.2
    unhealthy_profit_factor: float = 1.0


class SchedulerConfig(BaseModel):
    enabled: bool = False
    interval_hours: float = 24.0  # Nightly by default
    initial_delay_minutes: float = 0.0


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "console"
    metrics_port: int = 9090


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Top-level application settings.

    Loaded from TOML config files, overridden by environment variables.
    """

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    signal_weights: SignalWeightConfig = Field(default_factory=SignalWeightConfig)
    intelligence: IntelligenceConfig = Field(default_factory=IntelligenceConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    max_workers: int = 3  # Parallel downstream reducers

    model_config = {"env_prefix": "TRADE_INTEL_", "env_nested_delimiter": "__"}

    def validate_ranges(self) -> None:
        """Reject configurations that would break pipeline invariants."""
        from .errors import ConfigError

        sw = self.signal_weights
        if sw.min_weight <= 0:
            raise ConfigError(
                "signal_weights.min_weight must be > 0; signals are damped, "
                "never disabled"
            )
        if sw.max_weight < sw.min_weight:
            raise ConfigError(
                f"signal_weights.max_weight ({sw.max_weight}) is below "
                f"min_weight ({sw.min_weight})"
            )
        if not sw.min_weight <= sw.base_weight <= sw.max_weight:
            raise ConfigError("signal_weights.base_weight outside clamp range")
        if sw.baseline_win_rate <= 0:
            raise ConfigError("signal_weights.baseline_win_rate must be > 0")
        if not (
            0 < sw.low_tier_trades
            <= sw.medium_tier_trades
            <= sw.high_tier_trades
        ):
            raise ConfigError("signal_weights tier thresholds must be ascending")

        cal = self.calibration
        if cal.bin_width <= 0 or 100 % cal.bin_width != 0:
            raise ConfigError(
                f"calibration.bin_width must divide 100, got {cal.bin_width}"
            )
        if cal.ece_zero_reliability <= 0:
            raise ConfigError("calibration.ece_zero_reliability must be > 0")
        if cal.lookback_days is not None and cal.lookback_days <= 0:
            raise ConfigError("calibration.lookback_days must be > 0 when set")
        if self.intelligence.min_performer_trades < 1:
            raise ConfigError("intelligence.min_performer_trades must be >= 1")

        if self.ledger.breakeven_band_pct < 0:
            raise ConfigError("ledger.breakeven_band_pct must be >= 0")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be >= 1")


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge ``overrides`` into ``base`` section by section."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from TOML file + env vars.

    Args:
        config_path: Path to TOML config file (optional).
        overrides: Dict of overrides to apply on top.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            import tomli

            with open(path, "rb") as f:
                data = tomli.load(f)

    if overrides:
        data = _deep_merge(data, overrides)

    settings = Settings(**data)
    settings.validate_ranges()
    return settings
