"""Core ledger model.

A TradeOutcome is one prediction made by an upstream engine together with
what actually happened.  Rows are owned by the prediction/resolution
process; this package only reads them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .catalysts import categorize_catalyst
from .enums import AssetType, CatalystCategory, Direction, Resolution


def classify_return(return_pct: float, breakeven_band_pct: float) -> Resolution:
    """Classify a realised percent return against a symmetric breakeven band."""
    if return_pct > breakeven_band_pct:
        return Resolution.WIN
    if return_pct < -breakeven_band_pct:
        return Resolution.LOSS
    return Resolution.BREAKEVEN


class TradeOutcome(BaseModel):
    """Immutable ledger row for one trade prediction.

    ``resolution`` is None while the idea is still open.  Once resolved the
    row carries ``return_pct`` and ``closed_at`` and never changes again.
    """

    outcome_id: str
    symbol: str
    engine: str | None = None  # Producing engine / source
    direction: Direction
    signals: tuple[str, ...] = Field(default_factory=tuple)
    confidence: float | None = Field(default=None, ge=0.0, le=100.0)
    catalyst_type: CatalystCategory | None = None
    catalyst_text: str | None = None
    asset_type: AssetType | None = None

    return_pct: float | None = Field(default=None, allow_inf_nan=False)  # 5.0 == +5%
    realized_pnl: float | None = Field(default=None, allow_inf_nan=False)
    exclude_from_training: bool = False  # Left out of calibration and intelligence
    resolution: Resolution | None = None

    opened_at: datetime
    closed_at: datetime | None = None

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if isinstance(data.get("symbol"), str):
            data["symbol"] = data["symbol"].strip().upper()
        if data.get("catalyst_type") is None and data.get("catalyst_text"):
            data["catalyst_type"] = categorize_catalyst(data["catalyst_text"])
        signals = data.get("signals")
        if signals is not None and not isinstance(signals, tuple):
            data["signals"] = tuple(signals)
        return data

    @model_validator(mode="after")
    def _check_resolution(self) -> "TradeOutcome":
        if self.resolution is None:
            return self
        if self.return_pct is None:
            raise ValueError(
                f"resolved outcome {self.outcome_id} has no return_pct"
            )
        if self.closed_at is None:
            raise ValueError(
                f"resolved outcome {self.outcome_id} has no closed_at"
            )
        if self.closed_at < self.opened_at:
            raise ValueError(
                f"outcome {self.outcome_id} closed before it opened"
            )
        if self.resolution == Resolution.WIN and self.return_pct < 0:
            raise ValueError(
                f"outcome {self.outcome_id} is a win with negative return"
            )
        if self.resolution == Resolution.LOSS and self.return_pct > 0:
            raise ValueError(
                f"outcome {self.outcome_id} is a loss with positive return"
            )
        return self

    # ------------------------------------------------------------------ #
    # Derived properties                                                   #
    # ------------------------------------------------------------------ #

    @property
    def is_closed(self) -> bool:
        return self.resolution is not None

    @property
    def is_win(self) -> bool:
        return self.resolution == Resolution.WIN

    @property
    def is_loss(self) -> bool:
        return self.resolution == Resolution.LOSS

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Chronological order for curve walks; ties broken by id."""
        return (self.closed_at or self.opened_at, self.outcome_id)

    def is_consistent(self, breakeven_band_pct: float) -> bool:
        """True when the resolution matches the sign of the return."""
        if self.resolution is None or self.return_pct is None:
            return True
        return classify_return(self.return_pct, breakeven_band_pct) == self.resolution

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
