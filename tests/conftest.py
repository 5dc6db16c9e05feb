"""Shared fixtures for the trade-intelligence test suite."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from trade_intelligence.core.clock import FixedClock
from trade_intelligence.core.config import Settings
from trade_intelligence.core.models import TradeOutcome, classify_return
from trade_intelligence.ledger.memory import InMemoryOutcomeLedger

BASE_TIME = datetime(2024, 1, 1, 14, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def make_outcome():
    """Factory for ledger rows.

    ``return_pct`` resolves the row (resolution derived from its sign
    unless given); omit it for an open idea.  Each call opens one hour
    after the previous one so chronological order equals call order.
    """
    counter = itertools.count()

    def _make(
        *,
        outcome_id: str | None = None,
        symbol: str = "AAPL",
        engine: str | None = "quant",
        direction: str = "long",
        signals: tuple[str, ...] = (),
        confidence: float | None = 70.0,
        catalyst_type: str | None = None,
        catalyst_text: str | None = None,
        asset_type: str | None = "stock",
        return_pct: float | None = None,
        resolution: str | None = None,
        realized_pnl: float | None = None,
        opened_at: datetime | None = None,
        closed_at: datetime | None = None,
        exclude_from_training: bool = False,
    ) -> TradeOutcome:
        n = next(counter)
        opened = opened_at or BASE_TIME + timedelta(hours=n)
        if return_pct is not None and resolution is None:
            resolution = classify_return(return_pct, 0.1).value
        if resolution is not None and closed_at is None:
            closed_at = opened + timedelta(hours=6)
        return TradeOutcome(
            outcome_id=outcome_id or f"o-{n:05d}",
            symbol=symbol,
            engine=engine,
            direction=direction,
            signals=signals,
            confidence=confidence,
            catalyst_type=catalyst_type,
            catalyst_text=catalyst_text,
            asset_type=asset_type,
            return_pct=return_pct,
            resolution=resolution,
            realized_pnl=realized_pnl,
            opened_at=opened,
            closed_at=closed_at,
            exclude_from_training=exclude_from_training,
        )

    return _make


@pytest.fixture
def mixed_outcomes(make_outcome) -> list[TradeOutcome]:
    """Two engines, three symbols, a couple of catalysts and one open idea."""
    rows = []
    for i, ret in enumerate([4.0, -2.0, 3.0, 5.0, -1.0, 2.5]):
        rows.append(
            make_outcome(
                symbol="NVDA",
                engine="quant",
                direction="long",
                signals=("RSI Oversold", "VWAP Cross"),
                confidence=75.0,
                catalyst_type="earnings",
                return_pct=ret,
                realized_pnl=ret * 10,
            )
        )
    for ret in [-3.0, -1.5, 1.0, -2.0]:
        rows.append(
            make_outcome(
                symbol="TSLA",
                engine="flow",
                direction="short",
                signals=("Volume Spike",),
                confidence=85.0,
                catalyst_type="analyst_downgrade",
                return_pct=ret,
                realized_pnl=ret * 10,
            )
        )
    rows.append(make_outcome(symbol="AMD", engine="flow", confidence=60.0))
    return rows


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock(datetime(2024, 6, 1, tzinfo=timezone.utc))


@pytest.fixture
def ledger(mixed_outcomes) -> InMemoryOutcomeLedger:
    return InMemoryOutcomeLedger(mixed_outcomes)
