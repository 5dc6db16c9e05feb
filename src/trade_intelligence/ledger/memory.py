"""In-memory outcome ledger.

Reference implementation of :class:`IOutcomeLedger`.  Open ideas may be
replaced by their resolved version (a trade resolving); resolved rows are
immutable.  Every accepted write bumps ``version``, which is what turns the
derived snapshot stale.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from trade_intelligence.core.errors import LedgerWriteError
from trade_intelligence.core.interfaces import LedgerSnapshot
from trade_intelligence.core.models import TradeOutcome

logger = logging.getLogger(__name__)


class InMemoryOutcomeLedger:
    """Thread-safe append-only ledger held in memory.

    Parameters
    ----------
    breakeven_band_pct : float
        Resolutions must agree with the sign of ``return_pct`` outside
        this band (see :func:`classify_return`).
    """

    def __init__(
        self,
        outcomes: Iterable[TradeOutcome] = (),
        *,
        breakeven_band_pct: float = 0.1,
    ) -> None:
        self._band = breakeven_band_pct
        self._rows: dict[str, TradeOutcome] = {}
        self._version = 0
        self._lock = threading.Lock()
        for outcome in outcomes:
            self.append(outcome)

    @property
    def version(self) -> int:
        return self._version

    @property
    def breakeven_band_pct(self) -> float:
        return self._band

    def __len__(self) -> int:
        return len(self._rows)

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    def append(self, outcome: TradeOutcome) -> None:
        """Add a prediction or resolve a previously open one.

        Raises
        ------
        LedgerWriteError
            If the row is already resolved or its resolution disagrees
            with its return.
        """
        with self._lock:
            self._validate(outcome)
            self._persist(outcome)
            self._apply(outcome)
        logger.debug(
            "Ledger write: %s %s resolution=%s (version=%d)",
            outcome.outcome_id,
            outcome.symbol,
            outcome.resolution.value if outcome.resolution else "open",
            self._version,
        )

    def _persist(self, outcome: TradeOutcome) -> None:
        """Durable write hook; runs before the row becomes visible."""

    def _apply(self, outcome: TradeOutcome) -> None:
        self._rows[outcome.outcome_id] = outcome
        self._version += 1

    def _validate(self, outcome: TradeOutcome) -> None:
        existing = self._rows.get(outcome.outcome_id)
        if existing is not None and existing.is_closed:
            raise LedgerWriteError(
                f"Outcome {outcome.outcome_id} is already resolved and immutable"
            )
        if not outcome.is_consistent(self._band):
            raise LedgerWriteError(
                f"Outcome {outcome.outcome_id} resolution "
                f"{outcome.resolution.value if outcome.resolution else None} "
                f"disagrees with return {outcome.return_pct}% "
                f"(breakeven band ±{self._band}%)"
            )

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                version=self._version,
                outcomes=tuple(self._rows.values()),
            )

    def get(self, outcome_id: str) -> TradeOutcome | None:
        return self._rows.get(outcome_id)
