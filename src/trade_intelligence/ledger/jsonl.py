"""JSONL-backed outcome ledger.

Each accepted write appends one JSON line; on open the file is replayed in
order, so the last line for an ``outcome_id`` wins (open → resolved).
Lines that fail validation are skipped and logged rather than aborting the
load.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from trade_intelligence.core.errors import LedgerWriteError
from trade_intelligence.core.file_io import safe_append_line
from trade_intelligence.core.models import TradeOutcome

from .memory import InMemoryOutcomeLedger

logger = logging.getLogger(__name__)


class JsonlOutcomeLedger(InMemoryOutcomeLedger):
    """In-memory ledger with durable JSONL persistence."""

    def __init__(
        self,
        path: str | Path,
        *,
        breakeven_band_pct: float = 0.1,
    ) -> None:
        super().__init__(breakeven_band_pct=breakeven_band_pct)
        self._path = Path(path)
        self.skipped_lines = 0
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return

        count = 0
        with open(self._path) as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    outcome = TradeOutcome.model_validate(json.loads(line))
                    with self._lock:
                        self._validate(outcome)
                        self._apply(outcome)
                    count += 1
                except (json.JSONDecodeError, ValidationError, LedgerWriteError) as exc:
                    self.skipped_lines += 1
                    logger.warning(
                        "Skipping ledger line %d in %s: %s",
                        lineno,
                        self._path,
                        exc,
                    )
        logger.info(
            "Loaded %d ledger rows from %s (%d skipped)",
            count,
            self._path,
            self.skipped_lines,
        )

    def _persist(self, outcome: TradeOutcome) -> None:
        safe_append_line(
            self._path, json.dumps(outcome.to_dict(), sort_keys=True)
        )
