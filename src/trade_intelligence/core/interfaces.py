"""Protocol interfaces for the intelligence core.

The outcome ledger is an external collaborator: anything that can hand
out an immutable snapshot of resolved predictions can feed the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .models import TradeOutcome


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time, read-only view of the ledger."""

    version: int
    outcomes: tuple[TradeOutcome, ...]

    @property
    def closed(self) -> tuple[TradeOutcome, ...]:
        return tuple(o for o in self.outcomes if o.is_closed)


@runtime_checkable
class IOutcomeLedger(Protocol):
    """Append-only collection of trade predictions and their outcomes."""

    @property
    def version(self) -> int:
        """Monotonic counter bumped on every accepted write."""
        ...

    def snapshot(self) -> LedgerSnapshot: ...

    def append(self, outcome: TradeOutcome) -> None: ...
