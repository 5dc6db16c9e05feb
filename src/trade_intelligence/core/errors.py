"""Custom exception hierarchy for the intelligence core."""


class IntelligenceError(Exception):
    """Base exception for all intelligence core errors."""


# --- Configuration ---
class ConfigError(IntelligenceError):
    """Invalid or missing configuration."""


# --- Data ---
class DataError(IntelligenceError):
    """Ledger data quality error."""


class MalformedRecord(DataError):
    """A ledger row lacks a field required by one aggregation.

    Raised by key functions and caught by the aggregation that needed the
    field; the row is excluded from that aggregation only.
    """

    def __init__(self, outcome_id: str, field_name: str):
        self.outcome_id = outcome_id
        self.field_name = field_name
        super().__init__(f"Outcome {outcome_id} has no {field_name}")


class LedgerWriteError(DataError):
    """Write rejected by the ledger (immutability or consistency)."""


# --- Recompute ---
class RecomputeFailure(IntelligenceError):
    """A full refresh could not complete. Previous snapshot is kept."""

    def __init__(self, kind: str, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"Recompute failed [{kind}]: {message}")


class RecomputeAborted(RecomputeFailure):
    """A refresh was aborted by its caller before publishing."""

    def __init__(self, message: str = "recompute aborted"):
        super().__init__("aborted", message)


# --- Signal weights ---
class OverrideConflict(IntelligenceError):
    """Manual weight override rejected at write time."""

    def __init__(self, signal: str, weight: object):
        self.signal = signal
        self.weight = weight
        super().__init__(
            f"Override for {signal!r} must be a positive finite number, got {weight!r}"
        )
