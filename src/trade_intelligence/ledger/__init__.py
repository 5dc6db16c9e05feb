"""Outcome ledger adapters (read-only from the pipeline's point of view)."""

from .jsonl import JsonlOutcomeLedger
from .memory import InMemoryOutcomeLedger

__all__ = ["InMemoryOutcomeLedger", "JsonlOutcomeLedger"]
