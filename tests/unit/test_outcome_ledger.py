"""Tests for the in-memory and JSONL outcome ledgers."""

import json

import pytest

from trade_intelligence.core.errors import LedgerWriteError
from trade_intelligence.core.interfaces import IOutcomeLedger
from trade_intelligence.ledger import InMemoryOutcomeLedger, JsonlOutcomeLedger


class TestInMemoryLedger:
    def test_implements_protocol(self):
        assert isinstance(InMemoryOutcomeLedger(), IOutcomeLedger)

    def test_every_write_bumps_version(self, make_outcome):
        ledger = InMemoryOutcomeLedger()
        assert ledger.version == 0
        ledger.append(make_outcome())
        ledger.append(make_outcome())
        assert ledger.version == 2
        assert len(ledger) == 2

    def test_open_idea_can_resolve(self, make_outcome):
        ledger = InMemoryOutcomeLedger()
        ledger.append(make_outcome(outcome_id="a"))
        ledger.append(make_outcome(outcome_id="a", return_pct=2.0))
        assert len(ledger) == 1
        assert ledger.get("a").is_win

    def test_resolved_row_is_immutable(self, make_outcome):
        ledger = InMemoryOutcomeLedger([make_outcome(outcome_id="a", return_pct=2.0)])
        with pytest.raises(LedgerWriteError):
            ledger.append(make_outcome(outcome_id="a", return_pct=-2.0))
        assert ledger.version == 1

    def test_inconsistent_resolution_rejected(self, make_outcome):
        ledger = InMemoryOutcomeLedger(breakeven_band_pct=0.5)
        with pytest.raises(LedgerWriteError):
            ledger.append(make_outcome(return_pct=0.3, resolution="win"))

    def test_snapshot_is_point_in_time(self, make_outcome):
        ledger = InMemoryOutcomeLedger([make_outcome(return_pct=1.0), make_outcome()])
        snap = ledger.snapshot()
        ledger.append(make_outcome())
        assert snap.version == 2
        assert len(snap.outcomes) == 2
        assert len(snap.closed) == 1


class TestJsonlLedger:
    def test_persists_and_reloads(self, tmp_path, make_outcome):
        path = tmp_path / "ledger" / "outcomes.jsonl"
        ledger = JsonlOutcomeLedger(path)
        ledger.append(make_outcome(outcome_id="a"))
        ledger.append(make_outcome(outcome_id="a", return_pct=3.0))
        ledger.append(make_outcome(outcome_id="b", return_pct=-1.0))

        reloaded = JsonlOutcomeLedger(path)
        assert len(reloaded) == 2
        assert reloaded.get("a").is_win
        assert reloaded.get("b").is_loss

    def test_skips_bad_lines(self, tmp_path, make_outcome):
        path = tmp_path / "outcomes.jsonl"
        good = make_outcome(outcome_id="ok", return_pct=1.0)
        path.write_text(
            json.dumps(good.to_dict())
            + "\n{not json\n"
            + json.dumps({"outcome_id": "bad"})
            + "\n\n"
        )
        ledger = JsonlOutcomeLedger(path)
        assert len(ledger) == 1
        assert ledger.skipped_lines == 2

    def test_rejected_write_not_persisted(self, tmp_path, make_outcome):
        path = tmp_path / "outcomes.jsonl"
        ledger = JsonlOutcomeLedger(path)
        ledger.append(make_outcome(outcome_id="a", return_pct=1.0))
        with pytest.raises(LedgerWriteError):
            ledger.append(make_outcome(outcome_id="a", return_pct=2.0))
        assert len(path.read_text().splitlines()) == 1

    def test_missing_file_is_empty(self, tmp_path):
        ledger = JsonlOutcomeLedger(tmp_path / "nope.jsonl")
        assert len(ledger) == 0
        assert ledger.version == 0

    def test_nan_return_line_skipped(self, tmp_path, make_outcome):
        path = tmp_path / "outcomes.jsonl"
        good = make_outcome(outcome_id="ok", return_pct=1.0)
        bad = dict(good.to_dict(), outcome_id="nan", return_pct=float("nan"))
        path.write_text(json.dumps(good.to_dict()) + "\n" + json.dumps(bad) + "\n")
        ledger = JsonlOutcomeLedger(path)
        assert len(ledger) == 1
        assert ledger.get("nan") is None
        assert ledger.skipped_lines == 1

    def test_failed_disk_write_leaves_ledger_unchanged(
        self, tmp_path, make_outcome, monkeypatch
    ):
        path = tmp_path / "outcomes.jsonl"
        ledger = JsonlOutcomeLedger(path)
        ledger.append(make_outcome(outcome_id="a", return_pct=1.0))

        def broken(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(
            "trade_intelligence.ledger.jsonl.safe_append_line", broken
        )
        with pytest.raises(OSError):
            ledger.append(make_outcome(outcome_id="b", return_pct=2.0))
        assert len(ledger) == 1
        assert ledger.version == 1
        assert ledger.get("b") is None

    def test_reload_does_not_rewrite_file(self, tmp_path, make_outcome):
        path = tmp_path / "outcomes.jsonl"
        JsonlOutcomeLedger(path).append(make_outcome(outcome_id="a"))
        JsonlOutcomeLedger(path)
        assert len(path.read_text().splitlines()) == 1
