"""Tests for the import history ledger"""

from metrics_collector.import_history import ImportHistoryLedger


def test_round_trip(tmp_path):
    ledger = ImportHistoryLedger(tmp_path / "stats" / "archives-import-history")
    ledger.record("b-file")
    ledger.record("a-file")
    assert ledger.persist()
    assert ledger.path.read_text() == "a-file\nb-file\n"

    reloaded = ImportHistoryLedger(ledger.path)
    reloaded.load()
    assert reloaded.should_skip("a-file")
    assert "b-file" in reloaded
    assert not reloaded.should_skip("c-file")
    assert len(reloaded) == 2


def test_missing_file_loads_empty(tmp_path):
    ledger = ImportHistoryLedger(tmp_path / "nope")
    ledger.load()
    assert len(ledger) == 0


def test_unreadable_file_loads_empty(tmp_path):
    path = tmp_path / "archives-import-history"
    path.write_bytes(b"\xff\xfe\x00broken")
    ledger = ImportHistoryLedger(path)
    ledger.load()
    assert len(ledger) == 0


def test_persist_failure_returns_false(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    ledger = ImportHistoryLedger(blocker / "history")
    ledger.record("x")
    assert ledger.persist() is False
