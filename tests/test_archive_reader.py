"""Tests for reading descriptor archives from disk"""

import bz2

import pytest
from descriptor_samples import EXTRA_INFO_DESCRIPTOR, SERVER_DESCRIPTOR, network_status

from metrics_collector.archive_reader import ArchiveReader
from metrics_collector.consumers import ConsumerFanout
from metrics_collector.descriptor_parser import DescriptorParser
from metrics_collector.import_history import ImportHistoryLedger


@pytest.fixture
def archives(tmp_path):
    root = tmp_path / "archives"
    (root / "nested" / "deeper").mkdir(parents=True)
    (root / "consensus").write_bytes(network_status())
    (root / "nested" / "server.bz2").write_bytes(bz2.compress(SERVER_DESCRIPTOR))
    (root / "nested" / "deeper" / "extra").write_bytes(EXTRA_INFO_DESCRIPTOR)
    return root


def test_reads_every_file(archives, recorder):
    reader = ArchiveReader(DescriptorParser(ConsumerFanout([recorder])), archives)
    summary = reader.read()

    assert summary.parsed == 3
    assert summary.ignored == 0
    assert summary.problems == []
    assert len(recorder.of("consensus")) == 1
    assert len(recorder.of("server_descriptor")) == 1
    assert len(recorder.of("extra_info")) == 1


def test_ledger_skips_known_files(archives, recorder, tmp_path):
    """Files recorded in an earlier run are not parsed again"""
    ledger = ImportHistoryLedger(tmp_path / "history")
    ledger.record("consensus")
    reader = ArchiveReader(DescriptorParser(ConsumerFanout([recorder])), archives, ledger)
    summary = reader.read()

    assert summary.parsed == 2
    assert summary.ignored == 1
    assert recorder.of("consensus") == []
    assert "server.bz2" in ledger
    assert "extra" in ledger

    second = ArchiveReader(DescriptorParser(ConsumerFanout([recorder])), archives, ledger).read()
    assert second.parsed == 0
    assert second.ignored == 3


def test_tarballs_are_skipped(archives, recorder):
    (archives / "bundle.tar.bz2").write_bytes(b"not really a tarball")
    summary = ArchiveReader(DescriptorParser(ConsumerFanout([recorder])), archives).read()
    assert summary.parsed == 3


def test_corrupt_bz2_is_a_problem(archives, recorder):
    (archives / "broken.bz2").write_bytes(b"BZh91AY&SY garbage")
    summary = ArchiveReader(DescriptorParser(ConsumerFanout([recorder])), archives).read()
    assert [p.name for p in summary.problems] == ["broken.bz2"]
    assert summary.parsed == 3


def test_missing_directory(tmp_path, recorder):
    summary = ArchiveReader(DescriptorParser(ConsumerFanout([recorder])), tmp_path / "absent").read()
    assert summary.parsed == 0
    assert recorder.events == []
