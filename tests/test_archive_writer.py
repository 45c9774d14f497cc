"""Tests for the directory-archive writer"""

from datetime import datetime, timezone

from descriptor_samples import EXTRA_INFO_DESCRIPTOR, SERVER_DESCRIPTOR, network_status

from metrics_collector.archive_writer import ArchiveWriter
from metrics_collector.consumers import ConsumerFanout
from metrics_collector.descriptor_parser import DescriptorParser


def _parse_all(writer, *documents):
    parser = DescriptorParser(ConsumerFanout([writer]))
    for document in documents:
        parser.parse(document)
    writer.close()


def test_consensus_path(tmp_path):
    writer = ArchiveWriter(tmp_path)
    data = network_status()
    _parse_all(writer, data)

    path = tmp_path / "consensus" / "2012" / "06" / "01" / "2012-06-01-12-00-00-consensus"
    assert path.read_bytes() == data
    assert writer.stored == 1


def test_vote_path_carries_authority_and_digest(tmp_path):
    writer = ArchiveWriter(tmp_path)
    _parse_all(writer, network_status(vote=True))

    (path,) = (tmp_path / "vote" / "2012" / "06" / "01").iterdir()
    prefix = "2012-06-01-12-00-00-vote-D586D18309DED4CD6D57C18FDB97EFA96D330566-"
    assert path.name.startswith(prefix)
    digest = path.name[len(prefix) :]
    assert len(digest) == 40
    assert digest == digest.upper()


def test_vote_without_digest_is_not_stored(tmp_path):
    writer = ArchiveWriter(tmp_path)
    _parse_all(writer, network_status(vote=True, signed=False))
    assert not (tmp_path / "vote").exists()
    assert writer.stored == 0


def test_descriptor_paths_use_digest_prefixes(tmp_path):
    writer = ArchiveWriter(tmp_path)
    _parse_all(writer, SERVER_DESCRIPTOR, EXTRA_INFO_DESCRIPTOR)

    (server,) = [p for p in (tmp_path / "server-descriptor").rglob("*") if p.is_file()]
    assert server.relative_to(tmp_path / "server-descriptor").parts[:2] == ("2012", "06")
    assert server.parent.name == server.name[1]
    assert server.parent.parent.name == server.name[0]
    assert server.read_bytes() == SERVER_DESCRIPTOR

    (extra,) = [p for p in (tmp_path / "extra-info").rglob("*") if p.is_file()]
    assert extra.read_bytes() == EXTRA_INFO_DESCRIPTOR


def test_existing_files_are_not_rewritten(tmp_path):
    """Storing the same document twice leaves the first copy in place"""
    writer = ArchiveWriter(tmp_path)
    path = writer.consensus_path(datetime(2012, 6, 1, 12, tzinfo=timezone.utc))
    path.parent.mkdir(parents=True)
    path.write_bytes(b"already here")

    _parse_all(writer, network_status())

    assert path.read_bytes() == b"already here"
    assert writer.skipped == 1
    assert writer.stored == 0


def test_no_tmp_files_left_behind(tmp_path):
    writer = ArchiveWriter(tmp_path)
    _parse_all(writer, network_status(), SERVER_DESCRIPTOR)
    assert not list(tmp_path.rglob("*.tmp"))
