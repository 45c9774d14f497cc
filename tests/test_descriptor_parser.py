"""Tests for descriptor classification, parsing and dispatch"""

import hashlib
from datetime import datetime, timezone

import pytest
from descriptor_samples import (
    DESCRIPTOR_DIGESTS,
    EXTRA_INFO_DESCRIPTOR,
    IDENTITIES,
    SERVER_DESCRIPTOR,
    network_status,
    r_line,
)

from metrics_collector.consumers import ConsumerFanout
from metrics_collector.descriptor_parser import DescriptorParser, classify
from metrics_collector.documents import TOTAL_USERS_KEY, DocumentKind

VALID_AFTER = datetime(2012, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def parser(recorder):
    return DescriptorParser(ConsumerFanout([recorder]))


@pytest.mark.parametrize(
    ("first_line", "kind"),
    [
        ("network-status-version 3", DocumentKind.CONSENSUS),
        ("router moria1 128.31.0.34 9101 0 9131", DocumentKind.SERVER_DESCRIPTOR),
        ("extra-info moria1 9695DFC35FFEB861329B9F1AB04C46397020CE31", DocumentKind.EXTRA_INFO),
        ("network-status-version 2", DocumentKind.UNRECOGNIZED),
        ("@type bridge-network-status 1.0", DocumentKind.UNRECOGNIZED),
    ],
)
def test_classify(first_line, kind):
    assert classify(first_line) is kind


# =============================================================================
# Consensuses
# =============================================================================


def test_consensus_dispatches_every_status_entry(parser, recorder):
    """N r lines produce N status entry dispatches, in document order"""
    parser.parse(network_status())

    entries = recorder.of("status_entry")
    assert [entry.nickname for _, entry in entries] == ["alpha", "beta", "gamma"]
    assert all(valid_after == VALID_AFTER for valid_after, _ in entries)
    assert [entry.identity for _, entry in entries] == [i.hex() for i in IDENTITIES]
    assert [entry.descriptor_digest for _, entry in entries] == [d.hex() for d in DESCRIPTOR_DIGESTS]


def test_consensus_entry_fields(parser, recorder):
    parser.parse(network_status())
    alpha, beta, gamma = (entry for _, entry in recorder.of("status_entry"))

    assert alpha.flags == frozenset({"Fast", "Guard", "Running", "Stable", "Valid"})
    assert alpha.version == "Tor 0.2.3.15-alpha"
    assert alpha.bandwidth == 20
    assert alpha.ports == "accept 80,443"
    assert alpha.published == datetime(2012, 6, 1, 8, 5, 30, tzinfo=timezone.utc)
    assert alpha.address == "10.0.0.1"
    assert (alpha.or_port, alpha.dir_port) == (9001, 9030)
    assert alpha.raw.startswith(b"r alpha ")
    assert alpha.raw.endswith(b"p accept 80,443\n")

    assert beta.bandwidth == 1500
    assert beta.version is None
    assert "Exit" in beta.flags

    # A bare "s" line means the relay has no flags at all
    assert gamma.flags == frozenset()


def test_consensus_document_dispatch(parser, recorder):
    parser.parse(network_status())

    (status,), = recorder.of("consensus")
    assert status.kind is DocumentKind.CONSENSUS
    assert not status.is_vote
    assert status.valid_after == VALID_AFTER
    assert status.valid_after_text == "2012-06-01 12:00:00"
    assert len(status.entries) == 3
    assert status.dir_sources == ("D586D18309DED4CD6D57C18FDB97EFA96D330566", "14C131DFC5C6F93646BE72FA1401C02A8DF2E8B4")
    assert status.signed_digest is None
    assert {ref.digest for ref in status.references} == {d.hex() for d in DESCRIPTOR_DIGESTS}


def test_consensus_hashed_relay_identities(parser, recorder):
    parser.parse(network_status())

    (valid_after, identities), = recorder.of("hashed_relays")
    assert valid_after == VALID_AFTER
    assert identities == frozenset(hashlib.sha1(i).hexdigest().upper() for i in IDENTITIES)


def test_entries_dispatched_before_document(parser, recorder):
    parser.parse(network_status())
    hooks = [name for name, _ in recorder.events]
    assert hooks == ["status_entry", "status_entry", "status_entry", "consensus", "hashed_relays"]


def test_short_r_line_stops_entry_parsing(parser, recorder):
    """Entries before a malformed r line survive; the rest of the document is not read"""
    entries = [
        r_line("alpha", IDENTITIES[0], DESCRIPTOR_DIGESTS[0]),
        "s Running",
        "r broken AAAA",
        r_line("gamma", IDENTITIES[2], DESCRIPTOR_DIGESTS[2]),
        "s Running",
    ]
    parser.parse(network_status(entries=entries))

    assert [entry.nickname for _, entry in recorder.of("status_entry")] == ["alpha"]
    (status,), = recorder.of("consensus")
    assert len(status.entries) == 1


def test_bad_timestamp_drops_document(parser, recorder):
    """A document that fails to parse dispatches nothing and does not raise"""
    data = network_status().replace(b"valid-after 2012-06-01 12:00:00", b"valid-after yesterday")
    parser.parse(data)
    assert recorder.events == []


def test_bad_base64_drops_document(parser, recorder):
    entries = ["r alpha !!!notbase64!!! AAAAAAAAAAAAAAAAAAAAAAAAAAA 2012-06-01 08:05:30 10.0.0.1 9001 9030"]
    parser.parse(network_status(entries=entries))
    assert recorder.of("consensus") == []


def test_parse_is_deterministic(recorder):
    """Parsing the same bytes twice yields equal records"""
    parser = DescriptorParser(ConsumerFanout([recorder]))
    data = network_status()
    parser.parse(data)
    first = list(recorder.events)
    recorder.events.clear()
    parser.parse(data)
    assert recorder.events == first


# =============================================================================
# Votes
# =============================================================================


def test_vote_dispatch(parser, recorder):
    """Votes are dispatched whole, with a digest, and without status entry calls"""
    data = network_status(vote=True)
    parser.parse(data)

    assert recorder.of("status_entry") == []
    assert recorder.of("consensus") == []
    (status,), = recorder.of("vote")
    assert status.is_vote
    assert status.authority_fingerprint == "D586D18309DED4CD6D57C18FDB97EFA96D330566"
    assert status.vote_dir_source == "D586D18309DED4CD6D57C18FDB97EFA96D330566"
    assert len(status.entries) == 3

    end = data.index(b"directory-signature ") + len(b"directory-signature ")
    assert status.signed_digest == hashlib.sha1(data[:end]).hexdigest().upper()


def test_vote_without_signature_is_still_dispatched(parser, recorder):
    parser.parse(network_status(vote=True, signed=False))
    (status,), = recorder.of("vote")
    assert status.signed_digest is None


# =============================================================================
# Server descriptors
# =============================================================================


def test_server_descriptor_fields(parser, recorder):
    parser.parse(SERVER_DESCRIPTOR)

    (record,), = recorder.of("server_descriptor")
    assert record.nickname == "moria1"
    assert record.address == "128.31.0.34"
    assert (record.or_port, record.dir_port) == (9101, 0)
    assert record.platform == "Tor 0.2.3.15-alpha on Linux"
    assert record.published == datetime(2012, 6, 1, 11, 30, tzinfo=timezone.utc)
    assert record.published_text == "2012-06-01 11:30:00"
    assert record.fingerprint == "9695dfc35ffeb861329b9f1ab04c46397020ce31"
    assert (record.bandwidth_avg, record.bandwidth_burst, record.bandwidth_observed) == (512000, 1024000, 300000)
    assert record.uptime == 1234
    assert record.extra_info_digest == "6a7e5f8d1c9b2e3f4a5b6c7d8e9f0a1b2c3d4e5f"
    assert record.raw == SERVER_DESCRIPTOR

    end = SERVER_DESCRIPTOR.index(b"\nrouter-signature\n") + len(b"\nrouter-signature\n")
    assert record.digest == hashlib.sha1(SERVER_DESCRIPTOR[:end]).hexdigest()


def test_server_descriptor_without_signature_is_dropped(parser, recorder):
    unsigned = SERVER_DESCRIPTOR[: SERVER_DESCRIPTOR.index(b"router-signature")]
    parser.parse(unsigned)
    assert recorder.of("server_descriptor") == []


def test_server_descriptor_without_bandwidth(parser, recorder):
    parser.parse(SERVER_DESCRIPTOR.replace(b"bandwidth 512000 1024000 300000\n", b""))
    (record,), = recorder.of("server_descriptor")
    assert record.bandwidth_avg is None
    assert record.bandwidth_observed is None


# =============================================================================
# Extra-info descriptors
# =============================================================================


def test_extra_info_fields(parser, recorder):
    parser.parse(EXTRA_INFO_DESCRIPTOR)

    (record,), = recorder.of("extra_info")
    assert record.nickname == "moria1"
    assert record.fingerprint == "9695dfc35ffeb861329b9f1ab04c46397020ce31"
    assert record.published_text == "2012-06-01 11:30:00"
    assert record.bandwidth_history == (
        "write-history 2012-06-01 11:00:00 (900 s) 1,2,3",
        "read-history 2012-06-01 11:00:00 (900 s) 4,5,6",
    )


def test_dirreq_counts_are_corrected(parser, recorder):
    """Counts drop by the rounding offset and a 'zy' total is added"""
    parser.parse(EXTRA_INFO_DESCRIPTOR)

    (stats,), = recorder.of("dirreq_stats")
    assert stats.source == "9695dfc35ffeb861329b9f1ab04c46397020ce31"
    assert stats.stats_end == "2012-06-01 10:00:00"
    assert stats.seconds == 86400
    assert stats.users == {"us": 12, "de": 4, "??": 4, TOTAL_USERS_KEY: 20}


def test_dirreq_requests_without_stats_end_are_skipped(parser, recorder):
    data = EXTRA_INFO_DESCRIPTOR.replace(b"dirreq-stats-end 2012-06-01 10:00:00 (86400 s)\n", b"")
    parser.parse(data)
    assert recorder.of("dirreq_stats") == []
    assert len(recorder.of("extra_info")) == 1


def test_conn_bi_direct(parser, recorder):
    parser.parse(EXTRA_INFO_DESCRIPTOR)

    (stats,), = recorder.of("conn_bi_direct")
    assert stats.stats_end == "2012-06-01 10:00:00"
    assert stats.seconds == 86400
    assert (stats.below, stats.read, stats.write, stats.both) == (10, 20, 30, 40)


@pytest.mark.parametrize(
    "line",
    [
        b"conn-bi-direct 2012-06-01 10:00:00 (86400 s) 10,20,30",
        b"conn-bi-direct 2012-06-01 10:00:00 (86400 s) 10,20,x,40",
        b"conn-bi-direct 2012-06-01 10:00:00 (86400 s)",
    ],
)
def test_invalid_conn_bi_direct_is_skipped(parser, recorder, line):
    """A bad conn-bi-direct line is skipped; the descriptor itself still arrives"""
    data = EXTRA_INFO_DESCRIPTOR.replace(b"conn-bi-direct 2012-06-01 10:00:00 (86400 s) 10,20,30,40", line)
    parser.parse(data)
    assert recorder.of("conn_bi_direct") == []
    assert len(recorder.of("extra_info")) == 1


# =============================================================================
# Inputs that are ignored
# =============================================================================


def test_empty_input(parser, recorder):
    parser.parse(b"")
    assert recorder.events == []


def test_unrecognized_document(parser, recorder):
    parser.parse(b"network-status-version 2\ndir-source foo\n")
    assert recorder.events == []


def test_non_ascii_document_is_dropped(parser, recorder):
    parser.parse(SERVER_DESCRIPTOR.replace(b"Linux", "Lïnux".encode("utf-8")))
    assert recorder.events == []
