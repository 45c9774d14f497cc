"""Parse relay descriptors and pass the results to downstream consumers.

Supported documents are network status consensuses and votes (version 3),
server descriptors and extra-info descriptors. A document is classified by
its first line and then read in a single forward pass; each call works on
its own parse context, so one parser instance can be reused freely.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import datetime

from metrics_collector.consumers import ConsumerFanout
from metrics_collector.digests import (
    EXTRA_INFO_START,
    SERVER_DESCRIPTOR_START,
    descriptor_digest,
    hashed_identity,
    vote_digest,
)
from metrics_collector.documents import (
    TOTAL_USERS_KEY,
    ConnBiDirectStats,
    DescriptorReference,
    DirReqStats,
    DocumentKind,
    ExtraInfoRecord,
    NetworkStatus,
    ServerDescriptorRecord,
    StatusEntry,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

NETWORK_STATUS_HEADER = "network-status-version 3"

BANDWIDTH_HISTORY_KEYWORDS = (
    "read-history ",
    "write-history ",
    "dirreq-read-history ",
    "dirreq-write-history ",
)

# Relays round up their dirreq-v3-reqs counts to the next multiple of 8
DIRREQ_ROUNDING_OFFSET = 4


def classify(first_line: str) -> DocumentKind:
    """Map the first line of a document to the grammar that reads it.

    Network statuses classify as consensuses; a ``vote-status vote`` line
    later in the document turns them into votes.
    """
    if first_line == NETWORK_STATUS_HEADER:
        return DocumentKind.CONSENSUS
    if first_line.startswith("router "):
        return DocumentKind.SERVER_DESCRIPTOR
    if first_line.startswith("extra-info "):
        return DocumentKind.EXTRA_INFO
    return DocumentKind.UNRECOGNIZED


def _decode_base64(text: str) -> bytes:
    """Decode unpadded base64 as used in status entries."""
    return base64.b64decode(text + "=" * (-len(text) % 4), validate=True)


def _stats_interval(parts: list[str]) -> tuple[str, int]:
    """Read ``<date> <time> (<seconds> s)`` from a split stats line."""
    return f"{parts[1]} {parts[2]}", int(parts[3].lstrip("("))


@dataclass
class _OpenEntry:
    nickname: str
    identity: str
    descriptor_digest: str
    published: datetime
    address: str
    or_port: int
    dir_port: int
    raw_lines: list[str]
    flags: frozenset[str] | None = None
    version: str | None = None
    bandwidth: int | None = None
    ports: str | None = None

    def finish(self) -> StatusEntry:
        return StatusEntry(
            nickname=self.nickname,
            identity=self.identity,
            descriptor_digest=self.descriptor_digest,
            published=self.published,
            address=self.address,
            or_port=self.or_port,
            dir_port=self.dir_port,
            flags=self.flags,
            version=self.version,
            bandwidth=self.bandwidth,
            ports=self.ports,
            raw="".join(line + "\n" for line in self.raw_lines).encode("ascii"),
        )


@dataclass
class _StatusParseContext:
    """Mutable state of one network status while it is being read."""

    kind: DocumentKind = DocumentKind.CONSENSUS
    valid_after: datetime | None = None
    valid_after_text: str | None = None
    dir_source: str | None = None
    dir_sources: list[str] = field(default_factory=list)
    fingerprint: str | None = None
    entries: list[StatusEntry] = field(default_factory=list)
    references: set[DescriptorReference] = field(default_factory=set)
    hashed_identities: set[str] = field(default_factory=set)
    open_entry: _OpenEntry | None = None


class DescriptorParser:
    """Classify raw descriptors, parse them, and notify the consumer fan-out."""

    def __init__(self, fanout: ConsumerFanout) -> None:
        self.fanout = fanout
        self._grammars = {
            DocumentKind.CONSENSUS: self._parse_network_status,
            DocumentKind.SERVER_DESCRIPTOR: self._parse_server_descriptor,
            DocumentKind.EXTRA_INFO: self._parse_extra_info,
        }

    def parse(self, data: bytes) -> None:
        """Parse one raw document. Never raises; failures are logged."""
        if not data:
            logger.debug("We were given an empty descriptor for parsing. Ignoring.")
            return
        try:
            text = data.decode("ascii")
        except UnicodeDecodeError as exc:
            logger.warning("Could not decode descriptor as ASCII (%s). Skipping.", exc)
            return

        lines = text.splitlines()
        kind = classify(lines[0])
        grammar = self._grammars.get(kind)
        if grammar is None:
            logger.debug("Ignoring document starting with %r.", lines[0][:40])
            return
        try:
            grammar(data, lines)
        except (ValueError, IndexError) as exc:
            # binascii.Error is a ValueError, so bad base64 lands here as well
            logger.warning("Could not parse %s descriptor (%s). Skipping.", kind.value, exc)

    # =========================================================================
    # Network status consensuses and votes
    # =========================================================================

    def _parse_network_status(self, data: bytes, lines: list[str]) -> None:
        ctx = _StatusParseContext()
        for line in lines[1:]:
            if line == "vote-status vote":
                ctx.kind = DocumentKind.VOTE
            elif line.startswith("valid-after "):
                ctx.valid_after_text = line[len("valid-after ") :]
                ctx.valid_after = parse_timestamp(ctx.valid_after_text)
            elif line.startswith("dir-source "):
                ctx.dir_source = line.split(" ")[2]
            elif line.startswith("vote-digest "):
                if ctx.dir_source is not None and ctx.dir_source not in ctx.dir_sources:
                    ctx.dir_sources.append(ctx.dir_source)
            elif line.startswith("fingerprint "):
                ctx.fingerprint = line.split(" ")[1]
            elif line.startswith("r "):
                self._finalize_entry(ctx)
                if not self._open_entry(ctx, line):
                    break
            elif line.startswith("s ") or line == "s":
                if ctx.open_entry is not None:
                    ctx.open_entry.raw_lines.append(line)
                    ctx.open_entry.flags = frozenset(f for f in line[2:].split(" ") if f)
            elif line.startswith("v "):
                if ctx.open_entry is not None:
                    ctx.open_entry.raw_lines.append(line)
                    ctx.open_entry.version = line[2:]
            elif line.startswith("w "):
                if ctx.open_entry is not None:
                    ctx.open_entry.raw_lines.append(line)
                    for part in line.split(" "):
                        if part.startswith("Bandwidth="):
                            ctx.open_entry.bandwidth = int(part[len("Bandwidth=") :])
            elif line.startswith("p "):
                if ctx.open_entry is not None:
                    ctx.open_entry.raw_lines.append(line)
                    ctx.open_entry.ports = line[2:]
        self._finalize_entry(ctx)

        if ctx.kind is DocumentKind.CONSENSUS:
            self._dispatch_consensus(ctx, data)
        else:
            self._dispatch_vote(ctx, data)

    def _open_entry(self, ctx: _StatusParseContext, line: str) -> bool:
        """Start a status entry from an ``r`` line; False stops the document."""
        parts = line.split(" ")
        if len(parts) < 9:
            logger.warning("Could not parse r line '%s' in descriptor. Skipping.", line)
            return False
        if ctx.valid_after is None:
            raise ValueError("status entry found before valid-after line")
        identity = _decode_base64(parts[2])
        digest = _decode_base64(parts[3])
        entry = _OpenEntry(
            nickname=parts[1],
            identity=binascii.hexlify(identity).decode("ascii"),
            descriptor_digest=binascii.hexlify(digest).decode("ascii"),
            published=parse_timestamp(f"{parts[4]} {parts[5]}"),
            address=parts[6],
            or_port=int(parts[7]),
            dir_port=int(parts[8]),
            raw_lines=[line],
        )
        ctx.open_entry = entry
        ctx.references.add(
            DescriptorReference(
                published=f"{parts[4]} {parts[5]}",
                identity=entry.identity,
                digest=entry.descriptor_digest,
            )
        )
        ctx.hashed_identities.add(hashed_identity(identity))
        return True

    def _finalize_entry(self, ctx: _StatusParseContext) -> None:
        if ctx.open_entry is None:
            return
        entry = ctx.open_entry.finish()
        ctx.open_entry = None
        ctx.entries.append(entry)
        # Only consensus entries are stored as status entries; vote rows
        # stay attached to the vote document.
        if ctx.kind is DocumentKind.CONSENSUS and ctx.valid_after is not None:
            self.fanout.status_entry(ctx.valid_after, entry)

    def _build_status(self, ctx: _StatusParseContext, data: bytes, signed_digest: str | None) -> NetworkStatus:
        return NetworkStatus(
            kind=ctx.kind,
            valid_after=ctx.valid_after,
            valid_after_text=ctx.valid_after_text,
            dir_sources=tuple(ctx.dir_sources),
            entries=tuple(ctx.entries),
            references=frozenset(ctx.references),
            raw=data,
            authority_fingerprint=ctx.fingerprint,
            vote_dir_source=ctx.dir_source,
            signed_digest=signed_digest,
        )

    def _dispatch_consensus(self, ctx: _StatusParseContext, data: bytes) -> None:
        status = self._build_status(ctx, data, None)
        logger.debug("Parsed consensus valid after %s with %d entries.", ctx.valid_after_text, len(ctx.entries))
        self.fanout.consensus(status)
        if ctx.valid_after is not None:
            self.fanout.hashed_relay_identities(ctx.valid_after, frozenset(ctx.hashed_identities))

    def _dispatch_vote(self, ctx: _StatusParseContext, data: bytes) -> None:
        digest = vote_digest(data)
        if digest is None:
            logger.warning(
                "Could not locate signed section of vote valid after %s by %s. No digest computed.",
                ctx.valid_after_text,
                ctx.dir_source,
            )
        status = self._build_status(ctx, data, digest)
        logger.debug("Parsed vote valid after %s by %s.", ctx.valid_after_text, ctx.dir_source)
        self.fanout.vote(status)

    # =========================================================================
    # Server descriptors
    # =========================================================================

    def _parse_server_descriptor(self, data: bytes, lines: list[str]) -> None:
        parts = lines[0].split(" ")
        nickname = parts[1]
        address = parts[2]
        or_port = int(parts[3])
        dir_port = int(parts[4])

        platform: str | None = None
        published: datetime | None = None
        published_text: str | None = None
        bandwidth_line: str | None = None
        extra_info_digest: str | None = None
        fingerprint: str | None = None
        uptime: int | None = None

        for line in lines[1:]:
            if line.startswith("platform "):
                platform = line[len("platform ") :]
            elif line.startswith("published "):
                published_text = line[len("published ") :]
                published = parse_timestamp(published_text)
            elif line.startswith("opt fingerprint") or line.startswith("fingerprint"):
                prefix = "opt fingerprint" if line.startswith("opt ") else "fingerprint"
                fingerprint = line[len(prefix) :].replace(" ", "").lower()
            elif line.startswith("bandwidth "):
                bandwidth_line = line
            elif line.startswith("opt extra-info-digest ") or line.startswith("extra-info-digest "):
                extra_info_digest = line.split(" ")[2 if line.startswith("opt ") else 1].lower()
            elif line.startswith("uptime "):
                uptime = int(line[len("uptime ") :])

        digest = descriptor_digest(data, SERVER_DESCRIPTOR_START)
        if digest is None:
            logger.warning("Could not compute digest of server descriptor of %s. Skipping.", nickname)
            return

        bandwidth_avg = bandwidth_burst = bandwidth_observed = None
        if bandwidth_line is not None:
            bw_parts = bandwidth_line.split(" ")
            bandwidth_avg = int(bw_parts[1])
            bandwidth_burst = int(bw_parts[2])
            bandwidth_observed = int(bw_parts[3])

        self.fanout.server_descriptor(
            ServerDescriptorRecord(
                digest=digest,
                nickname=nickname,
                address=address,
                or_port=or_port,
                dir_port=dir_port,
                fingerprint=fingerprint,
                published=published,
                published_text=published_text,
                bandwidth_avg=bandwidth_avg,
                bandwidth_burst=bandwidth_burst,
                bandwidth_observed=bandwidth_observed,
                platform=platform,
                uptime=uptime,
                extra_info_digest=extra_info_digest,
                raw=data,
            )
        )

    # =========================================================================
    # Extra-info descriptors
    # =========================================================================

    def _parse_extra_info(self, data: bytes, lines: list[str]) -> None:
        parts = lines[0].split(" ")
        nickname = parts[1]
        source = parts[2].lower()

        published: datetime | None = None
        published_text: str | None = None
        stats_end: str | None = None
        seconds = -1
        history: list[str] = []

        for line in lines[1:]:
            if line.startswith("published "):
                published_text = line[len("published ") :]
                published = parse_timestamp(published_text)
            elif line.startswith(BANDWIDTH_HISTORY_KEYWORDS):
                history.append(line)
            elif line.startswith("dirreq-stats-end "):
                stats_parts = line.split(" ")
                if len(stats_parts) < 5:
                    logger.warning("Could not parse dirreq-stats-end line '%s' in descriptor. Skipping.", line)
                    break
                stats_end, seconds = _stats_interval(stats_parts)
            elif line.startswith("dirreq-v3-reqs ") and len(line) > len("dirreq-v3-reqs "):
                if stats_end is None:
                    logger.warning("Found dirreq-v3-reqs line without dirreq-stats-end in descriptor. Skipping line.")
                    continue
                users = self._parse_dirreq_requests(line)
                if users is None:
                    break
                self.fanout.dirreq_stats(DirReqStats(source=source, stats_end=stats_end, seconds=seconds, users=users))
            elif line.startswith("conn-bi-direct "):
                stats = self._parse_conn_bi_direct(source, line)
                if stats is not None:
                    self.fanout.conn_bi_direct(stats)

        digest = descriptor_digest(data, EXTRA_INFO_START)
        if digest is None:
            logger.warning("Could not compute digest of extra-info descriptor of %s. Skipping.", nickname)
            return

        self.fanout.extra_info(
            ExtraInfoRecord(
                digest=digest,
                nickname=nickname,
                fingerprint=source,
                published=published,
                published_text=published_text,
                bandwidth_history=tuple(history),
                raw=data,
            )
        )

    @staticmethod
    def _parse_dirreq_requests(line: str) -> dict[str, int] | None:
        users: dict[str, int] = {}
        total = 0
        try:
            for part in line[len("dirreq-v3-reqs ") :].split(","):
                count = int(part[3:]) - DIRREQ_ROUNDING_OFFSET
                users[part[:2]] = count
                total += count
        except ValueError:
            logger.warning("Could not parse dirreq-v3-reqs line '%s' in descriptor. Skipping.", line, exc_info=True)
            return None
        users[TOTAL_USERS_KEY] = total
        return users

    @staticmethod
    def _parse_conn_bi_direct(source: str, line: str) -> ConnBiDirectStats | None:
        parts = line.split(" ")
        if len(parts) != 6 or len(parts[5].split(",")) != 4:
            logger.warning("Skipping invalid conn-bi-direct stats string '%s'.", line)
            return None
        try:
            stats_end, seconds = _stats_interval(parts)
            below, read, write, both = (int(v) for v in parts[5].split(","))
        except ValueError:
            logger.warning(
                "Number format exception while parsing conn-bi-direct stats string '%s'. Skipping.",
                line,
                exc_info=True,
            )
            return None
        return ConnBiDirectStats(
            source=source,
            stats_end=stats_end,
            seconds=seconds,
            below=below,
            read=read,
            write=write,
            both=both,
        )
