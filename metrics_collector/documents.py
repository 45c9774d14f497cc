"""Structured records produced by the descriptor parser.

All timestamps are timezone-aware UTC datetimes. Where a consumer needs the
exact text the document carried (archive paths, inventory keys), the text is
kept alongside.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Country code reserved for the sum over all countries in dirreq stats
TOTAL_USERS_KEY = "zy"


class DocumentKind(Enum):
    CONSENSUS = "consensus"
    VOTE = "vote"
    SERVER_DESCRIPTOR = "server-descriptor"
    EXTRA_INFO = "extra-info"
    UNRECOGNIZED = "unrecognized"


def parse_timestamp(text: str) -> datetime:
    """Parse ``yyyy-MM-dd HH:mm:ss`` as UTC; raises ValueError on bad input."""
    return datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class StatusEntry:
    """One relay row of a consensus or vote."""

    nickname: str
    identity: str
    descriptor_digest: str
    published: datetime
    address: str
    or_port: int
    dir_port: int
    flags: frozenset[str] | None = None
    version: str | None = None
    bandwidth: int | None = None
    ports: str | None = None
    raw: bytes = b""

    @property
    def published_text(self) -> str:
        return self.published.strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class DescriptorReference:
    """A server descriptor referenced by a status entry."""

    published: str
    identity: str
    digest: str


@dataclass(frozen=True)
class NetworkStatus:
    """A parsed consensus or vote."""

    kind: DocumentKind
    valid_after: datetime | None
    valid_after_text: str | None
    dir_sources: tuple[str, ...]
    entries: tuple[StatusEntry, ...]
    references: frozenset[DescriptorReference]
    raw: bytes
    authority_fingerprint: str | None = None
    vote_dir_source: str | None = None
    signed_digest: str | None = None

    @property
    def is_vote(self) -> bool:
        return self.kind is DocumentKind.VOTE


@dataclass(frozen=True)
class ServerDescriptorRecord:
    digest: str
    nickname: str
    address: str
    or_port: int
    dir_port: int
    fingerprint: str | None
    published: datetime | None
    published_text: str | None
    bandwidth_avg: int | None
    bandwidth_burst: int | None
    bandwidth_observed: int | None
    platform: str | None
    uptime: int | None
    extra_info_digest: str | None
    raw: bytes = b""


@dataclass(frozen=True)
class ExtraInfoRecord:
    digest: str
    nickname: str
    fingerprint: str
    published: datetime | None
    published_text: str | None
    bandwidth_history: tuple[str, ...] = ()
    raw: bytes = b""


@dataclass(frozen=True)
class DirReqStats:
    """Directory-request counts per country, already reduced by the rounding offset.

    ``users`` carries a synthetic total under :data:`TOTAL_USERS_KEY`.
    """

    source: str
    stats_end: str
    seconds: int
    users: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ConnBiDirectStats:
    source: str
    stats_end: str
    seconds: int
    below: int
    read: int
    write: int
    both: int
