"""Track descriptors that are referenced but not yet seen.

Consensuses and votes reference server descriptors by digest, and server
descriptors reference their extra-info descriptor. Whatever is referenced
but has not arrived is kept in ``missing-descriptors`` until a later run
parses it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NamedTuple

from metrics_collector.consumers import DescriptorConsumer
from metrics_collector.documents import ExtraInfoRecord, NetworkStatus, ServerDescriptorRecord

logger = logging.getLogger(__name__)

MISSING_DESCRIPTORS_FILE = "missing-descriptors"


class MissingDescriptor(NamedTuple):
    kind: str
    published: str
    identity: str
    digest: str

    def to_line(self) -> str:
        return ",".join(self)

    @classmethod
    def from_line(cls, line: str) -> MissingDescriptor:
        parts = line.split(",")
        if len(parts) != 4:
            raise ValueError(f"expected 4 comma-separated fields, got {len(parts)}")
        return cls(*parts)


class DescriptorInventory(DescriptorConsumer):
    name = "inventory"

    def __init__(self, stats_directory: Path | str) -> None:
        self.path = Path(stats_directory) / MISSING_DESCRIPTORS_FILE
        self.referenced: set[MissingDescriptor] = set()
        self.seen: set[str] = set()

    def _add_status_references(self, status: NetworkStatus) -> None:
        for ref in status.references:
            self.referenced.add(MissingDescriptor("server-descriptor", ref.published, ref.identity, ref.digest))

    def on_consensus(self, status: NetworkStatus) -> None:
        self._add_status_references(status)

    def on_vote(self, status: NetworkStatus) -> None:
        self._add_status_references(status)

    def on_server_descriptor(self, record: ServerDescriptorRecord) -> None:
        self.seen.add(record.digest)
        if record.extra_info_digest and record.published_text and record.fingerprint:
            self.referenced.add(
                MissingDescriptor("extra-info", record.published_text, record.fingerprint, record.extra_info_digest)
            )

    def on_extra_info(self, record: ExtraInfoRecord) -> None:
        self.seen.add(record.digest)

    def load(self) -> set[MissingDescriptor]:
        """Read the previous run's list; a malformed file is ignored as a whole."""
        if not self.path.exists():
            return set()
        try:
            lines = self.path.read_text(encoding="ascii").splitlines()
            return {MissingDescriptor.from_line(ln) for ln in lines if ln}
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            logger.warning("Could not read %s (%s). Ignoring previously missing descriptors.", self.path, exc)
            return set()

    def missing(self) -> list[MissingDescriptor]:
        combined = self.load() | self.referenced
        return sorted(m for m in combined if m.digest.lower() not in self.seen)

    def close(self) -> None:
        missing = self.missing()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("".join(m.to_line() + "\n" for m in missing), encoding="ascii")
        logger.info("%d referenced descriptors are still missing.", len(missing))
