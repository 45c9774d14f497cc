"""Store raw descriptors in a directory-archive structure.

Files are keyed by publication time and digest, written once and never
rewritten. Each write goes to a ``.tmp`` sibling first and is renamed into
place so that an interrupted run leaves no truncated descriptor behind.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from metrics_collector.consumers import DescriptorConsumer
from metrics_collector.documents import ExtraInfoRecord, NetworkStatus, ServerDescriptorRecord

logger = logging.getLogger(__name__)


def _day_dir(when: datetime) -> str:
    return when.strftime("%Y/%m/%d")


def _file_stamp(when: datetime) -> str:
    return when.strftime("%Y-%m-%d-%H-%M-%S")


class ArchiveWriter(DescriptorConsumer):
    """Idempotent raw-byte storage for consensuses, votes and descriptors."""

    name = "archive"

    def __init__(self, output_directory: Path | str) -> None:
        self.output_directory = Path(output_directory)
        self.stored = 0
        self.skipped = 0

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def consensus_path(self, valid_after: datetime) -> Path:
        return self.output_directory / "consensus" / _day_dir(valid_after) / f"{_file_stamp(valid_after)}-consensus"

    def vote_path(self, valid_after: datetime, authority: str, digest: str) -> Path:
        name = f"{_file_stamp(valid_after)}-vote-{authority.upper()}-{digest.upper()}"
        return self.output_directory / "vote" / _day_dir(valid_after) / name

    def descriptor_path(self, kind: str, published: datetime, digest: str) -> Path:
        return self.output_directory / kind / published.strftime("%Y/%m") / digest[0] / digest[1] / digest

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    def on_consensus(self, status: NetworkStatus) -> None:
        if status.valid_after is None:
            logger.warning("Consensus without valid-after time. Not storing it.")
            return
        self._store(self.consensus_path(status.valid_after), status.raw)

    def on_vote(self, status: NetworkStatus) -> None:
        if status.valid_after is None or status.vote_dir_source is None or status.signed_digest is None:
            logger.warning(
                "Vote valid after %s lacks valid-after time, authority, or digest. Not storing it.",
                status.valid_after_text,
            )
            return
        self._store(self.vote_path(status.valid_after, status.vote_dir_source, status.signed_digest), status.raw)

    def on_server_descriptor(self, record: ServerDescriptorRecord) -> None:
        if record.published is None:
            logger.warning("Server descriptor %s has no published time. Not storing it.", record.digest)
            return
        self._store(self.descriptor_path("server-descriptor", record.published, record.digest), record.raw)

    def on_extra_info(self, record: ExtraInfoRecord) -> None:
        if record.published is None:
            logger.warning("Extra-info descriptor %s has no published time. Not storing it.", record.digest)
            return
        self._store(self.descriptor_path("extra-info", record.published, record.digest), record.raw)

    def close(self) -> None:
        logger.info("Archive writer stored %d new files, %d were already present.", self.stored, self.skipped)

    def _store(self, path: Path, data: bytes) -> None:
        if path.exists():
            self.skipped += 1
            logger.debug("Not overwriting existing file %s.", path)
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(path)
        self.stored += 1
