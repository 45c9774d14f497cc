"""Batch merged Torperf records into one ``.tpf`` file per source, size and day.

Only one bucket is held in memory. Switching to a different bucket flushes
the current one; opening a bucket first loads the records its file already
holds, so merging the same input twice leaves the file unchanged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple

logger = logging.getLogger(__name__)

TPF_HEADER = "@type torperf 1.0"
START_KEY = "START"


class BucketKey(NamedTuple):
    source: str
    filesize: int
    date: str


def serialize_record(fields: dict[str, str]) -> str:
    """Render a record as ``key=value`` tokens sorted by key."""
    return " ".join(f"{key}={fields[key]}" for key in sorted(fields))


def start_date(start: str) -> str:
    """UTC calendar date of a ``<seconds>.<hundredths>`` timestamp."""
    seconds = int(start.split(".", 1)[0])
    return datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%d")


def bucket_path(root: Path, key: BucketKey) -> Path:
    return root / key.date.replace("-", "/") / f"{key.source}-{key.filesize}-{key.date}.tpf"


class OutputBucketCache:
    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.key: BucketKey | None = None
        self.lines: dict[str, str] = {}
        self.flushed = 0

    def insert(self, source: str, filesize: int, fields: dict[str, str]) -> bool:
        """Add a merged record, keeping the longer line on a duplicate start time.

        Returns True if the bucket did not hold a record for this start time.
        """
        start = fields[START_KEY]
        key = BucketKey(source, filesize, start_date(start))
        if key != self.key:
            self.flush()
            self._open(key)

        line = serialize_record(fields)
        current = self.lines.get(start)
        if current is None or len(line) > len(current):
            self.lines[start] = line
        return current is None

    def _open(self, key: BucketKey) -> None:
        # Adopt the bucket only once its existing file has been read in full
        self.key = None
        self.lines = {}
        lines: dict[str, str] = {}
        path = bucket_path(self.root, key)
        if path.exists():
            with path.open("r", encoding="utf-8") as f:
                for raw in f:
                    line = raw.rstrip("\n")
                    if line.startswith("@type "):
                        continue
                    for token in line.split(" "):
                        if token.startswith(f"{START_KEY}="):
                            lines[token[len(START_KEY) + 1 :]] = line
                            break
        self.key = key
        self.lines = lines

    def flush(self) -> None:
        """Write the current bucket, if any, and forget it."""
        if self.key is None:
            return
        path = bucket_path(self.root, self.key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            f.write(TPF_HEADER + "\n")
            for start in sorted(self.lines):
                f.write(self.lines[start] + "\n")
        logger.debug("Wrote %d records to %s.", len(self.lines), path)
        self.flushed += 1
        self.key = None
        self.lines = {}
