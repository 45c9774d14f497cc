"""Per-series resume points for the Torperf merge.

The store file holds one ``<file-identifier> <timestamp>`` line per merged
series and is rewritten wholesale after every run.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

LAST_MERGED_FILE = "torperf-last-merged"


class WatermarkStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.timestamps: dict[str, str] = {}

    def load(self) -> None:
        """Read persisted watermarks.

        Any malformed line discards the whole history: merging from scratch
        only costs time, resuming from a wrong point can leave a gap.
        """
        self.timestamps = {}
        if not self.path.exists():
            return
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                "Error while reading %s (%s). Ignoring past history of merging .data and .extradata files.",
                self.path,
                exc,
            )
            return
        for line in lines:
            parts = line.split(" ")
            if len(parts) != 2 or not _is_number(parts[1]):
                logger.warning(
                    "Invalid line '%s' in %s. Ignoring past history of merging .data and .extradata files.",
                    line,
                    self.path,
                )
                self.timestamps = {}
                return
            self.timestamps[parts[0]] = parts[1]

    def get(self, file_id: str) -> str | None:
        return self.timestamps.get(file_id)

    def set(self, file_id: str, timestamp: str) -> None:
        self.timestamps[file_id] = timestamp

    def persist(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", encoding="utf-8") as f:
                for file_id, timestamp in sorted(self.timestamps.items()):
                    f.write(f"{file_id} {timestamp}\n")
        except OSError as exc:
            logger.warning(
                "Error while writing %s (%s). This may result in ignoring history of merging "
                ".data and .extradata files in the next execution.",
                self.path,
                exc,
            )
            return False
        return True


def _is_number(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True
