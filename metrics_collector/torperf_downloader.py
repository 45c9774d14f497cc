"""Download possibly truncated Torperf series and merge them into ``.tpf`` files.

Each configured source serves a ``.data`` and an ``.extradata`` file. New
lines of the remote copies are appended to the local copies, and the local
copies are then merged from the last persisted watermark onwards.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import requests

from metrics_collector.config import CollectorConfig, TorperfFile
from metrics_collector.merge_engine import MergeEngine, MergeResult
from metrics_collector.output_buckets import OutputBucketCache
from metrics_collector.watermarks import LAST_MERGED_FILE, WatermarkStore

logger = logging.getLogger(__name__)

# Local copies younger than this are fresh enough; remote copies whose newest
# measurement is older than this are reported as stale.
FRESHNESS_SECONDS = 330 * 60

LAUNCH_MARKER = " LAUNCH"
LAUNCH_FIELD = " LAUNCH="

USER_AGENT = "tor-metrics-collector"


def is_mark_line(line: str, is_data: bool) -> bool:
    """Whether ``line`` can serve as the resume point in a local series copy."""
    if is_data:
        return bool(line)
    return LAUNCH_MARKER in line


def mark_timestamp(line: str, is_data: bool) -> int:
    """Whole seconds of a mark line; raises ValueError if there are none."""
    if is_data:
        return int(line.split(" ", 1)[0])
    start = line.index(LAUNCH_FIELD) + len(LAUNCH_FIELD)
    return int(line[start : line.index(".", start)])


class SeriesAppender:
    """Append the unseen tail of a remote series to its local copy."""

    def __init__(
        self,
        session: requests.Session,
        *,
        timeout: float = 60.0,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.session = session
        self.timeout = timeout
        self.now = now

    def _read_mark(self, path: Path, is_data: bool) -> tuple[str | None, int]:
        """Return the last mark line and how many lines follow it."""
        mark: str | None = None
        after = 0
        with path.open("r", encoding="utf-8", errors="replace") as f:
            for raw in f:
                line = raw.rstrip("\r\n")
                if is_mark_line(line, is_data):
                    mark = line
                    after = 0
                else:
                    after += 1
        return mark, after

    def append(self, url: str, local_path: Path, is_data: bool) -> bool:
        """Download ``url`` and append what follows the local high-water mark.

        Returns False without touching the local copy when it is still fresh,
        when the download fails, or when the remote copy no longer contains
        the local mark line (appending then could leave a gap).
        """
        mark: str | None = None
        after = 0
        if local_path.exists():
            if local_path.stat().st_mtime > self.now() - FRESHNESS_SECONDS:
                logger.debug("%s was modified recently. Not downloading %s.", local_path, url)
                return False
            try:
                mark, after = self._read_mark(local_path, is_data)
            except OSError:
                logger.warning(
                    "Failed reading '%s' to determine the first line to append to it.", local_path, exc_info=True
                )
                return False

        kind = ".data" if is_data else ".extradata"
        logger.debug("Downloading %s file from '%s' and merging it into '%s'.", kind, url, local_path)
        new_lines: list[str] = []
        copy_lines = mark is None
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                for raw in response.iter_lines():
                    line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
                    if copy_lines and after == 0:
                        if is_mark_line(line, is_data):
                            mark = line
                        new_lines.append(line)
                    elif copy_lines:
                        after -= 1
                    elif line == mark:
                        copy_lines = True
        except requests.RequestException:
            logger.warning("Failed downloading and/or merging '%s'.", url, exc_info=True)
            return False

        if not copy_lines:
            logger.warning(
                "The last timestamp line in '%s' is not contained in the new file downloaded from '%s'. "
                "Cannot append new lines without possibly leaving a gap. Skipping.",
                local_path,
                url,
            )
            return False

        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            with local_path.open("a", encoding="utf-8") as f:
                for line in new_lines:
                    f.write(line + "\n")
        except OSError:
            logger.warning("Failed appending to '%s'.", local_path, exc_info=True)
            return False

        self._check_staleness(local_path, mark, is_data)
        return True

    def _check_staleness(self, local_path: Path, mark: str | None, is_data: bool) -> None:
        if mark is None:
            logger.warning(
                "'%s' doesn't contain any timestamp lines. Unable to check whether that file is stale or not.",
                local_path,
            )
            return
        try:
            last_seconds = mark_timestamp(mark, is_data)
        except ValueError:
            logger.debug("Could not read a timestamp from the last line of %s.", local_path)
            return
        if last_seconds < self.now() - FRESHNESS_SECONDS:
            logger.warning("The last timestamp in '%s' is more than 5:30 hours old: %d", local_path, last_seconds)


@dataclass
class SourceOutcome:
    data_file: str
    downloaded_data: bool = False
    downloaded_extradata: bool = False
    merge: MergeResult | None = None


class TorperfDownloader:
    """Process every configured Torperf series pair once per run."""

    def __init__(
        self,
        config: CollectorConfig,
        session: requests.Session | None = None,
        *,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.output_directory = Path(config.torperf_output_directory)
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": USER_AGENT})
        self.appender = SeriesAppender(session, timeout=config.download_timeout, now=now)
        self.watermarks = WatermarkStore(Path(config.stats_directory) / LAST_MERGED_FILE)
        self.engine = MergeEngine(OutputBucketCache(self.output_directory))

    def run(self) -> list[SourceOutcome]:
        self.output_directory.mkdir(parents=True, exist_ok=True)
        self.watermarks.load()
        outcomes: list[SourceOutcome] = []
        for entry in self.config.torperf_files:
            outcome = self.download_and_merge(entry)
            if outcome is not None:
                outcomes.append(outcome)
        self.watermarks.persist()
        return outcomes

    def download_and_merge(self, entry: TorperfFile) -> SourceOutcome | None:
        base_url = self.config.torperf_sources.get(entry.source)
        if base_url is None:
            logger.warning("No Torperf source '%s' configured for %s. Skipping.", entry.source, entry.data)
            return None

        data_file = f"{entry.source}-{entry.data}"
        data_path = self.output_directory / data_file
        extradata_path = self.output_directory / f"{entry.source}-{entry.extradata}"
        outcome = SourceOutcome(data_file=data_file)

        outcome.downloaded_data = self.appender.append(base_url + entry.data, data_path, True)
        outcome.downloaded_extradata = self.appender.append(base_url + entry.extradata, extradata_path, False)
        if not outcome.downloaded_data and not outcome.downloaded_extradata:
            return outcome

        skip_until = self.watermarks.get(data_file)
        try:
            outcome.merge = self.engine.merge(data_path, extradata_path, entry.source, entry.filesize, skip_until)
        except (OSError, ValueError):
            logger.warning("Failed merging %s and %s.", data_path, extradata_path, exc_info=True)
            return outcome
        if outcome.merge.watermark is not None:
            self.watermarks.set(data_file, outcome.merge.watermark)
        return outcome
