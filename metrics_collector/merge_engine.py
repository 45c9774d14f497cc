"""Merge a Torperf ``.data`` series with its ``.extradata`` series.

Every valid ``.data`` line becomes one output record. The ``.extradata``
cursor only moves forward: a line is merged into the current data row when
its ``USED_AT`` is within one second of the row's ``DATACOMPLETE``, kept for
the next row when it is ahead, and dropped when it is behind.

Both series are skipped up to the resume watermark, compared as strings.
The returned watermark is the smaller of the largest ``DATACOMPLETE`` and
the largest ``USED_AT`` seen, so a series that runs ahead of the other does
not move the resume point past data that has not been matched yet.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from metrics_collector.output_buckets import OutputBucketCache
from metrics_collector.series_reader import (
    is_skipped_extradata_line,
    parse_data_line,
    parse_extradata_line,
)

logger = logging.getLogger(__name__)

MATCH_TOLERANCE_SECONDS = 1.0


@dataclass
class MergeResult:
    watermark: str | None = None
    written: int = 0
    added: int = 0
    matched: int = 0
    skipped_data: int = 0


def _numbered_lines(f: TextIO) -> Iterator[tuple[int, str]]:
    for number, raw in enumerate(f, 1):
        yield number, raw.rstrip("\r\n")


def _later(current: str | None, candidate: str) -> str:
    return candidate if current is None or candidate > current else current


def resolve_watermark(max_data_complete: str | None, max_used_at: str | None) -> str | None:
    if max_data_complete is None:
        return max_used_at
    if max_used_at is None:
        return max_data_complete
    return min(max_data_complete, max_used_at)


class MergeEngine:
    def __init__(self, cache: OutputBucketCache) -> None:
        self.cache = cache

    def merge(
        self,
        data_path: Path,
        extradata_path: Path,
        source: str,
        filesize: int,
        skip_until: str | None = None,
    ) -> MergeResult:
        """Merge one source's two series into the bucket cache and flush it."""
        result = MergeResult()
        if not data_path.exists() or not extradata_path.exists():
            logger.warning("File %s or %s is missing.", data_path, extradata_path)
            return result

        logger.debug("Merging %s and %s into .tpf format.", data_path, extradata_path)
        fixed = {"SOURCE": source, "FILESIZE": str(filesize)}
        max_data_complete: str | None = None
        max_used_at: str | None = None

        with data_path.open("r", encoding="utf-8") as fd, extradata_path.open("r", encoding="utf-8") as fe:
            extradata_lines = _numbered_lines(fe)
            pending = next(extradata_lines, None)

            for d, line_d in _numbered_lines(fd):
                if not line_d:
                    logger.debug("Skipping empty line %s:%d.", data_path.name, d)
                    continue
                data = parse_data_line(line_d)
                if data is None:
                    logger.debug("Skipping illegal line %s:%d '%s'.", data_path.name, d, line_d)
                    result.skipped_data += 1
                    continue
                data_complete = data["DATACOMPLETE"]
                if skip_until is not None and data_complete < skip_until:
                    logger.debug("Skipping %s:%d which we already processed before.", data_path.name, d)
                    result.skipped_data += 1
                    continue
                max_data_complete = _later(max_data_complete, data_complete)
                data_complete_seconds = float(data_complete)

                extradata: dict[str, str] | None = None
                while pending is not None:
                    e, line_e = pending
                    if not line_e or is_skipped_extradata_line(line_e):
                        pending = next(extradata_lines, None)
                        continue
                    candidate = parse_extradata_line(line_e)
                    if candidate is None or "USED_AT" not in candidate:
                        logger.debug("Skipping illegal line %s:%d '%s'.", extradata_path.name, e, line_e)
                        pending = next(extradata_lines, None)
                        continue
                    used_at = candidate["USED_AT"]
                    try:
                        used_at_seconds = float(used_at)
                    except ValueError:
                        logger.debug("Skipping %s:%d with non-numeric USED_AT.", extradata_path.name, e)
                        pending = next(extradata_lines, None)
                        continue
                    if skip_until is not None and used_at < skip_until:
                        pending = next(extradata_lines, None)
                        continue
                    max_used_at = _later(max_used_at, used_at)
                    if abs(used_at_seconds - data_complete_seconds) <= MATCH_TOLERANCE_SECONDS:
                        logger.debug("Merging %s:%d into the current .data line.", extradata_path.name, e)
                        extradata = candidate
                        pending = next(extradata_lines, None)
                        break
                    if used_at_seconds > data_complete_seconds:
                        # Ahead of this row; compare it to the next .data line
                        break
                    logger.debug(
                        "Skipping %s:%d which is too old to be merged with %s:%d.",
                        extradata_path.name,
                        e,
                        data_path.name,
                        d,
                    )
                    pending = next(extradata_lines, None)

                fields = {**(extradata or {}), **data, **fixed}
                try:
                    added = self.cache.insert(source, filesize, fields)
                except OSError:
                    logger.warning(
                        "Error writing output line. Aborting to merge %s and %s.",
                        data_path.name,
                        extradata_path.name,
                        exc_info=True,
                    )
                    break
                result.written += 1
                result.added += int(added)
                result.matched += int(extradata is not None)

        self.cache.flush()
        result.watermark = resolve_watermark(max_data_complete, max_used_at)
        logger.info(
            "Merged %s: %d records (%d new, %d with extradata), watermark %s.",
            data_path.name,
            result.written,
            result.added,
            result.matched,
            result.watermark,
        )
        return result
