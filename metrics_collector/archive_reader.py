"""Read all files below a directory and hand their bytes to the parser."""

from __future__ import annotations

import bz2
import logging
from dataclasses import dataclass, field
from pathlib import Path

from metrics_collector.descriptor_parser import DescriptorParser
from metrics_collector.import_history import ImportHistoryLedger

logger = logging.getLogger(__name__)

MAX_PROBLEMS = 3


@dataclass
class ArchiveReadSummary:
    parsed: int = 0
    ignored: int = 0
    problems: list[Path] = field(default_factory=list)


class ArchiveReader:
    """Walk an archives directory depth-first and parse every file once.

    Names found in the import history ledger are skipped. Plain ``.bz2``
    files are decompressed; compressed tarballs are not supported and are
    skipped with a warning.
    """

    def __init__(
        self,
        parser: DescriptorParser,
        archives_directory: Path | str,
        ledger: ImportHistoryLedger | None = None,
    ) -> None:
        self.parser = parser
        self.archives_directory = Path(archives_directory)
        self.ledger = ledger

    def read(self) -> ArchiveReadSummary:
        summary = ArchiveReadSummary()
        if not self.archives_directory.exists():
            logger.info("Archives directory %s does not exist. Nothing to import.", self.archives_directory)
            return summary

        logger.debug("Importing files in directory %s/...", self.archives_directory)
        stack = [self.archives_directory]
        while stack:
            path = stack.pop()
            if path.is_dir():
                stack.extend(sorted(path.iterdir()))
                continue
            if self.ledger is not None and self.ledger.should_skip(path.name):
                summary.ignored += 1
                continue
            if path.name.endswith(".tar.bz2"):
                logger.warning("Cannot parse compressed tarball %s. Skipping.", path)
                continue
            try:
                data = self._read_bytes(path)
            except (OSError, EOFError) as exc:
                logger.debug("Could not read %s: %s", path, exc)
                summary.problems.append(path)
                if len(summary.problems) > MAX_PROBLEMS:
                    break
                continue
            if self.ledger is not None:
                self.ledger.record(path.name)
            self.parser.parse(data)
            summary.parsed += 1

        if summary.problems:
            shown = "".join(f"\n  {p}" for p in summary.problems[:MAX_PROBLEMS])
            more = "\n  ... more" if len(summary.problems) > MAX_PROBLEMS else ""
            logger.warning("Failed importing files in directory %s/:%s%s", self.archives_directory, shown, more)
        else:
            logger.debug("Finished importing files in directory %s/.", self.archives_directory)

        logger.info(
            "Finished importing relay descriptors from local directory: parsed %d, ignored %d files.",
            summary.parsed,
            summary.ignored,
        )
        return summary

    @staticmethod
    def _read_bytes(path: Path) -> bytes:
        if path.name.endswith(".bz2"):
            with bz2.open(path, "rb") as f:
                return f.read()
        return path.read_bytes()
