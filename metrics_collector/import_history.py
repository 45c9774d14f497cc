"""Durable record of input files that were already imported."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

IMPORT_HISTORY_FILE = "archives-import-history"


class ImportHistoryLedger:
    """Set of file names processed in this or any earlier run.

    The ledger only grows within a run. A file that cannot be read on load
    degrades to an empty ledger: re-importing is cheaper than skipping a run.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.names: set[str] = set()

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def __len__(self) -> int:
        return len(self.names)

    def load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8") as f:
                self.names = {line.rstrip("\n") for line in f if line.rstrip("\n")}
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read in import history file %s (%s). Skipping.", self.path, exc)
            self.names = set()
            return
        logger.debug("Loaded %d names from import history %s.", len(self.names), self.path)

    def should_skip(self, name: str) -> bool:
        return name in self.names

    def record(self, name: str) -> None:
        self.names.add(name)

    def persist(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", encoding="utf-8") as f:
                for name in sorted(self.names):
                    f.write(name + "\n")
        except OSError as exc:
            logger.warning("Could not write import history file %s (%s).", self.path, exc)
            return False
        return True
