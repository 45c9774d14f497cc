"""Run-exclusivity lock shared by all scheduled collector runs."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

logger = logging.getLogger(__name__)

STALE_AFTER_SECONDS = 55 * 60


class LockFile:
    """Timestamp file that keeps overlapping runs from starting.

    A lock older than ``stale_after`` seconds is assumed to be left over from
    a run that did not exit cleanly and is taken over.
    """

    def __init__(
        self,
        path: Path | str = "lock",
        stale_after: float = STALE_AFTER_SECONDS,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self.stale_after = stale_after
        self.now = now

    def acquire(self) -> bool:
        logger.debug("Trying to acquire lock...")
        try:
            if self.path.exists():
                run_started_ms = int(self.path.read_text(encoding="ascii").splitlines()[0])
                if self.now() * 1000 - run_started_ms < self.stale_after * 1000:
                    return False
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(f"{int(self.now() * 1000)}\n", encoding="ascii")
        except (OSError, ValueError, IndexError):
            logger.warning("Caught exception while trying to acquire lock!", exc_info=True)
            return False
        logger.debug("Acquired lock.")
        return True

    def release(self) -> None:
        logger.debug("Releasing lock...")
        self.path.unlink(missing_ok=True)
        logger.debug("Released lock.")
