"""Consensus health report for the newest parsed consensus."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from metrics_collector.consumers import DescriptorConsumer
from metrics_collector.documents import TIMESTAMP_FORMAT, NetworkStatus

logger = logging.getLogger(__name__)

HEALTH_REPORT_FILE = "consensus-health.json"
STALE_AFTER = timedelta(hours=3)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConsensusHealthChecker(DescriptorConsumer):
    name = "health"

    def __init__(self, stats_directory: Path | str, now: Callable[[], datetime] = _utc_now) -> None:
        self.path = Path(stats_directory) / HEALTH_REPORT_FILE
        self.now = now
        self.consensus: NetworkStatus | None = None
        self.votes: dict[datetime, dict[str, int]] = {}

    def on_consensus(self, status: NetworkStatus) -> None:
        if status.valid_after is None:
            return
        if self.consensus is None or status.valid_after > self.consensus.valid_after:  # type: ignore[operator]
            self.consensus = status

    def on_vote(self, status: NetworkStatus) -> None:
        if status.valid_after is None or status.vote_dir_source is None:
            return
        self.votes.setdefault(status.valid_after, {})[status.vote_dir_source] = len(status.entries)

    def report(self) -> dict[str, object] | None:
        if self.consensus is None or self.consensus.valid_after is None:
            return None
        valid_after = self.consensus.valid_after
        votes = self.votes.get(valid_after, {})
        authorities = list(self.consensus.dir_sources)
        return {
            "valid_after": valid_after.strftime(TIMESTAMP_FORMAT),
            "relays": len(self.consensus.entries),
            "authorities": authorities,
            "votes": dict(sorted(votes.items())),
            "missing_votes": sorted(a for a in authorities if a not in votes),
            "stale": self.now() - valid_after > STALE_AFTER,
        }

    def close(self) -> None:
        report = self.report()
        if report is None:
            logger.debug("No consensus parsed in this run; not writing a health report.")
            return
        if report["stale"]:
            logger.warning("The newest consensus (valid after %s) is more than 3 hours old.", report["valid_after"])
        if report["missing_votes"] and self.votes:
            logger.warning(
                "Missing votes for consensus valid after %s from: %s",
                report["valid_after"],
                ", ".join(report["missing_votes"]),  # type: ignore[arg-type]
            )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(report, indent=2, sort_keys=True) + "\n", encoding="utf-8")
