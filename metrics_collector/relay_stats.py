"""Relay statistics derived from consensuses.

Keeps the set of hashed relay identities seen in consensuses, which bridge
statistics use to tell relays apart from bridges without storing relay
fingerprints, and a running table of relays per consensus.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import polars as pl

from metrics_collector.consumers import DescriptorConsumer
from metrics_collector.documents import TIMESTAMP_FORMAT, NetworkStatus

logger = logging.getLogger(__name__)

HASHED_RELAYS_FILE = "hashed-relay-identities"
RELAY_COUNTS_FILE = "relay-counts.csv"


class RelayStats(DescriptorConsumer):
    name = "stats"

    def __init__(self, stats_directory: Path | str) -> None:
        self.stats_directory = Path(stats_directory)
        self.hashed_relays: set[str] = set()
        self.relay_counts: list[dict[str, object]] = []

    @property
    def hashed_relays_path(self) -> Path:
        return self.stats_directory / HASHED_RELAYS_FILE

    @property
    def relay_counts_path(self) -> Path:
        return self.stats_directory / RELAY_COUNTS_FILE

    def on_hashed_relay_identities(self, valid_after: datetime, identities: frozenset[str]) -> None:
        self.hashed_relays.update(identities)

    def on_consensus(self, status: NetworkStatus) -> None:
        if status.valid_after is None:
            return
        self.relay_counts.append({
            "validafter": status.valid_after.strftime(TIMESTAMP_FORMAT),
            "relays": len(status.entries),
        })

    def load_hashed_relays(self) -> set[str]:
        if not self.hashed_relays_path.exists():
            return set()
        try:
            lines = self.hashed_relays_path.read_text(encoding="ascii").splitlines()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read %s (%s). Starting from an empty set.", self.hashed_relays_path, exc)
            return set()
        return {ln.strip() for ln in lines if ln.strip()}

    def close(self) -> None:
        self.stats_directory.mkdir(parents=True, exist_ok=True)
        if self.hashed_relays:
            known = self.load_hashed_relays() | self.hashed_relays
            self.hashed_relays_path.write_text("".join(f"{h}\n" for h in sorted(known)), encoding="ascii")
            logger.info("Wrote %d hashed relay identities to %s.", len(known), self.hashed_relays_path)

        if self.relay_counts:
            new = pl.DataFrame(self.relay_counts, schema={"validafter": pl.Utf8, "relays": pl.Int64})
            if self.relay_counts_path.exists():
                new = pl.concat([pl.read_csv(self.relay_counts_path, schema=new.schema), new])
            counts = new.unique(subset=["validafter"], keep="first", maintain_order=True).sort("validafter")
            counts.write_csv(self.relay_counts_path)
            logger.info("Relay counts cover %d consensuses.", counts.height)
